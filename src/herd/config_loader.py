"""Load HerdConfig from herd.yaml or herd.toml if present.

Merges file config with CLI kwargs. CLI overrides file.
"""

from __future__ import annotations

import tomllib
from dataclasses import fields
from pathlib import Path

import yaml

from herd._errors import ConfigError
from herd.config import HerdConfig

_CONFIG_KEYS: frozenset[str] = frozenset(f.name for f in fields(HerdConfig))


def load_config(root: Path, **overrides: object) -> HerdConfig:
    """Load HerdConfig from root, optionally merging herd.yaml.

    Looks for herd.yaml, herd.yml, or herd.toml in root. If found, loads
    and merges with overrides. Overrides take precedence; ``None``
    overrides are ignored so unset CLI flags don't mask file values.

    Raises:
        ConfigError: If the file is malformed or holds invalid values.

    """
    file_config = _read_herd_config(root)
    merged = {**file_config, **{k: v for k, v in overrides.items() if v is not None}}
    unknown = sorted(set(merged) - _CONFIG_KEYS)
    if unknown:
        msg = f"Unknown config keys: {', '.join(unknown)}"
        raise ConfigError(msg)
    try:
        return HerdConfig(**merged)  # type: ignore[arg-type]
    except TypeError as exc:
        raise ConfigError(str(exc)) from exc


def _read_herd_config(root: Path) -> dict[str, object]:
    """Read herd config from yaml/toml if present. Returns empty dict otherwise."""
    for name in ("herd.yaml", "herd.yml"):
        path = root / name
        if path.is_file():
            return _parse_yaml(path)
    toml_path = root / "herd.toml"
    if toml_path.is_file():
        return _parse_toml(toml_path)
    return {}


def _parse_yaml(path: Path) -> dict[str, object]:
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:
        msg = f"Invalid YAML in {path}: {exc}"
        raise ConfigError(msg) from exc
    if not isinstance(data, dict):
        msg = f"{path} must contain a mapping, got {type(data).__name__}"
        raise ConfigError(msg)
    return _flatten_herd_section(data)


def _parse_toml(path: Path) -> dict[str, object]:
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in {path}: {exc}"
        raise ConfigError(msg) from exc
    return _flatten_herd_section(data)


def _flatten_herd_section(data: dict[str, object]) -> dict[str, object]:
    """Extract herd.* keys into top-level config."""
    result: dict[str, object] = {}
    herd = data.get("herd")
    if isinstance(herd, dict):
        for k, v in herd.items():
            result[k] = v
    for k, v in data.items():
        if k != "herd" and k in _CONFIG_KEYS:
            result[k] = v
    return result
