"""Startup banner — mode-aware status output.

Prints a startup banner with timing, election timings and endpoints.
Detects ``NO_COLOR`` / ``TERM`` for safe fallback.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from herd.config import HerdConfig


# ---------------------------------------------------------------------------
# ANSI helpers — respect NO_COLOR (https://no-color.org)
# ---------------------------------------------------------------------------

def _supports_color() -> bool:
    """Return True if the terminal supports ANSI colors."""
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("TERM") == "dumb":
        return False
    return hasattr(sys.stderr, "isatty") and sys.stderr.isatty()


_COLOR = _supports_color()

_RESET = "\033[0m" if _COLOR else ""
_BOLD = "\033[1m" if _COLOR else ""
_DIM = "\033[2m" if _COLOR else ""
_CYAN = "\033[36m" if _COLOR else ""
_GREEN = "\033[32m" if _COLOR else ""
_YELLOW = "\033[33m" if _COLOR else ""

_MODE_STYLES: dict[str, tuple[str, str]] = {
    "serve": (_CYAN, "serve"),
    "simulate": (_GREEN, "simulate"),
}


def _mode_badge(mode: str) -> str:
    """Return a styled [mode] badge."""
    color, label = _MODE_STYLES.get(mode, (_DIM, mode))
    return f"{color}[{label}]{_RESET}"


def _clickable_url(url: str) -> str:
    """Wrap *url* in an OSC 8 hyperlink escape if the terminal supports it."""
    if not _COLOR:
        return url
    return f"\033]8;;{url}\033\\{_BOLD}{_CYAN}{url}{_RESET}\033]8;;\033\\"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def print_banner(
    config: HerdConfig,
    mode: str,
    *,
    tab_count: int = 0,
    load_ms: float = 0.0,
    warnings: list[str] | None = None,
) -> None:
    """Print the Herd startup banner to stderr.

    Args:
        config: Resolved HerdConfig.
        mode: ``"serve"`` or ``"simulate"``.
        tab_count: Number of simulated tabs (simulate mode).
        load_ms: Time spent wiring services in milliseconds.
        warnings: Optional list of warning messages to display.

    """
    from herd import __version__

    header = f"  {_BOLD}Herd{_RESET} {_DIM}v{__version__}{_RESET}  {_mode_badge(mode)}"
    lines: list[str] = [
        "",
        header,
        f"  {_DIM}{'─' * 43}{_RESET}",
    ]

    timings = config.election_timings
    lines.append(
        f"  {_DIM}├─{_RESET} election: discovery {timings.discovery_timeout * 1000:.0f}ms"
        f" · heartbeat {timings.heartbeat_interval * 1000:.0f}ms"
        f" · failure {timings.failure_timeout * 1000:.0f}ms"
    )
    lines.append(f"  {_DIM}├─{_RESET} cache ttl: {config.cache_ttl:.0f}s")

    if mode == "simulate":
        tabs_label = "tab" if tab_count == 1 else "tabs"
        lines.append(f"  {_DIM}└─{_RESET} {tab_count} {tabs_label} on {config.bus_channel!r}")
    elif mode == "serve":
        timing = f" {_DIM}in {load_ms:.0f}ms{_RESET}" if load_ms > 0 else ""
        lines.append(f"  {_DIM}├─{_RESET} services ready{timing}")
        lines.append(
            f"  {_DIM}└─{_RESET} {_GREEN}live{_RESET} "
            f"· SSE on {_DIM}/cable/{config.topic}{_RESET}"
        )
        url = f"http://{config.host}:{config.port}"
        lines.append("")
        lines.append(f"  {_clickable_url(url)}")

    if warnings:
        lines.append("")
        lines.extend(f"  {_YELLOW}!{_RESET} {w}" for w in warnings)

    lines.append("")

    print("\n".join(lines), file=sys.stderr)
