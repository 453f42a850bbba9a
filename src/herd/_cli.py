"""Herd CLI — herd serve / herd simulate.

Entry point for the ``herd`` command-line interface.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the herd CLI."""
    parser = argparse.ArgumentParser(
        prog="herd",
        description="Cross-tab todo sync: one upstream connection per herd of tabs.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # herd serve
    serve_parser = subparsers.add_parser("serve", help="Run the todo server")
    serve_parser.add_argument("root", nargs="?", default=".", help="Config directory")
    serve_parser.add_argument("--host", default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port")

    # herd simulate
    sim_parser = subparsers.add_parser(
        "simulate",
        help="Run in-process tabs against in-process services",
    )
    sim_parser.add_argument("root", nargs="?", default=".", help="Config directory")
    sim_parser.add_argument("--tabs", type=int, default=3, help="Number of tabs")
    sim_parser.add_argument(
        "--duration", type=float, default=3.0, help="Seconds to run after the scripted steps",
    )
    sim_parser.add_argument(
        "--close-leader-after",
        type=float,
        default=None,
        help="Close the leader this many seconds after the mutations",
    )
    sim_parser.add_argument("--latency", type=float, default=0.0, help="Bus latency (s)")
    sim_parser.add_argument("--loss", type=float, default=0.0, help="Bus drop probability")
    sim_parser.add_argument("--seed", type=int, default=None, help="Bus random seed")
    sim_parser.add_argument("--quiet", action="store_true", help="Only print the summary")

    return parser


def _get_version() -> str:
    """Get the package version."""
    from herd import __version__

    return __version__


def _run_simulate(args: argparse.Namespace) -> int:
    from herd.banner import print_banner
    from herd.config_loader import load_config
    from herd.observability.log import format_event
    from herd.simulate import simulate

    config = load_config(Path(args.root))
    print_banner(config, mode="simulate", tab_count=args.tabs)
    result = asyncio.run(
        simulate(
            config,
            tabs=args.tabs,
            duration=args.duration,
            close_leader_after=args.close_leader_after,
            latency=args.latency,
            loss=args.loss,
            seed=args.seed,
        )
    )
    if not args.quiet:
        for event in result.events:
            print(format_event(event, origin_ns=result.started_ns))
    print()
    for tab_id, role in sorted(result.roles.items()):
        print(f"  {tab_id}  {role:<9} {len(result.lists[tab_id])} todos")
    if result.closed:
        print(f"  closed: {', '.join(result.closed)}")
    print(f"  converged: {'yes' if result.converged else 'no'}")
    return 0 if result.converged else 1


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    from herd._errors import ConfigError

    try:
        if args.command == "serve":
            from herd.app import serve

            serve(root=args.root, host=args.host, port=args.port)
        elif args.command == "simulate":
            sys.exit(_run_simulate(args))
    except ConfigError as exc:
        print(f"herd: {exc}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
