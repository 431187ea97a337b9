"""CLI interface for infra_agent."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

from . import __version__
from .config import load_config
from .errors import ConfigError, ListenerBindFailure

logger = logging.getLogger(__name__)


def _cmd_run(args: argparse.Namespace) -> int:
    """Serve metrics until SIGINT/SIGTERM."""
    cfg = args.cfg
    if args.host is not None:
        cfg.listen.host = args.host
    if args.port is not None:
        cfg.listen.port = args.port
    try:
        cfg.validate()
    except ConfigError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 1

    from .agent import Agent

    agent = Agent(cfg)
    try:
        agent.start()
    except ListenerBindFailure as exc:
        logger.error("%s", exc)
        agent.stop()
        return 1

    stop = threading.Event()

    def _handle_signal(_sig: int, _frame: object) -> None:
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    print(f"infra_agent serving http://{cfg.listen.host}:{agent.port}/metrics")
    print("Press Ctrl+C to stop.\n")
    try:
        while not stop.wait(0.5):
            pass
    finally:
        agent.stop()
    print("\nAgent stopped.")
    return 0


def _cmd_snapshot(args: argparse.Namespace) -> int:
    """Sample every enabled family once and print the result."""
    from .agent import Agent

    agent = Agent(args.cfg)
    try:
        results = agent.scheduler.collect_once()
    finally:
        agent.stop()

    if args.raw:
        sys.stdout.write(agent.server.render().decode("utf-8"))
        return 0

    from rich.console import Console
    from rich.table import Table

    table = Table(title="Metric snapshot", show_lines=False)
    table.add_column("Metric", style="green")
    table.add_column("Labels", style="magenta")
    table.add_column("Kind", width=8)
    table.add_column("Value", justify="right", style="cyan")

    samples = agent.registry.snapshot()
    for s in samples[: args.max_rows]:
        labels = ", ".join(f"{k}={v}" for k, v in s.labels.items())
        table.add_row(s.name, labels, s.kind.value, f"{s.value:g}")

    console = Console()
    console.print(table)
    if len(samples) > args.max_rows:
        console.print(f"  ... ({len(samples) - args.max_rows} more metrics)")
    for r in results:
        if not r.ok:
            console.print(f"[red]{r.family}[/red]: {r.reason}")
    return 0


def _cmd_version(_args: argparse.Namespace) -> int:
    print(f"infra_agent {__version__}")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Entry point for the infra-agent CLI."""
    parser = argparse.ArgumentParser(
        prog="infra-agent",
        description="Sample host resource counters and expose them for Prometheus scrapes",
    )
    parser.add_argument("--config", "-c", default=None, help="Path to infra_agent.yaml")
    parser.add_argument("--log-level", default=None, help="Logging level (default from config)")
    sub = parser.add_subparsers(dest="command")

    # run
    run_p = sub.add_parser("run", help="Start sampling and serve /metrics")
    run_p.add_argument("--host", default=None, help="Listen address")
    run_p.add_argument("--port", "-p", type=int, default=None, help="Listen port")
    run_p.set_defaults(func=_cmd_run)

    # snapshot
    snap_p = sub.add_parser("snapshot", help="Sample once and print the metrics")
    snap_p.add_argument("--raw", action="store_true", help="Print exposition text instead of a table")
    snap_p.add_argument("--max-rows", type=int, default=200, help="Rows to show in the table")
    snap_p.set_defaults(func=_cmd_snapshot)

    # version
    ver_p = sub.add_parser("version", help="Print version")
    ver_p.set_defaults(func=_cmd_version)

    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    try:
        args.cfg = load_config(args.config)
    except ConfigError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=(args.log_level or args.cfg.logging.level).upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
