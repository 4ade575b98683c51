"""Command line entry point for managing GraphSense instances.

Typical usage:

    graphsense deploy ~/src/my-repo
    graphsense list
    graphsense stop graphsense-my-repo
    graphsense remove graphsense-my-repo --yes
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from loguru import logger
from rich.console import Console
from rich.table import Table
from rich.text import Text

from graphsense import __version__
from graphsense.config import get_settings
from graphsense.core.orchestrator import (
    DEBUG_BASE_PORTS,
    InstanceStatus,
    InstanceSummary,
    LifecycleOrchestrator,
    PortReport,
)
from graphsense.errors import GraphsenseError

console = Console()
log = logger.bind(module="cli")

__all__ = ["build_parser", "configure_logging", "main"]

_LOG_FORMAT = "<level>[{level}]</level> {message}"


class _LoguruInterceptHandler(logging.Handler):
    """Bridge standard-library logging records (SQLAlchemy) into Loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - thin wrapper
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        logger.opt(exception=record.exc_info).log(level, record.getMessage())


def configure_logging(level: str) -> None:
    """Send Loguru output to stderr and route stdlib logging through it."""
    level = (level or "INFO").upper()
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=_LOG_FORMAT,
        colorize=True,
        backtrace=False,
        diagnose=False,
    )
    root = logging.getLogger()
    root.handlers = [_LoguruInterceptHandler()]
    root.setLevel(logging.WARNING)
    logging.captureWarnings(True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="graphsense",
        description="Manage multiple isolated GraphSense instances with Docker Compose.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ...).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    deploy = sub.add_parser("deploy", help="Deploy a new instance for a repository.")
    deploy.add_argument("repo_path", help="Path to the repository to index.")
    deploy.add_argument(
        "instance_name",
        nargs="?",
        default=None,
        help="Instance name (default: derived from the repository directory).",
    )
    deploy.add_argument(
        "--port",
        type=int,
        default=None,
        help="Base port for the instance (default: auto-assigned).",
    )

    for verb, text in (
        ("stop", "Stop a running instance without removing it."),
        ("start", "Start a stopped instance."),
        ("status", "Show status of an instance."),
    ):
        cmd = sub.add_parser(verb, help=text)
        cmd.add_argument("instance_name")

    remove = sub.add_parser("remove", help="Permanently remove an instance and all its data.")
    remove.add_argument("instance_name")
    remove.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Do not ask for confirmation.",
    )

    logs = sub.add_parser("logs", help="Show logs for an instance.")
    logs.add_argument("instance_name")
    logs.add_argument("service", nargs="?", default=None, help="app, postgres or neo4j.")
    logs.add_argument("--no-follow", action="store_true", help="Print logs and exit.")

    sub.add_parser("list", help="List all known instances.")
    sub.add_parser("debug", help="Show port usage for troubleshooting.")
    sub.add_parser("cleanup", help="Prune stopped containers and unused volumes.")
    return parser


def _state_text(state: str) -> Text:
    styles = {"running": "bold green", "partial": "bold yellow", "stopped": "yellow", "missing": "bold red"}
    return Text(state, style=styles.get(state, "bold"))


def render_instances(summaries: Sequence[InstanceSummary]) -> None:
    if not summaries:
        console.print("No instances found.")
        return
    table = Table(title="GraphSense instances", show_lines=False)
    table.add_column("Instance", style="bold cyan", no_wrap=True)
    table.add_column("State", justify="center")
    table.add_column("App")
    table.add_column("PostgreSQL")
    table.add_column("Neo4j Bolt")
    table.add_column("Repository")
    for item in summaries:
        ports = [str(port) for port in item.ports.as_tuple()] if item.ports else ["-", "-", "-"]
        table.add_row(
            item.instance_name,
            _state_text(item.state),
            *ports,
            item.repository_path or "(not recorded)",
        )
    console.print(table)


def render_status(status: InstanceStatus) -> None:
    table = Table(title=f"Container details: {status.instance_name}")
    table.add_column("Container", style="bold")
    table.add_column("Status")
    table.add_column("Ports")
    for container in status.containers:
        style = "green" if container.running else "yellow"
        table.add_row(container.name, Text(container.status, style=style), container.ports)
    console.print(table)
    if status.ports is not None:
        console.print(
            f"Recorded ports: app={status.ports.app} "
            f"postgres={status.ports.data} neo4j={status.ports.graph}",
        )
    if status.repository_path:
        console.print(f"Repository: {status.repository_path}")


def render_port_report(report: PortReport) -> None:
    table = Table(title="Port availability")
    table.add_column("Base", justify="right")
    table.add_column("Status", justify="center")
    table.add_column("Details")
    for row in report.rows:
        if row.available:
            details = f"App:{row.ports.app}, PG:{row.ports.data}, Neo4j:{row.ports.graph}"
            table.add_row(str(row.base), Text("AVAILABLE", style="bold green"), details)
        else:
            details = " ".join(f"{label.upper()}:{port}" for label, port in row.conflicts)
            table.add_row(str(row.base), Text("CONFLICTS", style="bold red"), details)
    console.print(table)
    nxt = report.next_available
    console.print(f"Recommended base port: [bold]{nxt.app}[/]")
    console.print(f"  - MCP Server: {nxt.app}")
    console.print(f"  - PostgreSQL: {nxt.data}")
    console.print(f"  - Neo4j Bolt: {nxt.graph}")


def _dispatch(args: argparse.Namespace, orchestrator: LifecycleOrchestrator) -> int:
    command = args.command
    if command == "deploy":
        orchestrator.deploy(args.repo_path, args.instance_name, base_port=args.port)
    elif command == "stop":
        orchestrator.stop(args.instance_name)
    elif command == "start":
        orchestrator.start(args.instance_name)
    elif command == "remove":
        orchestrator.remove(args.instance_name, assume_yes=args.yes)
    elif command == "logs":
        orchestrator.logs(args.instance_name, args.service, follow=not args.no_follow)
    elif command == "status":
        render_status(orchestrator.status(args.instance_name))
    elif command == "list":
        render_instances(orchestrator.list_instances())
    elif command == "debug":
        render_port_report(orchestrator.debug_ports(DEBUG_BASE_PORTS))
    elif command == "cleanup":
        orchestrator.cleanup()
    else:  # pragma: no cover - argparse enforces choices
        raise GraphsenseError(f"Unknown command {command!r}")
    return 0


def main(
    argv: Sequence[str] | None = None,
    *,
    orchestrator: LifecycleOrchestrator | None = None,
) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    settings = get_settings()
    configure_logging(args.log_level or settings.log_level)

    try:
        orchestrator = orchestrator or LifecycleOrchestrator.from_settings(settings)
        return _dispatch(args, orchestrator)
    except GraphsenseError as exc:
        log.error("{}", exc)
        return 1
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/]")
        return 130


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
