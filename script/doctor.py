from __future__ import annotations

"""Environment doctor for the GraphSense instance manager.

This script performs a few fast checks before the first deploy:
- docker and the compose command are installed and answer;
- the base docker-compose.yml exists;
- the API keys file exists (deploy refuses to run without it);
- the registry database can be opened.

Usage:
    python script/doctor.py
    python script/doctor.py --json --strict
"""

import argparse
import json
import sys
from typing import Sequence

from loguru import logger
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table
from rich.text import Text

from graphsense.config import get_settings
from graphsense.preflight import CheckResult, Status, run_checks, summarize

console = Console()
log = logger.bind(module="script.doctor")


def _status_text(status: Status) -> Text:
    styles = {"ok": "bold green", "warn": "bold yellow", "fail": "bold red"}
    return Text(status.upper(), style=styles.get(status, "bold"))


def _render_table(results: Sequence[CheckResult]) -> None:
    table = Table(title="GraphSense doctor", show_lines=False)
    table.add_column("Check", style="bold")
    table.add_column("Status", justify="center")
    table.add_column("Details")
    for item in results:
        table.add_row(item.name, _status_text(item.status), item.details)
    console.print(table)


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run environment checks for the GraphSense instance manager.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--timeout-seconds",
        type=float,
        default=5.0,
        help="Timeout for the compose version check.",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Treat warnings as failures (non-zero exit code).",
    )
    parser.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        help="Print results as JSON (useful for CI).",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_arg_parser().parse_args(list(argv) if argv is not None else None)

    try:
        settings = get_settings()
    except ValidationError as exc:  # pragma: no cover - depends on environment
        console.print(
            "[bold red]Failed to load settings[/] "
            f"reason={exc}. Ensure your environment variables are valid.",
        )
        log.exception("Settings load failed")
        return 1

    results = run_checks(settings, timeout_seconds=float(max(0.5, args.timeout_seconds)))

    if args.json_output:
        payload = [{"name": r.name, "status": r.status, "details": r.details} for r in results]
        console.print(json.dumps(payload, ensure_ascii=False, indent=2))
    else:
        _render_table(results)

    ok, warn, fail = summarize(results)
    summary = f"ok={ok} warn={warn} fail={fail}"
    if fail:
        console.print(f"[bold red]Doctor failed[/] {summary}")
        return 1
    if warn and args.strict:
        console.print(f"[bold yellow]Doctor warnings (strict)[/] {summary}")
        return 2
    console.print(f"[bold green]Doctor passed[/] {summary}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
