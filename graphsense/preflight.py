"""Environment checks run by ``script/doctor.py``.

Each check returns a ``CheckResult`` instead of raising so the doctor can show
every problem at once.
"""

from __future__ import annotations

import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Sequence

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from graphsense.config import Settings
from graphsense.core.secrets import load_api_keys
from graphsense.db.base import create_sqlite_engine
from graphsense.errors import PreconditionError

Status = Literal["ok", "warn", "fail"]

__all__ = [
    "CheckResult",
    "check_binary",
    "check_compose",
    "check_compose_file",
    "check_registry_db",
    "check_secrets_file",
    "run_checks",
    "summarize",
]


@dataclass(slots=True)
class CheckResult:
    name: str
    status: Status
    details: str


def check_binary(command: str, *, label: str) -> CheckResult:
    parts = shlex.split(command or "")
    if not parts:
        return CheckResult(label, "fail", "not configured")
    resolved = shutil.which(parts[0])
    if resolved:
        return CheckResult(label, "ok", f"found: {resolved}")
    return CheckResult(label, "fail", f"missing: {parts[0]!r} (not on PATH)")


def check_compose(command: str, *, timeout_seconds: float = 5.0) -> CheckResult:
    """Verify that the compose command answers ``version``."""
    binary = check_binary(command, label="compose")
    if binary.status != "ok":
        return binary
    argv = [*shlex.split(command), "version"]
    try:
        proc = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        return CheckResult("compose", "fail", f"{command!r} did not respond ({exc})")
    if proc.returncode != 0:
        detail = (proc.stderr or proc.stdout or "").strip() or f"exit {proc.returncode}"
        return CheckResult("compose", "fail", f"{command!r} failed: {detail}")
    first_line = (proc.stdout or "").strip().splitlines()[:1]
    return CheckResult("compose", "ok", first_line[0] if first_line else "available")


def check_compose_file(path: Path) -> CheckResult:
    compose_file = Path(path).expanduser()
    if compose_file.is_file():
        return CheckResult("compose_file", "ok", f"found: {compose_file}")
    return CheckResult("compose_file", "fail", f"missing: {compose_file} (set GRAPHSENSE_COMPOSE_FILE)")


def check_secrets_file(path: Path) -> CheckResult:
    try:
        keys = load_api_keys(path)
    except PreconditionError as exc:
        return CheckResult("secrets_file", "fail", str(exc))
    configured = sorted(keys.as_env())
    if not configured:
        return CheckResult(
            "secrets_file",
            "warn",
            f"{path} has neither CO_API_KEY nor ANTHROPIC_API_KEY set.",
        )
    return CheckResult("secrets_file", "ok", f"configured: {', '.join(configured)}")


def check_registry_db(path: Path) -> CheckResult:
    try:
        engine = create_sqlite_engine(path)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        return CheckResult("registry_db", "fail", f"unusable: {path} ({exc})")
    return CheckResult("registry_db", "ok", f"reachable: {path}")


def run_checks(settings: Settings, *, timeout_seconds: float = 5.0) -> list[CheckResult]:
    return [
        check_binary(settings.docker_bin, label="docker"),
        check_compose(settings.compose_bin, timeout_seconds=timeout_seconds),
        check_compose_file(settings.compose_file),
        check_secrets_file(settings.secrets_path),
        check_registry_db(settings.database_path),
    ]


def summarize(results: Sequence[CheckResult]) -> tuple[int, int, int]:
    ok = sum(1 for r in results if r.status == "ok")
    warn = sum(1 for r in results if r.status == "warn")
    fail = sum(1 for r in results if r.status == "fail")
    return ok, warn, fail
