"""Thin wrapper around the docker and compose command lines.

All container work is delegated to these binaries. Streamed calls inherit the
caller's stdout/stderr; captured calls are used where output must be inspected
(existence checks, health checks, sweeps).
"""

from __future__ import annotations

import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from time import monotonic
from typing import Mapping, Sequence

from loguru import logger

from graphsense.errors import ExecutorError
from graphsense.naming import (
    COMPOSE_PROJECT_ENV,
    COMPOSE_PROJECT_LABEL,
    project_label_filter,
)

__all__ = [
    "CommandResult",
    "ComposeExecutor",
    "LiveContainer",
]


@dataclass(slots=True, frozen=True)
class CommandResult:
    """Outcome of a single external command."""

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    duration_seconds: float

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(slots=True, frozen=True)
class LiveContainer:
    """A container as reported by ``docker ps``."""

    name: str
    status: str
    ports: str = ""

    @property
    def running(self) -> bool:
        return self.status.startswith("Up")


_PS_FORMAT = "{{.Names}}\t{{.Status}}\t{{.Ports}}"
_PROJECT_PS_FORMAT = '{{.Label "com.docker.compose.project"}}\t' + _PS_FORMAT


def _parse_ps_lines(output: str) -> list[LiveContainer]:
    containers: list[LiveContainer] = []
    for line in (output or "").splitlines():
        if not line.strip():
            continue
        parts = line.split("\t")
        name = parts[0].strip()
        status = parts[1].strip() if len(parts) > 1 else ""
        ports = parts[2].strip() if len(parts) > 2 else ""
        containers.append(LiveContainer(name=name, status=status, ports=ports))
    return containers


class ComposeExecutor:
    """Run docker/compose commands on behalf of the orchestrator."""

    def __init__(
        self,
        *,
        compose_bin: str = "docker compose",
        docker_bin: str = "docker",
        log=None,
    ) -> None:
        self.compose_cmd: tuple[str, ...] = tuple(shlex.split(compose_bin))
        self.docker_cmd: tuple[str, ...] = tuple(shlex.split(docker_bin))
        if not self.compose_cmd or not self.docker_cmd:
            raise ValueError("Compose and docker commands must not be empty.")
        self.log = log or logger.bind(module="core.executor")

    # Process plumbing -----------------------------------------------------

    def run(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        capture: bool = False,
        check: bool = True,
    ) -> CommandResult:
        """Run ``command`` and return its result.

        ``check=True`` turns a non-zero exit into ``ExecutorError``. A missing
        binary is always an ``ExecutorError``.
        """
        argv = [str(part) for part in command]
        proc_env = os.environ.copy()
        proc_env.update(env or {})

        self.log.debug("Running command: {}", shlex.join(argv))
        start = monotonic()
        try:
            proc = subprocess.run(
                argv,
                env=proc_env,
                text=True,
                capture_output=capture,
                check=False,
            )
        except OSError as exc:
            raise ExecutorError(
                f"Failed to launch {argv[0]!r}: {exc}",
                cmd=argv,
            ) from exc
        duration = monotonic() - start

        result = CommandResult(
            command=tuple(argv),
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            duration_seconds=duration,
        )
        self.log.debug(
            "Command finished (exit_code={}, duration={:.2f}s): {}",
            result.returncode,
            duration,
            argv[0],
        )
        if check and not result.ok:
            stderr = result.stderr.strip()
            raise ExecutorError(
                f"{shlex.join(argv)} failed with exit code {result.returncode}"
                + (f": {stderr}" if stderr else ""),
                cmd=argv,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result

    def compose(
        self,
        project: str,
        args: Sequence[str],
        *,
        files: Sequence[Path] = (),
        env_file: Path | None = None,
        capture: bool = False,
        check: bool = True,
    ) -> CommandResult:
        """Run a compose verb scoped to ``project`` (the isolation key)."""
        argv: list[str] = list(self.compose_cmd)
        for path in files:
            argv.extend(["-f", str(path)])
        if env_file is not None:
            argv.extend(["--env-file", str(env_file)])
        argv.extend(["--project-name", project])
        argv.extend(args)
        return self.run(
            argv,
            env={COMPOSE_PROJECT_ENV: project},
            capture=capture,
            check=check,
        )

    def docker(
        self,
        args: Sequence[str],
        *,
        capture: bool = False,
        check: bool = True,
    ) -> CommandResult:
        return self.run([*self.docker_cmd, *args], capture=capture, check=check)

    # Compose verbs --------------------------------------------------------

    def up(self, project: str, *, files: Sequence[Path], env_file: Path) -> CommandResult:
        return self.compose(project, ["up", "-d"], files=files, env_file=env_file)

    def stop(self, project: str) -> CommandResult:
        return self.compose(project, ["stop"])

    def start(self, project: str) -> CommandResult:
        return self.compose(project, ["start"])

    def down(self, project: str) -> CommandResult:
        return self.compose(project, ["down", "-v", "--remove-orphans"])

    def logs(self, project: str, *, service: str | None = None, follow: bool = True) -> CommandResult:
        args = ["logs"]
        if follow:
            args.append("-f")
        if service:
            args.append(service)
        return self.compose(project, args)

    def ps(self, project: str) -> CommandResult:
        """Return captured ``compose ps`` output without raising."""
        return self.compose(project, ["ps"], capture=True, check=False)

    # Docker verbs ---------------------------------------------------------

    def project_containers(self, project: str, *, include_stopped: bool = True) -> list[LiveContainer]:
        """List containers labelled with the compose project ``project``."""
        args = ["ps"]
        if include_stopped:
            args.append("-a")
        args.extend(["--filter", project_label_filter(project), "--format", _PS_FORMAT])
        result = self.docker(args, capture=True)
        return _parse_ps_lines(result.stdout)

    def project_container_ids(self, project: str) -> list[str]:
        result = self.docker(
            ["ps", "-a", "--filter", project_label_filter(project), "-q"],
            capture=True,
        )
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def compose_projects(self) -> dict[str, list[LiveContainer]]:
        """Group every compose-labelled container by its project name."""
        result = self.docker(
            ["ps", "-a", "--filter", f"label={COMPOSE_PROJECT_LABEL}", "--format", _PROJECT_PS_FORMAT],
            capture=True,
        )
        projects: dict[str, list[LiveContainer]] = {}
        for line in result.stdout.splitlines():
            project, _, rest = line.partition("\t")
            project = project.strip()
            if not project:
                continue
            projects.setdefault(project, []).extend(_parse_ps_lines(rest))
        return projects

    def remove_containers(self, container_ids: Sequence[str]) -> CommandResult | None:
        if not container_ids:
            return None
        return self.docker(["rm", "-f", *container_ids])

    def volumes_with_prefix(self, prefix: str) -> list[str]:
        result = self.docker(
            ["volume", "ls", "-q", "--filter", f"name={prefix}"],
            capture=True,
        )
        return [
            line.strip()
            for line in result.stdout.splitlines()
            if line.strip().startswith(prefix)
        ]

    def remove_volumes(self, volumes: Sequence[str]) -> CommandResult | None:
        if not volumes:
            return None
        return self.docker(["volume", "rm", *volumes])

    def prune_containers(self) -> CommandResult:
        return self.docker(["container", "prune", "-f"])

    def prune_volumes(self) -> CommandResult:
        return self.docker(["volume", "prune", "-f"])
