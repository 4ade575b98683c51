"""Error taxonomy shared by the instance manager.

Only ``PreconditionError`` and ``ResourceExhaustionError`` are raised before
any container is touched. Everything after the first executor call either
raises ``ExecutorError`` or degrades to a logged warning.
"""

from __future__ import annotations

import shlex
from typing import Sequence

__all__ = [
    "ArtifactError",
    "BookkeepingError",
    "ExecutorError",
    "GraphsenseError",
    "HealthCheckTimeout",
    "PreconditionError",
    "ResourceExhaustionError",
]


class GraphsenseError(RuntimeError):
    """Base class for all errors raised by the instance manager."""


class PreconditionError(GraphsenseError):
    """Raised when a lifecycle request is invalid for the current state."""


class ResourceExhaustionError(GraphsenseError):
    """Raised when no free port triple exists within the allowed range."""


class ArtifactError(GraphsenseError):
    """Raised when a deployment artifact cannot be written."""


class BookkeepingError(GraphsenseError):
    """Raised when the durable instance registry cannot be read or written."""


class HealthCheckTimeout(GraphsenseError):
    """Raised when services did not report as up within the health check budget."""


class ExecutorError(GraphsenseError):
    """Raised when an external docker/compose command exits non-zero.

    The raw command and any captured output are kept for debugging while the
    string form stays short enough for console output.
    """

    def __init__(
        self,
        message: str,
        *,
        cmd: Sequence[str] | None = None,
        returncode: int | None = None,
        stdout: str | None = None,
        stderr: str | None = None,
    ) -> None:
        super().__init__(message)
        self.cmd = tuple(cmd) if cmd else None
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    @property
    def command_line(self) -> str:
        return shlex.join(self.cmd) if self.cmd else ""
