"""Contention-free port triples for new instances.

Each instance publishes three host ports derived from one base:

- app   = base
- data  = base + 100  (PostgreSQL)
- graph = base + 200  (Neo4j Bolt)

Availability is tested by binding a transient listener. The result is only
valid at the instant of the check; callers that need stronger guarantees must
serialise allocation and container launch themselves (see ``core.locking``).
"""

from __future__ import annotations

import socket
from dataclasses import dataclass
from typing import Callable

from loguru import logger

from graphsense.errors import ResourceExhaustionError

__all__ = [
    "DATA_PORT_OFFSET",
    "GRAPH_PORT_OFFSET",
    "MAX_TCP_PORT",
    "PortAllocator",
    "PortTriple",
    "is_port_in_use",
]

DATA_PORT_OFFSET = 100
GRAPH_PORT_OFFSET = 200
MAX_TCP_PORT = 65535

PortCheck = Callable[[int], bool]


@dataclass(frozen=True, slots=True)
class PortTriple:
    """Host ports published by one instance."""

    app: int
    data: int
    graph: int

    @classmethod
    def from_base(cls, base: int) -> "PortTriple":
        return cls(
            app=int(base),
            data=int(base) + DATA_PORT_OFFSET,
            graph=int(base) + GRAPH_PORT_OFFSET,
        )

    def labelled(self) -> tuple[tuple[str, int], ...]:
        return (("app", self.app), ("postgres", self.data), ("neo4j", self.graph))

    def as_tuple(self) -> tuple[int, int, int]:
        return (self.app, self.data, self.graph)


def is_port_in_use(port: int) -> bool:
    """Return True when a TCP listener cannot be bound on ``port``."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind(("", int(port)))
        sock.listen(1)
    except OSError:
        return True
    finally:
        sock.close()
    return False


class PortAllocator:
    """Find the first base port whose whole triple is free.

    The search starts at ``base_port`` (or ``default_base``) and advances by
    ``step`` on any conflict. ``step`` must be positive; the default of 10 keeps
    consecutive candidates from re-testing the same three ports.
    """

    def __init__(
        self,
        *,
        default_base: int = 8080,
        step: int = 10,
        limit: int = 65000,
        in_use: PortCheck | None = None,
        log=None,
    ) -> None:
        if step <= 0:
            raise ValueError("Port step must be positive.")
        self.default_base = int(default_base)
        self.step = int(step)
        self.limit = int(limit)
        self.in_use = in_use or is_port_in_use
        self.log = log or logger.bind(module="core.ports")

    def conflicts(self, base: int) -> list[tuple[str, int]]:
        """Return the labelled ports of the triple at ``base`` that are taken."""
        triple = PortTriple.from_base(base)
        return [(label, port) for label, port in triple.labelled() if self.in_use(port)]

    def is_free(self, base: int) -> bool:
        triple = PortTriple.from_base(base)
        return not any(self.in_use(port) for port in triple.as_tuple())

    def allocate(self, base_port: int | None = None) -> PortTriple:
        """Return the first free triple at or above ``base_port``."""
        start = int(base_port) if base_port else self.default_base
        if start <= 0:
            raise ResourceExhaustionError(f"Invalid base port {start}.")

        candidate = start
        while candidate <= self.limit and candidate + GRAPH_PORT_OFFSET <= MAX_TCP_PORT:
            if self.is_free(candidate):
                triple = PortTriple.from_base(candidate)
                if candidate != start:
                    self.log.info(
                        "Base port {} was busy; allocated {} instead",
                        start,
                        candidate,
                    )
                return triple
            self.log.debug("Port triple at base {} is busy", candidate)
            candidate += self.step

        raise ResourceExhaustionError(
            f"Unable to find an available port set starting from {start}.",
        )
