"""Naming helpers derived from the instance name.

Every docker resource that belongs to an instance (compose project, containers,
volumes, network) is derived from a single input: the instance name. Two
instances with distinct names therefore never share a resource name.

Instance names are restricted to lowercase alphanumerics and single hyphens,
without a leading or trailing hyphen, so they are valid compose project names,
container names and volume prefixes at the same time.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from graphsense.errors import PreconditionError

__all__ = [
    "COMPOSE_PROJECT_ENV",
    "COMPOSE_PROJECT_LABEL",
    "CONTAINER_SUFFIXES",
    "DEFAULT_INSTANCE_PREFIX",
    "SERVICE_NAMES",
    "VOLUME_SUFFIXES",
    "InstanceNames",
    "generate_instance_name",
    "instance_names",
    "project_label_filter",
    "sanitize_instance_name",
]

DEFAULT_INSTANCE_PREFIX: str = "graphsense"

# Environment variable and label used by compose to scope a project.
COMPOSE_PROJECT_ENV: str = "COMPOSE_PROJECT_NAME"
COMPOSE_PROJECT_LABEL: str = "com.docker.compose.project"

# Fixed service set of the stack, in the order containers are recorded.
SERVICE_NAMES: tuple[str, ...] = ("app", "postgres", "neo4j")
CONTAINER_SUFFIXES: tuple[str, ...] = tuple(f"-{service}" for service in SERVICE_NAMES)

VOLUME_SUFFIXES: tuple[str, ...] = (
    "postgres_data",
    "neo4j_data",
    "neo4j_logs",
    "neo4j_plugins",
    "neo4j_conf",
    "app_repos",
)

_UNSAFE_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True, slots=True)
class InstanceNames:
    """Resource names derived from one instance name."""

    instance: str

    @property
    def project(self) -> str:
        return self.instance

    @property
    def network(self) -> str:
        return f"{self.instance}-network"

    @property
    def volume_prefix(self) -> str:
        return f"{self.instance}_"

    def container(self, service: str) -> str:
        return f"{self.instance}-{service}"

    def volume(self, suffix: str) -> str:
        return f"{self.instance}_{suffix}"

    @property
    def containers(self) -> tuple[str, ...]:
        return tuple(self.container(service) for service in SERVICE_NAMES)

    @property
    def volumes(self) -> tuple[str, ...]:
        return tuple(self.volume(suffix) for suffix in VOLUME_SUFFIXES)


def _slugify(value: str) -> str:
    return _UNSAFE_RE.sub("-", (value or "").strip().lower()).strip("-")


def sanitize_instance_name(name: str) -> str:
    """Normalise a user-supplied instance name.

    Raises ``PreconditionError`` when nothing usable remains.
    """
    slug = _slugify(name)
    if not slug:
        raise PreconditionError(f"Instance name {name!r} contains no usable characters.")
    return slug


def generate_instance_name(repo_path: Path | str) -> str:
    """Derive an instance name from the final component of a repository path."""
    base = _slugify(Path(repo_path).name)
    if not base:
        return DEFAULT_INSTANCE_PREFIX
    return f"{DEFAULT_INSTANCE_PREFIX}-{base}"


def instance_names(instance_name: str) -> InstanceNames:
    return InstanceNames(instance=instance_name)


def project_label_filter(instance_name: str) -> str:
    """Return the ``docker ps --filter`` expression selecting one project."""
    return f"label={COMPOSE_PROJECT_LABEL}={instance_name}"
