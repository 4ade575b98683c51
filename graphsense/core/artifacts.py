"""Per-instance deployment artifacts.

Two ephemeral files are produced for each ``compose up``:

- an env file holding repository path, ports, fixed service credentials and
  optional API keys;
- a compose overlay that renames containers, volumes and the network after the
  instance and publishes the allocated app port.

Both are rendered from an ``InstanceConfig`` by field name. The files are owned
by the caller; ``deployment_artifacts`` deletes them on every exit path.
"""

from __future__ import annotations

import os
import re
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

import yaml
from loguru import logger

from graphsense.core.instance import InstanceConfig
from graphsense.errors import ArtifactError

log = logger.bind(module="core.artifacts")

__all__ = [
    "APP_INTERNAL_PORT",
    "COMPOSE_FILE_VERSION",
    "DeploymentArtifacts",
    "deployment_artifacts",
    "render_environment",
    "render_topology_overlay",
    "topology_overlay",
    "write_environment_file",
    "write_topology_overlay",
]

COMPOSE_FILE_VERSION = "3.8"
APP_INTERNAL_PORT = 8080
POSTGRES_INTERNAL_PORT = 5432
NEO4J_INTERNAL_PORT = 7687
REPO_MOUNT_POINT = "/home/repo"

# Fixed service settings shared by every instance, grouped as they appear in
# the rendered env file.
_ENV_SECTIONS: tuple[tuple[str, tuple[tuple[str, str], ...]], ...] = (
    (
        "Database Configuration",
        (
            ("POSTGRES_DB", "graphsense"),
            ("POSTGRES_USER", "postgres"),
            ("POSTGRES_PASSWORD", "postgres"),
        ),
    ),
    (
        "Neo4j Configuration",
        (
            ("NEO4J_AUTH", "none"),
            ("NEO4J_USERNAME", "neo4j"),
            ("NEO4J_PASSWORD", ""),
        ),
    ),
    (
        "Application Configuration",
        (
            ("NODE_ENV", "production"),
            ("LOG_LEVEL", "info"),
            ("INDEX_FROM_SCRATCH", "true"),
        ),
    ),
    (
        "Security Configuration",
        (
            ("CORS_ORIGIN", "*"),
            ("RATE_LIMIT_MAX", "100"),
            ("RATE_LIMIT_WINDOW", "900000"),
        ),
    ),
)


@dataclass(frozen=True, slots=True)
class DeploymentArtifacts:
    env_file: Path
    overlay_file: Path


# Values made only of these characters are read back verbatim by compose.
_PLAIN_ENV_VALUE = re.compile(r"^[A-Za-z0-9_./:@,+*=-]*$")


def _env_value(value: object) -> str:
    """Quote ``value`` so compose does not interpolate or split it."""
    text = str(value)
    if _PLAIN_ENV_VALUE.match(text):
        return text
    if "'" not in text:
        return f"'{text}'"
    escaped = text.replace("\\", "\\\\").replace('"', '\\"').replace("$", "$$")
    return f'"{escaped}"'


def _compose_literal(value: object) -> str:
    """Escape ``$`` so compose keeps it in overlay values."""
    return str(value).replace("$", "$$")


def _env_block(title: str, pairs: tuple[tuple[str, object], ...]) -> list[str]:
    lines = [f"# {title}"]
    lines.extend(f"{key}={_env_value(value)}" for key, value in pairs)
    return lines


def render_environment(config: InstanceConfig) -> str:
    """Render the compose ``--env-file`` content for one instance."""
    blocks = [
        _env_block("Repository Configuration", (("REPO_PATH", config.repository_path),)),
        _env_block(
            "Port Configuration",
            (
                ("PORT", config.app_port),
                ("POSTGRES_PORT", config.data_port),
                ("NEO4J_BOLT_PORT", config.graph_port),
            ),
        ),
    ]
    blocks.extend(_env_block(title, pairs) for title, pairs in _ENV_SECTIONS)

    text = "\n\n".join("\n".join(block) for block in blocks) + "\n"
    for key, value in config.secrets.as_env().items():
        text += f"{key}={_env_value(value)}\n"
    return text


class _Quoted(str):
    """String that must be emitted double-quoted (ports, versions)."""


class _OverlayDumper(yaml.SafeDumper):
    pass


def _represent_quoted(dumper: yaml.SafeDumper, data: _Quoted) -> yaml.ScalarNode:
    return dumper.represent_scalar("tag:yaml.org,2002:str", str(data), style='"')


_OverlayDumper.add_representer(_Quoted, _represent_quoted)


def topology_overlay(config: InstanceConfig) -> dict[str, Any]:
    """Return the compose overlay for one instance as a plain mapping."""
    names = config.names
    network = names.network
    postgres = names.container("postgres")
    neo4j = names.container("neo4j")

    services: dict[str, Any] = {
        "postgres": {
            "container_name": postgres,
            "volumes": [f"{names.volume('postgres_data')}:/var/lib/postgresql/data"],
            "networks": [network],
        },
        "neo4j": {
            "container_name": neo4j,
            "volumes": [
                f"{names.volume('neo4j_data')}:/data",
                f"{names.volume('neo4j_logs')}:/logs",
                f"{names.volume('neo4j_plugins')}:/plugins",
                f"{names.volume('neo4j_conf')}:/conf",
            ],
            "networks": [network],
        },
        "app": {
            "container_name": names.container("app"),
            "volumes": [
                f"{names.volume('app_repos')}:/app/.graphsense",
                f"{_compose_literal(config.repository_path)}:{REPO_MOUNT_POINT}:ro",
            ],
            "ports": [_Quoted(f"{config.app_port}:{APP_INTERNAL_PORT}")],
            "networks": [network],
            "environment": [
                "POSTGRES_URL=postgresql://postgres:postgres@"
                f"{postgres}:{POSTGRES_INTERNAL_PORT}/${{POSTGRES_DB}}",
                f"NEO4J_URI=bolt://{neo4j}:{NEO4J_INTERNAL_PORT}",
                f"LOCAL_REPO_PATH={REPO_MOUNT_POINT}",
            ],
        },
    }
    return {
        "version": _Quoted(COMPOSE_FILE_VERSION),
        "services": services,
        "networks": {network: {"driver": "bridge"}},
        "volumes": {volume: {"name": volume} for volume in names.volumes},
    }


def render_topology_overlay(config: InstanceConfig) -> str:
    """Render the compose overlay YAML for one instance."""
    return yaml.dump(
        topology_overlay(config),
        Dumper=_OverlayDumper,
        default_flow_style=False,
        sort_keys=False,
    )


def _write_temp(content: str, *, prefix: str, suffix: str) -> Path:
    """Persist ``content`` to a fresh temp file, removing it on failure."""
    try:
        fd, raw_path = tempfile.mkstemp(prefix=prefix, suffix=suffix)
    except OSError as exc:
        raise ArtifactError(f"Failed to create temporary file: {exc}") from exc

    path = Path(raw_path)
    try:
        handle = os.fdopen(fd, "w", encoding="utf-8")
    except OSError as exc:
        os.close(fd)
        path.unlink(missing_ok=True)
        raise ArtifactError(f"Failed to write {path}: {exc}") from exc
    try:
        with handle:
            handle.write(content)
    except OSError as exc:
        path.unlink(missing_ok=True)
        raise ArtifactError(f"Failed to write {path}: {exc}") from exc
    return path


def write_environment_file(config: InstanceConfig) -> Path:
    return _write_temp(
        render_environment(config),
        prefix="graphsense-env-",
        suffix=".env",
    )


def write_topology_overlay(config: InstanceConfig) -> Path:
    return _write_temp(
        render_topology_overlay(config),
        prefix="graphsense-compose-",
        suffix=".yml",
    )


@contextmanager
def deployment_artifacts(config: InstanceConfig) -> Iterator[DeploymentArtifacts]:
    """Yield freshly written artifacts and delete them afterwards."""
    env_file = write_environment_file(config)
    try:
        overlay_file = write_topology_overlay(config)
    except ArtifactError:
        env_file.unlink(missing_ok=True)
        raise

    log.debug("Rendered artifacts env={} overlay={}", env_file, overlay_file)
    try:
        yield DeploymentArtifacts(env_file=env_file, overlay_file=overlay_file)
    finally:
        env_file.unlink(missing_ok=True)
        overlay_file.unlink(missing_ok=True)
