from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from graphsense.core.ports import PortTriple
from graphsense.core.secrets import ApiKeys
from graphsense.errors import PreconditionError
from graphsense.naming import InstanceNames, instance_names

__all__ = ["InstanceConfig", "resolve_repository_path"]


def resolve_repository_path(repo_path: Path | str) -> Path:
    """Return the absolute repository path, failing when it does not exist."""
    raw = str(repo_path or "").strip()
    if not raw:
        raise PreconditionError("Repository path must be provided.")
    path = Path(raw).expanduser()
    if not path.exists():
        raise PreconditionError(f"Repository path does not exist: {raw}")
    return path.resolve()


@dataclass(frozen=True, slots=True)
class InstanceConfig:
    """Everything needed to render and launch one instance."""

    repository_path: Path
    instance_name: str
    ports: PortTriple
    secrets: ApiKeys = field(default_factory=ApiKeys)

    @property
    def names(self) -> InstanceNames:
        return instance_names(self.instance_name)

    @property
    def app_port(self) -> int:
        return self.ports.app

    @property
    def data_port(self) -> int:
        return self.ports.data

    @property
    def graph_port(self) -> int:
        return self.ports.graph
