"""Instance registry.

Two questions are answered from two different sources and never conflated:

- "is this name a live (or stopped) deployment?" asks the executor for
  containers labelled with the instance's compose project;
- "which ports and repository did this instance use?" reads the local SQLite
  store written after each deploy.

The store can drift from reality when containers are removed by other means;
no automatic reconciliation is attempted.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, TypeVar

from loguru import logger
from sqlalchemy import Engine, delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from graphsense.config import Settings
from graphsense.core.executor import ComposeExecutor, LiveContainer
from graphsense.core.instance import InstanceConfig
from graphsense.db.base import (
    create_sqlite_engine,
    ensure_database_schema,
    session_factory,
    session_scope,
)
from graphsense.db.models import InstanceRecord
from graphsense.errors import BookkeepingError

__all__ = ["InstanceRegistry"]

T = TypeVar("T")


class InstanceRegistry:
    """Durable instance records plus live existence checks.

    The SQLite engine is created on first use, so an unusable database path
    only fails the bookkeeping calls and never the live container queries.
    """

    def __init__(
        self,
        *,
        executor: ComposeExecutor,
        engine: Engine | None = None,
        database_path: Path | None = None,
        echo: bool = False,
        log=None,
    ) -> None:
        if engine is None and database_path is None:
            raise ValueError("Either engine or database_path is required.")
        self.executor = executor
        self.database_path = database_path
        self.echo = echo
        self.log = log or logger.bind(module="core.registry")
        self._engine = engine
        self._sessions: sessionmaker[Session] | None = None
        self._schema_ready = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        executor: ComposeExecutor,
        log=None,
    ) -> "InstanceRegistry":
        return cls(
            executor=executor,
            database_path=settings.database_path,
            echo=settings.db_echo,
            log=log,
        )

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            assert self.database_path is not None
            self._engine = create_sqlite_engine(self.database_path, echo=self.echo)
        return self._engine

    # Live state -----------------------------------------------------------

    def exists(self, instance_name: str) -> bool:
        """Return True when the executor knows containers for the instance."""
        return bool(self.executor.project_container_ids(instance_name))

    def live_containers(self, instance_name: str) -> list[LiveContainer]:
        return self.executor.project_containers(instance_name)

    def live_instances(self) -> dict[str, list[LiveContainer]]:
        """Return containers of every compose project known to the executor."""
        return self.executor.compose_projects()

    # Durable store --------------------------------------------------------

    def _guarded(self, action: str, fn: Callable[[], T]) -> T:
        try:
            if self._sessions is None:
                self._sessions = session_factory(self.engine)
            if not self._schema_ready:
                ensure_database_schema(self.engine)
                self._schema_ready = True
            return fn()
        except (SQLAlchemyError, OSError) as exc:
            raise BookkeepingError(f"Failed to {action}: {exc}") from exc

    def store(self, config: InstanceConfig) -> list[str]:
        """Upsert one record per service container of the instance."""
        containers = list(config.names.containers)
        created_at = datetime.now(timezone.utc)

        def _store() -> list[str]:
            with session_scope(self._sessions) as session:
                for container_name in containers:
                    values = {
                        "instance_name": config.instance_name,
                        "container_name": container_name,
                        "repo_path": str(config.repository_path),
                        "app_port": config.app_port,
                        "postgres_port": config.data_port,
                        "neo4j_bolt_port": config.graph_port,
                        "created_at": created_at,
                    }
                    stmt = sqlite_insert(InstanceRecord).values(**values)
                    stmt = stmt.on_conflict_do_update(
                        index_elements=["instance_name", "container_name"],
                        set_={
                            key: value
                            for key, value in values.items()
                            if key not in ("instance_name", "container_name")
                        },
                    )
                    session.execute(stmt)
            return containers

        stored = self._guarded(f"store instance {config.instance_name}", _store)
        self.log.info(
            "Stored {} containers for instance {} in database",
            len(stored),
            config.instance_name,
        )
        return stored

    def list_containers(self, instance_name: str) -> list[InstanceRecord]:
        def _list() -> list[InstanceRecord]:
            with session_scope(self._sessions) as session:
                stmt = (
                    select(InstanceRecord)
                    .where(InstanceRecord.instance_name == instance_name)
                    .order_by(InstanceRecord.container_name)
                )
                return list(session.execute(stmt).scalars())

        return self._guarded(f"query containers for {instance_name}", _list)

    def list_all(self) -> list[InstanceRecord]:
        def _list() -> list[InstanceRecord]:
            with session_scope(self._sessions) as session:
                stmt = select(InstanceRecord).order_by(
                    InstanceRecord.instance_name,
                    InstanceRecord.container_name,
                )
                return list(session.execute(stmt).scalars())

        return self._guarded("query all instances", _list)

    def remove_all(self, instance_name: str) -> int:
        """Delete every record of the instance; returns the number removed."""

        def _remove() -> int:
            with session_scope(self._sessions) as session:
                result = session.execute(
                    delete(InstanceRecord).where(InstanceRecord.instance_name == instance_name),
                )
                return int(result.rowcount or 0)

        removed = self._guarded(f"remove containers for instance {instance_name}", _remove)
        self.log.info(
            "Removed {} containers for instance {} from database",
            removed,
            instance_name,
        )
        return removed
