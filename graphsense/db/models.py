from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from graphsense.db.base import Base

__all__ = ["InstanceRecord"]


class InstanceRecord(Base):
    """One container belonging to a deployed instance."""

    __tablename__ = "instances"
    __table_args__ = (
        UniqueConstraint(
            "instance_name",
            "container_name",
            name="uq_instances_instance_container",
        ),
        Index("ix_instances_instance_name", "instance_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    instance_name: Mapped[str] = mapped_column(String(255), nullable=False)
    container_name: Mapped[str] = mapped_column(String(255), nullable=False)
    repo_path: Mapped[str] = mapped_column(String(4096), nullable=False)
    app_port: Mapped[int] = mapped_column(Integer, nullable=False)
    postgres_port: Mapped[int] = mapped_column(Integer, nullable=False)
    neo4j_bolt_port: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:  # pragma: no cover - repr helper
        return (
            f"<InstanceRecord instance={self.instance_name!r} "
            f"container={self.container_name!r}>"
        )
