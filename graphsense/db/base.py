from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from loguru import logger
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

log = logger.bind(module="db.base")

__all__ = [
    "Base",
    "create_sqlite_engine",
    "ensure_database_schema",
    "session_factory",
    "session_scope",
]


class Base(DeclarativeBase):
    """Declarative base for ORM models."""

    pass


def create_sqlite_engine(path: Path, *, echo: bool = False) -> Engine:
    """Return an engine for the registry file, creating its directory."""
    db_path = Path(path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    if not db_path.exists():
        log.info("Creating new registry database at {}", db_path)
    return create_engine(f"sqlite:///{db_path}", echo=echo, future=True)


def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        expire_on_commit=False,
    )


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Provide a transactional scope for DB operations."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        log.exception("Session rollback triggered")
        raise
    finally:
        session.close()


def ensure_database_schema(engine: Engine) -> None:
    """Ensure that all registry tables exist. Safe to call multiple times."""

    # Import models so that all ORM tables are registered on ``Base.metadata``.
    import graphsense.db.models  # noqa: F401  # pylint: disable=unused-import

    Base.metadata.create_all(bind=engine)
    log.debug("Database schema ensured for {}", engine.url)
