"""Database connection and session management."""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from commission_engine.config import get_settings
from commission_engine.models import Base

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine


def get_engine() -> Engine:
    """Create database engine."""
    settings = get_settings()
    return create_engine(
        settings.database_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


# Global engine and session factory
_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def init_db() -> tuple[Engine, sessionmaker[Session]]:
    """Initialize database engine and session factory."""
    global _engine, _session_factory
    if _engine is None:
        _engine = get_engine()
        _session_factory = sessionmaker(
            _engine,
            class_=Session,
            expire_on_commit=False,
            autoflush=False,
        )
    return _engine, _session_factory


def init_schema(engine: Engine) -> None:
    """Create all tables known to the ORM metadata."""
    Base.metadata.create_all(engine)


@contextmanager
def get_session() -> Iterator[Session]:
    """Get a database session that commits on success."""
    _, factory = init_db()
    with factory() as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise


def insert_if_absent(
    session: Session,
    model: type[Base],
    values: dict[str, Any],
    index_elements: list[str],
) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING for the session's dialect.

    Returns True if a row was inserted, False if the conflict target
    already existed.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model.__table__)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model.__table__)
    else:
        raise NotImplementedError(f"insert_if_absent is not supported on {dialect}")

    session.flush()
    stmt = stmt.values(**values).on_conflict_do_nothing(index_elements=index_elements)
    result = session.execute(stmt)
    return result.rowcount > 0
