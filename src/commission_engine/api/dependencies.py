"""FastAPI dependencies for dependency injection."""

from collections.abc import Iterator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from commission_engine.config import Settings, get_settings
from commission_engine.database import init_db


def get_db_session() -> Iterator[Session]:
    """Get database session dependency."""
    _, factory = init_db()
    with factory() as session:
        try:
            yield session
        finally:
            session.close()


def get_app_settings() -> Settings:
    """Get application settings dependency."""
    return get_settings()


# Type aliases for cleaner dependency injection
DbSession = Annotated[Session, Depends(get_db_session)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
