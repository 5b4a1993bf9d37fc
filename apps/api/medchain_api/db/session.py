"""Database session management."""

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from medchain_api.settings import get_settings


def build_engine(database_url: str) -> Engine:
    """Create an engine with pool settings suited to the backend."""
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


@lru_cache()
def get_session_factory() -> sessionmaker:
    """Get the process-wide session factory."""
    engine = build_engine(get_settings().database_url_computed)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(session_factory: sessionmaker) -> None:
    """Create ledger tables if they do not exist."""
    from medchain_api.db.base import Base
    from medchain_api import models  # noqa: F401

    Base.metadata.create_all(session_factory.kw["bind"])
