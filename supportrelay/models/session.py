"""Engine and session factories for the admin account tables."""

from __future__ import annotations

import uuid

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from . import Base


def as_sqlalchemy_url(db_url: str) -> str:
    """Ensure the SQLAlchemy URL uses the ``psycopg`` driver."""

    if db_url.startswith("postgresql+psycopg://"):
        return db_url
    if db_url.startswith("postgresql://"):
        return db_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return db_url


def as_psycopg_url(db_url: str) -> str:
    """Strip the SQLAlchemy driver suffix so ``psycopg`` accepts the URL."""

    return db_url.replace("postgresql+psycopg://", "postgresql://", 1)


def get_engine(database_url: str, **kwargs: object) -> Engine:
    engine = create_engine(as_sqlalchemy_url(database_url), **kwargs)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _configure_sqlite(dbapi_connection, _connection_record):  # pragma: no cover - dialect hook
            dbapi_connection.create_function("gen_random_uuid", 0, lambda: str(uuid.uuid4()))
            dbapi_connection.execute("PRAGMA foreign_keys=ON")

    return engine


def get_sessionmaker(database_url: str, **kwargs: object) -> sessionmaker[Session]:
    """Return a session factory bound to a new engine for ``database_url``."""

    engine = get_engine(database_url, **kwargs)
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)


def create_schema(engine: Engine) -> list[str]:
    """Create every relay table that does not exist yet; returns table names."""

    Base.metadata.create_all(engine)
    return sorted(Base.metadata.tables)


__all__ = [
    "as_psycopg_url",
    "as_sqlalchemy_url",
    "create_schema",
    "get_engine",
    "get_sessionmaker",
]
