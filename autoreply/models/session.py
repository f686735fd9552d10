"""Helpers for configuring SQLAlchemy engine and session factories."""

from __future__ import annotations

import uuid

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker


def as_sqlalchemy_url(database_url: str) -> str:
    """Point plain ``postgres://`` URLs at the psycopg 3 driver."""

    for prefix in ("postgresql+psycopg://", "sqlite"):
        if database_url.startswith(prefix):
            return database_url
    for prefix in ("postgresql://", "postgres://"):
        if database_url.startswith(prefix):
            return "postgresql+psycopg://" + database_url[len(prefix):]
    return database_url


def get_engine(database_url: str, **kwargs: object) -> Engine:
    """Create a SQLAlchemy engine for ``database_url``.

    SQLite engines (used by the test suite) get a ``gen_random_uuid`` function
    and enforced foreign keys so server defaults behave like PostgreSQL.
    """

    if not database_url:
        raise RuntimeError("DATABASE_URL is not configured.")

    engine = create_engine(as_sqlalchemy_url(database_url), **kwargs)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _configure_sqlite(dbapi_connection, _connection_record):  # pragma: no cover - dialect hook
            dbapi_connection.create_function("gen_random_uuid", 0, lambda: str(uuid.uuid4()))
            dbapi_connection.execute("PRAGMA foreign_keys=ON")

    return engine


def get_sessionmaker(database_url: str, **kwargs: object) -> sessionmaker[Session]:
    """Return a session factory bound to a new engine."""

    engine = get_engine(database_url, **kwargs)
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)


__all__ = ["as_sqlalchemy_url", "get_engine", "get_sessionmaker"]
