"""Database configuration and session management."""

from __future__ import annotations

import logging
from collections.abc import Generator

from fastapi import Request
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from telemetry.config import Settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""


def build_engine(settings: Settings) -> Engine:
    """Create the SQLAlchemy engine for ``settings.database_url``."""

    url = settings.database_url
    connect_args: dict[str, object] = {}
    if url.startswith("sqlite"):
        # Records are persisted from worker threads.
        connect_args["check_same_thread"] = False
    logger.debug("Creating database engine for %s", url.split("@")[-1])
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
    )


def initialize_database(engine: Engine) -> None:
    """Ensure all ORM models have corresponding database tables."""

    from telemetry.infrastructure import models  # noqa: F401  # ensure models are imported

    Base.metadata.create_all(bind=engine, checkfirst=True)


def get_db(request: Request) -> Generator[Session, None, None]:
    """Yield a database session bound to the application's engine."""

    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


__all__ = [
    "Base",
    "build_engine",
    "build_session_factory",
    "get_db",
    "initialize_database",
]
