"""Utilities for the catalog database engine.

The DSN is read from the ``database_url`` setting (``DATABASE_URL`` in the
environment). For example::

    postgresql+asyncpg://u:p@host:5432/catalog

Use :func:`get_engine` to create an :class:`~sqlalchemy.ext.asyncio.AsyncEngine`
and :func:`make_session_factory` to obtain the session factory the services
take as a dependency.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config import get_settings

from ..obs.queries import add_query_logger

logger = logging.getLogger(__name__)


def get_engine(dsn: str | None = None) -> AsyncEngine:
    """Create and return an :class:`AsyncEngine` for ``dsn``.

    Falls back to the configured ``database_url`` when ``dsn`` is omitted.
    """
    engine = create_async_engine(dsn or get_settings().database_url)
    add_query_logger(engine, "catalog")
    return engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return the session factory shared by repositories and services."""
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)



async def run_migrations(dsn: str | None = None) -> None:
    """Upgrade the catalog schema to the latest Alembic revision."""

    dsn = dsn or get_settings().database_url
    engine: AsyncEngine | None = None
    try:
        engine = create_async_engine(dsn)

        cfg = Config()
        cfg.set_main_option(
            "script_location",
            str(Path(__file__).resolve().parents[2] / "alembic_tenant"),
        )
        cfg.set_main_option("sqlalchemy.url", dsn)
        cfg.attributes["engine"] = engine

        await asyncio.to_thread(command.upgrade, cfg, "head")
    except Exception as exc:  # pragma: no cover - runtime errors
        logger.error("Failed to run catalog migrations: %s", exc)
        raise
    finally:
        if engine is not None:
            await engine.dispose()
