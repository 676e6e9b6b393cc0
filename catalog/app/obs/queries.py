"""Statement timing for catalog engines."""

from __future__ import annotations

import hashlib
import logging
import os
import time

from sqlalchemy import event
from sqlalchemy.engine import Engine

from ..routes_metrics import catalog_db_slow_queries_total

SLOW_QUERY_MS = int(os.getenv("DB_SLOW_QUERY_MS", "200"))

logger = logging.getLogger("catalog.db")


def _shorten(statement: str, limit: int = 200) -> str:
    sql = " ".join(statement.split())
    return sql if len(sql) <= limit else sql[: limit - 3] + "..."


def add_query_logger(engine: Engine, label: str) -> None:
    """Warn about and count statements slower than ``SLOW_QUERY_MS``.

    Bulk imports issue many small statements, so only slow ones are logged;
    parameters are hashed, never logged.
    """
    target = getattr(engine, "sync_engine", engine)

    @event.listens_for(target, "before_cursor_execute")
    def _start(conn, cursor, statement, parameters, context, executemany):
        context._catalog_started = time.perf_counter()

    @event.listens_for(target, "after_cursor_execute")
    def _finish(conn, cursor, statement, parameters, context, executemany):
        elapsed_ms = (time.perf_counter() - context._catalog_started) * 1000
        if elapsed_ms <= SLOW_QUERY_MS:
            return
        catalog_db_slow_queries_total.labels(db=label).inc()
        logger.warning(
            "slow query %dms db=%s sql=%s params=%s",
            int(elapsed_ms),
            label,
            _shorten(statement),
            hashlib.sha256(repr(parameters).encode()).hexdigest()[:8],
            extra={"event": "db.slow_query"},
        )
