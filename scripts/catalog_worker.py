#!/usr/bin/env python3
"""Background worker draining the catalog outbox.

Runs availability recomputes and translation tasks queued by the API and
the importer. Settings come from ``config.json`` and the environment:
``DATABASE_URL``, ``OUTBOX_POLL_INTERVAL`` and ``OUTBOX_BATCH_SIZE``.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Ensure the project root is importable when running as a standalone script
BASE_DIR = Path(__file__).resolve().parents[1]
sys.path.append(str(BASE_DIR))

from config import get_settings  # noqa: E402

from catalog.app.db import get_engine, make_session_factory, run_migrations  # noqa: E402
from catalog.app.obs import init_sentry  # noqa: E402
from catalog.app.obs.logging import configure_logging  # noqa: E402
from catalog.app.services import build_services  # noqa: E402

logger = logging.getLogger("catalog.worker")


async def run(once: bool = False, migrate: bool = False) -> int:
    """Process queued tasks; with ``once`` stop after a single batch."""

    settings = get_settings()
    if migrate:
        await run_migrations(settings.database_url)
    engine = get_engine(settings.database_url)
    try:
        services = build_services(make_session_factory(engine), settings)
        if once:
            return await services.worker.run_once()
        logger.info(
            "outbox worker started, polling every %ss",
            settings.outbox_poll_interval,
            extra={"event": "outbox.worker_started"},
        )
        await services.worker.run_forever(settings.outbox_poll_interval)
        return 0
    finally:
        await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--once", action="store_true", help="process one batch and exit"
    )
    parser.add_argument(
        "--migrate",
        action="store_true",
        help="upgrade the schema before processing",
    )
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level)
    init_sentry(settings.error_dsn)
    processed = asyncio.run(run(once=args.once, migrate=args.migrate))
    if args.once:
        print(f"processed={processed}")


if __name__ == "__main__":
    main()
