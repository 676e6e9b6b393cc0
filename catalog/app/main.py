"""FastAPI application for catalog administration."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, get_settings

from .db import get_engine, make_session_factory
from .errors import CatalogError
from .middlewares import LoggingMiddleware, RequestIdMiddleware
from .obs import capture_exception, init_sentry
from .obs.logging import configure_logging
from .routes_admin_menu import router as admin_menu_router
from .routes_menu_import import router as menu_import_router
from .routes_metrics import router as metrics_router
from .services import build_services
from .utils.responses import err

logger = logging.getLogger("api")


def create_app(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> FastAPI:
    """Build the application.

    ``session_factory`` is created from ``database_url`` when omitted; tests
    pass their own.
    """

    settings = settings or get_settings()
    configure_logging(settings.log_level)
    init_sentry(settings.error_dsn)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = None
        factory = session_factory
        if factory is None:
            engine = get_engine(settings.database_url)
            factory = make_session_factory(engine)
        app.state.services = build_services(factory, settings)
        stop = asyncio.Event()
        worker = None
        if settings.run_worker_in_process:
            worker = asyncio.create_task(
                app.state.services.worker.run_forever(
                    settings.outbox_poll_interval, stop
                )
            )
        try:
            yield
        finally:
            stop.set()
            if worker is not None:
                await worker
            if engine is not None:
                await engine.dispose()

    app = FastAPI(title="Catalog", lifespan=lifespan)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    @app.exception_handler(CatalogError)
    async def catalog_error_handler(request: Request, exc: CatalogError):
        logger.warning(
            exc.message,
            extra={
                "status": exc.status_code,
                "route": request.url.path,
                "error_kind": exc.kind,
            },
        )
        if exc.status_code >= 500:
            capture_exception(exc)
        return JSONResponse(err(exc.kind, exc.message), status_code=exc.status_code)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(
            exc.detail,
            extra={"status": exc.status_code, "route": request.url.path},
        )
        return JSONResponse(err(exc.status_code, exc.detail), status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def general_error_handler(request: Request, exc: Exception):
        logger.exception(
            "unhandled_error", extra={"status": 500, "route": request.url.path}
        )
        capture_exception(exc)
        return JSONResponse(err(500, "Internal Server Error"), status_code=500)

    app.include_router(menu_import_router)
    app.include_router(admin_menu_router)
    app.include_router(metrics_router)
    return app
