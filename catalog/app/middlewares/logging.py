import logging
import os
import random
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

LOG_SAMPLE_2XX = float(os.getenv("LOG_SAMPLE_2XX", "0.1"))

logger = logging.getLogger("api")


def _tenant(path: str) -> str | None:
    # /api/outlet/{tenant_id}/...
    parts = path.strip("/").split("/")
    if len(parts) >= 3 and parts[:2] == ["api", "outlet"]:
        return parts[2]
    return None


class LoggingMiddleware(BaseHTTPMiddleware):
    """One structured access log line per request.

    Successful responses are sampled with ``LOG_SAMPLE_2XX``; client and
    server errors are always logged.
    """

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        status = response.status_code
        if 200 <= status < 300 and random.random() >= LOG_SAMPLE_2XX:
            return response
        log_fn = logger.error if status >= 500 else logger.info
        log_fn(
            "%s %s %d %dms",
            request.method,
            request.url.path,
            status,
            int((time.perf_counter() - start) * 1000),
            extra={
                "event": "http.access",
                "route": request.url.path,
                "status": status,
                "tenant": _tenant(request.url.path),
            },
        )
        return response
