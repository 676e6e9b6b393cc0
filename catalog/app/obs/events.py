"""Structured events for failures the catalog swallows on purpose.

Cascade and translation work runs outside the request that triggered it, so
its errors have nobody to propagate to. They are reported here instead, with
the entity they concern and a short ``error_kind`` so they can be counted and
searched.
"""

from __future__ import annotations

import logging
from typing import Any

import sentry_sdk

from ..routes_metrics import catalog_swallowed_errors_total


class EventSink:
    """Interface injected into the outbox worker and the orchestrator."""

    def emit(
        self,
        event: str,
        *,
        entity_type: str,
        entity_id: Any,
        error_kind: str,
        tenant_id: str | None = None,
        exc: BaseException | None = None,
        **extra: Any,
    ) -> None:
        raise NotImplementedError


class LoggingEventSink(EventSink):
    """Log the event as JSON fields, count it and report the exception."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger("catalog.events")

    def emit(
        self,
        event: str,
        *,
        entity_type: str,
        entity_id: Any,
        error_kind: str,
        tenant_id: str | None = None,
        exc: BaseException | None = None,
        **extra: Any,
    ) -> None:
        message = extra.pop("message", None) or (str(exc) if exc else event)
        self.logger.warning(
            message,
            extra={
                "event": event,
                "tenant": tenant_id,
                "entity_type": entity_type,
                "entity_id": str(entity_id) if entity_id is not None else None,
                "error_kind": error_kind,
                **extra,
            },
        )
        catalog_swallowed_errors_total.labels(
            entity_type=entity_type, error_kind=error_kind
        ).inc()
        if exc is not None and sentry_sdk.get_client().is_active():
            sentry_sdk.capture_exception(exc)
