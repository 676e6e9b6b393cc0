"""Task outbox for work that must not block the caller.

Cascades and translation backfills are recorded as ``catalog_outbox`` rows in
the same session as the write that triggers them and executed later by
:class:`OutboxWorker`. Each task runs at most once: a failure marks the task
``failed`` and is reported through the event sink, it is never retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models_tenant import CatalogOutbox
from ..obs.errors import capture_exception
from ..obs.events import EventSink, LoggingEventSink
from ..routes_metrics import catalog_outbox_tasks_total

KIND_MENU_AVAILABILITY = "availability.menu"
KIND_ITEM_AVAILABILITY = "availability.food_item"
KIND_TRANSLATION = "translation.entity"

Handler = Callable[[str, dict], Awaitable[Any]]

logger = logging.getLogger("catalog.outbox")


def enqueue(
    session: AsyncSession, tenant_id: str, kind: str, payload: dict
) -> CatalogOutbox:
    """Add a task to ``session``; it is committed with the caller's work."""

    task = CatalogOutbox(tenant_id=tenant_id, kind=kind, payload=payload)
    session.add(task)
    return task


def _subject(kind: str, payload: dict) -> tuple[str, Any, str]:
    """Entity type, entity id and error kind reported for a failed task."""
    if kind == KIND_MENU_AVAILABILITY:
        return "menu", payload.get("menu_type"), "cascade"
    if kind == KIND_ITEM_AVAILABILITY:
        return "food_item", payload.get("item_id"), "cascade"
    if kind == KIND_TRANSLATION:
        return payload.get("entity_type", "entity"), payload.get("entity_id"), "translation"
    return "task", None, "task"


class OutboxWorker:
    """Claim queued tasks and run the handler registered for their kind."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        handlers: dict[str, Handler],
        events: EventSink | None = None,
        batch_size: int = 100,
    ) -> None:
        self.session_factory = session_factory
        self.handlers = handlers
        self.events = events or LoggingEventSink()
        self.batch_size = batch_size

    async def _claim(self) -> list[CatalogOutbox]:
        claimed: list[CatalogOutbox] = []
        async with self.session_factory() as session:
            tasks = (
                await session.scalars(
                    select(CatalogOutbox)
                    .where(CatalogOutbox.status == "queued")
                    .order_by(CatalogOutbox.id)
                    .limit(self.batch_size)
                )
            ).all()
            for task in tasks:
                # another worker may have taken it since the select
                result = await session.execute(
                    update(CatalogOutbox)
                    .where(
                        CatalogOutbox.id == task.id,
                        CatalogOutbox.status == "queued",
                    )
                    .values(status="running", attempts=CatalogOutbox.attempts + 1)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    claimed.append(task)
            await session.commit()
        return claimed

    async def _finish(self, task_id: int, status: str, error: str | None) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(CatalogOutbox)
                .where(CatalogOutbox.id == task_id)
                .values(status=status, error=error, processed_at=func.now())
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def dispatch(self, task: CatalogOutbox) -> str:
        """Run one claimed task and record its outcome."""
        handler = self.handlers.get(task.kind)
        payload = task.payload or {}
        try:
            if handler is None:
                raise LookupError(f"no handler for task kind {task.kind!r}")
            await handler(task.tenant_id, payload)
        except Exception as exc:
            status, error = "failed", str(exc) or exc.__class__.__name__
            entity_type, entity_id, error_kind = _subject(task.kind, payload)
            self.events.emit(
                "outbox.task_failed",
                entity_type=entity_type,
                entity_id=entity_id,
                error_kind=error_kind,
                tenant_id=task.tenant_id,
                exc=exc,
            )
        else:
            status, error = "done", None
        await self._finish(task.id, status, error)
        catalog_outbox_tasks_total.labels(kind=task.kind, status=status).inc()
        return status

    async def run_once(self) -> int:
        """Process one batch of queued tasks and return how many ran."""
        tasks = await self._claim()
        for task in tasks:
            await self.dispatch(task)
        if tasks:
            logger.info(
                "processed %d outbox tasks", len(tasks), extra={"event": "outbox.batch"}
            )
        return len(tasks)

    async def run_forever(
        self, poll_interval: float = 5.0, stop: asyncio.Event | None = None
    ) -> None:
        """Drain the outbox, then poll every ``poll_interval`` seconds."""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            try:
                processed = await self.run_once()
            except Exception as exc:  # pragma: no cover - store outage
                capture_exception(exc)
                processed = 0
            if processed:
                continue
            try:
                await asyncio.wait_for(stop.wait(), timeout=poll_interval)
            except asyncio.TimeoutError:
                pass


__all__ = [
    "KIND_ITEM_AVAILABILITY",
    "KIND_MENU_AVAILABILITY",
    "KIND_TRANSLATION",
    "OutboxWorker",
    "enqueue",
]
