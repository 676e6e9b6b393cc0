"""Service layer for the catalog.

:func:`build_services` wires the reconciler, the availability cascade, the
translation orchestrator and the outbox worker around one session factory.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import Settings, get_settings

from ..obs.events import EventSink, LoggingEventSink
from .availability import AvailabilityCascade
from .catalog import CatalogService
from .outbox import (
    KIND_ITEM_AVAILABILITY,
    KIND_MENU_AVAILABILITY,
    KIND_TRANSLATION,
    OutboxWorker,
)
from .reconciler import BatchReconciler, ImportResult
from .translations import (
    HttpTranslationProvider,
    TranslationOrchestrator,
    TranslationProvider,
    TranslationServiceSQL,
)


@dataclass
class CatalogServices:
    catalog: CatalogService
    reconciler: BatchReconciler
    availability: AvailabilityCascade
    translations: TranslationOrchestrator
    worker: OutboxWorker


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings | None = None,
    events: EventSink | None = None,
    provider: TranslationProvider | None = None,
) -> CatalogServices:
    settings = settings or get_settings()
    events = events or LoggingEventSink()
    if provider is None and settings.translation_api_url:
        provider = HttpTranslationProvider(settings.translation_api_url)
    translations = TranslationOrchestrator(
        session_factory,
        TranslationServiceSQL(provider, settings.supported_languages),
        events,
        settings.default_language,
    )
    availability = AvailabilityCascade(session_factory, translations=translations)
    worker = OutboxWorker(
        session_factory,
        {
            KIND_MENU_AVAILABILITY: availability.handle_menu_task,
            KIND_ITEM_AVAILABILITY: availability.handle_item_task,
            KIND_TRANSLATION: translations.handle,
        },
        events,
        settings.outbox_batch_size,
    )
    return CatalogServices(
        catalog=CatalogService(session_factory, translations),
        reconciler=BatchReconciler(
            session_factory,
            translations,
            update_concurrency=settings.update_concurrency,
            create_batch_size=settings.create_batch_size,
        ),
        availability=availability,
        translations=translations,
        worker=worker,
    )


__all__ = ["CatalogServices", "ImportResult", "build_services"]
