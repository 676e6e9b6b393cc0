"""Localized text for catalog entities.

:class:`TranslationService` stores and reads translations. The
:class:`TranslationOrchestrator` sits between the catalog and that service:
it only queues work for entities that were actually persisted and runs it
from the outbox worker, so nothing it does can fail an import or a toggle.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models_tenant import Translation
from ..obs.events import EventSink, LoggingEventSink
from .outbox import KIND_TRANSLATION, enqueue

logger = logging.getLogger("catalog.translations")


@dataclass
class TranslationRequest:
    """Fields of one persisted entity that need localized text."""

    entity_type: str
    entity_id: UUID | str
    fields: dict[str, str] = field(default_factory=dict)

    def payload(self, source_language: str) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id),
            "fields": {k: v for k, v in self.fields.items() if v},
            "source_language": source_language,
        }


class TranslationProvider:
    """Source text in, ``{field: {language: text}}`` out.

    The base provider translates nothing: it returns the source text under
    the source language only.
    """

    async def translate(
        self, texts: dict[str, str], source_language: str, languages: list[str]
    ) -> dict[str, dict[str, str]]:
        return {name: {source_language: text} for name, text in texts.items()}


class HttpTranslationProvider(TranslationProvider):
    """Ask an external HTTP translation endpoint for every target language."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def translate(
        self, texts: dict[str, str], source_language: str, languages: list[str]
    ) -> dict[str, dict[str, str]]:
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self.transport
        ) as client:
            resp = await client.post(
                self.url,
                json={
                    "texts": texts,
                    "source_language": source_language,
                    "target_languages": languages,
                },
            )
            resp.raise_for_status()
        translated = resp.json().get("translations") or {}
        result = await super().translate(texts, source_language, languages)
        for name, by_lang in translated.items():
            if name in result and isinstance(by_lang, dict):
                result[name].update({k: v for k, v in by_lang.items() if v})
        return result


class TranslationService(ABC):
    """Contract for reading and writing entity translations."""

    @abstractmethod
    async def get_translation(
        self,
        session,
        entity_type,
        entity_id,
        language,
        field_name,
        fallback_language=None,
    ):
        """Return the text for ``language``, else ``fallback_language``, else None."""
        raise NotImplementedError

    @abstractmethod
    async def create_translations(
        self, session, entity_type, entity_id, fields, tenant_id, source_language
    ):
        """Translate ``fields`` into every supported language and store them."""
        raise NotImplementedError

    @abstractmethod
    async def store_pre_translated_batch(
        self,
        session,
        entity_type,
        entity_id,
        fields,
        translations_by_field,
        tenant_id,
        source_language,
    ):
        """Store already translated text without calling the provider."""
        raise NotImplementedError


class TranslationServiceSQL(TranslationService):
    """Translations kept in the ``translations`` table."""

    def __init__(
        self,
        provider: TranslationProvider | None = None,
        languages: Iterable[str] = ("en",),
    ) -> None:
        self.provider = provider or TranslationProvider()
        self.languages = list(languages)

    async def get_translation(
        self,
        session: AsyncSession,
        entity_type: str,
        entity_id: UUID | str,
        language: str,
        field_name: str,
        fallback_language: str | None = None,
    ) -> str | None:
        wanted = [language] + ([fallback_language] if fallback_language else [])
        rows = (
            await session.execute(
                select(Translation.language, Translation.text).where(
                    Translation.entity_type == entity_type,
                    Translation.entity_id == str(entity_id),
                    Translation.field_name == field_name,
                    Translation.language.in_(wanted),
                )
            )
        ).all()
        found = dict(rows)
        for lang in wanted:
            if found.get(lang):
                return found[lang]
        return None

    async def create_translations(
        self,
        session: AsyncSession,
        entity_type: str,
        entity_id: UUID | str,
        fields: dict[str, str],
        tenant_id: str | None,
        source_language: str,
    ) -> int:
        texts = {k: v for k, v in fields.items() if v}
        if not texts:
            return 0
        targets = [lang for lang in self.languages if lang != source_language]
        translated = await self.provider.translate(texts, source_language, targets)
        return await self.store_pre_translated_batch(
            session,
            entity_type,
            entity_id,
            list(texts),
            translated,
            tenant_id,
            source_language,
        )

    async def store_pre_translated_batch(
        self,
        session: AsyncSession,
        entity_type: str,
        entity_id: UUID | str,
        fields: Iterable[str],
        translations_by_field: dict[str, dict[str, str]],
        tenant_id: str | None,
        source_language: str,
    ) -> int:
        entity_id = str(entity_id)
        existing = {
            (t.field_name, t.language): t
            for t in (
                await session.scalars(
                    select(Translation).where(
                        Translation.entity_type == entity_type,
                        Translation.entity_id == entity_id,
                    )
                )
            ).all()
        }
        stored = 0
        for field_name in fields:
            for language, text in (translations_by_field.get(field_name) or {}).items():
                if not text:
                    continue
                row = existing.get((field_name, language))
                if row is None:
                    session.add(
                        Translation(
                            tenant_id=tenant_id,
                            entity_type=entity_type,
                            entity_id=entity_id,
                            field_name=field_name,
                            language=language,
                            text=text,
                            source_language=source_language,
                        )
                    )
                else:
                    row.text = text
                    row.source_language = source_language
                stored += 1
        await session.flush()
        return stored


class TranslationOrchestrator:
    """Queue translation work for persisted entities and run it later."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        service: TranslationService,
        events: EventSink | None = None,
        default_language: str = "en",
    ) -> None:
        self.session_factory = session_factory
        self.service = service
        self.events = events or LoggingEventSink()
        self.default_language = default_language

    def enqueue(
        self,
        session: AsyncSession,
        tenant_id: str,
        request: TranslationRequest,
        source_language: str | None = None,
    ) -> bool:
        """Add a translation task to an open session, if there is any text."""
        payload = request.payload(source_language or self.default_language)
        if not payload["fields"]:
            return False
        enqueue(session, tenant_id, KIND_TRANSLATION, payload)
        return True

    async def enqueue_batch(
        self,
        tenant_id: str,
        requests: Iterable[TranslationRequest],
        source_language: str | None = None,
    ) -> int:
        """Queue one task per request in its own unit of work.

        Never raises: a failure to queue is reported as an event and the
        count of queued tasks is returned as zero.
        """
        requests = list(requests)
        if not requests:
            return 0
        try:
            async with self.session_factory() as session:
                queued = sum(
                    self.enqueue(session, tenant_id, request, source_language)
                    for request in requests
                )
                await session.commit()
        except Exception as exc:
            self.events.emit(
                "translation.enqueue_failed",
                entity_type=requests[0].entity_type,
                entity_id=None,
                error_kind="translation",
                tenant_id=tenant_id,
                exc=exc,
                message=f"could not queue {len(requests)} translation tasks",
            )
            return 0
        return queued

    async def handle(self, tenant_id: str, payload: dict) -> None:
        """Outbox handler for ``translation.entity`` tasks."""
        async with self.session_factory() as session:
            stored = await self.service.create_translations(
                session,
                payload["entity_type"],
                payload["entity_id"],
                payload.get("fields") or {},
                tenant_id,
                payload.get("source_language") or self.default_language,
            )
            await session.commit()
        logger.debug(
            "stored %d translations",
            stored,
            extra={
                "event": "translation.stored",
                "tenant": tenant_id,
                "entity_type": payload["entity_type"],
                "entity_id": payload["entity_id"],
            },
        )
