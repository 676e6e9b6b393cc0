import json

import httpx
import pytest
from sqlalchemy import select

from catalog.app.models_tenant import CatalogOutbox, Category
from catalog.app.services import build_services
from catalog.app.services.import_profiles import get_profile
from catalog.app.services.tabular import parse
from catalog.app.services.translations import HttpTranslationProvider, TranslationProvider


class SpanishProvider(TranslationProvider):
    async def translate(self, texts, source_language, languages):
        result = await super().translate(texts, source_language, languages)
        for name, text in texts.items():
            if "es" in languages:
                result[name]["es"] = f"{text} (es)"
        return result


async def _import_drinks(services, scope):
    profile = get_profile("category")
    return await services.reconciler.run(
        profile, scope, parse("Name*,Description\nDrinks,Cold\n", profile.fields)
    )


@pytest.mark.anyio
async def test_worker_stores_translations(session_factory, settings, events, scope) -> None:
    services = build_services(session_factory, settings, events, provider=SpanishProvider())
    await _import_drinks(services, scope)

    assert await services.worker.run_once() == 1

    service = services.translations.service
    async with session_factory() as session:
        drinks = (await session.execute(select(Category))).scalars().one()
        task = (await session.execute(select(CatalogOutbox))).scalars().one()
        assert task.status == "done"
        assert await service.get_translation(session, "category", drinks.id, "es", "name") == "Drinks (es)"
        assert await service.get_translation(session, "category", drinks.id, "en", "description") == "Cold"
        assert await service.get_translation(session, "category", drinks.id, "fr", "name", "en") == "Drinks"
        assert await service.get_translation(session, "category", drinks.id, "fr", "name") is None


@pytest.mark.anyio
async def test_retranslation_overwrites_existing_rows(session_factory, settings, events, scope) -> None:
    services = build_services(session_factory, settings, events, provider=SpanishProvider())
    await _import_drinks(services, scope)
    await services.worker.run_once()

    profile = get_profile("category")
    await services.reconciler.run(profile, scope, parse("Name*\nDrinks\n", profile.fields))
    await services.worker.run_once()

    service = services.translations.service
    async with session_factory() as session:
        drinks = (await session.execute(select(Category))).scalars().one()
        stored = await service.store_pre_translated_batch(
            session, "category", drinks.id, ["name"], {"name": {"es": "Bebidas"}}, "t1", "en"
        )
        await session.commit()
        assert stored == 1
        assert await service.get_translation(session, "category", drinks.id, "es", "name") == "Bebidas"


@pytest.mark.anyio
async def test_failed_translation_is_reported(session_factory, settings, events, scope) -> None:
    class BrokenProvider(TranslationProvider):
        async def translate(self, texts, source_language, languages):
            raise RuntimeError("provider down")

    services = build_services(session_factory, settings, events, provider=BrokenProvider())
    await _import_drinks(services, scope)

    assert await services.worker.run_once() == 1
    assert events.events[-1]["event"] == "outbox.task_failed"
    assert events.events[-1]["error_kind"] == "translation"
    # the import itself is untouched
    async with session_factory() as session:
        assert len((await session.execute(select(Category))).scalars().all()) == 1


@pytest.mark.anyio
async def test_http_provider_merges_remote_translations() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        return httpx.Response(200, json={"translations": {"name": {"es": "Bebidas", "fr": ""}}})

    provider = HttpTranslationProvider("http://translate.test/v1", transport=httpx.MockTransport(handler))

    result = await provider.translate({"name": "Drinks"}, "en", ["es", "fr"])

    assert seen["target_languages"] == ["es", "fr"]
    assert result == {"name": {"en": "Drinks", "es": "Bebidas"}}
