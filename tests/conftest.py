"""Shared fixtures: a throwaway SQLite catalog per test."""

import pathlib
import sys

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from config import Settings, get_settings
from catalog.app.db import make_session_factory
from catalog.app.models_tenant import Base
from catalog.app.obs.events import EventSink
from catalog.app.repos.catalog_repo import Scope
from catalog.app.services import build_services


class RecordingEventSink(EventSink):
    """Keep emitted events in memory for assertions."""

    def __init__(self):
        self.events = []

    def emit(self, event, *, entity_type, entity_id, error_kind, tenant_id=None, exc=None, **extra):
        self.events.append(
            {
                "event": event,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "error_kind": error_kind,
                "tenant_id": tenant_id,
                "exc": exc,
                **extra,
            }
        )


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    return Settings(
        update_concurrency=4,
        create_batch_size=3,
        supported_languages=["en", "es"],
        translation_api_url=None,
        run_worker_in_process=False,
    )


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def events():
    return RecordingEventSink()


@pytest.fixture
def services(session_factory, settings, events):
    return build_services(session_factory, settings, events)


@pytest.fixture
def scope():
    return Scope("t1")
