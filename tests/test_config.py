# test_config.py
import json
from pathlib import Path

from config import get_settings

CONFIG = json.loads(Path(__file__).resolve().parents[1].joinpath("config.json").read_text())


def _settings():
    get_settings.cache_clear()
    return get_settings()


def test_defaults_from_config():
    settings = _settings()
    assert settings.supported_languages == CONFIG["supported_languages"]
    assert settings.update_concurrency == CONFIG["update_concurrency"]
    assert settings.translation_api_url is None


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("UPDATE_CONCURRENCY", "3")
    monkeypatch.setenv("RUN_WORKER_IN_PROCESS", "true")
    settings = _settings()
    assert settings.update_concurrency == 3
    assert settings.run_worker_in_process is True


def test_missing_key_uses_default(monkeypatch):
    original = Path(__file__).resolve().parents[1].joinpath("config.json").read_text()
    monkeypatch.setattr(
        Path,
        "read_text",
        lambda self, *args, **kwargs: json.dumps(
            {k: v for k, v in json.loads(original).items() if k != "create_batch_size"}
        ),
    )
    settings = _settings()
    assert settings.create_batch_size == 20
