import pytest
from pydantic import ValidationError

from manga_sync.config import ConfigManager, ImportConfig, get_config_from_env


def test_defaults_match_documented_values():
    config = ImportConfig()

    assert config.import_limit == 100
    assert config.chapters_per_manga == 50
    assert config.request_delay_ms == 1000
    assert config.request_delay_seconds == 1.0
    assert config.max_retries == 3
    assert config.import_interval_hours == 24
    assert config.page_quality == "data-saver"
    assert config.allow_volunteer_nodes is False
    assert config.run_timeout_seconds == 720 * 60


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("IMPORT_LIMIT", "25")
    monkeypatch.setenv("CHAPTERS_PER_MANGA", "10")
    monkeypatch.setenv("REQUEST_DELAY_MS", "250")
    monkeypatch.setenv("MAX_RETRIES", "5")
    monkeypatch.setenv("IMPORT_INTERVAL_HOURS", "6")
    monkeypatch.setenv("RUN_TIMEOUT_MINUTES", "0")
    monkeypatch.setenv("CONTENT_RATINGS", "safe, suggestive ,erotica")
    monkeypatch.setenv("ALLOW_VOLUNTEER_NODES", "TRUE")
    monkeypatch.setenv("PAGE_QUALITY", "data")

    config = get_config_from_env()

    assert config.import_limit == 25
    assert config.chapters_per_manga == 10
    assert config.request_delay_seconds == 0.25
    assert config.max_retries == 5
    assert config.import_interval_hours == 6
    assert config.run_timeout_seconds is None
    assert config.content_ratings == ["safe", "suggestive", "erotica"]
    assert config.allow_volunteer_nodes is True
    assert config.page_quality == "data"


@pytest.mark.parametrize(
    "field, value",
    [("page_quality", "ultra"), ("max_retries", 0), ("import_limit", 0), ("request_delay_ms", -1)],
)
def test_invalid_values_are_rejected(field, value):
    with pytest.raises(ValidationError):
        ImportConfig(**{field: value})


def test_config_manager_without_database_uses_env_config():
    env = ImportConfig(import_limit=7)

    assert ConfigManager(env_config=env).get_config() is env
    with pytest.raises(RuntimeError):
        ConfigManager(env_config=env).save_config(env)


def test_database_overrides_take_precedence(database):
    env = ImportConfig(import_limit=100, max_retries=3, page_quality="data")
    manager = ConfigManager(database, env_config=env)

    assert manager.get_config() is env

    manager.save_config(env.model_copy(update={"import_limit": 12, "max_retries": 4}))
    merged = manager.get_config()

    assert merged.import_limit == 12
    assert merged.max_retries == 4
    assert merged.page_quality == "data"
    assert merged.chapters_per_manga == env.chapters_per_manga
