"""Tests for settings."""

from synclayer.config import Settings


def test_defaults():
    settings = Settings()

    assert settings.cache_default_ttl == 300.0
    assert settings.retry_max_retries == 3
    assert settings.retry_max_delay == 10.0
    assert settings.retry_long_running_max_delay == 30.0
    assert (settings.rate_limit_read, settings.rate_limit_write, settings.rate_limit_auth) == (500, 100, 50)
    assert settings.rate_limit_window_seconds == 60.0
    assert settings.queue_max_attempts == 3
    assert settings.storage_dir is None


def test_environment_override(monkeypatch):
    monkeypatch.setenv("SYNCLAYER_RATE_LIMIT_WRITE", "7")
    monkeypatch.setenv("SYNCLAYER_CACHE_DEFAULT_TTL", "12.5")
    monkeypatch.setenv("SYNCLAYER_STORAGE_DIR", "/tmp/synclayer")

    settings = Settings()

    assert settings.rate_limit_write == 7
    assert settings.cache_default_ttl == 12.5
    assert settings.storage_dir == "/tmp/synclayer"


def test_explicit_values():
    assert Settings(queue_max_attempts=5).queue_max_attempts == 5
