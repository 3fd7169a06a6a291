import pytest

from uidfetch.config import ConfigurationError, Settings


def test_settings_loads_defaults(monkeypatch):
    for name in (
        "DATASET",
        "TIMEOUT_MS",
        "DELAY_MS",
        "JITTER_MS",
        "CONCURRENCY",
        "PROXY_URLS",
        "PROXY_MAX_CONSECUTIVE_FAILS",
        "BREAKER_MAX_CONSECUTIVE_FAILS",
        "BREAKER_ON_429",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.dataset == "gs"
    assert settings.timeout_ms == 15_000
    assert settings.delay_ms == 20_000
    assert settings.jitter_ms == 2_000
    assert settings.concurrency == 1
    assert settings.proxy_urls == ""
    assert settings.proxy_max_consecutive_fails == 30
    assert settings.breaker_max_consecutive_fails == 5
    assert settings.breaker_on_429 is True


def test_settings_loads_env_overrides(monkeypatch):
    monkeypatch.setenv("DATASET", "zzz")
    monkeypatch.setenv("TIMEOUT_MS", "5000")
    monkeypatch.setenv("DELAY_MS", "1500")
    monkeypatch.setenv("JITTER_MS", "0")
    monkeypatch.setenv("CONCURRENCY", "8")
    monkeypatch.setenv("PROXY_URLS", "http://127.0.0.1:17890,http://127.0.0.1:17891")
    monkeypatch.setenv("BREAKER_ON_429", "off")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.dataset == "zzz"
    assert settings.timeout_ms == 5000
    assert settings.delay_ms == 1500
    assert settings.jitter_ms == 0
    assert settings.concurrency == 8
    assert settings.proxy_urls.startswith("http://127.0.0.1:17890")
    assert settings.breaker_on_429 is False
    assert settings.log_level == "DEBUG"


def test_settings_rejects_malformed_numbers(monkeypatch):
    monkeypatch.setenv("DELAY_MS", "fast")

    with pytest.raises(ConfigurationError, match="DELAY_MS"):
        Settings.from_env()


def test_settings_rejects_malformed_booleans(monkeypatch):
    monkeypatch.setenv("BREAKER_ON_429", "maybe")

    with pytest.raises(ConfigurationError, match="BREAKER_ON_429"):
        Settings.from_env()


def test_thresholds_and_timeout_are_clamped():
    settings = Settings(
        timeout_ms=10,
        proxy_max_consecutive_fails=0,
        breaker_max_consecutive_fails=999,
    )

    assert settings.effective_timeout_ms == 1_000
    assert settings.effective_proxy_threshold == 1
    assert settings.effective_breaker_threshold == 200
    assert Settings(timeout_ms=500_000).effective_timeout_ms == 120_000


def test_effective_concurrency():
    assert Settings(concurrency=8).effective_concurrency(0) == 1
    assert Settings(concurrency=8).effective_concurrency(3) == 3
    assert Settings(concurrency=100).effective_concurrency(80) == 50
    assert Settings(concurrency=0).effective_concurrency(5) == 1
