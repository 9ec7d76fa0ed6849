from __future__ import annotations

from datetime import timedelta

import pytest

from shared_logging.levels import QueryLogLevel
from shared_logging.logger import LoggerConfig
from shared_logging.settings import (
    LoggingSettings,
    QueryLogSettings,
    get_logging_settings,
)


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)
    for name in (
        "LOG_LEVEL",
        "LOG_FORMAT",
        "LOG_OUTPUT",
        "LOG_SERVICE_NAME",
        "SERVICE_NAME",
        "DB_LOG_LEVEL",
        "DB_LOG_SLOW_THRESHOLD",
        "DB_LOG_IGNORE_NOT_FOUND",
    ):
        monkeypatch.delenv(name, raising=False)
    get_logging_settings.cache_clear()


def test_logging_settings_defaults() -> None:
    assert LoggingSettings().to_config() == LoggerConfig()


def test_logging_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("LOG_FORMAT", "console")
    monkeypatch.setenv("LOG_OUTPUT", "stderr")
    monkeypatch.setenv("SERVICE_NAME", "scheduler")

    config = get_logging_settings().to_config()

    assert config == LoggerConfig(
        level="debug", format="console", output="stderr", service_name="scheduler"
    )


def test_query_log_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DB_LOG_LEVEL", "warn")
    monkeypatch.setenv("DB_LOG_SLOW_THRESHOLD", "PT0.5S")
    monkeypatch.setenv("DB_LOG_IGNORE_NOT_FOUND", "false")

    config = QueryLogSettings().to_config()

    assert config.level is QueryLogLevel.WARN
    assert config.slow_threshold == timedelta(milliseconds=500)
    assert config.ignore_not_found is False


def test_query_log_settings_reject_unknown_level(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DB_LOG_LEVEL", "chatty")

    with pytest.raises(ValueError):
        QueryLogSettings().to_config()
