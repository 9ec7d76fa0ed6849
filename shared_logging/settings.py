"""Environment driven configuration powered by ``pydantic-settings``."""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .logger import LoggerConfig
from .query import QueryLogConfig


class LoggingSettings(BaseSettings):
    """Logger factory settings read from ``LOG_*`` variables."""

    level: str = Field(
        default="info",
        description="Minimum severity (debug, info, warn, error, fatal).",
        validation_alias=AliasChoices("LOG_LEVEL"),
    )
    format: str = Field(
        default="json",
        description="Record encoding: json or console.",
        validation_alias=AliasChoices("LOG_FORMAT"),
    )
    output: str = Field(
        default="stdout",
        description="stdout, stderr or a file path.",
        validation_alias=AliasChoices("LOG_OUTPUT"),
    )
    service_name: str = Field(
        default="",
        description="Service identifier attached to every record.",
        validation_alias=AliasChoices("LOG_SERVICE_NAME", "SERVICE_NAME"),
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def to_config(self) -> LoggerConfig:
        return LoggerConfig(
            level=self.level,
            format=self.format,
            output=self.output,
            service_name=self.service_name,
        )


class QueryLogSettings(BaseSettings):
    """Query adapter settings read from ``DB_LOG_*`` variables."""

    level: str = Field(
        default="info",
        description="silent, error, warn or info.",
        validation_alias=AliasChoices("DB_LOG_LEVEL"),
    )
    slow_threshold: timedelta = Field(
        default=timedelta(milliseconds=200),
        description="Slow query threshold; seconds or an ISO 8601 duration.",
        validation_alias=AliasChoices("DB_LOG_SLOW_THRESHOLD"),
    )
    ignore_not_found: bool = Field(
        default=True,
        description="Do not report 'no result found' errors.",
        validation_alias=AliasChoices("DB_LOG_IGNORE_NOT_FOUND"),
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def to_config(self) -> QueryLogConfig:
        return QueryLogConfig(
            level=self.level,
            slow_threshold=self.slow_threshold,
            ignore_not_found=self.ignore_not_found,
        )


@lru_cache
def get_logging_settings() -> LoggingSettings:
    return LoggingSettings()


@lru_cache
def get_query_log_settings() -> QueryLogSettings:
    return QueryLogSettings()


__all__ = [
    "LoggingSettings",
    "QueryLogSettings",
    "get_logging_settings",
    "get_query_log_settings",
]
