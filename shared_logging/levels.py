"""Severity levels shared by the logger factory and the query adapter."""

from __future__ import annotations

import logging
from enum import IntEnum

__all__ = ["Level", "QueryLogLevel"]


class Level(IntEnum):
    """Ordered record severities, numerically aligned with :mod:`logging`."""

    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARN = logging.WARNING
    ERROR = logging.ERROR
    FATAL = logging.CRITICAL

    @property
    def label(self) -> str:
        """Return the lowercase name emitted in the ``level`` field."""

        return self.name.lower()

    @classmethod
    def parse(cls, name: str | int | Level) -> Level:
        """Return the level for ``name``; unknown names fall back to ``INFO``."""

        if isinstance(name, int):
            try:
                return cls(name)
            except ValueError:
                return cls.INFO
        return _LEVEL_ALIASES.get(name.strip().lower(), cls.INFO)


_LEVEL_ALIASES: dict[str, Level] = {
    "debug": Level.DEBUG,
    "info": Level.INFO,
    "warn": Level.WARN,
    "warning": Level.WARN,
    "error": Level.ERROR,
    "fatal": Level.FATAL,
    "critical": Level.FATAL,
}


class QueryLogLevel(IntEnum):
    """Verbosity of the query adapter; higher values log more."""

    SILENT = 1
    ERROR = 2
    WARN = 3
    INFO = 4

    def allows(self, severity: QueryLogLevel) -> bool:
        return self >= severity

    @classmethod
    def parse(cls, name: str | int | QueryLogLevel) -> QueryLogLevel:
        if isinstance(name, int):
            if name <= cls.SILENT:
                return cls.SILENT
            return cls(name)
        normalized = name.strip().lower()
        if normalized == "warning":
            normalized = "warn"
        try:
            return cls[normalized.upper()]
        except KeyError:
            raise ValueError(f"Unknown query log level: {name}") from None
