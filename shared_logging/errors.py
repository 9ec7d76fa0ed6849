"""Exceptions raised by the shared logging helpers."""

from __future__ import annotations

__all__ = ["LoggerConfigError"]


class LoggerConfigError(ValueError):
    """Raised when a logger cannot be built from the supplied configuration."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field
