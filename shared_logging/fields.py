"""Field builders keeping key names consistent across services.

Each helper returns a single-entry mapping meant to be splatted into a
structlog call, e.g. ``logger.info("done", **http_status(200))``.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from .context import RequestScope

__all__ = [
    "client_ip",
    "correlation_id",
    "duration",
    "error",
    "http_method",
    "http_path",
    "http_status",
    "request_id",
    "scope_fields",
    "seconds",
    "tenant_id",
    "user_agent",
    "user_id",
]


def seconds(value: timedelta | float) -> float:
    """Return ``value`` as floating point seconds."""

    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def duration(key: str, value: Any) -> dict[str, Any]:
    # Pre-formatted strings are kept verbatim.
    if isinstance(value, str):
        return {key: value}
    if isinstance(value, (timedelta, int, float)):
        return {key: seconds(value)}
    return {key: value}


def error(exc: BaseException) -> dict[str, str]:
    return {"error": str(exc) or exc.__class__.__name__}


def request_id(value: str) -> dict[str, str]:
    return {"request_id": value}


def user_id(value: int) -> dict[str, int]:
    return {"user_id": value}


def tenant_id(value: int) -> dict[str, int]:
    return {"tenant_id": value}


def correlation_id(value: str) -> dict[str, str]:
    return {"correlation_id": value}


def http_method(value: str) -> dict[str, str]:
    return {"http_method": value}


def http_path(value: str) -> dict[str, str]:
    return {"http_path": value}


def http_status(value: int) -> dict[str, int]:
    return {"http_status": value}


def client_ip(value: str | None) -> dict[str, str]:
    return {"client_ip": value or ""}


def user_agent(value: str | None) -> dict[str, str]:
    return {"user_agent": value or ""}


def scope_fields(scope: RequestScope | None) -> dict[str, Any]:
    """Return the identifiers present on ``scope``, omitting unset ones."""

    fields: dict[str, Any] = {}
    if scope is None:
        return fields
    if scope.request_id is not None:
        fields.update(request_id(scope.request_id))
    if scope.user_id is not None:
        fields.update(user_id(scope.user_id))
    if scope.tenant_id is not None:
        fields.update(tenant_id(scope.tenant_id))
    if scope.correlation_id is not None:
        fields.update(correlation_id(scope.correlation_id))
    return fields
