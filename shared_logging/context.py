"""Per-request scope carrying the identifiers copied into log records."""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Iterator

from starlette.requests import HTTPConnection

__all__ = [
    "RequestScope",
    "current_scope",
    "generate_request_id",
    "get_request_scope",
    "record_error",
    "request_context",
]

_SCOPE_KEY = "shared_logging.scope"


@dataclass(slots=True)
class RequestScope:
    """Identifiers and accumulated errors belonging to one request.

    Each identifier is either set or ``None``; unset identifiers are left out
    of emitted records. ``errors`` collects exceptions handlers chose to
    report without raising, so the access log can emit one record per error.
    """

    request_id: str | None = None
    user_id: int | None = None
    tenant_id: int | None = None
    correlation_id: str | None = None
    errors: list[BaseException] = field(default_factory=list)


_CURRENT_SCOPE: ContextVar[RequestScope | None] = ContextVar(
    "request_scope", default=None
)


def generate_request_id() -> str:
    """Return a new random UUID4 request identifier."""

    return str(uuid.uuid4())


def current_scope() -> RequestScope | None:
    """Return the scope bound to the running context, if any."""

    return _CURRENT_SCOPE.get()


@contextmanager
def request_context(scope: RequestScope) -> Iterator[RequestScope]:
    """Bind ``scope`` to the current context for the lifetime of the block."""

    token = _CURRENT_SCOPE.set(scope)
    try:
        yield scope
    finally:
        _CURRENT_SCOPE.reset(token)


def get_request_scope(connection: HTTPConnection) -> RequestScope:
    """Return the scope stored on ``connection``, creating it on first use.

    The scope lives on the raw ASGI scope mapping, which every middleware
    layer and the endpoint share, so fields set downstream are visible to the
    outer layers once ``call_next`` returns.
    """

    scope = connection.scope.get(_SCOPE_KEY)
    if scope is None:
        scope = RequestScope()
        connection.scope[_SCOPE_KEY] = scope
    return scope


def record_error(connection: HTTPConnection, exc: BaseException) -> None:
    """Attach ``exc`` to the request so the access log reports it."""

    get_request_scope(connection).errors.append(exc)
