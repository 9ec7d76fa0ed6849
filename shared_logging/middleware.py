"""Starlette middleware for request logging, request IDs, recovery and CORS."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from . import fields
from .context import generate_request_id, get_request_scope, request_context

__all__ = [
    "AccessLogMiddleware",
    "CORSMiddleware",
    "CORS_HEADERS",
    "CORRELATION_ID_HEADER",
    "REQUEST_ID_HEADER",
    "RecoveryMiddleware",
    "RequestIDMiddleware",
    "install_middleware",
]

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_ID_HEADER = "X-Correlation-ID"

CORS_HEADERS: dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Allow-Headers": (
        "Content-Type, Content-Length, Accept-Encoding, X-CSRF-Token, "
        "Authorization, accept, origin, Cache-Control, X-Requested-With, "
        "X-Request-ID, X-Correlation-ID"
    ),
    "Access-Control-Allow-Methods": "POST, OPTIONS, GET, PUT, DELETE, PATCH",
}

CallNext = Callable[[Request], Awaitable[Response]]


def _client_host(request: Request) -> str:
    return request.client.host if request.client else ""


def _body_size(response: Response) -> int:
    length = response.headers.get("content-length")
    if length is None:
        return -1
    try:
        return int(length)
    except ValueError:
        return -1


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Emit one structured record per completed request.

    Records are routed by final status: 5xx at error, 4xx at warn, anything
    else at info. For error statuses, one record is emitted per exception
    registered through :func:`shared_logging.context.record_error`.
    """

    def __init__(self, app: ASGIApp, *, logger: Any) -> None:
        super().__init__(app)
        self._logger = logger

    def _request_fields(self, request: Request) -> dict[str, Any]:
        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"
        record: dict[str, Any] = {}
        record.update(fields.http_method(request.method))
        record.update(fields.http_path(path))
        record.update(fields.client_ip(_client_host(request)))
        record.update(fields.user_agent(request.headers.get("user-agent")))
        return record

    def _scope_fields(self, request: Request) -> dict[str, Any]:
        scope = get_request_scope(request)
        record = fields.scope_fields(scope)
        if "correlation_id" not in record:
            correlation = request.headers.get(CORRELATION_ID_HEADER)
            if correlation:
                record.update(fields.correlation_id(correlation))
        return record

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        start = time.perf_counter()
        scope = get_request_scope(request)

        try:
            response = await call_next(request)
        except Exception as exc:
            record = {
                **fields.http_status(500),
                **self._request_fields(request),
                **fields.duration("latency", time.perf_counter() - start),
                **self._scope_fields(request),
                **fields.error(exc),
            }
            self._logger.error("HTTP request server error", **record)
            raise

        status = response.status_code
        record = {
            **fields.http_status(status),
            **self._request_fields(request),
            **fields.duration("latency", time.perf_counter() - start),
            "body_size": _body_size(response),
            **self._scope_fields(request),
        }

        if status >= 500:
            self._emit_each(
                self._logger.error, "HTTP request server error", record, scope.errors
            )
        elif status >= 400:
            self._emit_each(
                self._logger.warning, "HTTP request client error", record, scope.errors
            )
        else:
            self._logger.info("HTTP request completed", **record)
        return response

    @staticmethod
    def _emit_each(
        emit: Callable[..., Any],
        message: str,
        record: dict[str, Any],
        errors: list[BaseException],
    ) -> None:
        if not errors:
            emit(message, **record)
            return
        for err in errors:
            emit(message, **record, **fields.error(err))


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assign a request identifier and expose it to downstream code.

    The inbound ``X-Request-ID`` header wins; otherwise a UUID4 is generated.
    The identifier is stored on the request scope, the scope is bound to the
    current context for the rest of the pipeline, and the identifier is echoed
    back in the response headers.
    """

    def __init__(self, app: ASGIApp, *, header_name: str = REQUEST_ID_HEADER) -> None:
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        request_id = request.headers.get(self.header_name) or generate_request_id()

        scope = get_request_scope(request)
        scope.request_id = request_id
        correlation = request.headers.get(CORRELATION_ID_HEADER)
        if correlation and scope.correlation_id is None:
            scope.correlation_id = correlation

        with request_context(scope):
            response = await call_next(request)

        response.headers[self.header_name] = request_id
        return response


class RecoveryMiddleware(BaseHTTPMiddleware):
    """Turn unhandled handler exceptions into a logged, generic 500 response."""

    def __init__(self, app: ASGIApp, *, logger: Any) -> None:
        super().__init__(app)
        self._logger = logger

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            scope = get_request_scope(request)
            record: dict[str, Any] = {
                "panic": repr(exc),
                **fields.http_path(request.url.path),
                **fields.http_method(request.method),
                **fields.client_ip(_client_host(request)),
            }
            if scope.request_id is not None:
                record.update(fields.request_id(scope.request_id))
            self._logger.error("HTTP request panic recovered", **record)

            return JSONResponse(
                {
                    "error": "Internal server error",
                    "request_id": scope.request_id or "",
                    "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
                },
                status_code=500,
            )


class CORSMiddleware(BaseHTTPMiddleware):
    """Apply permissive CORS headers; answer preflight requests directly."""

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=CORS_HEADERS)

        response = await call_next(request)
        for name, value in CORS_HEADERS.items():
            response.headers[name] = value
        return response


def install_middleware(app: Any, logger: Any, *, cors: bool = True) -> None:
    """Install the middleware stack on a Starlette/FastAPI ``app``.

    Starlette runs the most recently added middleware first, so the request ID
    assigner ends up outermost, followed by access logging, CORS and recovery.
    CORS wraps recovery so recovered 500 responses still carry its headers.
    """

    app.add_middleware(RecoveryMiddleware, logger=logger)
    if cors:
        app.add_middleware(CORSMiddleware)
    app.add_middleware(AccessLogMiddleware, logger=logger)
    app.add_middleware(RequestIDMiddleware)
