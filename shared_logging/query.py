"""Structured query logging for SQLAlchemy engines."""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Any, Callable

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoResultFound
from sqlalchemy.ext.asyncio import AsyncEngine

from . import fields
from .context import RequestScope, current_scope
from .levels import QueryLogLevel

__all__ = [
    "QueryLogConfig",
    "QueryLogger",
    "default_query_config",
    "is_record_not_found",
]

_START_TIMES_KEY = "shared_logging.query_start"

_diagnostics = structlog.get_logger(__name__)


class QueryLogConfig(BaseModel):
    """Immutable settings controlling which queries are reported."""

    level: QueryLogLevel = Field(default=QueryLogLevel.INFO)
    slow_threshold: timedelta = Field(
        default=timedelta(milliseconds=200),
        description="Queries slower than this are reported as warnings; zero disables.",
    )
    ignore_not_found: bool = Field(
        default=True,
        description="Skip error records for 'no result found' conditions.",
    )

    model_config = ConfigDict(frozen=True)

    @field_validator("level", mode="before")
    @classmethod
    def _parse_level(cls, value: Any) -> QueryLogLevel:
        return QueryLogLevel.parse(value)

    def with_level(self, level: QueryLogLevel | str | int) -> QueryLogConfig:
        """Return a copy of this configuration using ``level``."""

        return self.model_copy(update={"level": QueryLogLevel.parse(level)})


def default_query_config() -> QueryLogConfig:
    return QueryLogConfig()


def is_record_not_found(err: BaseException | None) -> bool:
    """Return whether ``err`` (or an exception it chains to) is a missing row."""

    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        if isinstance(err, NoResultFound):
            return True
        seen.add(id(err))
        err = err.__cause__ or err.__context__
    return False


TraceCallback = Callable[[], tuple[str, int]]


class QueryLogger:
    """Translate query execution events into structured log records.

    The adapter exposes free-form ``info``/``warn``/``error`` logging gated by
    the configured :class:`QueryLogLevel`, and :meth:`trace`, called once per
    executed statement. :meth:`instrument` wires ``trace`` into a SQLAlchemy
    engine through its cursor execution events.
    """

    def __init__(self, logger: Any, config: QueryLogConfig | None = None) -> None:
        self._logger = logger
        self._config = config or default_query_config()
        self._listeners: list[tuple[Engine, str, Callable[..., Any]]] = []

    @property
    def config(self) -> QueryLogConfig:
        return self._config

    def log_mode(self, level: QueryLogLevel | str | int) -> QueryLogger:
        """Return a new adapter using ``level``; this instance is unchanged."""

        return QueryLogger(self._logger, self._config.with_level(level))

    def _scope_fields(self, scope: RequestScope | None) -> dict[str, Any]:
        return fields.scope_fields(scope if scope is not None else current_scope())

    def info(self, msg: str, *data: Any, scope: RequestScope | None = None) -> None:
        if self._config.level.allows(QueryLogLevel.INFO):
            self._logger.info(
                "database info: " + msg, **self._scope_fields(scope), data=list(data)
            )

    def warn(self, msg: str, *data: Any, scope: RequestScope | None = None) -> None:
        if self._config.level.allows(QueryLogLevel.WARN):
            self._logger.warning(
                "database warning: " + msg,
                **self._scope_fields(scope),
                data=list(data),
            )

    def error(self, msg: str, *data: Any, scope: RequestScope | None = None) -> None:
        if self._config.level.allows(QueryLogLevel.ERROR):
            self._logger.error(
                "database error: " + msg, **self._scope_fields(scope), data=list(data)
            )

    def trace(
        self,
        begin: float,
        fc: TraceCallback,
        err: BaseException | None = None,
        *,
        scope: RequestScope | None = None,
    ) -> None:
        """Report one executed statement.

        ``begin`` is a :func:`time.perf_counter` reading taken before the
        statement ran; ``fc`` returns the statement text and affected row
        count and is only called when a record may be emitted.
        """

        config = self._config
        if config.level <= QueryLogLevel.SILENT:
            return

        elapsed = time.perf_counter() - begin
        sql, rows = fc()

        record = self._scope_fields(scope)
        record.update(fields.duration("elapsed", elapsed))
        record["rows_affected"] = rows
        record["sql"] = sql

        threshold = fields.seconds(config.slow_threshold)

        if (
            err is not None
            and config.level.allows(QueryLogLevel.ERROR)
            and not (config.ignore_not_found and is_record_not_found(err))
        ):
            record.update(fields.error(err))
            self._logger.error("Database query error", **record)
        elif (
            threshold > 0
            and elapsed > threshold
            and config.level.allows(QueryLogLevel.WARN)
        ):
            record.update(fields.duration("slow_threshold", threshold))
            record["is_slow_query"] = True
            self._logger.warning("Slow database query detected", **record)
        elif config.level.allows(QueryLogLevel.INFO):
            self._logger.debug("Database query executed", **record)

    def instrument(self, engine: Engine | AsyncEngine) -> None:
        """Attach cursor execution listeners to ``engine``."""

        target = engine.sync_engine if isinstance(engine, AsyncEngine) else engine

        def before_cursor_execute(
            conn, cursor, statement, parameters, context, executemany
        ) -> None:
            conn.info.setdefault(_START_TIMES_KEY, []).append(time.perf_counter())

        def after_cursor_execute(
            conn, cursor, statement, parameters, context, executemany
        ) -> None:
            begin = _pop_start_time(conn.info)
            rowcount = cursor.rowcount if cursor is not None else -1
            self.trace(begin, lambda: (statement, rowcount))

        def handle_error(exception_context) -> None:
            conn = exception_context.connection
            begin = _pop_start_time(conn.info) if conn is not None else time.perf_counter()
            statement = exception_context.statement or ""
            err = exception_context.original_exception
            self.trace(begin, lambda: (statement, -1), err)

        for name, listener in (
            ("before_cursor_execute", before_cursor_execute),
            ("after_cursor_execute", after_cursor_execute),
            ("handle_error", handle_error),
        ):
            event.listen(target, name, listener)
            self._listeners.append((target, name, listener))

        _diagnostics.debug(
            "query_logging_instrumented",
            engine=target.url.render_as_string(hide_password=True),
        )

    def remove(self, engine: Engine | AsyncEngine) -> None:
        """Detach listeners previously attached by :meth:`instrument`."""

        target = engine.sync_engine if isinstance(engine, AsyncEngine) else engine
        remaining: list[tuple[Engine, str, Callable[..., Any]]] = []
        for registered, name, listener in self._listeners:
            if registered is target:
                event.remove(registered, name, listener)
            else:
                remaining.append((registered, name, listener))
        self._listeners = remaining


def _pop_start_time(info: dict[str, Any]) -> float:
    starts = info.get(_START_TIMES_KEY)
    if starts:
        return starts.pop()
    return time.perf_counter()
