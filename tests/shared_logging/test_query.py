"""Tests for the SQLAlchemy query log adapter."""

from __future__ import annotations

import time
from datetime import timedelta

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import NoResultFound, OperationalError
from sqlalchemy.ext.asyncio import create_async_engine
from structlog.testing import LogCapture

from shared_logging.context import RequestScope, request_context
from shared_logging.levels import QueryLogLevel
from shared_logging.query import (
    QueryLogConfig,
    QueryLogger,
    default_query_config,
    is_record_not_found,
)


def _statement() -> tuple[str, int]:
    return "SELECT * FROM patients WHERE id = 1", 1


def _slow_start(seconds: float = 1.0) -> float:
    return time.perf_counter() - seconds


def test_defaults() -> None:
    config = default_query_config()

    assert config.level is QueryLogLevel.INFO
    assert config.slow_threshold == timedelta(milliseconds=200)
    assert config.ignore_not_found is True


def test_error_is_logged_with_statement(capture_logger, log_capture: LogCapture) -> None:
    adapter = QueryLogger(capture_logger)

    adapter.trace(time.perf_counter(), _statement, RuntimeError("connection reset"))

    [entry] = log_capture.entries
    assert entry["log_level"] == "error"
    assert entry["event"] == "Database query error"
    assert entry["error"] == "connection reset"
    assert entry["sql"] == "SELECT * FROM patients WHERE id = 1"
    assert entry["rows_affected"] == 1
    assert entry["elapsed"] >= 0


def test_error_takes_precedence_over_slow_query(
    capture_logger, log_capture: LogCapture
) -> None:
    adapter = QueryLogger(capture_logger)

    adapter.trace(_slow_start(), _statement, RuntimeError("deadlock"))

    [entry] = log_capture.entries
    assert entry["log_level"] == "error"
    assert "is_slow_query" not in entry


def test_not_found_is_suppressed_and_falls_through(
    capture_logger, log_capture: LogCapture
) -> None:
    adapter = QueryLogger(capture_logger)

    adapter.trace(time.perf_counter(), _statement, NoResultFound("No row was found"))

    [entry] = log_capture.entries
    assert entry["log_level"] == "debug"
    assert entry["event"] == "Database query executed"
    assert "error" not in entry


def test_not_found_falls_through_to_slow_query(
    capture_logger, log_capture: LogCapture
) -> None:
    adapter = QueryLogger(capture_logger)

    adapter.trace(_slow_start(), _statement, NoResultFound("No row was found"))

    [entry] = log_capture.entries
    assert entry["log_level"] == "warning"
    assert entry["is_slow_query"] is True


def test_not_found_is_reported_when_not_ignored(
    capture_logger, log_capture: LogCapture
) -> None:
    adapter = QueryLogger(capture_logger, QueryLogConfig(ignore_not_found=False))

    adapter.trace(time.perf_counter(), _statement, NoResultFound("No row was found"))

    [entry] = log_capture.entries
    assert entry["log_level"] == "error"
    assert "No row was found" in entry["error"]


def test_chained_not_found_is_recognized() -> None:
    try:
        try:
            raise NoResultFound("No row was found")
        except NoResultFound as exc:
            raise LookupError("patient missing") from exc
    except LookupError as wrapped:
        assert is_record_not_found(wrapped)

    assert not is_record_not_found(RuntimeError("boom"))
    assert not is_record_not_found(None)


def test_slow_query_is_reported_as_warning(
    capture_logger, log_capture: LogCapture
) -> None:
    adapter = QueryLogger(capture_logger)

    adapter.trace(_slow_start(), _statement)

    [entry] = log_capture.entries
    assert entry["log_level"] == "warning"
    assert entry["event"] == "Slow database query detected"
    assert entry["is_slow_query"] is True
    assert entry["slow_threshold"] == pytest.approx(0.2)
    assert entry["elapsed"] > 0.2


def test_zero_threshold_disables_slow_query_detection(
    capture_logger, log_capture: LogCapture
) -> None:
    config = QueryLogConfig(slow_threshold=timedelta(0))
    adapter = QueryLogger(capture_logger, config)

    adapter.trace(_slow_start(), _statement)

    [entry] = log_capture.entries
    assert entry["log_level"] == "debug"
    assert "is_slow_query" not in entry


def test_warn_level_skips_regular_queries(
    capture_logger, log_capture: LogCapture
) -> None:
    adapter = QueryLogger(capture_logger, QueryLogConfig(level=QueryLogLevel.WARN))

    adapter.trace(time.perf_counter(), _statement)
    adapter.trace(_slow_start(), _statement)

    assert [entry["log_level"] for entry in log_capture.entries] == ["warning"]


def test_error_level_skips_slow_queries(
    capture_logger, log_capture: LogCapture
) -> None:
    adapter = QueryLogger(capture_logger, QueryLogConfig(level="error"))

    adapter.trace(_slow_start(), _statement)
    adapter.trace(time.perf_counter(), _statement, RuntimeError("boom"))

    assert [entry["log_level"] for entry in log_capture.entries] == ["error"]


def test_silent_level_does_not_evaluate_statement(
    capture_logger, log_capture: LogCapture
) -> None:
    adapter = QueryLogger(capture_logger, QueryLogConfig(level=QueryLogLevel.SILENT))

    def _unexpected() -> tuple[str, int]:
        raise AssertionError("statement callback must not run")

    adapter.trace(time.perf_counter(), _unexpected, RuntimeError("boom"))

    assert log_capture.entries == []


def test_log_mode_returns_independent_adapter(
    capture_logger, log_capture: LogCapture
) -> None:
    original = QueryLogger(
        capture_logger,
        QueryLogConfig(slow_threshold=timedelta(seconds=2), ignore_not_found=False),
    )

    quiet = original.log_mode(QueryLogLevel.SILENT)

    assert quiet is not original
    assert original.config.level is QueryLogLevel.INFO
    assert quiet.config.level is QueryLogLevel.SILENT
    assert quiet.config.slow_threshold == timedelta(seconds=2)
    assert quiet.config.ignore_not_found is False

    quiet.trace(time.perf_counter(), _statement)
    original.trace(time.perf_counter(), _statement)
    assert len(log_capture.entries) == 1


def test_records_include_present_scope_fields(
    capture_logger, log_capture: LogCapture
) -> None:
    adapter = QueryLogger(capture_logger)

    with request_context(RequestScope(request_id="req-7", user_id=3)):
        adapter.trace(time.perf_counter(), _statement)

    [entry] = log_capture.entries
    assert entry["request_id"] == "req-7"
    assert entry["user_id"] == 3
    assert "tenant_id" not in entry
    assert "correlation_id" not in entry


def test_explicit_scope_overrides_context(
    capture_logger, log_capture: LogCapture
) -> None:
    adapter = QueryLogger(capture_logger)
    explicit = RequestScope(tenant_id=11, correlation_id="corr-1")

    with request_context(RequestScope(request_id="ignored")):
        adapter.warn("pool exhausted", 5, scope=explicit)

    [entry] = log_capture.entries
    assert entry["tenant_id"] == 11
    assert entry["correlation_id"] == "corr-1"
    assert "request_id" not in entry


def test_free_form_logging_is_gated_by_level(
    capture_logger, log_capture: LogCapture
) -> None:
    adapter = QueryLogger(capture_logger, QueryLogConfig(level=QueryLogLevel.WARN))

    adapter.info("migrations applied", 4)
    adapter.warn("replica lag", "2s")
    adapter.error("failover", "primary down")

    assert [(e["log_level"], e["event"]) for e in log_capture.entries] == [
        ("warning", "database warning: replica lag"),
        ("error", "database error: failover"),
    ]
    assert log_capture.entries[0]["data"] == ["2s"]


def test_instrumented_engine_traces_statements(
    capture_logger, log_capture: LogCapture
) -> None:
    engine = create_engine("sqlite://")
    adapter = QueryLogger(capture_logger)
    adapter.instrument(engine)

    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))
        with pytest.raises(OperationalError):
            connection.execute(text("SELECT * FROM missing_table"))

    executed = [e for e in log_capture.entries if e.get("sql") == "SELECT 1"]
    assert len(executed) == 1
    assert executed[0]["log_level"] == "debug"

    errors = [e for e in log_capture.entries if e["log_level"] == "error"]
    assert len(errors) == 1
    assert errors[0]["sql"] == "SELECT * FROM missing_table"
    assert errors[0]["rows_affected"] == -1
    assert "no such table" in errors[0]["error"]

    adapter.remove(engine)
    log_capture.entries.clear()
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))
    assert log_capture.entries == []
    engine.dispose()


def test_levels_below_silent_suppress_trace(
    capture_logger, log_capture: LogCapture
) -> None:
    adapter = QueryLogger(capture_logger, QueryLogConfig(level=0))

    adapter.trace(_slow_start(), _statement, RuntimeError("boom"))

    assert adapter.config.level is QueryLogLevel.SILENT
    assert log_capture.entries == []


@pytest.mark.anyio
async def test_instrumented_async_engine_traces_statements(
    capture_logger, log_capture: LogCapture
) -> None:
    engine = create_async_engine("sqlite+aiosqlite://")
    adapter = QueryLogger(capture_logger)
    adapter.instrument(engine)

    async with engine.connect() as connection:
        await connection.execute(text("SELECT 2"))

    executed = [e for e in log_capture.entries if e.get("sql") == "SELECT 2"]
    assert len(executed) == 1
    assert executed[0]["log_level"] == "debug"

    adapter.remove(engine)
    log_capture.entries.clear()
    async with engine.connect() as connection:
        await connection.execute(text("SELECT 2"))
    assert log_capture.entries == []
    await engine.dispose()
