"""Structured logger factory built on structlog with loguru sinks.

Every logger returned by :func:`new_logger` is independent: it carries its own
processor chain, level filter and output sink, so several services (or tests)
can build loggers side by side without touching global structlog
configuration. Records always contain ``timestamp``, ``level``, ``message``
and ``caller``; ``service_name`` is bound when configured.
"""

from __future__ import annotations

import sys
import uuid
from typing import Any, Mapping, TextIO

import structlog
from loguru import logger as loguru_logger
from pydantic import BaseModel, ConfigDict, Field
from structlog.processors import CallsiteParameter
from structlog.typing import EventDict, Processor, WrappedLogger

from .errors import LoggerConfigError
from .levels import Level

__all__ = [
    "FORMATS",
    "LoggerConfig",
    "LoguruWriter",
    "close_logger",
    "default_config",
    "new_development_logger",
    "new_logger",
    "new_production_logger",
]

FORMATS = frozenset({"json", "console"})

_LEADING_KEYS = ("timestamp", "level", "message", "caller")

# structlog method names mapped to severities; ``Level.label`` is the emitted name.
_METHOD_LEVELS: Mapping[str, Level] = {
    "debug": Level.DEBUG,
    "info": Level.INFO,
    "warning": Level.WARN,
    "error": Level.ERROR,
    "exception": Level.ERROR,
    "critical": Level.FATAL,
}

_DEFAULT_HANDLER_REMOVED = False


class LoggerConfig(BaseModel):
    """Immutable description of a logger built by :func:`new_logger`."""

    level: str = Field(
        default="info",
        description="Minimum severity: debug, info, warn, error or fatal.",
    )
    format: str = Field(
        default="json", description="Record encoding, either json or console."
    )
    output: str = Field(
        default="stdout",
        description="Destination: stdout, stderr or a filesystem path.",
    )
    service_name: str = Field(
        default="", description="Value bound as service_name on every record."
    )

    model_config = ConfigDict(frozen=True)


def default_config(service_name: str) -> LoggerConfig:
    """Return the info/json/stdout configuration for ``service_name``."""

    return LoggerConfig(
        level="info", format="json", output="stdout", service_name=service_name
    )


def _remove_default_handler() -> None:
    """Drop loguru's stock stderr handler so records are not written twice."""

    global _DEFAULT_HANDLER_REMOVED
    if _DEFAULT_HANDLER_REMOVED:
        return
    try:
        loguru_logger.remove(0)
    except ValueError:
        # The application already reconfigured loguru.
        pass
    _DEFAULT_HANDLER_REMOVED = True


def _resolve_sink(output: str) -> TextIO | str:
    target = output.strip()
    if not target:
        raise LoggerConfigError("Logger output target must not be empty", field="output")
    if target == "stdout":
        return sys.stdout
    if target == "stderr":
        return sys.stderr
    if target.startswith("file://"):
        target = target[len("file://") :]
    return target


class LoguruWriter:
    """structlog output target forwarding rendered lines to a loguru sink.

    Each writer registers its own loguru handler, filtered on a per-writer
    ``sink_id`` so records never leak into sinks owned by other loggers.
    Handlers are added with ``catch=True``: a failing sink reports to stderr
    instead of raising into the code that logged.
    """

    def __init__(self, output: str) -> None:
        sink = _resolve_sink(output)
        self.output = output
        self.sink_id = uuid.uuid4().hex

        options: dict[str, Any] = {}
        if isinstance(sink, str):
            options.update(buffering=1, encoding="utf-8")

        _remove_default_handler()
        try:
            self.handler_id = loguru_logger.add(
                sink,
                level=0,
                format="{message}",
                filter=self._owns,
                colorize=False,
                backtrace=False,
                diagnose=False,
                catch=True,
                **options,
            )
        except (OSError, TypeError, ValueError) as exc:
            raise LoggerConfigError(
                f"Unable to open log output {output!r}: {exc}", field="output"
            ) from exc
        self._logger = loguru_logger.bind(sink_id=self.sink_id).opt(raw=True)

    def _owns(self, record: Mapping[str, Any]) -> bool:
        return record["extra"].get("sink_id") == self.sink_id

    def _write(self, level: str, message: str) -> None:
        self._logger.log(level, message + "\n")

    def debug(self, message: str) -> None:
        self._write("DEBUG", message)

    def info(self, message: str) -> None:
        self._write("INFO", message)

    def warning(self, message: str) -> None:
        self._write("WARNING", message)

    def error(self, message: str) -> None:
        self._write("ERROR", message)

    def critical(self, message: str) -> None:
        self._write("CRITICAL", message)

    msg = info
    warn = warning
    exception = error
    fatal = critical

    def close(self) -> None:
        """Remove the loguru handler, flushing and closing file sinks."""

        try:
            loguru_logger.remove(self.handler_id)
        except ValueError:
            # Already removed, e.g. by a global ``logger.remove()``.
            pass


def _label_level(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    severity = _METHOD_LEVELS.get(event_dict.get("level", method_name), Level.INFO)
    event_dict["level"] = severity.label
    return event_dict


def _add_caller(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    filename = event_dict.pop("filename", None)
    lineno = event_dict.pop("lineno", None)
    if filename is not None:
        event_dict["caller"] = f"{filename}:{lineno}"
    return event_dict


def _rename_stack(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    if "stack" in event_dict:
        event_dict["stacktrace"] = event_dict.pop("stack")
    return event_dict


def _order_fields(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    ordered: EventDict = {
        key: event_dict.pop(key) for key in _LEADING_KEYS if key in event_dict
    }
    ordered.update(event_dict)
    return ordered


class _StacktraceAdder:
    """Request a stack trace for records at or above ``min_level``."""

    def __init__(self, min_level: Level) -> None:
        self._min_level = min_level

    def __call__(
        self, logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        severity = _METHOD_LEVELS.get(method_name, Level.INFO)
        if severity >= self._min_level and not event_dict.get("exc_info"):
            event_dict.setdefault("stack_info", True)
        return event_dict


def _build_processors(encoding: str, *, development: bool) -> list[Processor]:
    # Development loggers attach stack traces from warn upward, production
    # loggers only from error upward.
    stack_level = Level.WARN if development else Level.ERROR
    processors: list[Processor] = [
        structlog.processors.add_log_level,
        _label_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        structlog.processors.CallsiteParameterAdder(
            [CallsiteParameter.FILENAME, CallsiteParameter.LINENO],
            additional_ignores=[__name__],
        ),
        _add_caller,
        _StacktraceAdder(stack_level),
        structlog.processors.StackInfoRenderer(additional_ignores=[__name__]),
        _rename_stack,
        structlog.processors.format_exc_info,
    ]
    if encoding == "json":
        processors.extend(
            [
                structlog.processors.EventRenamer("message"),
                _order_fields,
                structlog.processors.JSONRenderer(),
            ]
        )
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    return processors


def new_logger(config: LoggerConfig) -> structlog.typing.FilteringBoundLogger:
    """Build a structured logger from ``config``.

    Raises:
        LoggerConfigError: the format is unknown or the output target cannot
            be opened.
    """

    encoding = config.format.strip().lower()
    if encoding not in FORMATS:
        raise LoggerConfigError(
            f"Unknown log format {config.format!r}; expected one of "
            f"{', '.join(sorted(FORMATS))}",
            field="format",
        )

    level = Level.parse(config.level)
    development = level is Level.DEBUG

    writer = LoguruWriter(config.output)
    logger = structlog.wrap_logger(
        writer,
        processors=_build_processors(encoding, development=development),
        wrapper_class=structlog.make_filtering_bound_logger(int(level)),
        context_class=dict,
        cache_logger_on_first_use=False,
    )

    initial: dict[str, Any] = {}
    if config.service_name:
        initial["service_name"] = config.service_name
    return logger.bind(**initial)


def new_development_logger(
    service_name: str,
) -> structlog.typing.FilteringBoundLogger:
    """Return a debug-level, human-readable logger writing to stdout."""

    return new_logger(
        LoggerConfig(
            level="debug", format="console", output="stdout", service_name=service_name
        )
    )


def new_production_logger(
    service_name: str,
) -> structlog.typing.FilteringBoundLogger:
    """Return an info-level JSON logger writing to stdout."""

    return new_logger(default_config(service_name))


def close_logger(logger: Any) -> None:
    """Release the sink owned by a logger returned from :func:`new_logger`."""

    writer = getattr(logger, "_logger", None)
    if isinstance(writer, LoguruWriter):
        writer.close()
