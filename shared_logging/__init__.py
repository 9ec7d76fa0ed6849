"""Shared structured logging helpers for HTTP services."""

from .context import (
    RequestScope,
    current_scope,
    generate_request_id,
    get_request_scope,
    record_error,
    request_context,
)
from .errors import LoggerConfigError
from .levels import Level, QueryLogLevel
from .logger import (
    LoggerConfig,
    close_logger,
    default_config,
    new_development_logger,
    new_logger,
    new_production_logger,
)
from .middleware import (
    AccessLogMiddleware,
    CORSMiddleware,
    RecoveryMiddleware,
    RequestIDMiddleware,
    install_middleware,
)
from .query import QueryLogConfig, QueryLogger, default_query_config, is_record_not_found

__all__ = [
    "AccessLogMiddleware",
    "CORSMiddleware",
    "Level",
    "LoggerConfig",
    "LoggerConfigError",
    "QueryLogConfig",
    "QueryLogLevel",
    "QueryLogger",
    "RecoveryMiddleware",
    "RequestIDMiddleware",
    "RequestScope",
    "close_logger",
    "current_scope",
    "default_config",
    "default_query_config",
    "generate_request_id",
    "get_request_scope",
    "install_middleware",
    "is_record_not_found",
    "new_development_logger",
    "new_logger",
    "new_production_logger",
    "record_error",
    "request_context",
]
