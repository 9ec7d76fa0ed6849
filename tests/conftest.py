from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest
import structlog
from structlog.testing import LogCapture

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture
def log_capture() -> LogCapture:
    return LogCapture()


@pytest.fixture
def capture_logger(log_capture: LogCapture):
    """Return a debug-level bound logger whose records land in ``log_capture``."""

    return structlog.wrap_logger(
        None,
        processors=[log_capture],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
        context_class=dict,
    ).bind()


@pytest.fixture
def anyio_backend() -> str:
    """Run ``@pytest.mark.anyio`` tests on asyncio only (aiosqlite is asyncio-bound)."""

    return "asyncio"
