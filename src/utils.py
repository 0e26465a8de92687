"""
Binlog Writer Utilities
Shared utilities for logging, error types, lock backoff, and timing.
"""

import logging
import os
import random
import time
from typing import Optional

import orjson
import structlog

LOG_LEVEL = os.getenv("BINLOG_LOG_LEVEL", "INFO").upper()
_level = logging.getLevelName(LOG_LEVEL)
if not isinstance(_level, int):
    _level = logging.INFO


def _dumps(obj, **kwargs) -> str:
    # PrintLogger writes text; hosts may swap sys.stdout for a text-only stream
    return orjson.dumps(obj, **kwargs).decode("utf-8")


# Configure structured logging
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.JSONRenderer(serializer=_dumps)
    ],
    wrapper_class=structlog.make_filtering_bound_logger(_level),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


class LogWriterError(Exception):
    """Base class for errors raised by the log writer."""


class InvalidArgument(LogWriterError, ValueError):
    """append() was called with a wrong type or out-of-range value."""


class EncodeError(LogWriterError, ValueError):
    """A record does not satisfy the codec contract."""


class DecodeError(LogWriterError, ValueError):
    """Bytes do not hold a well-formed record."""


def jittered_backoff(min_s: float, max_s: float) -> float:
    """Sleep for a random duration in [min_s, max_s] and return it."""
    delay = random.uniform(min_s, max_s)
    time.sleep(delay)
    return delay


class LatencyTracker:
    """Track call latency."""

    def __init__(self):
        self.start_time = None

    def start(self):
        """Start timing."""
        self.start_time = time.perf_counter()

    def elapsed_ms(self) -> float:
        """Get elapsed time in milliseconds."""
        if self.start_time is None:
            return 0.0
        return (time.perf_counter() - self.start_time) * 1000


def log_append(
    table: str,
    has_id: bool,
    record_bytes: int,
    latency_ms: float,
    status: str = "success",
    rotated_to: Optional[str] = None,
    failure_reason: Optional[str] = None
):
    """
    Log structured append information.

    Args:
        table: Table name of the record
        has_id: Whether the record carried an id
        record_bytes: Encoded size of the record (0 if encoding never happened)
        latency_ms: Time spent in append() including lock waits
        status: Append status (success/failed)
        rotated_to: Archive path if this append rotated the active file
        failure_reason: Specific failure reason if status != success
    """
    log_data = {
        "table": table,
        "has_id": has_id,
        "record_bytes": record_bytes,
        "latency_ms": round(latency_ms, 2),
        "status": status
    }

    if rotated_to:
        log_data["rotated_to"] = rotated_to
    if failure_reason:
        log_data["failure_reason"] = failure_reason

    if status == "success":
        logger.debug("append_completed", **log_data)
    else:
        logger.error("append_failed", **log_data)
