"""Structured logging utilities for FormGuard.

This module provides structured logging using structlog.
Refresh cycles bind ``refresh_id`` into the context so every log line emitted
while a snapshot is fetched and swapped can be correlated.
"""

import logging
import sys
import time
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor


def add_timestamp(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add epoch timestamp to log entries."""
    event_dict["timestamp"] = time.time()
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True
) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON format. If False, use console format.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_timestamp,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.extend([
            structlog.dev.ConsoleRenderer(colors=True),
        ])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "formguard") -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name (typically module name)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


class PerformanceLogger:
    """Context manager for tracking operation performance."""

    # Timeline builds over a full snapshot should stay well under this.
    SLOW_THRESHOLD_MS = 50.0

    def __init__(self, operation: str, logger: Optional[structlog.stdlib.BoundLogger] = None, **context: Any):
        """Initialize performance logger.

        Args:
            operation: Name of the operation being timed
            logger: Logger instance to use (creates new if None)
            **context: Extra key/value pairs attached to the completion log line
        """
        self.operation = operation
        self.logger = logger or get_logger()
        self.context = context
        self.start_time: float = 0

    def __enter__(self) -> "PerformanceLogger":
        """Start timing."""
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Stop timing and log performance."""
        duration_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type is not None:
            self.logger.error(
                f"{self.operation} failed",
                operation=self.operation,
                duration_ms=duration_ms,
                error=str(exc_val),
                **self.context,
            )
        else:
            log_method = self.logger.warning if duration_ms > self.SLOW_THRESHOLD_MS else self.logger.debug
            log_method(
                f"{self.operation} completed",
                operation=self.operation,
                duration_ms=duration_ms,
                **self.context,
            )


def bind_refresh_id(refresh_id: str) -> None:
    """Attach a refresh cycle id to every subsequent log line in this context."""
    structlog.contextvars.bind_contextvars(refresh_id=refresh_id)


def clear_refresh_id() -> None:
    """Remove the refresh cycle id from the logging context."""
    structlog.contextvars.unbind_contextvars("refresh_id")


# Initialize logging with sensible defaults
# This will be reconfigured by main.py based on environment
configure_logging()
