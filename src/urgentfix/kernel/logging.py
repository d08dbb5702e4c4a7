"""
Structured logging for the bid lifecycle core.

Every decide/create/withdraw call runs under a correlation ID so the
bid write, the service request assignment, the sibling rejections and the
notifications it caused can be tied together in the logs.
"""

import contextvars
import logging
import os
import secrets
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

# Context variable for correlation ID (thread-safe)
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)


def generate_correlation_id() -> str:
    """Generate a new 22-character URL-safe correlation ID (128 bits)."""
    return secrets.token_urlsafe(16)


def get_correlation_id() -> str:
    """Get the current correlation ID, or generate a new one if not set."""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current context."""
    correlation_id_var.set(correlation_id)


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """
    Run a block under its own correlation ID, restoring the previous one after.

    Example:
        with correlation_scope() as cid:
            marketplace.decide_bid(bid_id, "accept", customer_id)
    """
    token = correlation_id_var.set(correlation_id or generate_correlation_id())
    try:
        yield correlation_id_var.get()
    finally:
        correlation_id_var.reset(token)


def add_correlation_id(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add correlation ID to log event."""
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


def configure_logging(
    *,
    json_output: bool = False,
    log_level: str = "INFO",
) -> None:
    """
    Configure structured logging for the application.

    Logs go to stderr so CLI output on stdout stays clean.

    Args:
        json_output: If True, output JSON logs (for production).
                    If False, output human-readable console logs (for development).
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = getattr(logging, log_level.upper())

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level,
    )

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_correlation_id,
    ]

    if json_output:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.ExceptionRenderer(),
            structlog.dev.ConsoleRenderer(colors=False),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger for the given module.

    Args:
        name: Logger name (typically __name__)
    """
    return structlog.get_logger(name)


def is_production() -> bool:
    """True when ENVIRONMENT=production (defaults to development)."""
    return os.getenv("ENVIRONMENT", "development").lower() == "production"


# Customer contact details and money never go into operation logs
REDACTED_FIELDS = {
    "amount",
    "email",
    "customer_email",
    "phone",
    "password",
    "token",
    "secret",
    "api_key",
}


def redact_context(context: dict[str, Any]) -> dict[str, Any]:
    """
    Redact sensitive fields from log context.

    Example:
        >>> redact_context({"amount": "500", "bid_id": "bid_1"})
        {"amount": "***REDACTED***", "bid_id": "bid_1"}
    """
    return {
        k: "***REDACTED***" if k in REDACTED_FIELDS else v
        for k, v in context.items()
    }


class LogOperation:
    """Context manager for logging operations with automatic timing."""

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        **context: Any,
    ):
        """
        Args:
            logger: Structured logger instance
            operation: Operation name (e.g., "decide_bid", "create_bid")
            **context: Additional context to include in logs
        """
        self.logger = logger
        self.operation = operation
        self.context = context
        self.start_time: float = 0.0

    def __enter__(self) -> "LogOperation":
        self.start_time = time.perf_counter()
        self.logger.info(
            f"{self.operation} started",
            operation=self.operation,
            **redact_context(self.context),
        )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        duration_ms = round((time.perf_counter() - self.start_time) * 1000, 2)
        redacted = redact_context(self.context)

        if exc_type is None:
            self.logger.info(
                f"{self.operation} completed",
                operation=self.operation,
                duration_ms=duration_ms,
                **redacted,
            )
        else:
            # Expected domain outcomes (conflict, invalid state) carry a kind
            self.logger.error(
                f"{self.operation} failed",
                operation=self.operation,
                duration_ms=duration_ms,
                error_kind=getattr(exc_val, "kind", exc_type.__name__),
                error=str(exc_val),
                exc_info=not is_production(),
                **redacted,
            )
