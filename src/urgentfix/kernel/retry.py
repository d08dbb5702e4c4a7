"""
Retry logic with exponential backoff for transient store failures.

Used by the lifecycle controller for the steps that may be retried
(service request assignment, sibling rejections) and by the SQLite store
for lock contention. The primary bid write is never retried here.
"""

import sqlite3
from collections.abc import Callable
from typing import TypeVar

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from urgentfix.kernel.errors import (
    DuplicateRecordError,
    RecordNotFoundError,
    RecordStoreError,
)
from urgentfix.kernel.logging import get_logger
from urgentfix.kernel.metrics import store_retries_total

logger = get_logger(__name__)

T = TypeVar("T")


def is_transient_store_error(exc: BaseException) -> bool:
    """Store errors worth retrying - a missing or duplicate record will not fix itself"""
    return isinstance(exc, RecordStoreError) and not isinstance(
        exc, (RecordNotFoundError, DuplicateRecordError)
    )


def _log_retry(operation: str) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        store_retries_total.labels(operation=operation).inc()
        logger.warning(
            "Transient store error, retrying",
            operation=operation,
            attempt=retry_state.attempt_number,
            exception=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        )

    return before_sleep


def retry_on_store_error(
    operation: str,
    max_attempts: int = 3,
    min_wait_ms: int = 50,
    max_wait_ms: int = 500,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry decorator for transient record store failures.

    Args:
        operation: Name used in logs and the retry counter
        max_attempts: Total attempts including the first (default: 3)
        min_wait_ms: Minimum backoff in milliseconds (default: 50)
        max_wait_ms: Maximum backoff in milliseconds (default: 500)

    Returns:
        Decorator; the last exception is re-raised once attempts run out

    Example:
        assign = retry_on_store_error("assign_service_request")(reference.assign)
        assign(contractor_id)
    """
    return retry(
        retry=retry_if_exception(is_transient_store_error),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(
            multiplier=1,
            min=min_wait_ms / 1000.0,
            max=max_wait_ms / 1000.0,
        ),
        before_sleep=_log_retry(operation),
        reraise=True,
    )


def retry_on_sqlite_lock(
    max_attempts: int = 5,
    min_wait_ms: int = 20,
    max_wait_ms: int = 1000,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry decorator for SQLite lock contention (OperationalError).

    Concurrent decide calls each open their own connection; "database is
    locked" under BEGIN IMMEDIATE is expected and short-lived.
    """
    return retry(
        retry=retry_if_exception_type(sqlite3.OperationalError),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(
            multiplier=1,
            min=min_wait_ms / 1000.0,
            max=max_wait_ms / 1000.0,
        ),
        before_sleep=_log_retry("sqlite_lock"),
        reraise=True,
    )
