"""
Caller-supplied deadlines for lifecycle operations.

A decide call is a short unit of work made of several store round trips.
Rather than interrupting a store write halfway (which would leave the
outcome unknown), the deadline is checked cooperatively between steps:
the controller knows which steps already committed and can report either
a clean timeout or an in-flight operation.
"""

import time
from collections.abc import Callable

from urgentfix.kernel.errors import OperationInFlight, OperationTimeout
from urgentfix.kernel.logging import get_logger

logger = get_logger(__name__)


class Deadline:
    """
    Absolute deadline on the monotonic clock

    Example:
        deadline = Deadline.after(2.0, "decide_bid")
        deadline.check("persist_bid")                # OperationTimeout if late
        deadline.check("assign", committed=True)     # OperationInFlight if late
    """

    def __init__(
        self,
        timeout_seconds: float | None,
        operation: str = "operation",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.operation = operation
        self._clock = clock
        self._expires_at = None if timeout_seconds is None else clock() + timeout_seconds

    @classmethod
    def after(cls, timeout_seconds: float | None, operation: str = "operation") -> "Deadline":
        return cls(timeout_seconds, operation)

    @classmethod
    def unbounded(cls, operation: str = "operation") -> "Deadline":
        return cls(None, operation)

    def remaining(self) -> float | None:
        """Seconds left, or None when unbounded"""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def check(self, next_step: str, *, committed: bool = False) -> None:
        """
        Raise if the deadline has passed before `next_step` starts.

        Args:
            next_step: Step about to run (for the error message)
            committed: Whether the operation's primary write already committed

        Raises:
            OperationTimeout: Deadline passed, nothing committed
            OperationInFlight: Deadline passed after the primary write
        """
        if self.timeout_seconds is None or not self.expired():
            return

        logger.warning(
            "Operation exceeded deadline",
            operation=self.operation,
            timeout_seconds=self.timeout_seconds,
            next_step=next_step,
            committed=committed,
        )
        if committed:
            raise OperationInFlight(self.operation, self.timeout_seconds, next_step)
        raise OperationTimeout(self.operation, self.timeout_seconds, next_step)
