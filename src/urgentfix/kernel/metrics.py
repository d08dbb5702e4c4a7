"""
Prometheus metrics for the bid lifecycle core.

Counts creations, decisions by outcome, fan-out rejections, notification
delivery and partial failures so operators can spot reconciliation work.
"""

import time
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from prometheus_client import Counter, Histogram

# ============================================================================
# Bid Metrics
# ============================================================================

bids_created_total = Counter(
    "urgentfix_bids_created_total",
    "Total number of bids submitted",
)

bid_decisions_total = Counter(
    "urgentfix_bid_decisions_total",
    "Total number of decide calls by decision and outcome",
    ["decision", "outcome"],  # outcome: applied, noop, error kind
)

bid_transitions_total = Counter(
    "urgentfix_bid_transitions_total",
    "Total number of committed bid status transitions",
    ["to_status"],
)

auto_rejections_total = Counter(
    "urgentfix_auto_rejections_total",
    "Sibling bids rejected by an acceptance fan-out",
    ["outcome"],  # outcome: rejected, skipped, failed
)

partial_failures_total = Counter(
    "urgentfix_partial_failures_total",
    "Multi-step operations that committed some but not all steps",
    ["step"],
)

stale_claims_released_total = Counter(
    "urgentfix_stale_claims_released_total",
    "Acceptance claims dropped because their bid could no longer be accepted",
    ["via"],  # via: takeover, reconcile
)

decide_duration_seconds = Histogram(
    "urgentfix_decide_duration_seconds",
    "Duration of decide calls in seconds",
    ["decision"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# ============================================================================
# Infrastructure Metrics
# ============================================================================

notifications_total = Counter(
    "urgentfix_notifications_total",
    "Notifications handed to the dispatcher",
    ["type", "outcome"],  # outcome: sent, duplicate, failed
)

store_retries_total = Counter(
    "urgentfix_store_retries_total",
    "Retries of transient record store failures",
    ["operation"],
)

# ============================================================================
# Helper Functions
# ============================================================================

P = ParamSpec("P")
R = TypeVar("R")


def track_decide_duration(decision: Callable[..., str]) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator to observe decide duration, labelled by decision.

    Args:
        decision: Extracts the decision label from the call arguments
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                decide_duration_seconds.labels(decision=decision(*args, **kwargs)).observe(
                    time.perf_counter() - start
                )

        return wrapper

    return decorator
