"""
Lifecycle Policy - tunable parameters for the bid lifecycle core

Retry bounds for the recoverable steps, deadlines, and the marketplace
rules that are business choices rather than invariants.
"""

from pydantic import BaseModel, Field


class LifecyclePolicy(BaseModel):
    """
    Configuration for bid creation and the decide state machine

    Defaults favour fast failure: a handful of retries with sub-second
    backoff, then surface PartialFailureError for reconciliation.
    """

    assignment_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Attempts to assign the service request after the bid is accepted",
    )

    sibling_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Attempts per sibling bid when rejecting competing bids",
    )

    retry_min_wait_ms: int = Field(
        default=50,
        ge=0,
        description="Minimum backoff between store retries",
    )

    retry_max_wait_ms: int = Field(
        default=500,
        ge=0,
        description="Maximum backoff between store retries",
    )

    default_decide_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Deadline applied to decide when the caller supplies none (None = unbounded)",
    )

    claim_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Age after which a pending bid's acceptance claim counts as abandoned",
    )

    allow_multiple_bids_per_contractor: bool = Field(
        default=False,
        description="Allow a contractor more than one live bid on the same request",
    )

    generic_bid_title: str = Field(
        default="Bid for Service Request",
        min_length=1,
        description="Label used when a descriptive title cannot be built",
    )

    currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="Currency of bid amounts",
    )

    def retry_kwargs(self, attempts: int) -> dict[str, int]:
        """Keyword arguments for retry_on_store_error"""
        return {
            "max_attempts": attempts,
            "min_wait_ms": self.retry_min_wait_ms,
            "max_wait_ms": self.retry_max_wait_ms,
        }


default_lifecycle_policy = LifecyclePolicy()
