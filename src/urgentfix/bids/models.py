"""
Bid Domain Models

Bid status is a closed enumeration with an explicit transition table:
pending is the only non-terminal state, and nothing leaves a terminal state.

Fun fact: "Tender" and "bid" both predate modern procurement - medieval
town councils took sealed bids for bridge repairs and opened them in public
so no builder could claim the winner was chosen in secret!
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class BidStatus(str, Enum):
    """
    Bid lifecycle states

    Finite state machine:
    PENDING → ACCEPTED | REJECTED | WITHDRAWN | EXPIRED
    (all four are terminal)
    """

    PENDING = "pending"  # Awaiting customer decision
    ACCEPTED = "accepted"  # Customer accepted this bid
    REJECTED = "rejected"  # Customer rejected it, or another bid won
    WITHDRAWN = "withdrawn"  # Contractor withdrew it
    EXPIRED = "expired"  # valid_until passed and the bid was expired

    @property
    def is_terminal(self) -> bool:
        return not BID_TRANSITIONS[self]

    def can_transition_to(self, target: "BidStatus") -> bool:
        return target in BID_TRANSITIONS[self]


BID_TRANSITIONS: dict[BidStatus, frozenset[BidStatus]] = {
    BidStatus.PENDING: frozenset(
        {BidStatus.ACCEPTED, BidStatus.REJECTED, BidStatus.WITHDRAWN, BidStatus.EXPIRED}
    ),
    BidStatus.ACCEPTED: frozenset(),
    BidStatus.REJECTED: frozenset(),
    BidStatus.WITHDRAWN: frozenset(),
    BidStatus.EXPIRED: frozenset(),
}

# Statuses that block the same contractor from bidding again on a request
LIVE_BID_STATUSES = (BidStatus.PENDING, BidStatus.ACCEPTED)

# Record store collection holding bids
BIDS = "bids"


class Decision(str, Enum):
    """Customer decision on a pending bid"""

    ACCEPT = "accept"
    REJECT = "reject"

    @property
    def target_status(self) -> BidStatus:
        return BidStatus.ACCEPTED if self is Decision.ACCEPT else BidStatus.REJECTED


class RejectionReason(str, Enum):
    """Why a bid ended up rejected"""

    CUSTOMER_REJECTED = "customer_rejected"
    ANOTHER_BID_ACCEPTED = "another_bid_accepted"


class Material(BaseModel):
    """Material or item the contractor expects to need"""

    item: str = Field(..., min_length=1, description="Material/Item")
    cost: Decimal | None = Field(default=None, ge=0, description="Estimated cost")
    description: str | None = Field(default=None, description="Description")


class PriceBreakdown(BaseModel):
    """Detailed price breakdown of a bid"""

    labor: Decimal = Field(default=Decimal("0"), ge=0, description="Labor cost")
    materials: Decimal = Field(default=Decimal("0"), ge=0, description="Materials cost")
    additional: Decimal = Field(default=Decimal("0"), ge=0, description="Additional costs")
    notes: str | None = Field(default=None, description="Breakdown notes")

    @property
    def total(self) -> Decimal:
        return self.labor + self.materials + self.additional


class Bid(BaseModel):
    """
    A contractor's priced proposal against a specific service request

    id, service_request, contractor and submitted_at never change after
    creation. accepted_at / rejected_at are set exactly once, when the bid
    enters the corresponding state.
    """

    id: str = Field(..., description="Unique bid identifier")
    title: str = Field(..., description="Human-readable label")
    service_request: str = Field(..., description="Service request this bid targets")
    contractor: str = Field(..., description="Contractor who submitted the bid")
    amount: Decimal = Field(..., gt=0, description="Bid amount in USD")
    description: str = Field(..., min_length=1, description="Proposed work")
    status: BidStatus = Field(default=BidStatus.PENDING)

    submitted_at: datetime = Field(..., description="When the bid was submitted")
    accepted_at: datetime | None = Field(default=None)
    rejected_at: datetime | None = Field(default=None)
    withdrawn_at: datetime | None = Field(default=None)
    expired_at: datetime | None = Field(default=None)
    valid_until: datetime | None = Field(
        default=None, description="Informs, but does not enforce, expiry"
    )

    rejection_reason: RejectionReason | None = Field(default=None)
    superseded_by: str | None = Field(
        default=None, description="Accepted bid that caused this bid's auto-rejection"
    )

    estimated_duration: str | None = None
    warranty: str | None = None
    materials: list[Material] = Field(default_factory=list)
    price_breakdown: PriceBreakdown | None = None
    availability: str | None = None
    notes: str | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"extra": "ignore"}

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Bid description cannot be empty")
        return v

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Bid":
        return cls.model_validate(record)

    def is_overdue(self, check_time: datetime) -> bool:
        """True if valid_until has passed"""
        return self.valid_until is not None and check_time >= self.valid_until


class SideEffects(BaseModel):
    """Cross-entity effects of a decide call"""

    assigned_service_request: str | None = Field(
        default=None, description="Service request assigned to the bid's contractor"
    )
    auto_rejected_bid_ids: list[str] = Field(
        default_factory=list, description="Sibling bids rejected by the acceptance"
    )
    failed_rejection_bid_ids: list[str] = Field(
        default_factory=list,
        description="Sibling bids still pending after retries (left for reconciliation)",
    )
    notification_ids: list[str] = Field(
        default_factory=list, description="Notifications dispatched by this call"
    )


class DecisionResult(BaseModel):
    """Outcome of decide(bid_id, decision, deciding_party_id)"""

    bid: Bid
    decision: Decision
    side_effects: SideEffects = Field(default_factory=SideEffects)
    noop: bool = Field(
        default=False, description="True when the bid was already in the decided state"
    )
