"""
Bids Module - bid entities, commands and the decide state machine

- Bid Entity Manager: creation, owner withdrawal, lookup
- Bid Lifecycle Controller: accept/reject with service request assignment,
  competing-bid rejection and contractor notifications
- Service Request Reference: conditional writes on the request being bid upon

The manager and controller live in urgentfix.bids.manager and
urgentfix.bids.lifecycle.
"""

from urgentfix.bids.commands import DecideBid, SubmitBid, WithdrawBid
from urgentfix.bids.models import (
    Bid,
    BidStatus,
    Decision,
    DecisionResult,
    Material,
    PriceBreakdown,
    RejectionReason,
    SideEffects,
)

__all__ = [
    "Bid",
    "BidStatus",
    "Decision",
    "DecisionResult",
    "Material",
    "PriceBreakdown",
    "RejectionReason",
    "SideEffects",
    "SubmitBid",
    "DecideBid",
    "WithdrawBid",
]
