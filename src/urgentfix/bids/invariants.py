"""
Bid Invariants

Pure guard functions shared by the entity manager and the lifecycle
controller. Each raises the error kind the caller surfaces unchanged.
"""

from datetime import datetime
from typing import Any

from urgentfix.bids.models import LIVE_BID_STATUSES, Bid, BidStatus
from urgentfix.kernel.errors import (
    AuthorizationError,
    DuplicateBidError,
    InvalidStateError,
    NotFoundError,
)

ADMIN_ROLES = frozenset({"admin", "superadmin"})
CONTRACTOR_ROLE = "contractor"

# Service request statuses that still accept new bids
OPEN_REQUEST_STATUSES = frozenset({"pending"})


def validate_transition(bid: Bid, target: BidStatus, action: str) -> None:
    """
    Validate that the bid may move to `target`

    Raises:
        InvalidStateError: If the transition is not in the transition table
    """
    if not bid.status.can_transition_to(target):
        raise InvalidStateError(bid.id, bid.status.value, action)


def validate_bid_owner(bid: Bid, contractor_id: str) -> None:
    """
    Validate that the caller is the contractor who submitted the bid

    Raises:
        AuthorizationError: If the caller is someone else
    """
    if bid.contractor != contractor_id:
        raise AuthorizationError(contractor_id, "withdraw", bid.id)


def is_admin(user: dict[str, Any] | None) -> bool:
    return user is not None and user.get("role") in ADMIN_ROLES


def validate_can_decide(
    bid: Bid,
    service_request: dict[str, Any],
    deciding_party_id: str,
    deciding_user: dict[str, Any] | None,
) -> None:
    """
    Validate that the deciding party owns the service request (or is an admin)

    Raises:
        AuthorizationError: If the party may not decide on this bid
    """
    if service_request.get("customer") == deciding_party_id:
        return
    if is_admin(deciding_user):
        return
    raise AuthorizationError(deciding_party_id, "decide on", bid.id)


def validate_contractor(user: dict[str, Any] | None, contractor_id: str) -> dict[str, Any]:
    """
    Validate that the id references an existing contractor account

    Raises:
        NotFoundError: If no user exists or the user is not a contractor
    """
    if user is None or user.get("role") != CONTRACTOR_ROLE:
        raise NotFoundError("Contractor", contractor_id)
    return user


def validate_request_open_for_bids(service_request: dict[str, Any]) -> None:
    """
    Validate that the service request still takes bids

    Raises:
        InvalidStateError: If the request is assigned, in progress, completed or cancelled
    """
    status = service_request.get("status", "pending")
    if status not in OPEN_REQUEST_STATUSES:
        raise InvalidStateError(service_request["id"], status, "submit a bid on")


def validate_no_live_bid(
    existing_bids: list[dict[str, Any]],
    contractor_id: str,
    service_request_id: str,
) -> None:
    """
    Validate that the contractor has no pending or accepted bid on the request

    Withdrawn, rejected and expired bids do not count.

    Raises:
        DuplicateBidError: If a live bid exists
    """
    live = {status.value for status in LIVE_BID_STATUSES}
    for record in existing_bids:
        if record.get("status") in live:
            raise DuplicateBidError(contractor_id, service_request_id, record["id"])


def validate_expirable(bid: Bid, check_time: datetime) -> None:
    """
    Validate that a pending bid's valid_until has passed

    Raises:
        InvalidStateError: If the bid is not pending or not yet overdue
    """
    validate_transition(bid, BidStatus.EXPIRED, "expire")
    if not bid.is_overdue(check_time):
        raise InvalidStateError(bid.id, "pending (not yet overdue)", "expire")
