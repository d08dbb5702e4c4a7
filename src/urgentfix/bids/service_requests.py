"""
Service Request Reference - narrow adapter over the bid-upon aggregate

The lifecycle controller is the only writer of a request's assignment
fields. Every write here is a conditional update, so two acceptances racing
on the same request are serialized by the store, never by application locks.

An acceptance first claims the request (`accepted_bid`), then writes the
bid. A claim whose bid can no longer be accepted is stale: the next claim
takes it over, and reconcile() releases it.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from urgentfix.bids.models import BIDS, BidStatus
from urgentfix.kernel.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    RecordStoreError,
)
from urgentfix.kernel.logging import get_logger
from urgentfix.kernel.metrics import stale_claims_released_total
from urgentfix.kernel.time import TimeProvider
from urgentfix.store.base import RecordStore

logger = get_logger(__name__)

SERVICE_REQUESTS = "service-requests"


class ServiceRequestStatus(str, Enum):
    """Service request lifecycle (only the bid-relevant part is driven here)"""

    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses from which an acceptance may still claim the request
CLAIMABLE_STATUSES = [ServiceRequestStatus.PENDING.value, ServiceRequestStatus.ASSIGNED.value]


class ServiceRequest(BaseModel):
    """Snapshot of the fields the bid lifecycle reads"""

    id: str
    request_title: str | None = None
    status: ServiceRequestStatus = ServiceRequestStatus.PENDING
    customer: str | None = None
    assigned_contractor: str | None = None
    accepted_bid: str | None = Field(
        default=None, description="Bid holding the acceptance claim on this request"
    )
    claimed_at: datetime | None = None
    assigned_at: datetime | None = None

    model_config = {"extra": "ignore"}


class ServiceRequestReference:
    """
    Read/write surface of one service request

    Example:
        ref = ServiceRequestReference(store, "req_1", time_provider)
        ref.claim("bid_2", "usr_c2")     # ConflictError if another bid holds it
        ref.assign("usr_c2", "bid_2")    # idempotent for the same contractor
    """

    def __init__(
        self, store: RecordStore, service_request_id: str, time_provider: TimeProvider
    ) -> None:
        self.store = store
        self.service_request_id = service_request_id
        self.time_provider = time_provider

    def load_record(self) -> dict[str, Any]:
        """
        Raises:
            NotFoundError: If the request does not exist
        """
        record = self.store.find_by_id(SERVICE_REQUESTS, self.service_request_id)
        if record is None:
            raise NotFoundError("Service request", self.service_request_id)
        return record

    def load(self) -> ServiceRequest:
        return ServiceRequest.model_validate(self.load_record())

    def get_status(self) -> ServiceRequestStatus:
        return self.load().status

    def get_assigned_contractor(self) -> str | None:
        return self.load().assigned_contractor

    def claim(
        self, bid_id: str, contractor_id: str, claim_timeout_seconds: float | None = None
    ) -> ServiceRequest:
        """
        Reserve the request for an acceptance before the bid itself is written

        Succeeds when no other bid holds the claim and no other contractor is
        assigned. Re-claiming by the same bid is a no-op success. A stale
        claim (see claim_is_stale) is taken over.

        Args:
            bid_id: Bid being accepted
            contractor_id: That bid's contractor
            claim_timeout_seconds: Age after which a pending bid's claim is stale

        Raises:
            ConflictError: Another live bid or contractor already holds the request
            InvalidStateError: Request is in progress, completed or cancelled
        """
        updated = self.store.update(
            SERVICE_REQUESTS,
            self.service_request_id,
            {"accepted_bid": bid_id, "claimed_at": self.time_provider.now().isoformat()},
            expected={
                "status": {"in": CLAIMABLE_STATUSES},
                "accepted_bid": {"in": [None, bid_id]},
                "assigned_contractor": {"in": [None, contractor_id]},
            },
        )
        if updated is not None:
            return ServiceRequest.model_validate(updated)

        record = self.load_record()
        if record.get("accepted_bid") not in (None, bid_id) and self.claim_is_stale(
            record, claim_timeout_seconds
        ):
            taken = self._take_over_claim(record, bid_id)
            if taken is not None:
                return taken
            record = self.load_record()

        current = ServiceRequest.model_validate(record)
        self._raise_for_foreign_holder(current, bid_id, contractor_id)
        raise InvalidStateError(self.service_request_id, current.status.value, "accept a bid on")

    def claim_is_stale(
        self, record: dict[str, Any], claim_timeout_seconds: float | None = None
    ) -> bool:
        """
        True when the request's claim can no longer lead to an acceptance

        The claiming bid is missing, rejected, withdrawn or expired, or still
        pending `claim_timeout_seconds` after it claimed (its acceptance died
        between the claim and the bid write). A claim held by an accepted bid
        or on an assigned request is never stale.
        """
        holder_id = record.get("accepted_bid")
        if holder_id is None or record.get("assigned_contractor") is not None:
            return False

        holder = self.store.find_by_id(BIDS, holder_id)
        if holder is None:
            return True
        status = holder.get("status")
        if status == BidStatus.ACCEPTED.value:
            return False
        if status != BidStatus.PENDING.value:
            return True

        claimed_at = ServiceRequest.model_validate(record).claimed_at
        if claim_timeout_seconds is None or claimed_at is None:
            return False
        return self.time_provider.now() - claimed_at >= timedelta(seconds=claim_timeout_seconds)

    def _take_over_claim(self, record: dict[str, Any], bid_id: str) -> ServiceRequest | None:
        stale_bid_id = record["accepted_bid"]
        updated = self.store.update(
            SERVICE_REQUESTS,
            self.service_request_id,
            {"accepted_bid": bid_id, "claimed_at": self.time_provider.now().isoformat()},
            expected={
                "status": {"in": CLAIMABLE_STATUSES},
                "accepted_bid": stale_bid_id,
                "claimed_at": record.get("claimed_at"),
                "assigned_contractor": {"in": [None]},
            },
        )
        if updated is None:
            return None
        stale_claims_released_total.labels(via="takeover").inc()
        logger.warning(
            "Took over stale acceptance claim",
            service_request_id=self.service_request_id,
            stale_bid_id=stale_bid_id,
            bid_id=bid_id,
        )
        return ServiceRequest.model_validate(updated)

    def release_claim(self, bid_id: str) -> bool:
        """
        Drop this bid's claim if the request was never assigned

        Returns:
            True if the claim was released
        """
        released = self.store.update(
            SERVICE_REQUESTS,
            self.service_request_id,
            {"accepted_bid": None, "claimed_at": None},
            expected={
                "accepted_bid": bid_id,
                "assigned_contractor": {"in": [None]},
            },
        )
        if released is not None:
            logger.info(
                "Acceptance claim released",
                service_request_id=self.service_request_id,
                bid_id=bid_id,
            )
        return released is not None

    def release_stale_claim(self, claim_timeout_seconds: float | None = None) -> str | None:
        """
        Release the request's claim if it is stale

        Returns:
            Id of the bid whose claim was released, or None
        """
        record = self.load_record()
        if not self.claim_is_stale(record, claim_timeout_seconds):
            return None
        stale_bid_id = record["accepted_bid"]
        if not self.release_claim(stale_bid_id):
            return None
        stale_claims_released_total.labels(via="reconcile").inc()
        return stale_bid_id

    def assign(self, contractor_id: str, bid_id: str | None = None) -> ServiceRequest:
        """
        Assign the request to a contractor (conditional update)

        Same contractor already assigned: no-op success. A different
        contractor: ConflictError, nothing written.

        Raises:
            ConflictError: Assigned to a different contractor or claimed by another bid
            InvalidStateError: Request is no longer assignable
        """
        current = self.load()
        if current.assigned_contractor == contractor_id and (
            bid_id is None or current.accepted_bid == bid_id
        ):
            return current

        data: dict[str, Any] = {
            "status": ServiceRequestStatus.ASSIGNED.value,
            "assigned_contractor": contractor_id,
            "assigned_at": self.time_provider.now().isoformat(),
        }
        expected: dict[str, Any] = {
            "status": {"in": CLAIMABLE_STATUSES},
            "assigned_contractor": {"in": [None, contractor_id]},
        }
        if bid_id is not None:
            data["accepted_bid"] = bid_id
            expected["accepted_bid"] = {"in": [None, bid_id]}

        updated = self.store.update(SERVICE_REQUESTS, self.service_request_id, data, expected)
        if updated is not None:
            logger.info(
                "Service request assigned",
                service_request_id=self.service_request_id,
                contractor_id=contractor_id,
                bid_id=bid_id,
            )
            return ServiceRequest.model_validate(updated)

        current = self.load()
        if current.assigned_contractor == contractor_id:
            # Lost a race against an identical assignment
            return current
        self._raise_for_foreign_holder(current, bid_id, contractor_id)
        raise InvalidStateError(self.service_request_id, current.status.value, "assign")

    def _raise_for_foreign_holder(
        self, current: ServiceRequest, bid_id: str | None, contractor_id: str
    ) -> None:
        if current.assigned_contractor not in (None, contractor_id):
            raise ConflictError(
                self.service_request_id,
                f"Service request {self.service_request_id} is already assigned to "
                f"contractor {current.assigned_contractor}",
            )
        if bid_id is not None and current.accepted_bid not in (None, bid_id):
            raise ConflictError(
                self.service_request_id,
                f"Service request {self.service_request_id} already has accepted "
                f"bid {current.accepted_bid}",
            )


def drop_claim(
    store: RecordStore, service_request_id: str, bid_id: str, time_provider: TimeProvider
) -> bool:
    """
    Release a bid's claim once the bid has left pending without being accepted

    Store failures are logged, not raised: the bid's own write already
    committed, and reconcile() releases the claim later.
    """
    try:
        return ServiceRequestReference(store, service_request_id, time_provider).release_claim(
            bid_id
        )
    except RecordStoreError as e:
        logger.error(
            "Failed to release acceptance claim",
            service_request_id=service_request_id,
            bid_id=bid_id,
            error=str(e),
        )
        return False
