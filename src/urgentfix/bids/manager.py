"""
Bid Entity Manager - creation, withdrawal and lookup of bids

Writes a bid only at creation and on owner-initiated withdrawal. Status
changes driven by a customer decision belong to the lifecycle controller.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from urgentfix.bids.commands import SubmitBid
from urgentfix.bids.invariants import (
    validate_bid_owner,
    validate_contractor,
    validate_no_live_bid,
    validate_request_open_for_bids,
    validate_transition,
)
from urgentfix.bids.models import BIDS, LIVE_BID_STATUSES, Bid, BidStatus
from urgentfix.bids.service_requests import SERVICE_REQUESTS, drop_claim
from urgentfix.kernel.errors import (
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    RecordStoreError,
)
from urgentfix.kernel.logging import LogOperation, get_logger
from urgentfix.kernel.metrics import bid_transitions_total, bids_created_total
from urgentfix.kernel.policy import LifecyclePolicy, default_lifecycle_policy
from urgentfix.kernel.time import TimeProvider
from urgentfix.notifications.notifier import BidNotifier, display_name
from urgentfix.store.base import RecordStore

logger = get_logger(__name__)

USERS = "users"


@contextmanager
def store_errors_as_persistence(operation: str, record_id: str) -> Iterator[None]:
    """Surface a failed store call as PersistenceError"""
    try:
        yield
    except RecordStoreError as e:
        raise PersistenceError(operation, record_id, f"{operation} failed for {record_id}: {e}") from e


def bid_title(
    contractor: dict[str, Any] | None,
    service_request: dict[str, Any] | None,
    fallback: str,
) -> str:
    """
    Human-readable label: "First Last - Request title"

    Example:
        >>> bid_title({"first_name": "Ana", "last_name": "Diaz"},
        ...           {"request_title": "Leaking pipe"}, "Bid")
        'Ana Diaz - Leaking pipe'
    """
    name = display_name(contractor)
    request_title = (service_request or {}).get("request_title")
    if name and request_title:
        return f"{name} - {request_title}"
    return fallback


class BidEntityManager:
    """
    Creates and withdraws bids

    Example:
        manager = BidEntityManager(store, notifier, time_provider)
        bid = manager.create(SubmitBid(service_request_id="req_1",
                                       contractor_id="usr_c1",
                                       amount=Decimal("500"),
                                       description="Fix leaking pipe"))
    """

    def __init__(
        self,
        store: RecordStore,
        notifier: BidNotifier,
        time_provider: TimeProvider,
        policy: LifecyclePolicy | None = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.time_provider = time_provider
        self.policy = policy or default_lifecycle_policy

    def get(self, bid_id: str) -> Bid:
        """
        Raises:
            NotFoundError: If the bid does not exist
            PersistenceError: If the store read failed
        """
        with store_errors_as_persistence("load_bid", bid_id):
            record = self.store.find_by_id(BIDS, bid_id)
        if record is None:
            raise NotFoundError("Bid", bid_id)
        return Bid.from_record(record)

    def find(
        self,
        service_request_id: str | None = None,
        contractor_id: str | None = None,
        status: BidStatus | str | None = None,
    ) -> list[Bid]:
        """List bids matching all given filters, newest first"""
        where: dict[str, Any] = {}
        if service_request_id:
            where["service_request"] = service_request_id
        if contractor_id:
            where["contractor"] = contractor_id
        if status:
            where["status"] = BidStatus(status).value
        with store_errors_as_persistence("list_bids", service_request_id or contractor_id or "*"):
            records = self.store.find(BIDS, where)
        return [Bid.from_record(r) for r in reversed(records)]

    def create(self, command: SubmitBid) -> Bid:
        """
        Submit a new pending bid

        Raises:
            NotFoundError: Service request or contractor does not exist
            InvalidStateError: Service request no longer takes bids
            DuplicateBidError: Contractor already has a live bid on the request
            PersistenceError: Store read or write failed
        """
        with LogOperation(
            logger,
            "create_bid",
            service_request_id=command.service_request_id,
            contractor_id=command.contractor_id,
            amount=str(command.amount),
        ):
            with store_errors_as_persistence("load_service_request", command.service_request_id):
                service_request = self.store.find_by_id(
                    SERVICE_REQUESTS, command.service_request_id
                )
            if service_request is None:
                raise NotFoundError("Service request", command.service_request_id)

            with store_errors_as_persistence("load_contractor", command.contractor_id):
                contractor = self.store.find_by_id(USERS, command.contractor_id)
            validate_contractor(contractor, command.contractor_id)
            validate_request_open_for_bids(service_request)

            if not self.policy.allow_multiple_bids_per_contractor:
                with store_errors_as_persistence("find_live_bids", command.contractor_id):
                    existing = self.store.find(
                        BIDS,
                        {
                            "service_request": command.service_request_id,
                            "contractor": command.contractor_id,
                            "status": {"in": [s.value for s in LIVE_BID_STATUSES]},
                        },
                    )
                validate_no_live_bid(
                    existing, command.contractor_id, command.service_request_id
                )

            details = command.model_dump(
                mode="json",
                exclude={"service_request_id", "contractor_id", "title", "amount", "description"},
            )
            record = {
                "title": command.title
                or bid_title(contractor, service_request, self.policy.generic_bid_title),
                "service_request": command.service_request_id,
                "contractor": command.contractor_id,
                "amount": str(command.amount),
                "description": command.description,
                "status": BidStatus.PENDING.value,
                "submitted_at": self.time_provider.now().isoformat(),
                **details,
            }
            with store_errors_as_persistence("create_bid", command.service_request_id):
                created = self.store.create(BIDS, record)

            bid = Bid.from_record(created)
            bids_created_total.inc()
            logger.info(
                "Bid submitted",
                bid_id=bid.id,
                service_request_id=bid.service_request,
                contractor_id=bid.contractor,
            )

            self.notifier.quote_received(
                bid, service_request, contractor, service_request.get("customer")
            )
            return bid

    def withdraw(self, bid_id: str, contractor_id: str) -> Bid:
        """
        Withdraw a pending bid on behalf of its contractor

        Raises:
            NotFoundError: Bid does not exist
            AuthorizationError: Caller did not submit the bid
            InvalidStateError: Bid is no longer pending
            PersistenceError: Store write failed
        """
        with LogOperation(logger, "withdraw_bid", bid_id=bid_id, contractor_id=contractor_id):
            bid = self.get(bid_id)
            validate_bid_owner(bid, contractor_id)
            validate_transition(bid, BidStatus.WITHDRAWN, "withdraw")

            with store_errors_as_persistence("withdraw_bid", bid_id):
                updated = self.store.update(
                    BIDS,
                    bid_id,
                    {
                        "status": BidStatus.WITHDRAWN.value,
                        "withdrawn_at": self.time_provider.now().isoformat(),
                    },
                    expected={"status": BidStatus.PENDING.value},
                )
            if updated is None:
                # A decision landed between the read and the write
                current = self.get(bid_id)
                raise InvalidStateError(bid_id, current.status.value, "withdraw")
            drop_claim(self.store, bid.service_request, bid_id, self.time_provider)

            bid_transitions_total.labels(to_status=BidStatus.WITHDRAWN.value).inc()
            return Bid.from_record(updated)
