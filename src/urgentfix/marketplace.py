"""
Marketplace - Main façade class

The primary interface for the surrounding application layer (CLI, API
handlers). Wires the record store, notification dispatcher, entity manager
and lifecycle controller together behind a small, high-level API.

Example:
    >>> from urgentfix import Marketplace
    >>> market = Marketplace("marketplace.db")
    >>> customer = market.register_user("Dana", "Lee", role="customer")
    >>> plumber = market.register_user("Ana", "Diaz", role="contractor")
    >>> request = market.create_service_request(customer["id"], "Leaking pipe")
    >>> bid = market.create_bid(request["id"], plumber["id"], "500", "Fix leaking pipe")
    >>> result = market.accept_bid(bid.id, customer["id"])
"""

from decimal import Decimal
from pathlib import Path
from typing import Any

from urgentfix.bids.commands import DecideBid, SubmitBid, WithdrawBid, parse_command
from urgentfix.bids.lifecycle import BidLifecycleController
from urgentfix.bids.manager import USERS, BidEntityManager, store_errors_as_persistence
from urgentfix.bids.models import Bid, BidStatus, Decision, DecisionResult
from urgentfix.bids.service_requests import SERVICE_REQUESTS, ServiceRequestStatus
from urgentfix.kernel.errors import NotFoundError, ValidationError
from urgentfix.kernel.ids import IdFactory
from urgentfix.kernel.logging import get_logger
from urgentfix.kernel.policy import LifecyclePolicy
from urgentfix.kernel.time import RealTimeProvider, TimeProvider
from urgentfix.notifications.dispatcher import (
    NotificationDispatcher,
    RecordStoreNotificationDispatcher,
)
from urgentfix.notifications.models import Notification
from urgentfix.notifications.notifier import BidNotifier
from urgentfix.store.base import RecordStore
from urgentfix.store.memory import InMemoryRecordStore
from urgentfix.store.sqlite import SQLiteRecordStore

logger = get_logger(__name__)

USER_ROLES = ("customer", "contractor", "admin", "superadmin")


class Marketplace:
    """
    UrgentFix bid marketplace façade

    Provides a unified API for:
    - Users and service requests (the records bids point at)
    - Bid submission, listing and withdrawal
    - Accept/reject decisions with their side effects
    - Expiry sweeps and reconciliation of interrupted acceptances
    - Reading the notifications a user was sent
    """

    def __init__(
        self,
        sqlite_path: str | Path | None = None,
        store: RecordStore | None = None,
        dispatcher: NotificationDispatcher | None = None,
        policy: LifecyclePolicy | None = None,
        time_provider: TimeProvider | None = None,
        id_factory: IdFactory | None = None,
    ) -> None:
        """
        Initialize the marketplace

        Args:
            sqlite_path: SQLite database (ignored when `store` is given)
            store: Record store to use (in-memory when neither is given)
            dispatcher: Notification dispatcher (defaults to the store's notifications collection)
            policy: Lifecycle policy (uses defaults if None)
            time_provider: Time provider (uses real time if None)
            id_factory: Id generator for new records
        """
        self.policy = policy or LifecyclePolicy()
        self.time_provider = time_provider or RealTimeProvider()

        if store is not None:
            self.store = store
        elif sqlite_path is not None:
            self.store = SQLiteRecordStore(str(sqlite_path), self.time_provider, id_factory)
        else:
            self.store = InMemoryRecordStore(self.time_provider, id_factory)

        self.dispatcher = dispatcher or RecordStoreNotificationDispatcher(self.store)
        self.notifier = BidNotifier(self.dispatcher, self.policy.currency)
        self.bids = BidEntityManager(self.store, self.notifier, self.time_provider, self.policy)
        self.lifecycle = BidLifecycleController(
            self.store, self.bids, self.notifier, self.time_provider, self.policy
        )

    # Users and service requests

    def register_user(
        self,
        first_name: str,
        last_name: str,
        role: str = "customer",
        email: str | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Register a user account

        Raises:
            ValidationError: Unknown role
        """
        if role not in USER_ROLES:
            raise ValidationError(f"Unknown role '{role}': expected one of {', '.join(USER_ROLES)}")
        data: dict[str, Any] = {
            "first_name": first_name,
            "last_name": last_name,
            "role": role,
            "email": email,
        }
        if user_id:
            data["id"] = user_id
        with store_errors_as_persistence("register_user", user_id or first_name):
            return self.store.create(USERS, data)

    def get_user(self, user_id: str) -> dict[str, Any]:
        with store_errors_as_persistence("load_user", user_id):
            user = self.store.find_by_id(USERS, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def create_service_request(
        self,
        customer_id: str,
        request_title: str,
        description: str | None = None,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Post a job for contractors to bid on

        Raises:
            NotFoundError: Customer does not exist
        """
        self.get_user(customer_id)
        data: dict[str, Any] = {
            "request_title": request_title,
            "description": description,
            "customer": customer_id,
            "status": ServiceRequestStatus.PENDING.value,
            "assigned_contractor": None,
            "accepted_bid": None,
        }
        if request_id:
            data["id"] = request_id
        with store_errors_as_persistence("create_service_request", request_id or customer_id):
            return self.store.create(SERVICE_REQUESTS, data)

    def get_service_request(self, service_request_id: str) -> dict[str, Any]:
        with store_errors_as_persistence("load_service_request", service_request_id):
            record = self.store.find_by_id(SERVICE_REQUESTS, service_request_id)
        if record is None:
            raise NotFoundError("Service request", service_request_id)
        return record

    # Bid operations

    def create_bid(
        self,
        service_request_id: str,
        contractor_id: str,
        amount: Decimal | str | float,
        description: str,
        **optional_fields: Any,
    ) -> Bid:
        """
        Submit a bid

        Args:
            service_request_id: Request being bid on
            contractor_id: Submitting contractor
            amount: Price in USD, must be > 0
            description: Proposed work, must be non-empty
            **optional_fields: title, estimated_duration, warranty, materials,
                price_breakdown, availability, valid_until, notes

        Returns:
            The pending bid
        """
        command = parse_command(
            SubmitBid,
            {
                "service_request_id": service_request_id,
                "contractor_id": contractor_id,
                "amount": amount,
                "description": description,
                **optional_fields,
            },
        )
        return self.bids.create(command)

    def decide_bid(
        self,
        bid_id: str,
        decision: Decision | str,
        deciding_party_id: str,
        timeout_seconds: float | None = None,
    ) -> DecisionResult:
        """
        Accept or reject a pending bid

        Raises:
            ValidationError: Unknown decision or empty ids
        """
        command = parse_command(
            DecideBid,
            {"bid_id": bid_id, "decision": decision, "deciding_party_id": deciding_party_id},
        )
        return self.lifecycle.decide(
            command.bid_id, command.decision, command.deciding_party_id, timeout_seconds
        )

    def accept_bid(
        self, bid_id: str, deciding_party_id: str, timeout_seconds: float | None = None
    ) -> DecisionResult:
        return self.decide_bid(bid_id, Decision.ACCEPT, deciding_party_id, timeout_seconds)

    def reject_bid(
        self, bid_id: str, deciding_party_id: str, timeout_seconds: float | None = None
    ) -> DecisionResult:
        return self.decide_bid(bid_id, Decision.REJECT, deciding_party_id, timeout_seconds)

    def withdraw_bid(self, bid_id: str, contractor_id: str) -> Bid:
        command = parse_command(WithdrawBid, {"bid_id": bid_id, "contractor_id": contractor_id})
        return self.bids.withdraw(command.bid_id, command.contractor_id)

    def get_bid(self, bid_id: str) -> Bid:
        return self.bids.get(bid_id)

    def list_bids(
        self,
        service_request_id: str | None = None,
        contractor_id: str | None = None,
        status: BidStatus | str | None = None,
    ) -> list[Bid]:
        """
        List bids, newest first

        Raises:
            ValidationError: Unknown status
        """
        if status is not None and status not in {s.value for s in BidStatus}:
            raise ValidationError(f"Unknown bid status '{status}'")
        return self.bids.find(service_request_id, contractor_id, status)

    # Maintenance

    def expire_bid(self, bid_id: str) -> Bid:
        return self.lifecycle.expire(bid_id)

    def expire_overdue_bids(self) -> list[Bid]:
        return self.lifecycle.expire_overdue()

    def reconcile(self) -> list[DecisionResult]:
        """Complete acceptances interrupted by a partial failure or timeout"""
        return self.lifecycle.reconcile()

    # Notifications

    def list_notifications(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        """
        Notifications sent to a user (requires the record-store dispatcher)
        """
        if not isinstance(self.dispatcher, RecordStoreNotificationDispatcher):
            raise ValidationError("Notifications are not readable from this dispatcher")
        return self.dispatcher.list_for(user_id, unread_only)
