"""
Test Helper Functions - Builders and Fault Injection

Provides reusable builders for marketplace fixtures and a record store
wrapper that fails on demand, for exercising partial-failure paths.

Fun fact: Netflix's "Chaos Monkey" made deliberately breaking things in
production famous in 2011, but fault-injecting test doubles like this one
were common in telecom switch testing decades earlier!
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from urgentfix.bids.models import Bid
from urgentfix.kernel.errors import RecordStoreError
from urgentfix.marketplace import Marketplace
from urgentfix.notifications.models import Notification
from urgentfix.store.base import Record, RecordStore
from urgentfix.store.query import Where

CUSTOMER_ID = "cust_1"
ADMIN_ID = "admin_1"
REQUEST_ID = "req_1"


@dataclass
class Seeded:
    """Ids and bids created by seed_marketplace"""

    customer_id: str
    request_id: str
    contractors: list[str]
    bids: dict[str, Bid] = field(default_factory=dict)  # contractor id -> bid

    def bid_id(self, contractor_id: str) -> str:
        return self.bids[contractor_id].id


def seed_marketplace(
    market: Marketplace,
    amounts: dict[str, str],
    contractors: tuple[str, ...] = ("c1", "c2", "c3"),
) -> Seeded:
    """
    Builder for a customer, contractors, one open request and its bids

    Args:
        market: Marketplace under test
        amounts: contractor id -> bid amount (contractors without an amount don't bid)
        contractors: Contractor accounts to register

    Example:
        >>> seeded = seed_marketplace(market, {"c1": "500", "c2": "450"})
        >>> seeded.bid_id("c2")
        'bid_2'
    """
    market.register_user("Dana", "Lee", role="customer", email="dana@example.com", user_id=CUSTOMER_ID)
    market.register_user("Sam", "Root", role="admin", user_id=ADMIN_ID)
    names = {"c1": ("Ana", "Diaz"), "c2": ("Ben", "Okafor"), "c3": ("Cleo", "Park")}
    for contractor_id in contractors:
        first, last = names.get(contractor_id, ("Pat", contractor_id.upper()))
        market.register_user(first, last, role="contractor", user_id=contractor_id)

    market.create_service_request(CUSTOMER_ID, "Leaking pipe", request_id=REQUEST_ID)

    seeded = Seeded(customer_id=CUSTOMER_ID, request_id=REQUEST_ID, contractors=list(contractors))
    for contractor_id, amount in amounts.items():
        seeded.bids[contractor_id] = market.create_bid(
            REQUEST_ID, contractor_id, amount, f"Repair by {contractor_id}"
        )
    return seeded


@dataclass
class Fault:
    method: str
    collection: str | None
    remaining: int
    when: Callable[..., bool] | None


class FlakyRecordStore:
    """
    Record store wrapper that raises RecordStoreError on demand

    Example:
        >>> store.fail("update", "service-requests", times=10)
        >>> store.fail("update", "bids", when=lambda record_id, data: record_id == "bid_1")
    """

    def __init__(self, inner: RecordStore) -> None:
        self.inner = inner
        self.faults: list[Fault] = []
        self.writes: list[tuple[str, str, str]] = []  # (method, collection, id)
        # Called with (collection, record_id, data) before every update
        self.before_update: Callable[[str, str, Record], None] | None = None

    def fail(
        self,
        method: str,
        collection: str | None = None,
        times: int = 1,
        when: Callable[..., bool] | None = None,
    ) -> None:
        self.faults.append(Fault(method, collection, times, when))

    def heal(self) -> None:
        self.faults.clear()

    def _maybe_fail(self, method: str, collection: str, *args: Any) -> None:
        for fault in self.faults:
            if (
                fault.remaining > 0
                and fault.method == method
                and fault.collection in (None, collection)
                and (fault.when is None or fault.when(*args))
            ):
                fault.remaining -= 1
                raise RecordStoreError(f"injected {method} failure on {collection}")

    def find(self, collection: str, where: Where | None = None) -> list[Record]:
        self._maybe_fail("find", collection, where)
        return self.inner.find(collection, where)

    def find_by_id(self, collection: str, record_id: str) -> Record | None:
        self._maybe_fail("find_by_id", collection, record_id)
        return self.inner.find_by_id(collection, record_id)

    def create(self, collection: str, data: Record) -> Record:
        self._maybe_fail("create", collection, data)
        created = self.inner.create(collection, data)
        self.writes.append(("create", collection, created["id"]))
        return created

    def update(
        self,
        collection: str,
        record_id: str,
        data: Record,
        expected: Where | None = None,
    ) -> Record | None:
        if self.before_update is not None:
            self.before_update(collection, record_id, data)
        self._maybe_fail("update", collection, record_id, data)
        updated = self.inner.update(collection, record_id, data, expected)
        if updated is not None:
            self.writes.append(("update", collection, record_id))
        return updated


class RecordingDispatcher:
    """Dispatcher that keeps notifications in a list, deduplicating by id"""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    def dispatch(self, notification: Notification) -> bool:
        if any(n.id == notification.id for n in self.sent):
            return False
        self.sent.append(notification)
        return True

    def types(self) -> list[str]:
        return [n.type.value for n in self.sent]


class FailingDispatcher:
    """Dispatcher whose delivery queue is down"""

    def __init__(self) -> None:
        self.attempts = 0

    def dispatch(self, notification: Notification) -> bool:
        self.attempts += 1
        raise ConnectionError("notification queue unavailable")


def notification_types(market: Marketplace, user_id: str) -> list[str]:
    return [n.type.value for n in market.list_notifications(user_id)]


def is_claim(collection: str, data: Record) -> bool:
    """True for the conditional write that reserves a request for one bid"""
    return (
        collection == "service-requests"
        and data.get("accepted_bid") is not None
        and "status" not in data
    )


def is_bid_acceptance(collection: str, data: Record) -> bool:
    return collection == "bids" and data.get("status") == "accepted"
