"""
Tests for the Marketplace façade

End-to-end flows over the SQLite record store, plus the façade's own
validation of users, statuses and dispatchers.
"""

from datetime import timedelta
from decimal import Decimal
from pathlib import Path

import pytest

from tests.helpers import CUSTOMER_ID, REQUEST_ID, RecordingDispatcher, seed_marketplace
from urgentfix import Marketplace
from urgentfix.bids.models import BidStatus, RejectionReason
from urgentfix.kernel.errors import NotFoundError, ValidationError
from urgentfix.kernel.ids import SequentialIdFactory
from urgentfix.kernel.policy import LifecyclePolicy
from urgentfix.kernel.time import TestTimeProvider


@pytest.fixture
def sqlite_market(temp_db: Path, test_time: TestTimeProvider) -> Marketplace:
    return Marketplace(temp_db, time_provider=test_time, id_factory=SequentialIdFactory())


def test_full_bid_lifecycle_on_sqlite(sqlite_market: Marketplace, temp_db: Path) -> None:
    seeded = seed_marketplace(sqlite_market, {"c1": "500", "c2": "450", "c3": "600"})

    result = sqlite_market.accept_bid(seeded.bid_id("c2"), CUSTOMER_ID)

    assert result.bid.status is BidStatus.ACCEPTED
    assert result.side_effects.assigned_service_request == REQUEST_ID
    assert sorted(result.side_effects.auto_rejected_bid_ids) == [
        seeded.bid_id("c1"),
        seeded.bid_id("c3"),
    ]

    # A second process sees the committed state
    reopened = Marketplace(temp_db)
    request = reopened.get_service_request(REQUEST_ID)
    assert request["assigned_contractor"] == "c2"
    assert request["accepted_bid"] == seeded.bid_id("c2")
    loser = reopened.get_bid(seeded.bid_id("c1"))
    assert loser.status is BidStatus.REJECTED
    assert loser.rejection_reason is RejectionReason.ANOTHER_BID_ACCEPTED
    assert loser.superseded_by == seeded.bid_id("c2")
    assert loser.amount == Decimal("500")
    assert [n.type.value for n in reopened.list_notifications("c2")] == ["quote_accepted"]


def test_optional_fields_survive_storage(sqlite_market: Marketplace, test_time: TestTimeProvider) -> None:
    seed_marketplace(sqlite_market, {})

    bid = sqlite_market.create_bid(
        REQUEST_ID,
        "c1",
        "320.50",
        "Replace washer and cartridge",
        estimated_duration="2 hours",
        materials=[{"item": "Cartridge", "cost": "45.00"}],
        valid_until=test_time.now() + timedelta(days=7),
    )
    loaded = sqlite_market.get_bid(bid.id)

    assert loaded.amount == Decimal("320.50")
    assert loaded.materials[0].item == "Cartridge"
    assert loaded.valid_until == test_time.now() + timedelta(days=7)


def test_register_user_rejects_unknown_role(market: Marketplace) -> None:
    with pytest.raises(ValidationError, match="Unknown role"):
        market.register_user("Pat", "Doe", role="plumber")


def test_service_request_needs_existing_customer(market: Marketplace) -> None:
    with pytest.raises(NotFoundError):
        market.create_service_request("ghost", "Broken boiler")


def test_list_bids_rejects_unknown_status(market: Marketplace) -> None:
    with pytest.raises(ValidationError):
        market.list_bids(status="lost")


def test_decide_rejects_unknown_decision(market: Marketplace) -> None:
    seeded = seed_marketplace(market, {"c1": "500"})
    with pytest.raises(ValidationError):
        market.decide_bid(seeded.bid_id("c1"), "maybe", CUSTOMER_ID)


def test_custom_dispatcher(test_time: TestTimeProvider) -> None:
    dispatcher = RecordingDispatcher()
    market = Marketplace(dispatcher=dispatcher, time_provider=test_time)
    seeded = seed_marketplace(market, {"c1": "500", "c2": "450"})

    market.accept_bid(seeded.bid_id("c1"), CUSTOMER_ID)

    assert dispatcher.types() == [
        "quote_received",
        "quote_received",
        "quote_accepted",
        "quote_rejected",
    ]
    with pytest.raises(ValidationError):
        market.list_notifications("c1")


def test_notifications_use_policy_currency(test_time: TestTimeProvider) -> None:
    dispatcher = RecordingDispatcher()
    market = Marketplace(
        dispatcher=dispatcher, policy=LifecyclePolicy(currency="EUR"), time_provider=test_time
    )
    seeded = seed_marketplace(market, {"c2": "450"})

    market.accept_bid(seeded.bid_id("c2"), CUSTOMER_ID)

    assert [n.message for n in dispatcher.sent] == [
        'Ben Okafor sent a bid of €450 for "Leaking pipe".',
        "Your bid of €450 has been accepted.",
    ]
