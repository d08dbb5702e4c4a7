"""
Tests for caller-supplied deadlines on decide

A deadline that passes before the bid is written is a clean timeout; one
that passes afterwards leaves the operation in flight, and retrying the
same call finishes it.
"""

import time

import pytest

from tests.helpers import (
    CUSTOMER_ID,
    REQUEST_ID,
    FlakyRecordStore,
    Seeded,
    is_bid_acceptance,
    is_claim,
)
from urgentfix.bids.models import BidStatus
from urgentfix.kernel.errors import OperationInFlight, OperationTimeout
from urgentfix.marketplace import Marketplace


def stall_on(predicate, seconds: float = 0.2):
    def before_update(collection: str, record_id: str, data: dict) -> None:
        if predicate(collection, data):
            time.sleep(seconds)

    return before_update


def test_timeout_before_bid_write_changes_nothing(
    market: Marketplace, seeded: Seeded, flaky_store: FlakyRecordStore
) -> None:
    flaky_store.before_update = stall_on(is_claim)

    with pytest.raises(OperationTimeout) as exc_info:
        market.accept_bid(seeded.bid_id("c2"), CUSTOMER_ID, timeout_seconds=0.05)

    assert not isinstance(exc_info.value, OperationInFlight)
    assert exc_info.value.kind == "timeout"
    assert market.get_bid(seeded.bid_id("c2")).status is BidStatus.PENDING
    assert market.get_service_request(REQUEST_ID)["accepted_bid"] is None


def test_timeout_after_bid_write_is_in_flight(
    market: Marketplace, seeded: Seeded, flaky_store: FlakyRecordStore
) -> None:
    flaky_store.before_update = stall_on(is_bid_acceptance)

    with pytest.raises(OperationInFlight) as exc_info:
        market.accept_bid(seeded.bid_id("c2"), CUSTOMER_ID, timeout_seconds=0.05)

    assert exc_info.value.kind == "in_flight"
    assert exc_info.value.step == "assign_service_request"
    assert market.get_bid(seeded.bid_id("c2")).status is BidStatus.ACCEPTED
    assert market.get_service_request(REQUEST_ID)["assigned_contractor"] is None


def test_retry_after_in_flight_completes(
    market: Marketplace, seeded: Seeded, flaky_store: FlakyRecordStore
) -> None:
    flaky_store.before_update = stall_on(is_bid_acceptance)
    with pytest.raises(OperationInFlight):
        market.accept_bid(seeded.bid_id("c2"), CUSTOMER_ID, timeout_seconds=0.05)
    flaky_store.before_update = None

    result = market.accept_bid(seeded.bid_id("c2"), CUSTOMER_ID, timeout_seconds=5)

    assert result.bid.status is BidStatus.ACCEPTED
    assert result.side_effects.auto_rejected_bid_ids == [seeded.bid_id("c1"), seeded.bid_id("c3")]
    assert market.get_service_request(REQUEST_ID)["assigned_contractor"] == "c2"


def test_generous_timeout_does_not_interfere(market: Marketplace, seeded: Seeded) -> None:
    result = market.reject_bid(seeded.bid_id("c1"), CUSTOMER_ID, timeout_seconds=30)
    assert result.bid.status is BidStatus.REJECTED


def test_zero_timeout_is_already_expired(market: Marketplace, seeded: Seeded) -> None:
    """Test a zero deadline times out instead of meaning 'no deadline'"""
    with pytest.raises(OperationTimeout):
        market.decide_bid(seeded.bid_id("c2"), "accept", CUSTOMER_ID, timeout_seconds=0)

    assert market.get_bid(seeded.bid_id("c2")).status is BidStatus.PENDING
    assert market.get_service_request(REQUEST_ID)["accepted_bid"] is None
