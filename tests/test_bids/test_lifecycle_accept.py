"""
Tests for the accept path of the decide state machine

Covers the end-to-end marketplace scenarios: three competing bids, one
accepted, the others rejected by the fan-out, the request assigned, and
every contractor told the outcome exactly once.
"""

import pytest

from tests.helpers import ADMIN_ID, CUSTOMER_ID, REQUEST_ID, Seeded, notification_types
from urgentfix.bids.models import BidStatus, Decision, RejectionReason
from urgentfix.kernel.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from urgentfix.kernel.time import TestTimeProvider
from urgentfix.marketplace import Marketplace


def accepted_counts(market: Marketplace) -> int:
    return len(market.list_bids(service_request_id=REQUEST_ID, status="accepted"))


class TestAcceptScenario:
    def test_accept_assigns_request_and_rejects_siblings(
        self, market: Marketplace, seeded: Seeded, test_time: TestTimeProvider
    ) -> None:
        """Test accepting C2's bid: C2 accepted, C1 and C3 rejected, request assigned to C2"""
        result = market.decide_bid(seeded.bid_id("c2"), "accept", CUSTOMER_ID)

        assert result.noop is False
        assert result.decision is Decision.ACCEPT
        assert result.bid.status is BidStatus.ACCEPTED
        assert result.bid.accepted_at == test_time.now()
        assert result.side_effects.assigned_service_request == REQUEST_ID
        assert result.side_effects.auto_rejected_bid_ids == [
            seeded.bid_id("c1"),
            seeded.bid_id("c3"),
        ]
        assert result.side_effects.failed_rejection_bid_ids == []

        for contractor in ("c1", "c3"):
            sibling = market.get_bid(seeded.bid_id(contractor))
            assert sibling.status is BidStatus.REJECTED
            assert sibling.rejected_at == test_time.now()
            assert sibling.rejection_reason is RejectionReason.ANOTHER_BID_ACCEPTED
            assert sibling.superseded_by == seeded.bid_id("c2")

        request = market.get_service_request(REQUEST_ID)
        assert request["status"] == "assigned"
        assert request["assigned_contractor"] == "c2"
        assert request["accepted_bid"] == seeded.bid_id("c2")

    def test_three_notifications_one_accepted_two_rejected(
        self, market: Marketplace, seeded: Seeded
    ) -> None:
        result = market.accept_bid(seeded.bid_id("c2"), CUSTOMER_ID)

        assert len(result.side_effects.notification_ids) == 3
        assert notification_types(market, "c2") == ["quote_accepted"]
        assert notification_types(market, "c1") == ["quote_rejected"]
        assert notification_types(market, "c3") == ["quote_rejected"]

        accepted = market.list_notifications("c2")[0]
        assert accepted.priority.value == "high"
        assert accepted.action_url == "/contractor/dashboard"
        assert "$450" in accepted.message

    def test_accept_again_is_noop(self, market: Marketplace, seeded: Seeded) -> None:
        """Test a repeated accept returns the same result with no new side effects"""
        first = market.accept_bid(seeded.bid_id("c2"), CUSTOMER_ID)
        notifications_before = market.store.inner.count("notifications")

        second = market.accept_bid(seeded.bid_id("c2"), CUSTOMER_ID)

        assert second.noop is True
        assert second.bid == first.bid
        assert second.side_effects.auto_rejected_bid_ids == first.side_effects.auto_rejected_bid_ids
        assert second.side_effects.assigned_service_request == REQUEST_ID
        assert second.side_effects.notification_ids == []
        assert market.store.inner.count("notifications") == notifications_before

    def test_auto_rejected_bid_cannot_be_withdrawn(
        self, market: Marketplace, seeded: Seeded
    ) -> None:
        market.accept_bid(seeded.bid_id("c2"), CUSTOMER_ID)

        with pytest.raises(InvalidStateError):
            market.withdraw_bid(seeded.bid_id("c1"), "c1")

    def test_auto_rejected_bid_cannot_be_accepted(
        self, market: Marketplace, seeded: Seeded
    ) -> None:
        market.accept_bid(seeded.bid_id("c2"), CUSTOMER_ID)

        with pytest.raises(InvalidStateError):
            market.accept_bid(seeded.bid_id("c1"), CUSTOMER_ID)
        assert accepted_counts(market) == 1
        assert market.get_service_request(REQUEST_ID)["assigned_contractor"] == "c2"

    def test_accepted_bid_cannot_be_rejected(self, market: Marketplace, seeded: Seeded) -> None:
        market.accept_bid(seeded.bid_id("c2"), CUSTOMER_ID)
        with pytest.raises(InvalidStateError):
            market.reject_bid(seeded.bid_id("c2"), CUSTOMER_ID)

    def test_withdrawn_sibling_is_left_alone(self, market: Marketplace, seeded: Seeded) -> None:
        market.withdraw_bid(seeded.bid_id("c3"), "c3")

        result = market.accept_bid(seeded.bid_id("c2"), CUSTOMER_ID)

        assert result.side_effects.auto_rejected_bid_ids == [seeded.bid_id("c1")]
        assert market.get_bid(seeded.bid_id("c3")).status is BidStatus.WITHDRAWN
        assert notification_types(market, "c3") == []

    def test_bids_on_other_requests_are_untouched(
        self, market: Marketplace, seeded: Seeded
    ) -> None:
        market.create_service_request(CUSTOMER_ID, "Broken heater", request_id="req_2")
        other = market.create_bid("req_2", "c1", "900", "Replace heater")

        market.accept_bid(seeded.bid_id("c2"), CUSTOMER_ID)

        assert market.get_bid(other.id).status is BidStatus.PENDING


class TestDecideGuards:
    def test_unknown_bid(self, market: Marketplace, seeded: Seeded) -> None:
        with pytest.raises(NotFoundError):
            market.accept_bid("bid_404", CUSTOMER_ID)

    def test_unknown_decision(self, market: Marketplace, seeded: Seeded) -> None:
        with pytest.raises(ValidationError):
            market.decide_bid(seeded.bid_id("c1"), "maybe", CUSTOMER_ID)

    def test_only_request_owner_or_admin_decides(
        self, market: Marketplace, seeded: Seeded
    ) -> None:
        with pytest.raises(AuthorizationError):
            market.accept_bid(seeded.bid_id("c1"), "c2")
        assert market.get_bid(seeded.bid_id("c1")).status is BidStatus.PENDING
        assert market.get_service_request(REQUEST_ID)["assigned_contractor"] is None

    def test_admin_may_decide(self, market: Marketplace, seeded: Seeded) -> None:
        result = market.accept_bid(seeded.bid_id("c1"), ADMIN_ID)
        assert result.bid.status is BidStatus.ACCEPTED

    def test_withdrawn_bid_cannot_be_accepted(self, market: Marketplace, seeded: Seeded) -> None:
        market.withdraw_bid(seeded.bid_id("c1"), "c1")

        with pytest.raises(InvalidStateError):
            market.accept_bid(seeded.bid_id("c1"), CUSTOMER_ID)
        request = market.get_service_request(REQUEST_ID)
        assert request["accepted_bid"] is None
        assert request["status"] == "pending"

    def test_at_most_one_accepted_bid(self, market: Marketplace, seeded: Seeded) -> None:
        market.accept_bid(seeded.bid_id("c1"), CUSTOMER_ID)
        for contractor in ("c2", "c3"):
            with pytest.raises(InvalidStateError):
                market.accept_bid(seeded.bid_id(contractor), CUSTOMER_ID)
        assert accepted_counts(market) == 1
