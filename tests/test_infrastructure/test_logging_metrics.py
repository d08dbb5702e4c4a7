"""
Test infrastructure components: logging, metrics, retry, deadlines.

These tests verify the operational plumbing around the bid lifecycle.
"""

import sqlite3

import pytest
from prometheus_client import REGISTRY

from urgentfix.kernel.errors import (
    AuthorizationError,
    OperationInFlight,
    OperationTimeout,
    RecordNotFoundError,
    RecordStoreError,
)
from urgentfix.kernel.ids import SequentialIdFactory, generate_id
from urgentfix.kernel.logging import (
    LogOperation,
    configure_logging,
    correlation_scope,
    get_correlation_id,
    get_logger,
    redact_context,
    set_correlation_id,
)
from urgentfix.kernel.policy import LifecyclePolicy
from urgentfix.kernel.retry import retry_on_sqlite_lock, retry_on_store_error
from urgentfix.kernel.timeout import Deadline


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestLoggingFramework:
    """Test structured logging framework."""

    def test_configure_logging_console(self) -> None:
        configure_logging(json_output=False, log_level="INFO")
        assert get_logger(__name__) is not None

    def test_configure_logging_json(self) -> None:
        configure_logging(json_output=True, log_level="DEBUG")
        assert get_logger(__name__) is not None

    def test_correlation_id(self) -> None:
        """Test correlation ID context management."""
        assert get_correlation_id()

        set_correlation_id("test-correlation-123")
        assert get_correlation_id() == "test-correlation-123"

    def test_correlation_scope_restores_previous_id(self) -> None:
        set_correlation_id("outer")

        with correlation_scope("inner") as cid:
            assert cid == "inner"
            assert get_correlation_id() == "inner"
        with correlation_scope() as generated:
            assert generated not in ("outer", "inner")

        assert get_correlation_id() == "outer"

    def test_redact_context(self) -> None:
        redacted = redact_context({"amount": "500", "email": "a@b.c", "bid_id": "bid_1"})
        assert redacted == {"amount": "***REDACTED***", "email": "***REDACTED***", "bid_id": "bid_1"}

    def test_log_operation_success(self) -> None:
        configure_logging(json_output=False, log_level="INFO")
        logger = get_logger(__name__)

        with LogOperation(logger, "test_operation", bid_id="bid_1") as op:
            assert op.operation == "test_operation"

    def test_log_operation_propagates_errors(self) -> None:
        logger = get_logger(__name__)

        with pytest.raises(ValueError, match="boom"):
            with LogOperation(logger, "failing_operation"):
                raise ValueError("boom")


class TestMetrics:
    """Test Prometheus counters move with marketplace activity."""

    @staticmethod
    def sample(name: str, labels: dict | None = None) -> float:
        return REGISTRY.get_sample_value(name, labels or {}) or 0.0

    def test_bid_counters(self, market, open_request) -> None:
        applied = {"decision": "accept", "outcome": "applied"}
        created_before = self.sample("urgentfix_bids_created_total")
        accepted_before = self.sample("urgentfix_bid_decisions_total", applied)
        auto_before = self.sample("urgentfix_auto_rejections_total", {"outcome": "rejected"})

        winner = market.create_bid(open_request.request_id, "c1", "500", "Fix")
        market.create_bid(open_request.request_id, "c2", "450", "Fix")
        market.accept_bid(winner.id, open_request.customer_id)

        assert self.sample("urgentfix_bids_created_total") == created_before + 2
        assert self.sample("urgentfix_bid_decisions_total", applied) == accepted_before + 1
        assert self.sample("urgentfix_auto_rejections_total", {"outcome": "rejected"}) == auto_before + 1

    def test_decision_errors_counted_by_kind(self, market, seeded) -> None:
        labels = {"decision": "reject", "outcome": "authorization_error"}
        before = self.sample("urgentfix_bid_decisions_total", labels)

        with pytest.raises(AuthorizationError):
            market.reject_bid(seeded.bid_id("c1"), "c3")

        assert self.sample("urgentfix_bid_decisions_total", labels) == before + 1


class TestRetryLogic:
    """Test retry with exponential backoff."""

    def test_retries_transient_store_errors(self) -> None:
        attempts = 0

        @retry_on_store_error("test_op", max_attempts=3, min_wait_ms=0, max_wait_ms=0)
        def flaky() -> str:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise RecordStoreError("connection reset")
            return "ok"

        assert flaky() == "ok"
        assert attempts == 3

    def test_gives_up_after_max_attempts(self) -> None:
        attempts = 0

        @retry_on_store_error("test_op", max_attempts=2, min_wait_ms=0, max_wait_ms=0)
        def always_down() -> None:
            nonlocal attempts
            attempts += 1
            raise RecordStoreError("still down")

        with pytest.raises(RecordStoreError, match="still down"):
            always_down()
        assert attempts == 2

    def test_missing_record_is_not_retried(self) -> None:
        attempts = 0

        @retry_on_store_error("test_op", max_attempts=5, min_wait_ms=0, max_wait_ms=0)
        def missing() -> None:
            nonlocal attempts
            attempts += 1
            raise RecordNotFoundError("bids", "bid_404")

        with pytest.raises(RecordNotFoundError):
            missing()
        assert attempts == 1

    def test_retry_on_sqlite_lock(self) -> None:
        attempts = 0

        @retry_on_sqlite_lock(max_attempts=3, min_wait_ms=0, max_wait_ms=0)
        def locked_twice() -> str:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise sqlite3.OperationalError("database is locked")
            return "ok"

        assert locked_twice() == "ok"
        assert attempts == 3

    def test_policy_retry_kwargs(self) -> None:
        policy = LifecyclePolicy(retry_min_wait_ms=5, retry_max_wait_ms=10)
        assert policy.retry_kwargs(4) == {"max_attempts": 4, "min_wait_ms": 5, "max_wait_ms": 10}


class TestDeadline:
    """Test cooperative deadlines."""

    def test_unbounded_never_expires(self) -> None:
        deadline = Deadline.unbounded("decide_bid")
        deadline.check("persist_bid")
        assert deadline.remaining() is None
        assert not deadline.expired()

    def test_timeout_before_commit(self) -> None:
        clock = FakeClock()
        deadline = Deadline(1.0, "decide_bid", clock=clock)
        deadline.check("persist_bid")
        assert deadline.remaining() == 1.0

        clock.now += 1.5

        with pytest.raises(OperationTimeout) as exc_info:
            deadline.check("persist_bid")
        assert not isinstance(exc_info.value, OperationInFlight)
        assert "before persist_bid" in str(exc_info.value)
        assert deadline.remaining() == 0.0

    def test_in_flight_after_commit(self) -> None:
        clock = FakeClock()
        deadline = Deadline(0.5, "decide_bid", clock=clock)
        clock.now += 0.5

        with pytest.raises(OperationInFlight):
            deadline.check("assign_service_request", committed=True)

    def test_zero_timeout_is_expired_at_once(self) -> None:
        deadline = Deadline(0, "decide_bid", clock=FakeClock())

        assert deadline.expired()
        with pytest.raises(OperationTimeout):
            deadline.check("claim_service_request")


class TestIds:
    def test_generated_ids_are_prefixed_and_unique(self) -> None:
        ids = {generate_id("bid_") for _ in range(100)}
        assert len(ids) == 100
        assert all(i.startswith("bid_") for i in ids)

    def test_sequential_ids_count_per_prefix(self) -> None:
        factory = SequentialIdFactory()
        assert [factory.generate("bid_"), factory.generate("req_"), factory.generate("bid_")] == [
            "bid_1",
            "req_1",
            "bid_2",
        ]
