"""
Pytest configuration and shared fixtures

Fun fact: The name "conftest" comes from pytest's configuration testing
framework. Files named conftest.py are automatically discovered and their
fixtures are available to all tests in the same directory and subdirectories!
"""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from tests.helpers import FlakyRecordStore, Seeded, seed_marketplace
from urgentfix.kernel.ids import SequentialIdFactory
from urgentfix.kernel.policy import LifecyclePolicy
from urgentfix.kernel.time import TestTimeProvider
from urgentfix.marketplace import Marketplace
from urgentfix.store.memory import InMemoryRecordStore


@pytest.fixture
def temp_db(tmp_path: Path) -> Path:
    """Path for a fresh SQLite database (not yet created)"""
    return tmp_path / "marketplace.db"


@pytest.fixture
def test_time() -> TestTimeProvider:
    """
    Provide a controllable time provider for deterministic tests

    Default time: 2025-01-15 12:00:00 UTC (a Wednesday - plumbers' busiest
    weekday for emergency call-outs after the weekend backlog clears!)
    """
    return TestTimeProvider(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def id_factory() -> SequentialIdFactory:
    """Predictable ids: bid_1, bid_2, ..."""
    return SequentialIdFactory()


@pytest.fixture
def fast_policy() -> LifecyclePolicy:
    """Default policy without retry backoff so failure tests stay fast"""
    return LifecyclePolicy(retry_min_wait_ms=0, retry_max_wait_ms=0)


@pytest.fixture
def memory_store(test_time: TestTimeProvider, id_factory: SequentialIdFactory) -> InMemoryRecordStore:
    return InMemoryRecordStore(test_time, id_factory)


@pytest.fixture
def flaky_store(memory_store: InMemoryRecordStore) -> FlakyRecordStore:
    """In-memory store that fails on demand"""
    return FlakyRecordStore(memory_store)


@pytest.fixture
def market(
    flaky_store: FlakyRecordStore,
    test_time: TestTimeProvider,
    fast_policy: LifecyclePolicy,
) -> Marketplace:
    """Marketplace over a fault-injectable in-memory store"""
    return Marketplace(store=flaky_store, policy=fast_policy, time_provider=test_time)


@pytest.fixture
def seeded(market: Marketplace) -> Seeded:
    """
    One customer, three contractors and one open service request (req_1)

    Bids: C1=500, C2=450, C3=600 (bid_1, bid_2, bid_3)
    """
    return seed_marketplace(market, amounts={"c1": "500", "c2": "450", "c3": "600"})


@pytest.fixture
def open_request(market: Marketplace) -> Seeded:
    """Same accounts and request as `seeded`, but no bids yet"""
    return seed_marketplace(market, amounts={})
