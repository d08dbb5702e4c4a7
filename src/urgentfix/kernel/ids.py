"""
Record id generation

Ids are time-ordered (UUIDv7 layout) so bids and notifications sort by
creation order, and carry a short collection prefix ("bid_", "req_") so an
id in a log line says what it refers to.
"""

import secrets
import time
from typing import Protocol


class IdFactory(Protocol):
    """Protocol for ID generation strategies"""

    def generate(self, prefix: str = "") -> str:
        ...


def generate_id(prefix: str = "") -> str:
    """
    Generate a UUIDv7-like identifier, optionally prefixed

    First 48 bits are the Unix timestamp in milliseconds, followed by the
    version nibble and random bits.

    Returns:
        e.g. "bid_01908e9a-3b87-7a3c-8f00-123456789abc"
    """
    timestamp_48 = int(time.time() * 1000) & 0xFFFFFFFFFFFF
    rand_12 = secrets.randbits(12)
    rand_62 = secrets.randbits(62)

    uuid_str = (
        f"{timestamp_48 >> 16:08x}-"
        f"{timestamp_48 & 0xFFFF:04x}-"
        f"{0x7000 | rand_12:04x}-"
        f"{0x8000 | ((rand_62 >> 48) & 0x3FFF):04x}-"
        f"{rand_62 & 0xFFFFFFFFFFFF:012x}"
    )
    return f"{prefix}{uuid_str}"


class DefaultIdFactory:
    """Default ID factory using UUIDv7-like generation"""

    def generate(self, prefix: str = "") -> str:
        return generate_id(prefix)


class SequentialIdFactory:
    """Predictable ids ("bid_1", "bid_2", ...) for tests and demos"""

    def __init__(self) -> None:
        self._counters: dict[str, int] = {}

    def generate(self, prefix: str = "") -> str:
        self._counters[prefix] = self._counters.get(prefix, 0) + 1
        return f"{prefix}{self._counters[prefix]}"


default_id_factory = DefaultIdFactory()
