"""
Kernel - shared infrastructure for the bid lifecycle core

Errors, time, ids, logging, retries, deadlines, metrics and policy. Nothing
in here knows what a bid is.

Fun fact: The first recorded sealed-bid auction rule - "lowest honest tender
wins" - is older than the stopwatch, so deadlines were once measured with
candles burning down an inch at a time!
"""

from urgentfix.kernel.errors import (
    AuthorizationError,
    ConflictError,
    DuplicateBidError,
    DuplicateRecordError,
    InvalidStateError,
    NotFoundError,
    OperationInFlight,
    OperationTimeout,
    PartialFailureError,
    PersistenceError,
    RecordNotFoundError,
    RecordStoreError,
    UrgentFixError,
    ValidationError,
)
from urgentfix.kernel.ids import IdFactory, SequentialIdFactory, generate_id
from urgentfix.kernel.policy import LifecyclePolicy
from urgentfix.kernel.time import RealTimeProvider, TestTimeProvider, TimeProvider

__all__ = [
    # IDs
    "IdFactory",
    "SequentialIdFactory",
    "generate_id",
    # Time
    "TimeProvider",
    "RealTimeProvider",
    "TestTimeProvider",
    # Policy
    "LifecyclePolicy",
    # Errors
    "UrgentFixError",
    "RecordStoreError",
    "RecordNotFoundError",
    "DuplicateRecordError",
    "ValidationError",
    "DuplicateBidError",
    "NotFoundError",
    "AuthorizationError",
    "InvalidStateError",
    "ConflictError",
    "PersistenceError",
    "PartialFailureError",
    "OperationTimeout",
    "OperationInFlight",
]
