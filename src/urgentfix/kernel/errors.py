"""
Custom exceptions for the UrgentFix bid lifecycle core

Well-defined error hierarchy enables precise error handling and
clear error messages for API handlers and operators.

Each error kind tells the caller what happened to system state:
validation/not-found/authorization/invalid-state/conflict errors changed
nothing, a persistence error stopped at the last committed step, and a
partial failure committed some steps but not all.
"""


class UrgentFixError(Exception):
    """Base exception for all UrgentFix errors"""

    kind = "error"


# ============================================================================
# Record Store Errors
# ============================================================================


class RecordStoreError(UrgentFixError):
    """
    Raised by a record store when a read or write could not be performed

    The lifecycle core never lets this escape directly - it is wrapped
    in PersistenceError or PartialFailureError.
    """

    kind = "store_error"


class RecordNotFoundError(RecordStoreError):
    """Raised when updating a record id that does not exist"""

    kind = "record_not_found"

    def __init__(self, collection: str, record_id: str) -> None:
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"No record {record_id} in collection {collection}")


class DuplicateRecordError(RecordStoreError):
    """Raised when creating a record whose id already exists"""

    kind = "duplicate_record"

    def __init__(self, collection: str, record_id: str) -> None:
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"Record {record_id} already exists in collection {collection}")


# ============================================================================
# Domain Errors
# ============================================================================


class ValidationError(UrgentFixError):
    """
    Raised when bid input is malformed

    Caller must correct and resubmit; no state changed.
    """

    kind = "validation_error"

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        self.errors = errors or [message]
        super().__init__(message)


class DuplicateBidError(ValidationError):
    """Raised when a contractor already has a live bid on the request"""

    kind = "duplicate_bid"

    def __init__(self, contractor_id: str, service_request_id: str, existing_bid_id: str) -> None:
        self.contractor_id = contractor_id
        self.service_request_id = service_request_id
        self.existing_bid_id = existing_bid_id
        super().__init__(
            f"Contractor {contractor_id} already has bid {existing_bid_id} "
            f"on service request {service_request_id}"
        )


class NotFoundError(UrgentFixError):
    """Raised when a referenced bid, service request or contractor does not exist"""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class AuthorizationError(UrgentFixError):
    """Raised when the caller is not entitled to perform the action"""

    kind = "authorization_error"

    def __init__(self, actor_id: str, action: str, resource_id: str) -> None:
        self.actor_id = actor_id
        self.action = action
        self.resource_id = resource_id
        super().__init__(f"{actor_id} is not allowed to {action} {resource_id}")


class InvalidStateError(UrgentFixError):
    """Raised when the requested transition is illegal from the current state"""

    kind = "invalid_state"

    def __init__(self, entity_id: str, current_status: str, requested: str) -> None:
        self.entity_id = entity_id
        self.current_status = current_status
        self.requested = requested
        super().__init__(
            f"Cannot {requested} {entity_id}: current status is {current_status}"
        )


class ConflictError(UrgentFixError):
    """
    Raised when a concurrent decision already claimed the service request

    The losing caller's state is untouched.
    """

    kind = "conflict"

    def __init__(self, service_request_id: str, message: str) -> None:
        self.service_request_id = service_request_id
        super().__init__(message)


class PersistenceError(UrgentFixError):
    """
    Raised when a store write failed

    State remains at the last successful step; retrying the whole
    operation is safe because every step is idempotent.
    """

    kind = "persistence_error"

    def __init__(self, operation: str, record_id: str, message: str = "") -> None:
        self.operation = operation
        self.record_id = record_id
        super().__init__(message or f"{operation} failed for {record_id}")


class PartialFailureError(UrgentFixError):
    """
    Raised when a multi-step operation committed some but not all steps

    Carries enough detail for reconciliation. The bid's accepted status
    is never rolled back - recovery is forward-only.
    """

    kind = "partial_failure"

    def __init__(self, bid_id: str, service_request_id: str, failed_step: str) -> None:
        self.bid_id = bid_id
        self.service_request_id = service_request_id
        self.failed_step = failed_step
        super().__init__(
            f"Bid {bid_id} was accepted but step '{failed_step}' failed for "
            f"service request {service_request_id} - state must be reconciled"
        )


# ============================================================================
# Timeout Errors
# ============================================================================


class OperationTimeout(UrgentFixError):
    """Raised when an operation exceeds its caller-supplied deadline before committing"""

    kind = "timeout"

    def __init__(self, operation: str, timeout_seconds: float, step: str) -> None:
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        self.step = step
        super().__init__(
            f"{operation} exceeded timeout of {timeout_seconds}s before {step}"
        )


class OperationInFlight(OperationTimeout):
    """
    Raised when the deadline passes after the primary write committed

    The operation is not failed - retrying the same call resumes it.
    """

    kind = "in_flight"
