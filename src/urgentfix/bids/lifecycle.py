"""
Bid Lifecycle Controller - the decide state machine

Accepting a bid touches three kinds of record without a transaction: the
bid itself, the service request it targets, and every competing pending
bid. Each write is a compare-and-set on the record's current state, and
the steps run in a fixed order:

1. Load and authorize (bid, service request, deciding party)
2. Guard the transition (accepted again = resume, terminal = InvalidStateError)
   Claim the service request for this bid (ConflictError for the race loser;
   a claim left by an acceptance that never reached step 3 is taken over)
3. pending -> accepted on the bid (PersistenceError if it fails; claim released)
4. Assign the service request (retried, then PartialFailureError)
5. Reject competing pending bids (retried per bid, failures only logged)
6. Notify contractors (best-effort)

Recovery is forward-only: once step 3 commits, the bid stays accepted and
calling decide(accept) again, or reconcile(), picks up at step 4.

Fun fact: Auction houses have resolved "simultaneous" bids for centuries by
letting the auctioneer's gavel be the single serialization point - here the
service request's conditional update plays the auctioneer.
"""

from typing import Any

from urgentfix.bids.invariants import (
    validate_can_decide,
    validate_expirable,
    validate_transition,
)
from urgentfix.bids.manager import (
    USERS,
    BidEntityManager,
    store_errors_as_persistence,
)
from urgentfix.bids.models import (
    BIDS,
    Bid,
    BidStatus,
    Decision,
    DecisionResult,
    RejectionReason,
    SideEffects,
)
from urgentfix.bids.service_requests import (
    SERVICE_REQUESTS,
    ServiceRequestReference,
    drop_claim,
)
from urgentfix.kernel.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    OperationTimeout,
    PartialFailureError,
    PersistenceError,
    RecordStoreError,
    UrgentFixError,
    ValidationError,
)
from urgentfix.kernel.logging import LogOperation, get_logger
from urgentfix.kernel.metrics import (
    auto_rejections_total,
    bid_decisions_total,
    bid_transitions_total,
    partial_failures_total,
    track_decide_duration,
)
from urgentfix.kernel.policy import LifecyclePolicy, default_lifecycle_policy
from urgentfix.kernel.retry import retry_on_store_error
from urgentfix.kernel.time import TimeProvider
from urgentfix.kernel.timeout import Deadline
from urgentfix.notifications.notifier import BidNotifier
from urgentfix.store.base import RecordStore

logger = get_logger(__name__)

ASSIGN_STEP = "assign_service_request"


def _decision_label(_self: Any, bid_id: str, decision: Any, *args: Any, **kwargs: Any) -> str:
    return str(getattr(decision, "value", decision))


def parse_decision(decision: Decision | str) -> Decision:
    """
    Raises:
        ValidationError: If the decision is neither accept nor reject
    """
    try:
        return Decision(decision)
    except ValueError as e:
        raise ValidationError(f"Unknown decision '{decision}': expected accept or reject") from e


class BidLifecycleController:
    """
    Enforces the bid state machine and its cross-entity side effects

    Example:
        controller = BidLifecycleController(store, manager, notifier, time_provider)
        result = controller.decide("bid_2", "accept", "usr_customer")
        result.side_effects.auto_rejected_bid_ids   # ["bid_1", "bid_3"]
    """

    def __init__(
        self,
        store: RecordStore,
        manager: BidEntityManager,
        notifier: BidNotifier,
        time_provider: TimeProvider,
        policy: LifecyclePolicy | None = None,
    ) -> None:
        self.store = store
        self.manager = manager
        self.notifier = notifier
        self.time_provider = time_provider
        self.policy = policy or default_lifecycle_policy

    # ------------------------------------------------------------------
    # decide
    # ------------------------------------------------------------------

    @track_decide_duration(_decision_label)
    def decide(
        self,
        bid_id: str,
        decision: Decision | str,
        deciding_party_id: str,
        timeout_seconds: float | None = None,
    ) -> DecisionResult:
        """
        Accept or reject a pending bid

        Args:
            bid_id: Bid to decide on
            decision: "accept" or "reject"
            deciding_party_id: Customer who owns the request, or an admin
            timeout_seconds: Deadline for the whole call (policy default if None)

        Returns:
            DecisionResult; noop=True when the bid was already in the target state

        Raises:
            ValidationError, NotFoundError, AuthorizationError, InvalidStateError,
            ConflictError: Nothing changed
            PersistenceError: Nothing changed past the last committed step
            PartialFailureError: Bid accepted, service request not yet assigned
            OperationTimeout: Deadline passed before the bid was written
            OperationInFlight: Deadline passed after the bid was written
        """
        parsed = parse_decision(decision)
        if timeout_seconds is None:
            timeout_seconds = self.policy.default_decide_timeout_seconds
        deadline = Deadline.after(timeout_seconds, "decide_bid")

        with LogOperation(
            logger,
            "decide_bid",
            bid_id=bid_id,
            decision=parsed.value,
            deciding_party_id=deciding_party_id,
        ):
            try:
                bid, reference = self._load_for_decision(bid_id, deciding_party_id)
                if parsed is Decision.ACCEPT:
                    result = self._accept(bid, reference, deadline)
                else:
                    result = self._reject(bid, deadline)
            except UrgentFixError as e:
                bid_decisions_total.labels(decision=parsed.value, outcome=e.kind).inc()
                raise

        bid_decisions_total.labels(
            decision=parsed.value, outcome="noop" if result.noop else "applied"
        ).inc()
        return result

    def _load_for_decision(
        self, bid_id: str, deciding_party_id: str
    ) -> tuple[Bid, ServiceRequestReference]:
        bid = self.manager.get(bid_id)
        reference = ServiceRequestReference(self.store, bid.service_request, self.time_provider)
        with store_errors_as_persistence("load_service_request", bid.service_request):
            service_request = reference.load_record()
            deciding_user = self.store.find_by_id(USERS, deciding_party_id)
        validate_can_decide(bid, service_request, deciding_party_id, deciding_user)
        return bid, reference

    # ------------------------------------------------------------------
    # accept path
    # ------------------------------------------------------------------

    def _accept(
        self, bid: Bid, reference: ServiceRequestReference, deadline: Deadline
    ) -> DecisionResult:
        if bid.status is BidStatus.ACCEPTED:
            logger.info("Bid already accepted, resuming", bid_id=bid.id)
            return self._complete_acceptance(bid, reference, deadline, noop=True)

        validate_transition(bid, Decision.ACCEPT.target_status, "accept")

        deadline.check("claim_service_request")
        # Past this age the claim may be taken over, so the bid must not be written after it
        claim_deadline = Deadline.after(self.policy.claim_timeout_seconds, "accept_bid")
        with store_errors_as_persistence("claim_service_request", bid.service_request):
            reference.claim(bid.id, bid.contractor, self.policy.claim_timeout_seconds)

        try:
            deadline.check("accept_bid")
            claim_deadline.check("accept_bid")
        except OperationTimeout:
            self._release_claim(bid, reference)
            raise

        try:
            updated = self.store.update(
                BIDS,
                bid.id,
                {
                    "status": BidStatus.ACCEPTED.value,
                    "accepted_at": self.time_provider.now().isoformat(),
                },
                expected={"status": BidStatus.PENDING.value},
            )
        except RecordStoreError as e:
            self._release_claim(bid, reference)
            raise PersistenceError("accept_bid", bid.id, f"accept_bid failed for {bid.id}: {e}") from e

        if updated is None:
            current = self.manager.get(bid.id)
            if current.status is BidStatus.ACCEPTED:
                # Same bid accepted by a concurrent identical call
                return self._complete_acceptance(current, reference, deadline, noop=True)
            self._release_claim(bid, reference)
            raise InvalidStateError(bid.id, current.status.value, "accept")

        accepted = Bid.from_record(updated)
        bid_transitions_total.labels(to_status=BidStatus.ACCEPTED.value).inc()
        logger.info(
            "Bid accepted",
            bid_id=accepted.id,
            service_request_id=accepted.service_request,
            contractor_id=accepted.contractor,
        )
        return self._complete_acceptance(accepted, reference, deadline, noop=False)

    def _release_claim(self, bid: Bid, reference: ServiceRequestReference) -> None:
        """Drop the claim taken for a bid that did not become accepted"""
        try:
            current = self.store.find_by_id(BIDS, bid.id)
        except RecordStoreError as e:
            # Left in place: the next claim or reconcile() drops it once stale
            logger.error(
                "Could not check bid before releasing its claim",
                bid_id=bid.id,
                service_request_id=bid.service_request,
                error=str(e),
            )
            return
        if current is not None and current.get("status") == BidStatus.ACCEPTED.value:
            return
        drop_claim(self.store, reference.service_request_id, bid.id, self.time_provider)

    def _complete_acceptance(
        self,
        bid: Bid,
        reference: ServiceRequestReference,
        deadline: Deadline,
        noop: bool,
    ) -> DecisionResult:
        """Steps 4-6 for an accepted bid; every step is safe to repeat"""
        deadline.check(ASSIGN_STEP, committed=True)
        assigned = self._assign(bid, reference)

        deadline.check("reject_sibling_bids", committed=True)
        newly_rejected, failed = self._reject_siblings(bid)
        auto_rejected = self._superseded_by(bid)

        deadline.check("notify", committed=True)
        notification_ids = [nid for nid in [self.notifier.quote_accepted(bid)] if nid]
        for sibling in auto_rejected:
            nid = self.notifier.quote_rejected(sibling)
            if nid:
                notification_ids.append(nid)

        side_effects = SideEffects(
            assigned_service_request=reference.service_request_id,
            auto_rejected_bid_ids=[b.id for b in auto_rejected],
            failed_rejection_bid_ids=failed,
            notification_ids=notification_ids,
        )
        did_work = assigned or bool(newly_rejected) or bool(notification_ids)
        if noop and did_work:
            logger.info(
                "Resumed unfinished acceptance",
                bid_id=bid.id,
                assigned=assigned,
                rejected=len(newly_rejected),
                notifications=len(notification_ids),
            )
        return DecisionResult(
            bid=bid,
            decision=Decision.ACCEPT,
            side_effects=side_effects,
            noop=noop and not did_work,
        )

    def _assign(self, bid: Bid, reference: ServiceRequestReference) -> bool:
        """
        Step 4, retried on transient store errors

        Returns:
            True if this call assigned the request, False if it already was

        Raises:
            PartialFailureError: If the request could not be assigned
        """
        assign = retry_on_store_error(
            ASSIGN_STEP, **self.policy.retry_kwargs(self.policy.assignment_retry_attempts)
        )(reference.assign)
        try:
            already = reference.get_assigned_contractor() == bid.contractor
            assign(bid.contractor, bid.id)
        except (RecordStoreError, ConflictError, InvalidStateError, NotFoundError) as e:
            partial_failures_total.labels(step=ASSIGN_STEP).inc()
            logger.error(
                "Service request assignment failed after bid acceptance",
                bid_id=bid.id,
                service_request_id=bid.service_request,
                error_kind=e.kind,
                error=str(e),
            )
            raise PartialFailureError(bid.id, bid.service_request, ASSIGN_STEP) from e
        return not already

    def _reject_siblings(self, bid: Bid) -> tuple[list[str], list[str]]:
        """
        Step 5: reject every other pending bid on the request

        Returns:
            (ids rejected by this call, ids still pending after retries)
        """
        retry_kwargs = self.policy.retry_kwargs(self.policy.sibling_retry_attempts)
        find = retry_on_store_error("find_sibling_bids", **retry_kwargs)(self.store.find)
        try:
            siblings = find(
                BIDS,
                {
                    "service_request": bid.service_request,
                    "status": BidStatus.PENDING.value,
                    "id": {"not_equals": bid.id},
                },
            )
        except RecordStoreError as e:
            logger.error(
                "Could not list sibling bids for rejection",
                bid_id=bid.id,
                service_request_id=bid.service_request,
                error=str(e),
            )
            return [], []

        reject = retry_on_store_error("reject_sibling_bid", **retry_kwargs)(self.store.update)
        rejected: list[str] = []
        failed: list[str] = []
        for sibling in siblings:
            try:
                updated = reject(
                    BIDS,
                    sibling["id"],
                    {
                        "status": BidStatus.REJECTED.value,
                        "rejected_at": self.time_provider.now().isoformat(),
                        "rejection_reason": RejectionReason.ANOTHER_BID_ACCEPTED.value,
                        "superseded_by": bid.id,
                    },
                    expected={"status": BidStatus.PENDING.value},
                )
            except RecordStoreError as e:
                auto_rejections_total.labels(outcome="failed").inc()
                logger.error(
                    "Failed to auto-reject sibling bid",
                    bid_id=sibling["id"],
                    accepted_bid_id=bid.id,
                    error=str(e),
                )
                failed.append(sibling["id"])
                continue

            if updated is None:
                # Withdrawn or expired meanwhile
                auto_rejections_total.labels(outcome="skipped").inc()
                continue
            auto_rejections_total.labels(outcome="rejected").inc()
            bid_transitions_total.labels(to_status=BidStatus.REJECTED.value).inc()
            rejected.append(sibling["id"])

        if rejected or failed:
            logger.info(
                "Sibling bids rejected",
                accepted_bid_id=bid.id,
                rejected=len(rejected),
                failed=len(failed),
            )
        return rejected, failed

    def _superseded_by(self, bid: Bid) -> list[Bid]:
        """Bids auto-rejected because `bid` was accepted, oldest first"""
        try:
            records = self.store.find(
                BIDS,
                {"superseded_by": bid.id, "status": BidStatus.REJECTED.value},
            )
        except RecordStoreError as e:
            logger.error("Could not list auto-rejected bids", bid_id=bid.id, error=str(e))
            return []
        return [Bid.from_record(r) for r in records]

    # ------------------------------------------------------------------
    # reject path
    # ------------------------------------------------------------------

    def _reject(self, bid: Bid, deadline: Deadline) -> DecisionResult:
        if bid.status is BidStatus.REJECTED:
            return self._rejected_result(bid, noop=True)

        validate_transition(bid, Decision.REJECT.target_status, "reject")
        deadline.check("reject_bid")

        with store_errors_as_persistence("reject_bid", bid.id):
            updated = self.store.update(
                BIDS,
                bid.id,
                {
                    "status": BidStatus.REJECTED.value,
                    "rejected_at": self.time_provider.now().isoformat(),
                    "rejection_reason": RejectionReason.CUSTOMER_REJECTED.value,
                },
                expected={"status": BidStatus.PENDING.value},
            )
        if updated is None:
            current = self.manager.get(bid.id)
            if current.status is BidStatus.REJECTED:
                return self._rejected_result(current, noop=True)
            raise InvalidStateError(bid.id, current.status.value, "reject")

        rejected = Bid.from_record(updated)
        bid_transitions_total.labels(to_status=BidStatus.REJECTED.value).inc()
        logger.info("Bid rejected", bid_id=rejected.id, service_request_id=rejected.service_request)

        deadline.check("notify", committed=True)
        return self._rejected_result(rejected, noop=False)

    def _rejected_result(self, bid: Bid, noop: bool) -> DecisionResult:
        # An earlier failed acceptance of this bid may have left its claim behind
        drop_claim(self.store, bid.service_request, bid.id, self.time_provider)
        # Re-sending is deduplicated by notification id
        nid = self.notifier.quote_rejected(bid)
        return DecisionResult(
            bid=bid,
            decision=Decision.REJECT,
            side_effects=SideEffects(notification_ids=[nid] if nid else []),
            noop=noop,
        )

    # ------------------------------------------------------------------
    # expiry
    # ------------------------------------------------------------------

    def expire(self, bid_id: str) -> Bid:
        """
        Move a pending bid whose valid_until has passed to expired

        Raises:
            NotFoundError: Bid does not exist
            InvalidStateError: Bid is not pending, or not yet overdue
            PersistenceError: Store write failed
        """
        now = self.time_provider.now()
        with LogOperation(logger, "expire_bid", bid_id=bid_id):
            bid = self.manager.get(bid_id)
            validate_expirable(bid, now)

            with store_errors_as_persistence("expire_bid", bid_id):
                updated = self.store.update(
                    BIDS,
                    bid_id,
                    {"status": BidStatus.EXPIRED.value, "expired_at": now.isoformat()},
                    expected={"status": BidStatus.PENDING.value},
                )
            if updated is None:
                current = self.manager.get(bid_id)
                raise InvalidStateError(bid_id, current.status.value, "expire")
            drop_claim(self.store, bid.service_request, bid_id, self.time_provider)

        bid_transitions_total.labels(to_status=BidStatus.EXPIRED.value).inc()
        logger.info("Bid expired", bid_id=bid_id, valid_until=str(bid.valid_until))
        return Bid.from_record(updated)

    def expire_overdue(self) -> list[Bid]:
        """Expire every pending bid past its valid_until; returns the expired bids"""
        now = self.time_provider.now()
        with LogOperation(logger, "expire_overdue_bids"):
            with store_errors_as_persistence("find_overdue_bids", "*"):
                candidates = self.store.find(
                    BIDS,
                    {"status": BidStatus.PENDING.value, "valid_until": {"exists": True}},
                )

            expired: list[Bid] = []
            for record in candidates:
                if not Bid.from_record(record).is_overdue(now):
                    continue
                try:
                    expired.append(self.expire(record["id"]))
                except InvalidStateError:
                    logger.info("Bid left pending before it could expire", bid_id=record["id"])
            return expired

    # ------------------------------------------------------------------
    # reconciliation
    # ------------------------------------------------------------------

    def reconcile(self) -> list[DecisionResult]:
        """
        Repair what interrupted acceptances left behind

        Releases stale acceptance claims (the claiming bid was never accepted),
        then finishes steps 4-6 for accepted bids whose service request is not
        assigned to the bid's contractor, or which still have pending siblings.

        Returns:
            One result per accepted bid that needed repair
        """
        with LogOperation(logger, "reconcile"):
            self._release_stale_claims()

            with store_errors_as_persistence("find_accepted_bids", "*"):
                accepted = [
                    Bid.from_record(r)
                    for r in self.store.find(BIDS, {"status": BidStatus.ACCEPTED.value})
                ]

            repaired: list[DecisionResult] = []
            for bid in accepted:
                reference = ServiceRequestReference(
                    self.store, bid.service_request, self.time_provider
                )
                try:
                    if not self._needs_repair(bid, reference):
                        continue
                    result = self._complete_acceptance(
                        bid, reference, Deadline.unbounded("reconcile"), noop=True
                    )
                except (PartialFailureError, NotFoundError, RecordStoreError) as e:
                    logger.error(
                        "Reconciliation failed for accepted bid",
                        bid_id=bid.id,
                        service_request_id=bid.service_request,
                        error=str(e),
                    )
                    continue
                repaired.append(result)
            return repaired

    def _release_stale_claims(self) -> None:
        """Drop claims on unassigned requests whose bid can no longer be accepted"""
        with store_errors_as_persistence("find_claimed_requests", "*"):
            claimed = self.store.find(
                SERVICE_REQUESTS,
                {"accepted_bid": {"exists": True}, "assigned_contractor": {"exists": False}},
            )

        for record in claimed:
            reference = ServiceRequestReference(self.store, record["id"], self.time_provider)
            try:
                stale_bid_id = reference.release_stale_claim(self.policy.claim_timeout_seconds)
            except (NotFoundError, RecordStoreError) as e:
                logger.error(
                    "Could not release stale acceptance claim",
                    service_request_id=record["id"],
                    bid_id=record.get("accepted_bid"),
                    error=str(e),
                )
                continue
            if stale_bid_id is not None:
                logger.info(
                    "Released stale acceptance claim",
                    service_request_id=record["id"],
                    bid_id=stale_bid_id,
                )

    def _needs_repair(self, bid: Bid, reference: ServiceRequestReference) -> bool:
        if reference.get_assigned_contractor() != bid.contractor:
            return True
        pending_siblings = self.store.find(
            BIDS,
            {
                "service_request": bid.service_request,
                "status": BidStatus.PENDING.value,
                "id": {"not_equals": bid.id},
            },
        )
        return bool(pending_siblings)
