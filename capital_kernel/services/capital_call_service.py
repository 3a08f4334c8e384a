"""
CapitalCallService -- capital call lifecycle (create, issue, update, cancel).

Responsibility:
    Creates a DRAFT capital call with its pro-rata allocations in one
    transaction, and moves it through the lifecycle table: DRAFT -> ISSUED
    (maker-checker), DRAFT edits, and cancellation from any non-terminal
    status.

Architecture position:
    Kernel > Services -- imperative shell.  Called by
    CapitalCallOrchestrator, which owns the transaction.

Invariants enforced:
    - Allocation cents sum exactly to the call's total: checked on the
      computed allocations before insert (ALLOCATION_SUM_EQUALS_TOTAL) and
      on the flushed rows before commit (FINAL_ALLOCATION_SUM_MATCHES).
    - Maker-checker: the creator of a call cannot issue it.
    - Only DRAFT calls are edited or issued.  FUNDED and CANCELLED are
      terminal.
    - Every call mutation locks the row (SELECT ... FOR UPDATE).

Failure modes:
    - PermissionDeniedError: actor is not GP/Admin (or not the creator, for
      cancel).
    - DealNotFoundError / CapitalCallNotFoundError.
    - ValidationError: deal has no active LPs, or the total rounds to zero.
    - StateConflictError / MakerCheckerViolationError.
    - FinancialIntegrityError: an enforced invariant failed.

Audit relevance:
    Every mutation writes BEFORE/AFTER state and invariant results to the
    operation's IntegrityLogger.  Issuance writes an ApprovalRecord in the
    same transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from capital_kernel.domain.clock import Clock, SystemClock
from capital_kernel.domain.dtos import (
    Actor,
    CreateCapitalCallCommand,
    DealRef,
    UpdateCapitalCallCommand,
)
from capital_kernel.domain.lifecycle import (
    CapitalCallStatus,
    is_cancellable,
)
from capital_kernel.domain.money import (
    Recipient,
    allocate_cents,
    cents_to_dollars,
    commitment_recipients,
    dollars_to_cents,
    validate_allocation_sum,
)
from capital_kernel.domain.ports import DealRoster
from capital_kernel.exceptions import (
    CapitalCallNotFoundError,
    DealNotFoundError,
    MakerCheckerViolationError,
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
)
from capital_kernel.invariants import IntegrityInvariant
from capital_kernel.logging_config import get_logger
from capital_kernel.models.approval_record import ApprovalRecord
from capital_kernel.models.capital_call import CapitalCall, CapitalCallAllocation
from capital_kernel.services.idempotency_guard import IdempotencyGuard, IdempotentHit
from capital_kernel.services.integrity_logger import IntegrityLogger
from capital_kernel.utils.hashing import hash_payload
from capital_kernel.utils.idempotency import normalize_idempotency_key

logger = get_logger("services.capital_call")

GP_OR_ADMIN = "GP or ADMIN"


@dataclass(frozen=True)
class CreateOutcome:
    """The created call, or the replayed one when ``replay`` is set."""

    capital_call: CapitalCall
    replay: IdempotentHit | None = None

    @property
    def is_replay(self) -> bool:
        return self.replay is not None


def require_gp_or_admin(actor: Actor) -> None:
    if not actor.is_gp_or_admin:
        raise PermissionDeniedError(actor.id, GP_OR_ADMIN)


def call_state(call: CapitalCall) -> dict:
    """Loggable snapshot of a call and its allocations."""
    return {
        "id": call.id,
        "status": call.status,
        "total_amount_cents": call.total_amount_cents,
        "allocations": [
            {
                "id": a.id,
                "lp_actor_id": a.lp_actor_id,
                "amount_cents": a.amount_cents,
                "status": a.status,
                "version": a.version,
            }
            for a in call.allocations
        ],
    }


class CapitalCallService:
    """
    Lifecycle operations on capital calls.

    Contract:
        Receives the caller's Session and flushes; never commits.  Each
        method takes the operation's IntegrityLogger.

    Non-goals:
        - Does NOT fund allocations (AllocationService).
        - Does NOT emit audit events or notifications (the orchestrator
          does that after commit).
    """

    def __init__(
        self,
        session: Session,
        roster: DealRoster,
        clock: Clock | None = None,
    ):
        self._session = session
        self._roster = roster
        self._clock = clock or SystemClock()
        self._guard = IdempotencyGuard(session)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_call(self, call_id: UUID, actor: Actor, *, lock: bool = False) -> CapitalCall:
        """
        Load a call visible to the actor's organization.

        Raises:
            CapitalCallNotFoundError: Unknown id or another organization's call.
        """
        stmt = select(CapitalCall).where(CapitalCall.id == call_id)
        if lock:
            stmt = stmt.with_for_update()
        call = self._session.execute(stmt).scalar_one_or_none()
        if call is None or call.organization_id != actor.organization_id:
            raise CapitalCallNotFoundError(str(call_id))
        return call

    def _get_deal(self, deal_id: UUID, actor: Actor) -> DealRef:
        deal = self._roster.get_deal(deal_id)
        if deal is None or deal.organization_id != actor.organization_id:
            raise DealNotFoundError(str(deal_id))
        return deal

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(
        self,
        deal_id: UUID,
        command: CreateCapitalCallCommand,
        actor: Actor,
        integrity: IntegrityLogger,
        idempotency_key: str | None = None,
    ) -> CreateOutcome:
        """
        Create a DRAFT call with allocations pro-rata to LP commitments.

        Preconditions:
            - ``command`` has passed its own shape validation.

        Postconditions:
            - On a fresh create: one CapitalCall row and one allocation per
              active LP are flushed, and their cents sum to the total.
            - On a replay: nothing is written; the existing call is returned.
        """
        require_gp_or_admin(actor)
        key = normalize_idempotency_key(idempotency_key)
        request_hash = hash_payload(command.canonical_payload())

        deal = self._get_deal(deal_id, actor)

        hit = self._guard.find(actor.organization_id, deal.id, key, request_hash)
        if hit is not None:
            integrity.info("IDEMPOTENT_REPLAY", {"capital_call_id": hit.capital_call.id})
            return CreateOutcome(capital_call=hit.capital_call, replay=hit)

        lps = self._roster.list_active_lps(deal.id)
        if not lps:
            raise ValidationError("deal_id", "deal has no active LPs to call capital from", str(deal.id))

        total_cents = dollars_to_cents(command.total_amount)
        if total_cents <= 0:
            raise ValidationError("total_amount", "must be at least one cent", command.total_amount)

        integrity.before_state(
            "lp_roster",
            [{"id": lp.id, "entity_name": lp.entity_name, "commitment": lp.commitment} for lp in lps],
        )

        recipients = commitment_recipients(lps)
        allocations = allocate_cents(total_cents, recipients)
        integrity.computed_value(
            "allocations",
            [{"lp_actor_id": a.id, "cents": a.cents} for a in allocations],
            {"total_cents": total_cents, "weights": [r.weight for r in recipients]},
        )

        check = validate_allocation_sum(allocations, total_cents)
        integrity.enforce(
            IntegrityInvariant.ALLOCATION_SUM_EQUALS_TOTAL,
            check.valid,
            {"sum": check.sum, "expected": check.expected, "diff": check.diff},
        )
        integrity.enforce(
            IntegrityInvariant.ALLOCATION_AMOUNT_NON_NEGATIVE,
            all(a.cents >= 0 for a in allocations),
            {"amounts": [a.cents for a in allocations]},
        )
        foreign = [lp.id for lp in lps if lp.deal_id != deal.id]
        integrity.enforce(
            IntegrityInvariant.LP_ACTOR_DEAL_MATCH,
            not foreign,
            {"deal_id": deal.id, "foreign_lp_actor_ids": foreign},
        )

        call = CapitalCall(
            deal_id=deal.id,
            organization_id=actor.organization_id,
            idempotency_key=key,
            request_hash=request_hash,
            title=command.title,
            description=command.description,
            total_amount=cents_to_dollars(total_cents),
            total_amount_cents=total_cents,
            due_date=command.due_date,
            wire_instructions=command.wire_instructions,
            purpose=command.purpose,
            status=CapitalCallStatus.DRAFT,
            created_by=actor.id,
            created_by_name=actor.name,
        )
        hit = self._guard.insert(call)
        if hit is not None:
            integrity.info("IDEMPOTENT_REPLAY", {"capital_call_id": hit.capital_call.id})
            return CreateOutcome(capital_call=hit.capital_call, replay=hit)

        weights = {r.id: r.weight for r in recipients}
        for order, allocation in enumerate(allocations):
            call.allocations.append(
                CapitalCallAllocation(
                    lp_actor_id=allocation.id,
                    created_order=order,
                    amount_cents=allocation.cents,
                    weight=Decimal(weights[allocation.id]),
                    version=0,
                    reminders_sent=0,
                )
            )
        self._session.flush()

        self._enforce_persisted_sum(call, integrity)
        integrity.after_state("capital_call", call_state(call))

        logger.info(
            "capital_call_created",
            extra={
                "capital_call_id": str(call.id),
                "deal_id": str(deal.id),
                "total_amount_cents": total_cents,
                "allocation_count": len(allocations),
            },
        )
        return CreateOutcome(capital_call=call)

    def _enforce_persisted_sum(self, call: CapitalCall, integrity: IntegrityLogger) -> None:
        persisted = self._session.execute(
            select(func.coalesce(func.sum(CapitalCallAllocation.amount_cents), 0)).where(
                CapitalCallAllocation.capital_call_id == call.id
            )
        ).scalar_one()
        integrity.enforce(
            IntegrityInvariant.FINAL_ALLOCATION_SUM_MATCHES,
            int(persisted) == call.total_amount_cents,
            {
                "persisted_sum": int(persisted),
                "expected": call.total_amount_cents,
                "diff": int(persisted) - call.total_amount_cents,
            },
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self, call_id: UUID, actor: Actor, integrity: IntegrityLogger) -> CapitalCall:
        """
        DRAFT -> ISSUED, approved by someone other than the creator.

        Postconditions:
            - status is ISSUED, issued_at/issued_by set.
            - One ApprovalRecord (action ISSUE) flushed.
        """
        require_gp_or_admin(actor)
        call = self.get_call(call_id, actor, lock=True)
        status = CapitalCallStatus(call.status)
        integrity.before_state("capital_call", {"id": call.id, "status": status})

        if status != CapitalCallStatus.DRAFT:
            raise StateConflictError(
                "CapitalCall", str(call.id), status.value,
                f"Only DRAFT capital calls can be issued (status is {status.value})",
            )
        if call.created_by == actor.id:
            logger.warning(
                "maker_checker_blocked",
                extra={"capital_call_id": str(call.id), "actor_id": actor.id},
            )
            raise MakerCheckerViolationError(str(call.id), actor.id)

        now = self._clock.now()
        call.status = CapitalCallStatus.ISSUED
        call.issued_at = now
        call.issued_by = actor.id
        call.issued_by_name = actor.name
        self._session.add(
            ApprovalRecord(
                capital_call_id=call.id,
                deal_id=call.deal_id,
                action="ISSUE",
                maker_id=call.created_by,
                checker_id=actor.id,
                checker_name=actor.name,
                checker_role=actor.role.value,
                amount_cents=call.total_amount_cents,
                approved_at=now,
            )
        )
        self._session.flush()

        integrity.after_state("capital_call", {"id": call.id, "status": call.status})
        logger.info(
            "capital_call_issued",
            extra={"capital_call_id": str(call.id), "maker_id": call.created_by, "checker_id": actor.id},
        )
        return call

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update(
        self,
        call_id: UUID,
        command: UpdateCapitalCallCommand,
        actor: Actor,
        integrity: IntegrityLogger,
    ) -> CapitalCall:
        """
        Edit a DRAFT call in place.

        A total amount change re-apportions the existing allocations over
        the weights they were created with.
        """
        require_gp_or_admin(actor)
        call = self.get_call(call_id, actor, lock=True)
        status = CapitalCallStatus(call.status)
        if status != CapitalCallStatus.DRAFT:
            raise StateConflictError(
                "CapitalCall", str(call.id), status.value,
                f"Only DRAFT capital calls can be edited (status is {status.value})",
            )

        changes = command.changes()
        if not changes:
            return call

        integrity.before_state("capital_call", call_state(call))

        for name in ("title", "description", "due_date", "wire_instructions", "purpose"):
            if name in changes:
                setattr(call, name, changes[name])

        if "total_amount" in changes:
            total_cents = dollars_to_cents(changes["total_amount"])
            if total_cents <= 0:
                raise ValidationError("total_amount", "must be at least one cent", changes["total_amount"])
            if total_cents != call.total_amount_cents:
                self._reapportion(call, total_cents, integrity)

        self._session.flush()
        integrity.after_state("capital_call", call_state(call))
        logger.info(
            "capital_call_updated",
            extra={"capital_call_id": str(call.id), "fields": sorted(changes)},
        )
        return call

    def _reapportion(self, call: CapitalCall, total_cents: int, integrity: IntegrityLogger) -> None:
        rows = list(call.allocations)
        recipients = [Recipient(id=row.id, weight=row.weight) for row in rows]
        allocations = allocate_cents(total_cents, recipients)
        integrity.computed_value(
            "allocations",
            [{"allocation_id": a.id, "cents": a.cents} for a in allocations],
            {"total_cents": total_cents, "previous_total_cents": call.total_amount_cents},
        )
        check = validate_allocation_sum(allocations, total_cents)
        integrity.enforce(
            IntegrityInvariant.ALLOCATION_SUM_EQUALS_TOTAL,
            check.valid,
            {"sum": check.sum, "expected": check.expected, "diff": check.diff},
        )

        cents_by_id = {a.id: a.cents for a in allocations}
        for row in rows:
            row.amount_cents = cents_by_id[row.id]
        call.total_amount_cents = total_cents
        call.total_amount = cents_to_dollars(total_cents)
        self._session.flush()
        self._enforce_persisted_sum(call, integrity)

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def cancel(
        self,
        call_id: UUID,
        actor: Actor,
        integrity: IntegrityLogger,
    ) -> tuple[CapitalCall, CapitalCallStatus]:
        """
        Cancel a non-terminal call.  Returns the call and its prior status.
        """
        call = self.get_call(call_id, actor, lock=True)
        if not actor.is_gp_or_admin and call.created_by != actor.id:
            raise PermissionDeniedError(actor.id, f"{GP_OR_ADMIN} or the call's creator")

        prior = CapitalCallStatus(call.status)
        integrity.before_state("capital_call", {"id": call.id, "status": prior})
        if not is_cancellable(prior):
            raise StateConflictError(
                "CapitalCall", str(call.id), prior.value,
                f"Cannot cancel a {prior.value} capital call",
            )

        call.status = CapitalCallStatus.CANCELLED
        call.cancelled_at = self._clock.now()
        call.cancelled_by = actor.id
        self._session.flush()

        integrity.after_state(
            "capital_call", {"id": call.id, "status": call.status, "prior_status": prior}
        )
        logger.info(
            "capital_call_cancelled",
            extra={"capital_call_id": str(call.id), "prior_status": prior.value},
        )
        return call, prior
