"""
AllocationService -- per-LP funding progress under optimistic concurrency.

Responsibility:
    Moves allocations PENDING -> WIRE_INITIATED -> FUNDED (or straight to
    FUNDED), records wire proof and payment reminders, and re-derives the
    parent capital call's aggregate status after every funding mutation.

Architecture position:
    Kernel > Services -- imperative shell.  Called by
    CapitalCallOrchestrator, which owns the transaction.

Invariants enforced:
    - Version counter: every funding mutation bumps ``version`` by exactly
      one, written as a compare-and-set on the stored version.  A
      caller-supplied ``expected_version`` that differs from the stored
      version aborts with ConcurrencyError before any write.
    - Row locks: the allocation is read FOR UPDATE, then the parent call is
      locked for the aggregate recompute.  Lock order is always
      allocation -> call.
    - Aggregate status is re-derived from a full scan of the call's
      allocations, never incremented, so any commit order of sibling
      allocations yields the same result.
    - Funding is accepted only while the call is ISSUED or PARTIALLY_FUNDED.

Failure modes:
    - PermissionDeniedError: LP-only or GP/Admin-only operation called by
      the wrong role.
    - CapitalCallNotFoundError / AllocationNotFoundError /
      LPActorNotFoundError.
    - StateConflictError: call not fundable, or allocation status does not
      allow the move.
    - ConcurrencyError: stale ``expected_version``.
    - AlreadyFundedError: allocation already FUNDED.
    - FinancialIntegrityError: VERSION_MATCH failed.

Audit relevance:
    BEFORE/AFTER allocation state and the derived call status are written to
    the operation's IntegrityLogger.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from capital_kernel.domain.clock import Clock, SystemClock
from capital_kernel.domain.dtos import Actor, LPCommitment, MarkFundedCommand
from capital_kernel.domain.lifecycle import (
    FUNDABLE_CALL_STATUSES,
    AllocationStatus,
    CapitalCallStatus,
    can_transition_allocation,
    derive_call_status,
)
from capital_kernel.domain.money import dollars_to_cents
from capital_kernel.domain.ports import DealRoster
from capital_kernel.exceptions import (
    AllocationNotFoundError,
    AlreadyFundedError,
    CapitalCallNotFoundError,
    ConcurrencyError,
    LPActorNotFoundError,
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
)
from capital_kernel.invariants import IntegrityInvariant
from capital_kernel.logging_config import get_logger
from capital_kernel.models.capital_call import CapitalCall, CapitalCallAllocation
from capital_kernel.services.capital_call_service import require_gp_or_admin
from capital_kernel.services.integrity_logger import IntegrityLogger

logger = get_logger("services.allocation")

MAX_REFERENCE_LENGTH = 255


@dataclass(frozen=True)
class FundingOutcome:
    """What a funding mutation touched."""

    capital_call: CapitalCall
    allocation: CapitalCallAllocation
    lp: LPCommitment | None = None
    previous_call_status: CapitalCallStatus | None = None

    @property
    def call_status_changed(self) -> bool:
        return (
            self.previous_call_status is not None
            and CapitalCallStatus(self.capital_call.status) != self.previous_call_status
        )


def allocation_state(allocation: CapitalCallAllocation) -> dict:
    return {
        "id": allocation.id,
        "status": allocation.status,
        "version": allocation.version,
        "amount_cents": allocation.amount_cents,
        "funded_amount_cents": allocation.funded_amount_cents,
        "wire_reference": allocation.wire_reference,
        "proof_document_id": allocation.proof_document_id,
    }


def _clean_reference(field_name: str, value: str | None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string", value)
    value = value.strip()
    if len(value) > MAX_REFERENCE_LENGTH:
        raise ValidationError(field_name, f"must be at most {MAX_REFERENCE_LENGTH} characters", value)
    return value or None


class AllocationService:
    """
    Funding mutations on capital call allocations.

    Contract:
        Receives the caller's Session and flushes; never commits.

    Non-goals:
        - Does NOT retry on ConcurrencyError.  The caller re-reads and
          resubmits with the fresh version.
        - Does NOT change ``amount_cents``.
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

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load_call(self, call_id: UUID, *, lock: bool = False) -> CapitalCall:
        stmt = select(CapitalCall).where(CapitalCall.id == call_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        call = self._session.execute(stmt).scalar_one_or_none()
        if call is None:
            raise CapitalCallNotFoundError(str(call_id))
        return call

    def _load_call_for_gp(self, call_id: UUID, actor: Actor) -> CapitalCall:
        call = self._load_call(call_id)
        if call.organization_id != actor.organization_id:
            raise CapitalCallNotFoundError(str(call_id))
        return call

    def _lock_allocation(self, call: CapitalCall, **criteria) -> CapitalCallAllocation:
        stmt = (
            select(CapitalCallAllocation)
            .where(CapitalCallAllocation.capital_call_id == call.id)
            .filter_by(**criteria)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        allocation = self._session.execute(stmt).scalar_one_or_none()
        if allocation is None:
            target = criteria.get("id")
            raise AllocationNotFoundError(str(call.id), str(target) if target else None)
        return allocation

    def _resolve_lp(self, call: CapitalCall, actor: Actor) -> LPCommitment:
        if not actor.is_lp:
            raise PermissionDeniedError(actor.id, "LP")
        lp = self._roster.find_lp_for_actor(call.deal_id, actor)
        if lp is None:
            raise LPActorNotFoundError(str(call.deal_id), actor.id)
        return lp

    @staticmethod
    def _require_fundable(call: CapitalCall) -> None:
        status = CapitalCallStatus(call.status)
        if status not in FUNDABLE_CALL_STATUSES:
            raise StateConflictError(
                "CapitalCall", str(call.id), status.value,
                f"Capital call is {status.value}; funding requires ISSUED or PARTIALLY_FUNDED",
            )

    def _bump_version(
        self,
        allocation: CapitalCallAllocation,
        prior_version: int,
        integrity: IntegrityLogger,
    ) -> None:
        # Pending field changes go out first; the version moves only if the
        # stored row still carries prior_version.
        self._session.flush()
        result = self._session.execute(
            update(CapitalCallAllocation)
            .where(
                CapitalCallAllocation.id == allocation.id,
                CapitalCallAllocation.version == prior_version,
            )
            .values(version=prior_version + 1)
            .execution_options(synchronize_session=False)
        )
        self._session.refresh(allocation, ["version"])
        integrity.enforce(
            IntegrityInvariant.VERSION_MATCH,
            result.rowcount == 1,
            {
                "prior_version": prior_version,
                "stored_version": allocation.version,
                "rows_matched": result.rowcount,
            },
        )

    # ------------------------------------------------------------------
    # LP self-service
    # ------------------------------------------------------------------

    def mark_wire_initiated(
        self,
        call_id: UUID,
        actor: Actor,
        integrity: IntegrityLogger,
        wire_reference: str | None = None,
    ) -> FundingOutcome:
        """PENDING -> WIRE_INITIATED for the actor's own allocation."""
        wire_reference = _clean_reference("wire_reference", wire_reference)
        call = self._load_call(call_id)
        lp = self._resolve_lp(call, actor)
        self._require_fundable(call)

        allocation = self._lock_allocation(call, lp_actor_id=lp.id)
        integrity.before_state("allocation", allocation_state(allocation))

        status = AllocationStatus(allocation.status)
        if status != AllocationStatus.PENDING:
            raise StateConflictError(
                "CapitalCallAllocation", str(allocation.id), status.value,
                f"Cannot update allocation with status {status.value}",
            )

        allocation.status = AllocationStatus.WIRE_INITIATED
        allocation.wire_reference = wire_reference
        self._bump_version(allocation, allocation.version, integrity)
        self._session.flush()

        integrity.after_state("allocation", allocation_state(allocation))
        logger.info(
            "allocation_wire_initiated",
            extra={"allocation_id": str(allocation.id), "lp_actor_id": str(lp.id)},
        )
        return FundingOutcome(capital_call=call, allocation=allocation, lp=lp)

    def upload_wire_proof(
        self,
        call_id: UUID,
        actor: Actor,
        document_id: str,
        integrity: IntegrityLogger,
        wire_reference: str | None = None,
    ) -> FundingOutcome:
        """
        Attach a proof document.  PENDING is promoted to WIRE_INITIATED;
        other statuses are left as they are.
        """
        try:
            document_id = str(UUID(str(document_id)))
        except ValueError as exc:
            raise ValidationError("document_id", "must be a UUID", document_id) from exc
        wire_reference = _clean_reference("wire_reference", wire_reference)

        call = self._load_call(call_id)
        lp = self._resolve_lp(call, actor)
        self._require_fundable(call)

        allocation = self._lock_allocation(call, lp_actor_id=lp.id)
        integrity.before_state("allocation", allocation_state(allocation))

        allocation.proof_document_id = document_id
        if wire_reference is not None:
            allocation.wire_reference = wire_reference
        if AllocationStatus(allocation.status) == AllocationStatus.PENDING:
            allocation.status = AllocationStatus.WIRE_INITIATED
        self._bump_version(allocation, allocation.version, integrity)
        self._session.flush()

        integrity.after_state("allocation", allocation_state(allocation))
        logger.info(
            "allocation_proof_uploaded",
            extra={"allocation_id": str(allocation.id), "document_id": document_id},
        )
        return FundingOutcome(capital_call=call, allocation=allocation, lp=lp)

    # ------------------------------------------------------------------
    # GP confirmation
    # ------------------------------------------------------------------

    def mark_funded(
        self,
        call_id: UUID,
        allocation_id: UUID,
        command: MarkFundedCommand,
        actor: Actor,
        integrity: IntegrityLogger,
    ) -> FundingOutcome:
        """
        Confirm an allocation as FUNDED and re-derive the call's status.

        Steps:
            1. Lock the allocation row.
            2. Reject a stale ``expected_version`` (no mutation).
            3. Reject an already FUNDED allocation.
            4. Write FUNDED, funded amount, funded_at, confirmation ref and
               ``version + 1``.
            5. Lock the call and re-derive its status from all allocations.
        """
        require_gp_or_admin(actor)
        confirmation_ref = _clean_reference("confirmation_ref", command.confirmation_ref)
        call = self._load_call_for_gp(call_id, actor)
        self._require_fundable(call)

        allocation = self._lock_allocation(call, id=allocation_id)
        before = allocation_state(allocation)
        integrity.before_state("allocation", before)

        if command.expected_version is not None and command.expected_version != allocation.version:
            logger.warning(
                "allocation_version_conflict",
                extra={
                    "allocation_id": str(allocation.id),
                    "expected_version": command.expected_version,
                    "current_version": allocation.version,
                },
            )
            raise ConcurrencyError(
                "CapitalCallAllocation",
                str(allocation.id),
                command.expected_version,
                allocation.version,
            )

        status = AllocationStatus(allocation.status)
        if status == AllocationStatus.FUNDED:
            raise AlreadyFundedError(str(allocation.id), allocation.version)
        if not can_transition_allocation(status, AllocationStatus.FUNDED):
            raise StateConflictError(
                "CapitalCallAllocation", str(allocation.id), status.value,
                f"Cannot fund allocation with status {status.value}",
            )

        if command.funded_amount is not None:
            funded_cents = dollars_to_cents(command.funded_amount)
        else:
            funded_cents = allocation.amount_cents

        allocation.status = AllocationStatus.FUNDED
        allocation.funded_amount_cents = funded_cents
        allocation.funded_at = self._clock.now()
        allocation.wire_reference = confirmation_ref
        self._bump_version(allocation, before["version"], integrity)
        self._session.flush()
        integrity.after_state("allocation", allocation_state(allocation))

        call = self._load_call(call.id, lock=True)
        self._require_fundable(call)
        previous = CapitalCallStatus(call.status)
        statuses = self._session.execute(
            select(CapitalCallAllocation.status).where(
                CapitalCallAllocation.capital_call_id == call.id
            )
        ).scalars().all()
        derived = derive_call_status(previous, (AllocationStatus(s) for s in statuses))
        integrity.computed_value(
            "capital_call_status",
            derived,
            {
                "previous": previous,
                "allocation_count": len(statuses),
                "funded_count": sum(1 for s in statuses if s == AllocationStatus.FUNDED),
            },
        )
        if derived != previous:
            call.status = derived
            self._session.flush()

        logger.info(
            "allocation_funded",
            extra={
                "allocation_id": str(allocation.id),
                "funded_amount_cents": funded_cents,
                "version": allocation.version,
                "capital_call_status": derived.value,
            },
        )
        return FundingOutcome(
            capital_call=call,
            allocation=allocation,
            previous_call_status=previous,
        )

    def record_reminder(
        self,
        call_id: UUID,
        allocation_id: UUID,
        actor: Actor,
        integrity: IntegrityLogger,
    ) -> FundingOutcome:
        """Count a payment reminder sent for an unfunded allocation."""
        require_gp_or_admin(actor)
        call = self._load_call_for_gp(call_id, actor)
        self._require_fundable(call)

        allocation = self._lock_allocation(call, id=allocation_id)
        status = AllocationStatus(allocation.status)
        if status == AllocationStatus.FUNDED:
            raise StateConflictError(
                "CapitalCallAllocation", str(allocation.id), status.value,
                "Funded allocations do not need reminders",
            )

        allocation.reminders_sent = (allocation.reminders_sent or 0) + 1
        allocation.last_reminder_at = self._clock.now()
        self._session.flush()

        integrity.info(
            "REMINDER_RECORDED",
            {"allocation_id": allocation.id, "reminders_sent": allocation.reminders_sent},
        )
        logger.info(
            "allocation_reminder_recorded",
            extra={"allocation_id": str(allocation.id), "reminders_sent": allocation.reminders_sent},
        )
        return FundingOutcome(capital_call=call, allocation=allocation)
