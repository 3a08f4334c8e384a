"""
CapitalCallOrchestrator -- transaction boundary and result envelope.

The orchestrator ties together:
- CapitalCallService: create / issue / update / cancel
- AllocationService: wire initiated / proof upload / funded / reminders
- IntegrityLogger: one per operation, flushed after the transaction ends
- Collaborators: audit sink, notification dispatcher and snapshot provider,
  all called strictly after commit

Every operation runs in its own session_scope(): commit on success,
rollback on any exception.  Recoverable kernel errors come back as a
CapitalCallResult tagged with a ResultStatus; FinancialIntegrityError is
logged CRITICAL and re-raised, never turned into a result.

Post-commit collaborator calls are best-effort.  A failure there is logged
with its traceback and does not change the committed outcome.
"""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID
from uuid import uuid4 as _uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from capital_kernel.db.engine import (
    create_engine_from_url,
    create_session_factory,
    session_scope,
)
from capital_kernel.domain.clock import Clock, SystemClock
from capital_kernel.domain.dtos import (
    Actor,
    AllocationRecord,
    CapitalCallRecord,
    CreateCapitalCallCommand,
    MarkFundedCommand,
    UpdateCapitalCallCommand,
)
from capital_kernel.domain.lifecycle import CapitalCallStatus
from capital_kernel.domain.ports import (
    AuditSink,
    DealRoster,
    NotificationDispatcher,
    SnapshotProvider,
    ViolationRecorder,
)
from capital_kernel.exceptions import (
    AlreadyFundedError,
    CapitalKernelError,
    ConcurrencyError,
    DuplicateKeyError,
    FinancialIntegrityError,
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
)
from capital_kernel.invariants import IntegrityOperation
from capital_kernel.logging_config import LogContext, get_logger
from capital_kernel.models.capital_call import CapitalCall
from capital_kernel.services.allocation_service import AllocationService, FundingOutcome
from capital_kernel.services.capital_call_service import CapitalCallService
from capital_kernel.services.collaborators import (
    LoggingNotificationDispatcher,
    SqlAuditSink,
    SqlDealRoster,
    SqlViolationRecorder,
)
from capital_kernel.services.integrity_logger import IntegrityLogger

logger = get_logger("services.capital_call_orchestrator")


class ResultStatus(str, Enum):
    """Outcome of an orchestrator operation."""

    CREATED = "created"
    OK = "ok"
    IDEMPOTENT_REPLAY = "idempotent_replay"  # Idempotent success
    VALIDATION_FAILED = "validation_failed"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    STATE_CONFLICT = "state_conflict"
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    ALREADY_FUNDED = "already_funded"


_SUCCESS = frozenset({ResultStatus.CREATED, ResultStatus.OK, ResultStatus.IDEMPOTENT_REPLAY})


@dataclass(frozen=True)
class CapitalCallResult:
    """Result of a capital call operation."""

    status: ResultStatus
    capital_call: CapitalCallRecord | None = None
    allocation: AllocationRecord | None = None
    capital_call_status: CapitalCallStatus | None = None
    error_code: str | None = None
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        """Check if the operation succeeded (including idempotent replay)."""
        return self.status in _SUCCESS


# Post-commit side effect: (label for logs, zero-argument callable)
_Effect = tuple[str, Callable[[], Any]]


def _failure_result(exc: CapitalKernelError) -> CapitalCallResult:
    """Map a recoverable kernel error onto the result envelope."""
    details: dict[str, Any] = {}
    if isinstance(exc, ConcurrencyError):
        status = ResultStatus.CONCURRENCY_CONFLICT
        details = {
            "expected_version": exc.expected_version,
            "current_version": exc.current_version,
        }
    elif isinstance(exc, AlreadyFundedError):
        status = ResultStatus.ALREADY_FUNDED
        details = {"allocation_id": exc.allocation_id, "current_version": exc.version}
    elif isinstance(exc, StateConflictError):
        status = ResultStatus.STATE_CONFLICT
        details = {"current_status": exc.status}
    elif isinstance(exc, DuplicateKeyError):
        status = ResultStatus.STATE_CONFLICT
        details = {"scope": exc.scope, "key": exc.key}
    elif isinstance(exc, NotFoundError):
        status = ResultStatus.NOT_FOUND
    elif isinstance(exc, PermissionDeniedError):
        status = ResultStatus.FORBIDDEN
        details = {"required": exc.required}
    elif isinstance(exc, ValidationError):
        status = ResultStatus.VALIDATION_FAILED
        details = {"field": exc.field}
    else:
        raise exc
    return CapitalCallResult(
        status=status,
        error_code=exc.code,
        message=str(exc),
        details=details,
    )


class CapitalCallOrchestrator:
    """
    Entry point for every capital call operation.

    Manages:
    1. LogContext binding and timing
    2. The transaction (one session_scope per operation)
    3. Error-to-result conversion
    4. Integrity log flush after the transaction ends
    5. Post-commit audit events, notifications and snapshots
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        roster_factory: Callable[[Session], DealRoster] = SqlDealRoster,
        audit_sink: AuditSink | None = None,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
        snapshot_provider: SnapshotProvider | None = None,
        violation_recorder: ViolationRecorder | None = None,
    ):
        """
        Args:
            session_factory: Factory from create_session_factory().
            roster_factory: Builds the DealRoster for a transaction's session.
                Defaults to the SQL roster over ``deals`` / ``lp_actors``.
            audit_sink: Defaults to SqlAuditSink (``deal_events``).
            dispatcher: Defaults to LoggingNotificationDispatcher.
            clock: Defaults to SystemClock.
            snapshot_provider: Optional; when set, a snapshot is taken for
                every newly created call.
            violation_recorder: Defaults to SqlViolationRecorder.
        """
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._roster_factory = roster_factory
        self._audit_sink = audit_sink or SqlAuditSink(session_factory, self._clock)
        self._dispatcher = dispatcher or LoggingNotificationDispatcher()
        self._snapshot_provider = snapshot_provider
        self._violation_recorder = violation_recorder or SqlViolationRecorder(
            session_factory, self._clock
        )

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> CapitalCallOrchestrator:
        """Build an orchestrator (and its engine) from KernelSettings."""
        engine = create_engine_from_url(
            settings.database_url,
            echo=settings.echo_sql,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
        )
        kwargs.setdefault(
            "dispatcher",
            LoggingNotificationDispatcher(enabled=settings.notifications_enabled),
        )
        return cls(create_session_factory(engine), **kwargs)

    # ------------------------------------------------------------------
    # Execution harness
    # ------------------------------------------------------------------

    def _execute(
        self,
        name: str,
        operation: IntegrityOperation,
        actor: Actor,
        work: Callable[[Session, IntegrityLogger], tuple[CapitalCallResult, list[_Effect]]],
        *,
        deal_id: UUID | None = None,
        capital_call_id: UUID | None = None,
    ) -> CapitalCallResult:
        request_id = str(_uuid4())
        with LogContext.bind(
            correlation_id=request_id,
            request_id=request_id,
            actor_id=actor.id,
            deal_id=str(deal_id) if deal_id else None,
            capital_call_id=str(capital_call_id) if capital_call_id else None,
            operation=operation.value,
        ):
            logger.info(f"{name}_started")
            t0 = time.monotonic()
            integrity = IntegrityLogger(
                operation,
                deal_id=deal_id,
                user_id=actor.id,
                request_id=request_id,
                clock=self._clock,
                recorder=self._violation_recorder,
            )
            effects: list[_Effect] = []
            try:
                with session_scope(self._session_factory) as session:
                    result, effects = work(session, integrity)
            except FinancialIntegrityError:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                logger.critical(
                    f"{name}_integrity_failure",
                    extra={"duration_ms": duration_ms},
                    exc_info=True,
                )
                raise
            except CapitalKernelError as exc:
                result = _failure_result(exc)
                effects = []
                logger.warning(
                    f"{name}_rejected",
                    extra={"status": result.status.value, "error_code": exc.code},
                )
            finally:
                integrity.flush()

            for label, effect in effects:
                self._run_effect(label, effect)

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.info(
                f"{name}_completed",
                extra={"status": result.status.value, "duration_ms": duration_ms},
            )
            return result

    def _run_effect(self, label: str, effect: Callable[[], Any]) -> None:
        try:
            effect()
        except Exception:
            logger.error("post_commit_effect_failed", extra={"effect": label}, exc_info=True)

    def _audit(self, deal_id: UUID, event_type: str, payload: dict[str, Any], actor: Actor) -> _Effect:
        return (
            f"audit:{event_type}",
            lambda: self._audit_sink.record(deal_id, event_type, payload, actor),
        )

    def _notify(self, event_type: str, payload: dict[str, Any]) -> _Effect:
        return (f"notify:{event_type}", lambda: self._dispatcher.emit(event_type, payload))

    # ------------------------------------------------------------------
    # Capital call lifecycle
    # ------------------------------------------------------------------

    def create_capital_call(
        self,
        deal_id: UUID,
        command: CreateCapitalCallCommand,
        actor: Actor,
        idempotency_key: str | None = None,
    ) -> CapitalCallResult:
        """
        Create a DRAFT capital call with pro-rata allocations.

        A retry carrying the same idempotency key (same organization and
        deal) returns the original call with IDEMPOTENT_REPLAY.
        """
        linked: dict[str, str] = {}

        def work(session: Session, integrity: IntegrityLogger):
            service = CapitalCallService(session, self._roster_factory(session), self._clock)
            outcome = service.create(deal_id, command, actor, integrity, idempotency_key)
            record = outcome.capital_call.to_dto()

            if outcome.is_replay:
                details = {"payload_mismatch": True} if outcome.replay.payload_mismatch else {}
                return CapitalCallResult(
                    status=ResultStatus.IDEMPOTENT_REPLAY,
                    capital_call=record,
                    capital_call_status=record.status,
                    message="Capital call already created for this idempotency key",
                    details=details,
                ), []

            def audit_created() -> None:
                self._audit_sink.record(record.deal_id, "CAPITAL_CALL_CREATED", {
                    "capital_call_id": record.id,
                    "title": record.title,
                    "total_amount": record.total_amount,
                    "due_date": record.due_date,
                    "purpose": record.purpose,
                    "snapshot_id": linked.get("snapshot_id"),
                    "allocation_count": len(record.allocations),
                    "allocations": [
                        {"lp_actor_id": a.lp_actor_id, "amount": a.amount}
                        for a in record.allocations
                    ],
                }, actor)

            effects: list[_Effect] = []
            if self._snapshot_provider is not None:
                effects.append((
                    "snapshot:CAPITAL_CALL_CALC",
                    lambda: self._take_snapshot(record, actor, linked),
                ))
            effects.append(("audit:CAPITAL_CALL_CREATED", audit_created))
            return CapitalCallResult(
                status=ResultStatus.CREATED,
                capital_call=record,
                capital_call_status=record.status,
            ), effects

        result = self._execute(
            "capital_call_create",
            IntegrityOperation.CAPITAL_CALL_CREATE,
            actor,
            work,
            deal_id=deal_id,
        )
        if "snapshot_id" in linked and result.capital_call is not None:
            result = dataclasses.replace(
                result,
                capital_call=dataclasses.replace(
                    result.capital_call, snapshot_id=linked["snapshot_id"]
                ),
            )
        return result

    def _take_snapshot(
        self,
        record: CapitalCallRecord,
        actor: Actor,
        linked: dict[str, str],
    ) -> None:
        snapshot_id = self._snapshot_provider.create_snapshot(
            record.deal_id, "CAPITAL_CALL_CALC", actor
        )
        if snapshot_id is None:
            return
        with session_scope(self._session_factory) as session:
            call = session.execute(
                select(CapitalCall).where(CapitalCall.id == record.id)
            ).scalar_one()
            call.snapshot_id = snapshot_id
        linked["snapshot_id"] = snapshot_id
        logger.info("capital_call_snapshot_linked", extra={"snapshot_id": snapshot_id})

    def issue_capital_call(self, call_id: UUID, actor: Actor) -> CapitalCallResult:
        """DRAFT -> ISSUED.  The creator of the call may not issue it."""

        def work(session: Session, integrity: IntegrityLogger):
            service = CapitalCallService(session, self._roster_factory(session), self._clock)
            call = service.issue(call_id, actor, integrity)
            integrity.deal_id = call.deal_id
            record = call.to_dto()
            effects = [
                self._audit(record.deal_id, "CAPITAL_CALL_ISSUED", {
                    "capital_call_id": record.id,
                    "title": record.title,
                    "total_amount": record.total_amount,
                    "issued_at": record.issued_at,
                    "maker_id": record.created_by,
                    "checker_id": actor.id,
                }, actor),
                self._notify("CAPITAL_CALL_ISSUED", {
                    "deal_id": record.deal_id,
                    "capital_call_id": record.id,
                    "title": record.title,
                    "total_amount": record.total_amount,
                    "due_date": record.due_date,
                    "purpose": record.purpose,
                    "issued_by": actor.name,
                    "issued_at": record.issued_at,
                    "allocations": [
                        {
                            "allocation_id": a.id,
                            "lp_actor_id": a.lp_actor_id,
                            "amount": a.amount,
                            "status": a.status,
                        }
                        for a in record.allocations
                    ],
                }),
            ]
            return CapitalCallResult(
                status=ResultStatus.OK,
                capital_call=record,
                capital_call_status=record.status,
            ), effects

        return self._execute(
            "capital_call_issue",
            IntegrityOperation.CAPITAL_CALL_ISSUE,
            actor,
            work,
            capital_call_id=call_id,
        )

    def update_capital_call(
        self,
        call_id: UUID,
        command: UpdateCapitalCallCommand,
        actor: Actor,
    ) -> CapitalCallResult:
        """Edit a DRAFT call in place."""

        def work(session: Session, integrity: IntegrityLogger):
            service = CapitalCallService(session, self._roster_factory(session), self._clock)
            call = service.update(call_id, command, actor, integrity)
            integrity.deal_id = call.deal_id
            record = call.to_dto()
            effects = []
            if command.changes():
                effects.append(self._audit(record.deal_id, "CAPITAL_CALL_UPDATED", {
                    "capital_call_id": record.id,
                    "fields": sorted(command.changes()),
                    "total_amount": record.total_amount,
                }, actor))
            return CapitalCallResult(
                status=ResultStatus.OK,
                capital_call=record,
                capital_call_status=record.status,
            ), effects

        return self._execute(
            "capital_call_update",
            IntegrityOperation.CAPITAL_CALL_UPDATE,
            actor,
            work,
            capital_call_id=call_id,
        )

    def cancel_capital_call(self, call_id: UUID, actor: Actor) -> CapitalCallResult:
        """Cancel a call that is not yet FUNDED or CANCELLED."""

        def work(session: Session, integrity: IntegrityLogger):
            service = CapitalCallService(session, self._roster_factory(session), self._clock)
            call, prior = service.cancel(call_id, actor, integrity)
            integrity.deal_id = call.deal_id
            record = call.to_dto()
            effects = [
                self._audit(record.deal_id, "CAPITAL_CALL_CANCELLED", {
                    "capital_call_id": record.id,
                    "title": record.title,
                    "previous_status": prior,
                }, actor),
            ]
            if prior != CapitalCallStatus.DRAFT:
                effects.append(self._notify("CAPITAL_CALL_CANCELLED", {
                    "deal_id": record.deal_id,
                    "capital_call_id": record.id,
                    "title": record.title,
                }))
            return CapitalCallResult(
                status=ResultStatus.OK,
                capital_call=record,
                capital_call_status=record.status,
                details={"previous_status": prior.value},
            ), effects

        return self._execute(
            "capital_call_cancel",
            IntegrityOperation.CAPITAL_CALL_CANCEL,
            actor,
            work,
            capital_call_id=call_id,
        )

    # ------------------------------------------------------------------
    # Allocation funding
    # ------------------------------------------------------------------

    @staticmethod
    def _funding_result(outcome: FundingOutcome) -> CapitalCallResult:
        call_status = CapitalCallStatus(outcome.capital_call.status)
        return CapitalCallResult(
            status=ResultStatus.OK,
            allocation=outcome.allocation.to_dto(
                outcome.lp.entity_name if outcome.lp is not None else None
            ),
            capital_call_status=call_status,
        )

    def mark_wire_initiated(
        self,
        call_id: UUID,
        actor: Actor,
        wire_reference: str | None = None,
    ) -> CapitalCallResult:
        """LP reports their wire as sent: PENDING -> WIRE_INITIATED."""

        def work(session: Session, integrity: IntegrityLogger):
            service = AllocationService(session, self._roster_factory(session), self._clock)
            outcome = service.mark_wire_initiated(call_id, actor, integrity, wire_reference)
            integrity.deal_id = outcome.capital_call.deal_id
            result = self._funding_result(outcome)
            allocation = result.allocation
            effects = [
                self._audit(outcome.capital_call.deal_id, "WIRE_INITIATED", {
                    "capital_call_id": outcome.capital_call.id,
                    "allocation_id": allocation.id,
                    "lp_actor_id": allocation.lp_actor_id,
                    "lp_entity_name": allocation.lp_entity_name,
                    "amount": allocation.amount,
                    "wire_reference": allocation.wire_reference,
                }, actor),
            ]
            return result, effects

        return self._execute(
            "allocation_wire_initiated",
            IntegrityOperation.ALLOCATION_WIRE,
            actor,
            work,
            capital_call_id=call_id,
        )

    def upload_wire_proof(
        self,
        call_id: UUID,
        actor: Actor,
        document_id: str,
        wire_reference: str | None = None,
    ) -> CapitalCallResult:
        """LP attaches a wire confirmation document."""

        def work(session: Session, integrity: IntegrityLogger):
            service = AllocationService(session, self._roster_factory(session), self._clock)
            outcome = service.upload_wire_proof(
                call_id, actor, document_id, integrity, wire_reference
            )
            integrity.deal_id = outcome.capital_call.deal_id
            result = self._funding_result(outcome)
            allocation = result.allocation
            effects = [
                self._audit(outcome.capital_call.deal_id, "WIRE_PROOF_UPLOADED", {
                    "capital_call_id": outcome.capital_call.id,
                    "allocation_id": allocation.id,
                    "lp_actor_id": allocation.lp_actor_id,
                    "proof_document_id": allocation.proof_document_id,
                }, actor),
            ]
            return result, effects

        return self._execute(
            "allocation_proof_upload",
            IntegrityOperation.ALLOCATION_WIRE,
            actor,
            work,
            capital_call_id=call_id,
        )

    def mark_funded(
        self,
        call_id: UUID,
        allocation_id: UUID,
        command: MarkFundedCommand,
        actor: Actor,
    ) -> CapitalCallResult:
        """
        GP confirms an allocation as funded.

        Returns CONCURRENCY_CONFLICT (with ``current_version`` in details)
        when ``command.expected_version`` is stale, and ALREADY_FUNDED when
        the allocation was confirmed before.
        """

        def work(session: Session, integrity: IntegrityLogger):
            service = AllocationService(session, self._roster_factory(session), self._clock)
            outcome = service.mark_funded(call_id, allocation_id, command, actor, integrity)
            integrity.deal_id = outcome.capital_call.deal_id
            result = self._funding_result(outcome)
            allocation = result.allocation
            new_status = result.capital_call_status if outcome.call_status_changed else None
            effects = [
                self._audit(outcome.capital_call.deal_id, "CAPITAL_CALL_FUNDED", {
                    "capital_call_id": outcome.capital_call.id,
                    "capital_call_title": outcome.capital_call.title,
                    "allocation_id": allocation.id,
                    "lp_actor_id": allocation.lp_actor_id,
                    "requested_amount": allocation.amount,
                    "funded_amount": allocation.funded_amount,
                    "confirmation_ref": allocation.wire_reference,
                    "new_call_status": new_status,
                    "version": allocation.version,
                }, actor),
            ]
            if result.capital_call_status == CapitalCallStatus.FUNDED and outcome.call_status_changed:
                effects.append(self._notify("CAPITAL_CALL_FULLY_FUNDED", {
                    "deal_id": outcome.capital_call.deal_id,
                    "capital_call_id": outcome.capital_call.id,
                    "title": outcome.capital_call.title,
                }))
            return result, effects

        return self._execute(
            "allocation_mark_funded",
            IntegrityOperation.CAPITAL_CALL_FUND,
            actor,
            work,
            capital_call_id=call_id,
        )

    def record_reminder(self, call_id: UUID, allocation_id: UUID, actor: Actor) -> CapitalCallResult:
        """Count a payment reminder for an unfunded allocation and notify the LP."""

        def work(session: Session, integrity: IntegrityLogger):
            service = AllocationService(session, self._roster_factory(session), self._clock)
            outcome = service.record_reminder(call_id, allocation_id, actor, integrity)
            integrity.deal_id = outcome.capital_call.deal_id
            result = self._funding_result(outcome)
            allocation = result.allocation
            effects = [
                self._audit(outcome.capital_call.deal_id, "CAPITAL_CALL_REMINDER_SENT", {
                    "capital_call_id": outcome.capital_call.id,
                    "allocation_id": allocation.id,
                    "lp_actor_id": allocation.lp_actor_id,
                    "reminders_sent": allocation.reminders_sent,
                }, actor),
                self._notify("CAPITAL_CALL_REMINDER", {
                    "deal_id": outcome.capital_call.deal_id,
                    "capital_call_id": outcome.capital_call.id,
                    "allocation_id": allocation.id,
                    "lp_actor_id": allocation.lp_actor_id,
                    "amount": allocation.amount,
                    "due_date": outcome.capital_call.due_date,
                }),
            ]
            return result, effects

        return self._execute(
            "allocation_reminder",
            IntegrityOperation.CAPITAL_CALL_FUND,
            actor,
            work,
            capital_call_id=call_id,
        )
