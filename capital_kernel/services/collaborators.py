"""
Default collaborator adapters for the capital kernel ports.

SqlDealRoster reads the ``deals`` and ``lp_actors`` tables inside the
caller's transaction.  SqlAuditSink and SqlViolationRecorder each open a
short transaction of their own: the audit sink runs after the business
commit, and the violation recorder must outlive a rolled-back business
transaction.  LoggingNotificationDispatcher writes notifications to the
structured log in place of an email/webhook transport.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, sessionmaker

from capital_kernel.db.engine import session_scope
from capital_kernel.domain.clock import Clock, SystemClock
from capital_kernel.domain.dtos import Actor, DealRef, LPCommitment
from capital_kernel.logging_config import get_logger
from capital_kernel.models.deal_event import DealEvent
from capital_kernel.models.integrity import IntegrityLog, IntegrityViolation
from capital_kernel.models.roster import Deal, LPActor
from capital_kernel.utils.hashing import hash_payload, to_json_safe

logger = get_logger("services.collaborators")

ACTIVE = "ACTIVE"


class SqlDealRoster:
    """DealRoster over the ``deals`` / ``lp_actors`` tables."""

    def __init__(self, session: Session):
        self._session = session

    def get_deal(self, deal_id: UUID) -> DealRef | None:
        deal = self._session.get(Deal, deal_id)
        return deal.to_dto() if deal is not None else None

    def list_active_lps(self, deal_id: UUID) -> list[LPCommitment]:
        rows = self._session.execute(
            select(LPActor)
            .where(LPActor.deal_id == deal_id, LPActor.status == ACTIVE)
            .order_by(LPActor.entity_name, LPActor.id)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def find_lp_for_actor(self, deal_id: UUID, actor: Actor) -> LPCommitment | None:
        matches = [LPActor.auth_user_id == actor.id]
        if actor.email:
            matches.append(func.lower(LPActor.email) == actor.email.lower())
        row = self._session.execute(
            select(LPActor)
            .where(LPActor.deal_id == deal_id, LPActor.status == ACTIVE, or_(*matches))
            .order_by(LPActor.entity_name, LPActor.id)
            .limit(1)
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None


class SqlAuditSink:
    """AuditSink that appends ``deal_events`` rows."""

    def __init__(self, session_factory: sessionmaker[Session], clock: Clock | None = None):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def record(
        self,
        deal_id: UUID,
        event_type: str,
        payload: dict[str, Any],
        actor: Actor,
    ) -> None:
        safe_payload = to_json_safe(payload)
        with session_scope(self._session_factory) as session:
            session.add(
                DealEvent(
                    deal_id=deal_id,
                    event_type=event_type,
                    payload=safe_payload,
                    payload_hash=hash_payload(safe_payload),
                    actor_id=actor.id,
                    actor_name=actor.name,
                    actor_role=actor.role.value,
                    occurred_at=self._clock.now(),
                )
            )
        logger.info("deal_event_recorded", extra={"event_type": event_type, "deal_id": str(deal_id)})


class SqlViolationRecorder:
    """ViolationRecorder that writes ``integrity_violations`` / ``integrity_logs``."""

    def __init__(self, session_factory: sessionmaker[Session], clock: Clock | None = None):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    @staticmethod
    def _uuid_or_none(value: Any) -> UUID | None:
        if value is None or isinstance(value, UUID):
            return value
        return UUID(str(value))

    def record_violation(self, violation: dict[str, Any]) -> None:
        with session_scope(self._session_factory) as session:
            session.add(
                IntegrityViolation(
                    invariant_name=violation["invariant_name"],
                    operation=violation["operation"],
                    deal_id=self._uuid_or_none(violation.get("deal_id")),
                    user_id=violation.get("user_id"),
                    request_id=violation.get("request_id"),
                    details=to_json_safe(violation.get("details") or {}),
                    detected_at=violation.get("detected_at") or self._clock.now(),
                )
            )
        logger.warning(
            "integrity_violation_recorded",
            extra={
                "invariant": violation["invariant_name"],
                "integrity_operation": violation["operation"],
            },
        )

    def persist_log(self, summary: dict[str, Any], entries: list[dict[str, Any]]) -> None:
        with session_scope(self._session_factory) as session:
            session.add(
                IntegrityLog(
                    operation=summary["operation"],
                    deal_id=self._uuid_or_none(summary.get("deal_id")),
                    user_id=summary.get("user_id"),
                    request_id=summary.get("request_id"),
                    entry_count=len(entries),
                    has_errors=bool(summary.get("has_errors")),
                    entries=to_json_safe(entries),
                    created_at=self._clock.now(),
                )
            )


class LoggingNotificationDispatcher:
    """NotificationDispatcher that only logs.  Swap for a webhook/email adapter."""

    def __init__(self, enabled: bool = True):
        self._enabled = enabled

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        if not self._enabled:
            return
        logger.info(
            "notification_emitted",
            extra={"event_type": event_type, "payload": to_json_safe(payload)},
        )
