"""
IdempotencyGuard -- exactly-once capital call creation under retries.

Responsibility:
    Looks up an existing capital call by its idempotency scope
    (organization_id, deal_id, idempotency_key) before any allocation math
    runs, and arbitrates concurrent creates through the storage UNIQUE
    constraint.

Architecture position:
    Kernel > Services -- imperative shell, used by CapitalCallService.create.

Invariants enforced:
    - At most one capital call per scope.  The
      ``uq_capital_calls_idempotency_scope`` constraint is authoritative;
      the pre-insert lookup only saves work.
    - A losing concurrent writer rolls back, falls back to the read path
      and replays the winner.

Failure modes:
    - DuplicateKeyError when the constraint fires but the read path finds
      no row in scope (the collision was not an idempotency replay).

Audit relevance:
    A replay whose request fingerprint differs from the stored one is
    logged at WARNING.  The stored call is still returned unchanged.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from capital_kernel.exceptions import DuplicateKeyError
from capital_kernel.logging_config import get_logger
from capital_kernel.models.capital_call import CapitalCall
from capital_kernel.utils.idempotency import idempotency_scope

logger = get_logger("services.idempotency_guard")


@dataclass(frozen=True)
class IdempotentHit:
    """An existing capital call matched by scope."""

    capital_call: CapitalCall
    payload_mismatch: bool = False


class IdempotencyGuard:
    """
    Scope lookup plus insert arbitration for capital call creation.

    Contract:
        Runs inside the caller's session.  ``insert`` may roll that session
        back when the UNIQUE constraint fires; the caller must not rely on
        any pending state after a replay is returned.
    """

    def __init__(self, session: Session):
        self._session = session

    def find(
        self,
        organization_id: str,
        deal_id: UUID,
        key: str | None,
        request_hash: str | None = None,
    ) -> IdempotentHit | None:
        """Return the call already created under this scope, if any."""
        if key is None:
            return None
        existing = self._session.execute(
            select(CapitalCall).where(
                CapitalCall.organization_id == organization_id,
                CapitalCall.deal_id == deal_id,
                CapitalCall.idempotency_key == key,
            )
        ).scalar_one_or_none()
        if existing is None:
            return None

        mismatch = (
            request_hash is not None
            and existing.request_hash is not None
            and existing.request_hash != request_hash
        )
        if mismatch:
            logger.warning(
                "idempotent_replay_payload_mismatch",
                extra={
                    "scope": idempotency_scope(organization_id, deal_id, key),
                    "capital_call_id": str(existing.id),
                },
            )
        logger.info(
            "idempotent_replay",
            extra={"capital_call_id": str(existing.id), "idempotency_key": key},
        )
        return IdempotentHit(capital_call=existing, payload_mismatch=mismatch)

    def insert(self, call: CapitalCall) -> IdempotentHit | None:
        """
        Flush ``call``.  Returns None when it was inserted, or the winning
        row when a concurrent writer claimed the same scope first.
        """
        self._session.add(call)
        if call.idempotency_key is None:
            self._session.flush()
            return None

        try:
            self._session.flush()
        except IntegrityError:
            # Concurrent insert -- another request claimed the same scope
            self._session.rollback()
            scope = idempotency_scope(call.organization_id, call.deal_id, call.idempotency_key)
            logger.warning("concurrent_capital_call_insert_conflict", extra={"scope": scope})
            hit = self.find(
                call.organization_id,
                call.deal_id,
                call.idempotency_key,
                call.request_hash,
            )
            if hit is None:
                raise DuplicateKeyError("capital_calls", scope)
            return hit
        return None
