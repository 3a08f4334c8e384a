"""Collaborator ports consumed by the capital kernel.

The kernel depends on these Protocols only.  SQL-backed and logging
implementations live in ``capital_kernel.services.collaborators``; callers
may substitute their own (HTTP roster, webhook dispatcher, ...).
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from capital_kernel.domain.dtos import Actor, DealRef, LPCommitment


@runtime_checkable
class DealRoster(Protocol):
    """Read access to deals and their LP positions.

    Runs inside the caller's transaction; implementations must not commit.
    """

    def get_deal(self, deal_id: UUID) -> DealRef | None:
        """Return the deal, or None when it does not exist."""
        ...

    def list_active_lps(self, deal_id: UUID) -> list[LPCommitment]:
        """Return ACTIVE LP positions in a stable order."""
        ...

    def find_lp_for_actor(self, deal_id: UUID, actor: Actor) -> LPCommitment | None:
        """Return the ACTIVE LP position the actor holds on the deal, if any."""
        ...


@runtime_checkable
class AuditSink(Protocol):
    """Append-only deal event trail.  Called after commit."""

    def record(
        self,
        deal_id: UUID,
        event_type: str,
        payload: dict[str, Any],
        actor: Actor,
    ) -> None:
        ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Best-effort outbound notifications (email, webhook).  Called after commit."""

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        ...


@runtime_checkable
class SnapshotProvider(Protocol):
    """Captures a point-in-time snapshot of the cap table for a new call."""

    def create_snapshot(self, deal_id: UUID, reason: str, actor: Actor) -> str | None:
        """Return the snapshot id, or None when no snapshot was taken."""
        ...


@runtime_checkable
class ViolationRecorder(Protocol):
    """Durable store for integrity failures.

    Writes must survive the rollback of the transaction that failed, so
    implementations use their own session.
    """

    def record_violation(self, violation: dict[str, Any]) -> None:
        ...

    def persist_log(self, summary: dict[str, Any], entries: list[dict[str, Any]]) -> None:
        ...
