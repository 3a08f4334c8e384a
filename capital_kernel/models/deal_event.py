"""
Module: capital_kernel.models.deal_event
Responsibility: Append-only deal event rows written by the SQL audit sink.

Architecture position: Kernel > Models.  May import from db/base.py only.

Audit relevance:
    payload_hash is the SHA-256 of the canonical payload, so a tampered
    payload no longer matches its hash.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from capital_kernel.db.base import Base, UUIDString


class DealEvent(Base):
    """One audit event on a deal (CAPITAL_CALL_ISSUED, ALLOCATION_FUNDED, ...)."""

    __tablename__ = "deal_events"

    __table_args__ = (
        Index("ix_deal_events_deal_occurred", "deal_id", "occurred_at"),
        Index("ix_deal_events_type", "event_type"),
    )

    deal_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    actor_role: Mapped[str] = mapped_column(String(20), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<DealEvent {self.event_type} deal={self.deal_id}>"
