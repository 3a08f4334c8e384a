"""
Module: capital_kernel.models.integrity
Responsibility: Durable record of financial invariant failures and of the
    warning-or-worse entries of integrity log sessions.

Architecture position: Kernel > Models.  May import from db/base.py only.

Audit relevance:
    Rows are written by SqlViolationRecorder in a session of their own, so
    they survive the rollback of the operation that produced them.  An
    operator alert on integrity_violations means a system bug, never a
    user mistake.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from capital_kernel.db.base import Base, UUIDString


class IntegrityViolation(Base):
    """A failed invariant check."""

    __tablename__ = "integrity_violations"

    __table_args__ = (
        Index("ix_integrity_violations_invariant", "invariant_name", "detected_at"),
    )

    invariant_name: Mapped[str] = mapped_column(String(100), nullable=False)
    operation: Mapped[str] = mapped_column(String(100), nullable=False)
    deal_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    details: Mapped[dict] = mapped_column(JSON, nullable=False)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<IntegrityViolation {self.invariant_name} during {self.operation}>"


class IntegrityLog(Base):
    """Warning-or-worse entries of one integrity log session."""

    __tablename__ = "integrity_logs"

    operation: Mapped[str] = mapped_column(String(100), nullable=False)
    deal_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True, index=True)
    user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    entry_count: Mapped[int] = mapped_column(Integer, nullable=False)
    has_errors: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    entries: Mapped[list] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<IntegrityLog {self.operation} entries={self.entry_count}>"
