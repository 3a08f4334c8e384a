"""
Module: capital_kernel.models.approval_record
Responsibility: Maker-checker trail for capital call issuance.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One issuance approval per call: UNIQUE(capital_call_id, action).
    - The approving actor differs from the call's creator.  Enforced by
      CapitalCallService.issue before the row is written.

Audit relevance:
    Written in the same transaction that moves the call to ISSUED, so an
    ISSUED call without an approval record cannot exist.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from capital_kernel.db.base import Base, UUIDString


class ApprovalRecord(Base):
    """Who approved which capital call action, and when."""

    __tablename__ = "approval_records"

    __table_args__ = (
        UniqueConstraint("capital_call_id", "action", name="uq_approval_records_call_action"),
    )

    capital_call_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("capital_calls.id"),
        nullable=False,
    )
    deal_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    maker_id: Mapped[str] = mapped_column(String(100), nullable=False)
    checker_id: Mapped[str] = mapped_column(String(100), nullable=False)
    checker_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    checker_role: Mapped[str] = mapped_column(String(20), nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    approved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<ApprovalRecord {self.action} call={self.capital_call_id} by={self.checker_id}>"
