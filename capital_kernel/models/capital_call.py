"""
Module: capital_kernel.models.capital_call
Responsibility: ORM persistence for capital calls and their per-LP allocations.

Architecture position: Kernel > Models.  May import from db/base.py and the
    pure enums in domain/lifecycle.py.

Invariants enforced:
    - Idempotent creation: UNIQUE(organization_id, deal_id, idempotency_key).
      NULL keys never collide, so calls without a key are unconstrained.
    - One allocation per LP per call: UNIQUE(capital_call_id, lp_actor_id).
    - Non-negative cents and versions: DB check constraints.
    - Valid status values: DB check constraints.
    - The sum of allocation cents equals total_amount_cents.  Checked by the
      IntegrityLogger before commit; not expressible as a row constraint.

Failure modes:
    - IntegrityError on a duplicate idempotency scope (the guard falls back
      to a read).
    - IntegrityError on a duplicate LP allocation.

Audit relevance:
    total_amount_cents is the canonical amount; total_amount (dollars) is
    kept for display.  Allocations carry the weight they were apportioned
    with so a DRAFT total change can be re-apportioned reproducibly.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from capital_kernel.db.base import TrackedBase, UUIDString
from capital_kernel.domain.lifecycle import (
    AllocationStatus,
    CapitalCallPurpose,
    CapitalCallStatus,
)

if TYPE_CHECKING:
    from capital_kernel.domain.dtos import AllocationRecord, CapitalCallRecord


class CapitalCall(TrackedBase):
    """
    A request for the LPs of a deal to fund a total amount by a due date.

    Contract:
        Mutable only while DRAFT.  PARTIALLY_FUNDED and FUNDED are written
        only by the allocation funding cascade.  Never deleted.
    """

    __tablename__ = "capital_calls"

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "deal_id", "idempotency_key",
            name="uq_capital_calls_idempotency_scope",
        ),
        CheckConstraint(
            "status IN ('DRAFT', 'ISSUED', 'PARTIALLY_FUNDED', 'FUNDED', 'CANCELLED')",
            name="ck_capital_calls_valid_status",
        ),
        CheckConstraint(
            "total_amount_cents > 0",
            name="ck_capital_calls_positive_total",
        ),
        Index("ix_capital_calls_deal_status", "deal_id", "status"),
        Index("ix_capital_calls_organization", "organization_id"),
    )

    deal_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    organization_id: Mapped[str] = mapped_column(String(100), nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    request_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    total_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    wire_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    purpose: Mapped[CapitalCallPurpose] = mapped_column(
        String(30),
        default=CapitalCallPurpose.INITIAL_FUNDING,
        nullable=False,
    )
    status: Mapped[CapitalCallStatus] = mapped_column(
        String(20),
        default=CapitalCallStatus.DRAFT,
        nullable=False,
    )

    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    issued_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    issued_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    snapshot_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    document_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    allocations: Mapped[list["CapitalCallAllocation"]] = relationship(
        back_populates="capital_call",
        order_by="CapitalCallAllocation.created_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<CapitalCall {self.id} {self.title!r} status={self.status}>"

    def to_dto(self, lp_names: dict[UUID, str] | None = None) -> CapitalCallRecord:
        """Convert ORM model to frozen domain DTO."""
        from capital_kernel.domain.dtos import CapitalCallRecord

        return CapitalCallRecord(
            id=self.id,
            deal_id=self.deal_id,
            organization_id=self.organization_id,
            title=self.title,
            description=self.description,
            total_amount=self.total_amount,
            total_amount_cents=self.total_amount_cents,
            due_date=self.due_date,
            wire_instructions=self.wire_instructions,
            purpose=CapitalCallPurpose(self.purpose),
            status=CapitalCallStatus(self.status),
            idempotency_key=self.idempotency_key,
            created_by=self.created_by,
            created_by_name=self.created_by_name,
            issued_at=self.issued_at,
            issued_by=self.issued_by,
            issued_by_name=self.issued_by_name,
            cancelled_at=self.cancelled_at,
            cancelled_by=self.cancelled_by,
            snapshot_id=self.snapshot_id,
            document_id=self.document_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
            allocations=tuple(
                a.to_dto((lp_names or {}).get(a.lp_actor_id)) for a in self.allocations
            ),
        )


class CapitalCallAllocation(TrackedBase):
    """
    One LP's share of a capital call, in integer cents.

    Contract:
        Created only inside the call-creation transaction.  ``version``
        starts at 0 and moves by exactly one on every funding mutation.
        ``amount_cents`` is fixed once the call leaves DRAFT.
    """

    __tablename__ = "capital_call_allocations"

    __table_args__ = (
        UniqueConstraint(
            "capital_call_id", "lp_actor_id",
            name="uq_capital_call_allocations_call_lp",
        ),
        CheckConstraint(
            "status IN ('PENDING', 'WIRE_INITIATED', 'FUNDED')",
            name="ck_capital_call_allocations_valid_status",
        ),
        CheckConstraint(
            "amount_cents >= 0",
            name="ck_capital_call_allocations_non_negative_amount",
        ),
        CheckConstraint(
            "version >= 0",
            name="ck_capital_call_allocations_non_negative_version",
        ),
        Index("ix_capital_call_allocations_lp", "lp_actor_id"),
    )

    capital_call_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("capital_calls.id"),
        nullable=False,
    )
    lp_actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    # Roster position at creation time; keeps allocation order stable
    created_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    weight: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    status: Mapped[AllocationStatus] = mapped_column(
        String(20),
        default=AllocationStatus.PENDING,
        nullable=False,
    )
    funded_amount_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    funded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    wire_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    proof_document_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reminders_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reminder_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    capital_call: Mapped["CapitalCall"] = relationship(back_populates="allocations")

    def __repr__(self) -> str:
        return (
            f"<CapitalCallAllocation {self.id} lp={self.lp_actor_id} "
            f"cents={self.amount_cents} status={self.status} v{self.version}>"
        )

    def to_dto(self, lp_entity_name: str | None = None) -> AllocationRecord:
        """Convert ORM model to frozen domain DTO."""
        from capital_kernel.domain.dtos import AllocationRecord

        return AllocationRecord(
            id=self.id,
            capital_call_id=self.capital_call_id,
            lp_actor_id=self.lp_actor_id,
            amount_cents=self.amount_cents,
            weight=self.weight,
            status=AllocationStatus(self.status),
            version=self.version,
            funded_amount_cents=self.funded_amount_cents,
            funded_at=self.funded_at,
            wire_reference=self.wire_reference,
            proof_document_id=self.proof_document_id,
            reminders_sent=self.reminders_sent,
            last_reminder_at=self.last_reminder_at,
            lp_entity_name=lp_entity_name,
        )
