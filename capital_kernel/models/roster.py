"""
Module: capital_kernel.models.roster
Responsibility: Backing tables for the SQL deal roster adapter (deals and
    the LP positions held on them).

Architecture position: Kernel > Models.  May import from db/base.py only.

Roster CRUD is owned by another part of the platform.  The kernel only reads
these tables, through SqlDealRoster; tests and local setups seed them.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from capital_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from capital_kernel.domain.dtos import DealRef, LPCommitment


class Deal(TrackedBase):
    """A real-estate deal owned by one organization."""

    __tablename__ = "deals"

    organization_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<Deal {self.id} {self.name!r}>"

    def to_dto(self) -> DealRef:
        from capital_kernel.domain.dtos import DealRef

        return DealRef(id=self.id, organization_id=self.organization_id, name=self.name)


class LPActor(TrackedBase):
    """An LP position on a deal.  ``commitment`` is the apportionment weight."""

    __tablename__ = "lp_actors"

    __table_args__ = (
        CheckConstraint("commitment >= 0", name="ck_lp_actors_non_negative_commitment"),
        Index("ix_lp_actors_deal_status", "deal_id", "status"),
    )

    deal_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("deals.id"),
        nullable=False,
    )
    entity_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    auth_user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    commitment: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")

    def __repr__(self) -> str:
        return f"<LPActor {self.id} {self.entity_name!r} status={self.status}>"

    def to_dto(self) -> LPCommitment:
        from capital_kernel.domain.dtos import LPCommitment

        return LPCommitment(
            id=self.id,
            deal_id=self.deal_id,
            entity_name=self.entity_name,
            commitment=self.commitment,
            status=self.status,
            email=self.email,
            auth_user_id=self.auth_user_id,
        )
