"""
Module: capital_kernel.selectors.capital_call_selector
Responsibility: Read-only capital call queries: single call with LP names,
    per-deal listings with funding totals, the organization-wide summary and
    the LP's own view of issued calls.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    - Tenant scoping: every GP-facing query filters on organization_id.
    - LPs only ever see ISSUED, PARTIALLY_FUNDED or FUNDED calls, and only
      their own allocation on each.
    - Totals are computed in integer cents at query time; nothing is stored.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from capital_kernel.domain.dtos import AllocationRecord, CapitalCallRecord
from capital_kernel.domain.lifecycle import (
    AllocationStatus,
    CapitalCallPurpose,
    CapitalCallStatus,
)
from capital_kernel.domain.money import cents_to_dollars
from capital_kernel.models.capital_call import CapitalCall, CapitalCallAllocation
from capital_kernel.models.roster import LPActor
from capital_kernel.selectors.base import BaseSelector

LP_VISIBLE_STATUSES = frozenset({
    CapitalCallStatus.ISSUED,
    CapitalCallStatus.PARTIALLY_FUNDED,
    CapitalCallStatus.FUNDED,
})

_CLOSED_STATUSES = frozenset({CapitalCallStatus.FUNDED, CapitalCallStatus.CANCELLED})


@dataclass(frozen=True)
class CapitalCallListItem:
    """One row of a deal's capital call listing."""

    id: UUID
    deal_id: UUID
    title: str
    total_amount_cents: int
    due_date: date
    purpose: CapitalCallPurpose
    status: CapitalCallStatus
    issued_at: datetime | None
    issued_by_name: str | None
    created_at: datetime | None
    allocation_count: int
    funded_count: int
    funded_amount_cents: int

    @property
    def total_amount(self) -> Decimal:
        return cents_to_dollars(self.total_amount_cents)

    @property
    def funded_amount(self) -> Decimal:
        return cents_to_dollars(self.funded_amount_cents)


@dataclass(frozen=True)
class DealCapitalCalls:
    """A deal's capital calls and their aggregate totals."""

    capital_calls: list[CapitalCallListItem]
    total_called_cents: int
    total_funded_cents: int
    pending_calls: int


@dataclass(frozen=True)
class OrganizationCapitalSummary:
    """
    Capital call totals across every deal of an organization.

    ``total_called_cents`` counts only calls that went out (not DRAFT, not
    CANCELLED).  ``pending_calls`` counts issued calls that are not yet
    fully funded.
    """

    total_called_cents: int
    total_funded_cents: int
    pending_calls: int
    total_calls: int


@dataclass(frozen=True)
class LPCapitalCallView:
    """An issued call as seen by one LP, with only that LP's allocation."""

    id: UUID
    deal_id: UUID
    title: str
    description: str | None
    total_amount_cents: int
    due_date: date
    wire_instructions: str | None
    purpose: CapitalCallPurpose
    status: CapitalCallStatus
    issued_at: datetime | None
    document_id: str | None
    lp_actor_id: UUID
    my_allocation: AllocationRecord | None


def _funded_cents(allocation: CapitalCallAllocation) -> int:
    if AllocationStatus(allocation.status) != AllocationStatus.FUNDED:
        return 0
    if allocation.funded_amount_cents is not None:
        return allocation.funded_amount_cents
    return allocation.amount_cents


class CapitalCallSelector(BaseSelector[CapitalCall]):
    """
    Selector for capital call reads.

    Contract:
        GP-facing methods take the caller's organization_id and return None
        or empty results for calls and deals of other organizations.
    """

    def _lp_names(self, deal_id: UUID) -> dict[UUID, str]:
        rows = self.session.execute(
            select(LPActor.id, LPActor.entity_name).where(LPActor.deal_id == deal_id)
        ).all()
        return {row.id: row.entity_name for row in rows}

    def get_call(self, call_id: UUID, organization_id: str) -> CapitalCallRecord | None:
        """Get a call with its allocations, each carrying the LP entity name."""
        call = self.session.execute(
            select(CapitalCall).where(
                CapitalCall.id == call_id,
                CapitalCall.organization_id == organization_id,
            )
        ).scalar_one_or_none()
        if call is None:
            return None
        return call.to_dto(self._lp_names(call.deal_id))

    def list_for_deal(self, deal_id: UUID, organization_id: str) -> DealCapitalCalls:
        """List a deal's calls, newest first, with called / funded totals."""
        calls = self.session.execute(
            select(CapitalCall)
            .where(
                CapitalCall.deal_id == deal_id,
                CapitalCall.organization_id == organization_id,
            )
            .order_by(CapitalCall.created_at.desc(), CapitalCall.id.desc())
        ).scalars().all()

        items = []
        for call in calls:
            items.append(
                CapitalCallListItem(
                    id=call.id,
                    deal_id=call.deal_id,
                    title=call.title,
                    total_amount_cents=call.total_amount_cents,
                    due_date=call.due_date,
                    purpose=CapitalCallPurpose(call.purpose),
                    status=CapitalCallStatus(call.status),
                    issued_at=call.issued_at,
                    issued_by_name=call.issued_by_name,
                    created_at=call.created_at,
                    allocation_count=len(call.allocations),
                    funded_count=sum(
                        1 for a in call.allocations
                        if AllocationStatus(a.status) == AllocationStatus.FUNDED
                    ),
                    funded_amount_cents=sum(_funded_cents(a) for a in call.allocations),
                )
            )

        return DealCapitalCalls(
            capital_calls=items,
            total_called_cents=sum(
                i.total_amount_cents for i in items
                if i.status != CapitalCallStatus.CANCELLED
            ),
            total_funded_cents=sum(i.funded_amount_cents for i in items),
            pending_calls=sum(1 for i in items if i.status not in _CLOSED_STATUSES),
        )

    def organization_summary(self, organization_id: str) -> OrganizationCapitalSummary:
        calls = self.session.execute(
            select(CapitalCall).where(CapitalCall.organization_id == organization_id)
        ).scalars().all()

        called = 0
        funded = 0
        pending = 0
        for call in calls:
            status = CapitalCallStatus(call.status)
            if status not in (CapitalCallStatus.DRAFT, CapitalCallStatus.CANCELLED):
                called += call.total_amount_cents
                if status != CapitalCallStatus.FUNDED:
                    pending += 1
            funded += sum(_funded_cents(a) for a in call.allocations)

        return OrganizationCapitalSummary(
            total_called_cents=called,
            total_funded_cents=funded,
            pending_calls=pending,
            total_calls=len(calls),
        )

    def list_for_lp(self, deal_id: UUID, lp_actor_id: UUID) -> list[LPCapitalCallView]:
        """
        Issued calls on a deal with the LP's own allocation, newest issue first.

        ``lp_actor_id`` comes from the roster lookup for the authenticated
        actor; this method does not check who is asking.
        """
        lp_name = self.session.execute(
            select(LPActor.entity_name).where(LPActor.id == lp_actor_id)
        ).scalar_one_or_none()

        calls = self.session.execute(
            select(CapitalCall)
            .where(
                CapitalCall.deal_id == deal_id,
                CapitalCall.status.in_([s.value for s in LP_VISIBLE_STATUSES]),
            )
            .order_by(CapitalCall.issued_at.desc(), CapitalCall.id.desc())
        ).scalars().all()

        views = []
        for call in calls:
            mine = next((a for a in call.allocations if a.lp_actor_id == lp_actor_id), None)
            views.append(
                LPCapitalCallView(
                    id=call.id,
                    deal_id=call.deal_id,
                    title=call.title,
                    description=call.description,
                    total_amount_cents=call.total_amount_cents,
                    due_date=call.due_date,
                    wire_instructions=call.wire_instructions,
                    purpose=CapitalCallPurpose(call.purpose),
                    status=CapitalCallStatus(call.status),
                    issued_at=call.issued_at,
                    document_id=call.document_id,
                    lp_actor_id=lp_actor_id,
                    my_allocation=mine.to_dto(lp_name) if mine is not None else None,
                )
            )
        return views
