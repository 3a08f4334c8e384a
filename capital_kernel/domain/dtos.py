"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that cross the capital kernel's
    boundary: the acting principal (Actor), roster views (DealRef,
    LPCommitment), inbound commands (CreateCapitalCallCommand,
    UpdateCapitalCallCommand, MarkFundedCommand) and the read-side records
    (CapitalCallRecord, AllocationRecord) built from ORM rows.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Free of ORM dependencies.  Models build records via ``to_dto()``; domain
    logic never sees an ORM entity.

Invariants enforced:
    - Commands validate shape and range at construction, so a service never
      receives a negative amount or an empty title.
    - Money amounts are Decimal or integer cents, never float.

Failure modes:
    - ValidationError from command ``__post_init__`` on bad input.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID

from capital_kernel.domain.lifecycle import (
    AllocationStatus,
    CapitalCallPurpose,
    CapitalCallStatus,
)
from capital_kernel.domain.money import MAX_CENTS, format_cents
from capital_kernel.exceptions import ValidationError


class ActorRole(str, Enum):
    """Capability the acting user holds on the deal."""

    GP = "GP"
    ADMIN = "ADMIN"
    LP = "LP"


@dataclass(frozen=True)
class Actor:
    """
    The authenticated principal performing an operation.

    ``id`` is the auth-user id.  For LPs it is matched against the roster's
    ``auth_user_id`` (or ``email``) to find their LP position.
    """

    id: str
    name: str
    role: ActorRole
    organization_id: str
    email: str | None = None

    @property
    def is_gp_or_admin(self) -> bool:
        return self.role in (ActorRole.GP, ActorRole.ADMIN)

    @property
    def is_lp(self) -> bool:
        return self.role == ActorRole.LP


@dataclass(frozen=True)
class DealRef:
    """Minimal view of a deal: enough to scope a capital call."""

    id: UUID
    organization_id: str
    name: str


@dataclass(frozen=True)
class LPCommitment:
    """One LP position on a deal, as the roster reports it."""

    id: UUID
    deal_id: UUID
    entity_name: str
    commitment: Decimal
    status: str = "ACTIVE"
    email: str | None = None
    auth_user_id: str | None = None


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _positive_decimal(field_name: str, value: Any) -> Decimal:
    if isinstance(value, (bool, float)):
        raise ValidationError(field_name, "must be Decimal, int or str", value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(field_name, "is not a number", value) from exc
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(field_name, "must be a positive amount", value)
    if amount * 100 >= MAX_CENTS + Decimal("0.5"):
        raise ValidationError(field_name, f"must not exceed {format_cents(MAX_CENTS)}", value)
    return amount


def parse_due_date(value: date | str) -> date:
    """Accept a ``date`` or a ``YYYY-MM-DD`` string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError as exc:
            raise ValidationError("due_date", "must be YYYY-MM-DD", value) from exc
    raise ValidationError("due_date", "must be a date", value)


@dataclass(frozen=True)
class CreateCapitalCallCommand:
    """
    Input for creating a capital call.

    Guarantees:
        - ``title`` is non-empty after stripping.
        - ``total_amount`` is a positive finite Decimal.
        - ``due_date`` is a ``date``.
    """

    title: str
    total_amount: Decimal
    due_date: date
    description: str | None = None
    wire_instructions: str | None = None
    purpose: CapitalCallPurpose = CapitalCallPurpose.INITIAL_FUNDING

    def __post_init__(self) -> None:
        if not isinstance(self.title, str) or not self.title.strip():
            raise ValidationError("title", "is required", self.title)
        object.__setattr__(self, "title", self.title.strip())
        object.__setattr__(
            self, "total_amount", _positive_decimal("total_amount", self.total_amount)
        )
        object.__setattr__(self, "due_date", parse_due_date(self.due_date))
        try:
            object.__setattr__(self, "purpose", CapitalCallPurpose(self.purpose))
        except ValueError as exc:
            raise ValidationError("purpose", "is not a known purpose", self.purpose) from exc

    def canonical_payload(self) -> dict[str, Any]:
        """Stable dict used to fingerprint the request for idempotent replays."""
        return {
            "title": self.title,
            "total_amount": self.total_amount,
            "due_date": self.due_date.isoformat(),
            "description": self.description,
            "wire_instructions": self.wire_instructions,
            "purpose": self.purpose.value,
        }


@dataclass(frozen=True)
class UpdateCapitalCallCommand:
    """
    Partial update of a DRAFT capital call.  ``None`` means "leave as is".
    """

    title: str | None = None
    description: str | None = None
    total_amount: Decimal | None = None
    due_date: date | None = None
    wire_instructions: str | None = None
    purpose: CapitalCallPurpose | None = None

    def __post_init__(self) -> None:
        if self.title is not None:
            if not isinstance(self.title, str) or not self.title.strip():
                raise ValidationError("title", "must not be empty", self.title)
            object.__setattr__(self, "title", self.title.strip())
        if self.total_amount is not None:
            object.__setattr__(
                self, "total_amount", _positive_decimal("total_amount", self.total_amount)
            )
        if self.due_date is not None:
            object.__setattr__(self, "due_date", parse_due_date(self.due_date))
        if self.purpose is not None:
            try:
                object.__setattr__(self, "purpose", CapitalCallPurpose(self.purpose))
            except ValueError as exc:
                raise ValidationError("purpose", "is not a known purpose", self.purpose) from exc

    def changes(self) -> dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in (
                "title",
                "description",
                "total_amount",
                "due_date",
                "wire_instructions",
                "purpose",
            )
            if getattr(self, name) is not None
        }


@dataclass(frozen=True)
class MarkFundedCommand:
    """
    GP confirmation that an LP's wire has landed.

    ``funded_amount`` overrides the allocation amount (dollars).
    ``expected_version`` is the allocation version the caller last read.
    """

    funded_amount: Decimal | None = None
    confirmation_ref: str | None = None
    expected_version: int | None = None

    def __post_init__(self) -> None:
        if self.funded_amount is not None:
            object.__setattr__(
                self, "funded_amount", _positive_decimal("funded_amount", self.funded_amount)
            )
        if self.expected_version is not None:
            if isinstance(self.expected_version, bool) or not isinstance(self.expected_version, int):
                raise ValidationError("expected_version", "must be an integer", self.expected_version)
            if self.expected_version < 0:
                raise ValidationError("expected_version", "must not be negative", self.expected_version)


# ---------------------------------------------------------------------------
# Records (read side)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AllocationRecord:
    """A persisted allocation, detached from the session."""

    id: UUID
    capital_call_id: UUID
    lp_actor_id: UUID
    amount_cents: int
    weight: Decimal
    status: AllocationStatus
    version: int
    funded_amount_cents: int | None = None
    funded_at: datetime | None = None
    wire_reference: str | None = None
    proof_document_id: str | None = None
    reminders_sent: int = 0
    last_reminder_at: datetime | None = None
    lp_entity_name: str | None = None

    @property
    def amount(self) -> Decimal:
        return (Decimal(self.amount_cents) / 100).quantize(Decimal("0.01"))

    @property
    def funded_amount(self) -> Decimal | None:
        if self.funded_amount_cents is None:
            return None
        return (Decimal(self.funded_amount_cents) / 100).quantize(Decimal("0.01"))


@dataclass(frozen=True)
class CapitalCallRecord:
    """A persisted capital call with its allocations."""

    id: UUID
    deal_id: UUID
    organization_id: str
    title: str
    total_amount: Decimal
    total_amount_cents: int
    due_date: date
    status: CapitalCallStatus
    purpose: CapitalCallPurpose
    created_by: str
    created_by_name: str | None = None
    description: str | None = None
    wire_instructions: str | None = None
    idempotency_key: str | None = None
    issued_at: datetime | None = None
    issued_by: str | None = None
    issued_by_name: str | None = None
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None
    snapshot_id: str | None = None
    document_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    allocations: tuple[AllocationRecord, ...] = field(default_factory=tuple)

    @property
    def allocated_cents(self) -> int:
        return sum(a.amount_cents for a in self.allocations)

    @property
    def funded_cents(self) -> int:
        return sum(
            a.funded_amount_cents or 0
            for a in self.allocations
            if a.status == AllocationStatus.FUNDED
        )
