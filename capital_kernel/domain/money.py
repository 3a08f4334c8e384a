"""
Module: capital_kernel.domain.money
Responsibility:
    Convert dollar amounts to integer cents and apportion a cent total across
    weighted recipients so that the parts sum exactly to the whole.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    May only import capital_kernel.exceptions.

Invariants enforced:
    - Exactness: sum(allocate_cents(total, recipients)) == total for every
      non-empty recipient list and every total >= 0.
    - Determinism: remainder cents go to the largest fractional remainder
      first, ties broken by input order.  Replays produce identical pennies.
    - No float: all arithmetic is Decimal (dollars) or Fraction/int (cents).

Failure modes:
    - ValidationError on float, negative, NaN or infinite dollar input.
    - ValidationError on an amount above MAX_CENTS.
    - ValidationError on an empty recipient list.
    - ValidationError on a negative total or a negative weight.

Usage:
    from capital_kernel.domain.money import Recipient, allocate_cents, dollars_to_cents

    total = dollars_to_cents("100000.00")
    parts = allocate_cents(total, [
        Recipient(id="lp-a", weight=Decimal("500000")),
        Recipient(id="lp-b", weight=Decimal("300000")),
        Recipient(id="lp-c", weight=Decimal("200000")),
    ])
    # -> 5_000_000 / 3_000_000 / 2_000_000
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from fractions import Fraction
from typing import Any

from capital_kernel.exceptions import ValidationError

CENT = Decimal("0.01")

# Largest amount a Numeric(18, 2) column can hold, in cents.
MAX_CENTS = 10**18 - 1


@dataclass(frozen=True)
class Recipient:
    """
    One party in an apportionment.

    Guarantees:
        - ``weight`` is non-negative (checked by ``allocate_cents``).
    """

    id: Any
    weight: Decimal | int = 0


@dataclass(frozen=True)
class CentsAllocation:
    """Apportioned share for one recipient."""

    id: Any
    cents: int

    @property
    def dollars(self) -> Decimal:
        return cents_to_dollars(self.cents)


@dataclass(frozen=True)
class AllocationSumCheck:
    """Result of recomputing an allocation sum against its expected total."""

    valid: bool
    sum: int
    expected: int
    diff: int


def dollars_to_cents(amount: Decimal | int | str) -> int:
    """
    Convert a dollar amount to integer cents.

    Rounds half-up at the cent (``0.005`` -> 1 cent).  Floats are rejected
    outright: the caller must state the amount exactly.
    """
    if isinstance(amount, bool) or isinstance(amount, float):
        raise ValidationError("amount", "must be Decimal, int or str, not float", amount)
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("amount", "is not a number", amount) from exc

    if not value.is_finite():
        raise ValidationError("amount", "must be finite", amount)
    if value < 0:
        raise ValidationError("amount", "must not be negative", amount)
    if value * 100 >= MAX_CENTS + Decimal("0.5"):
        raise ValidationError("amount", f"must not exceed {format_cents(MAX_CENTS)}", amount)

    try:
        cents = (value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValidationError("amount", "cannot be represented in cents", amount) from exc
    return int(cents)


def cents_to_dollars(cents: int) -> Decimal:
    """Convert integer cents to a two-place Decimal dollar amount."""
    if isinstance(cents, bool) or not isinstance(cents, int):
        raise ValidationError("cents", "must be an integer", cents)
    return (Decimal(cents) / 100).quantize(CENT)


def format_cents(cents: int) -> str:
    """Render cents for display, e.g. ``123456`` -> ``"$1,234.56"``."""
    dollars = cents_to_dollars(cents)
    sign = "-" if dollars < 0 else ""
    return f"{sign}${abs(dollars):,.2f}"


def _to_fraction(weight: Decimal | int, index: int) -> Fraction:
    if isinstance(weight, bool) or isinstance(weight, float):
        raise ValidationError(f"recipients[{index}].weight", "must be Decimal or int", weight)
    value = Fraction(weight)
    if value < 0:
        raise ValidationError(f"recipients[{index}].weight", "must not be negative", weight)
    return value


def allocate_cents(total_cents: int, recipients: Sequence[Recipient]) -> list[CentsAllocation]:
    """
    Apportion ``total_cents`` across ``recipients`` by weight.

    Algorithm (largest remainder):
        1. Exact share = total * weight / sum(weights), as a Fraction.
           All weights zero means an equal split.
        2. Each recipient's base is the floor of its exact share.
        3. The cents left over (total - sum of floors, always < len) are
           handed out one at a time in descending order of fractional
           remainder; equal remainders keep input order.

    Returns one ``CentsAllocation`` per recipient, in input order.
    """
    if isinstance(total_cents, bool) or not isinstance(total_cents, int):
        raise ValidationError("total_cents", "must be an integer", total_cents)
    if total_cents < 0:
        raise ValidationError("total_cents", "must not be negative", total_cents)
    if not recipients:
        raise ValidationError("recipients", "cannot allocate to an empty recipient list")

    weights = [_to_fraction(r.weight, i) for i, r in enumerate(recipients)]

    if len(recipients) == 1:
        return [CentsAllocation(id=recipients[0].id, cents=total_cents)]

    weight_sum = sum(weights, Fraction(0))
    if weight_sum == 0:
        weights = [Fraction(1)] * len(recipients)
        weight_sum = Fraction(len(recipients))

    bases: list[int] = []
    remainders: list[Fraction] = []
    for weight in weights:
        exact = Fraction(total_cents) * weight / weight_sum
        floor = exact.numerator // exact.denominator
        bases.append(floor)
        remainders.append(exact - floor)

    leftover = total_cents - sum(bases)
    # sorted() is stable, so equal remainders keep input order
    order = sorted(range(len(recipients)), key=lambda i: remainders[i], reverse=True)
    for i in order[:leftover]:
        bases[i] += 1

    return [
        CentsAllocation(id=recipient.id, cents=cents)
        for recipient, cents in zip(recipients, bases)
    ]


def validate_allocation_sum(
    allocations: Iterable[CentsAllocation | int],
    expected_total: int,
) -> AllocationSumCheck:
    """Recompute the sum of ``allocations`` and compare it to ``expected_total``."""
    total = 0
    for item in allocations:
        total += item.cents if isinstance(item, CentsAllocation) else int(item)
    return AllocationSumCheck(
        valid=total == expected_total,
        sum=total,
        expected=expected_total,
        diff=total - expected_total,
    )


def commitment_recipients(lps: Iterable[Any]) -> list[Recipient]:
    """
    Build recipients from LP roster entries (anything with ``id`` and
    ``commitment``).  A missing commitment counts as zero, so a roster with no
    commitments yet falls through to the equal split in ``allocate_cents``.
    """
    return [
        Recipient(id=lp.id, weight=lp.commitment if lp.commitment is not None else Decimal("0"))
        for lp in lps
    ]
