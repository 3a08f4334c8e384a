"""
Capital call lifecycle types (``capital_kernel.domain.lifecycle``).

Responsibility
--------------
Status enums and transition tables for capital calls and their
allocations, plus the pure derivation of a call's aggregate status from
its allocation statuses.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``CAPITAL_CALL_TRANSITIONS`` and ``ALLOCATION_TRANSITIONS`` define the
  only valid status moves.  Terminal states have no outgoing edges.
* PARTIALLY_FUNDED and FUNDED on a call are derived by
  ``derive_call_status``; no client request sets them directly.
* Allocation transitions only move forward.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum


class CapitalCallStatus(str, Enum):
    """Capital call lifecycle states."""

    DRAFT = "DRAFT"
    ISSUED = "ISSUED"
    PARTIALLY_FUNDED = "PARTIALLY_FUNDED"
    FUNDED = "FUNDED"
    CANCELLED = "CANCELLED"


class AllocationStatus(str, Enum):
    """Per-LP funding progress."""

    PENDING = "PENDING"
    WIRE_INITIATED = "WIRE_INITIATED"
    FUNDED = "FUNDED"


class CapitalCallPurpose(str, Enum):
    """Why the capital is being called."""

    INITIAL_FUNDING = "INITIAL_FUNDING"
    CAPITAL_IMPROVEMENT = "CAPITAL_IMPROVEMENT"
    OPERATING_SHORTFALL = "OPERATING_SHORTFALL"
    DEBT_SERVICE = "DEBT_SERVICE"
    RESERVES = "RESERVES"
    ACQUISITION = "ACQUISITION"
    OTHER = "OTHER"


CAPITAL_CALL_TRANSITIONS: dict[CapitalCallStatus, frozenset[CapitalCallStatus]] = {
    CapitalCallStatus.DRAFT: frozenset({
        CapitalCallStatus.ISSUED,
        CapitalCallStatus.CANCELLED,
    }),
    CapitalCallStatus.ISSUED: frozenset({
        CapitalCallStatus.PARTIALLY_FUNDED,
        CapitalCallStatus.FUNDED,
        CapitalCallStatus.CANCELLED,
    }),
    CapitalCallStatus.PARTIALLY_FUNDED: frozenset({
        CapitalCallStatus.FUNDED,
        CapitalCallStatus.CANCELLED,
    }),
    CapitalCallStatus.FUNDED: frozenset(),
    CapitalCallStatus.CANCELLED: frozenset(),
}

TERMINAL_CALL_STATUSES: frozenset[CapitalCallStatus] = frozenset({
    CapitalCallStatus.FUNDED,
    CapitalCallStatus.CANCELLED,
})

# Funding mutations are only accepted while the call is out with LPs.
FUNDABLE_CALL_STATUSES: frozenset[CapitalCallStatus] = frozenset({
    CapitalCallStatus.ISSUED,
    CapitalCallStatus.PARTIALLY_FUNDED,
})

ALLOCATION_TRANSITIONS: dict[AllocationStatus, frozenset[AllocationStatus]] = {
    AllocationStatus.PENDING: frozenset({
        AllocationStatus.WIRE_INITIATED,
        AllocationStatus.FUNDED,
    }),
    AllocationStatus.WIRE_INITIATED: frozenset({
        AllocationStatus.FUNDED,
    }),
    AllocationStatus.FUNDED: frozenset(),
}


def can_transition_call(current: CapitalCallStatus, target: CapitalCallStatus) -> bool:
    return target in CAPITAL_CALL_TRANSITIONS.get(current, frozenset())


def can_transition_allocation(current: AllocationStatus, target: AllocationStatus) -> bool:
    return target in ALLOCATION_TRANSITIONS.get(current, frozenset())


def is_cancellable(status: CapitalCallStatus) -> bool:
    return status not in TERMINAL_CALL_STATUSES


def derive_call_status(
    current: CapitalCallStatus,
    allocation_statuses: Iterable[AllocationStatus],
) -> CapitalCallStatus:
    """
    Re-derive a call's status from a full scan of its allocations.

    All FUNDED -> FUNDED.  At least one FUNDED -> PARTIALLY_FUNDED.
    Otherwise the current status is kept.  Works from the full set every
    time, so the order in which allocations were funded does not matter.
    """
    statuses = list(allocation_statuses)
    funded = sum(1 for s in statuses if s == AllocationStatus.FUNDED)
    if statuses and funded == len(statuses):
        return CapitalCallStatus.FUNDED
    if funded > 0:
        return CapitalCallStatus.PARTIALLY_FUNDED
    return current
