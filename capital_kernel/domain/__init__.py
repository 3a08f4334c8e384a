"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

Time comes from an injected Clock.  All domain objects are immutable
and deterministic.
"""

from capital_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from capital_kernel.domain.dtos import (
    Actor,
    ActorRole,
    AllocationRecord,
    CapitalCallRecord,
    CreateCapitalCallCommand,
    DealRef,
    LPCommitment,
    MarkFundedCommand,
    UpdateCapitalCallCommand,
)
from capital_kernel.domain.lifecycle import (
    AllocationStatus,
    CapitalCallPurpose,
    CapitalCallStatus,
    derive_call_status,
)
from capital_kernel.domain.money import (
    AllocationSumCheck,
    CentsAllocation,
    Recipient,
    allocate_cents,
    cents_to_dollars,
    dollars_to_cents,
    validate_allocation_sum,
)

__all__ = [
    # Time
    "Clock",
    "DeterministicClock",
    "SystemClock",
    # Actors and roster
    "Actor",
    "ActorRole",
    "DealRef",
    "LPCommitment",
    # Commands
    "CreateCapitalCallCommand",
    "UpdateCapitalCallCommand",
    "MarkFundedCommand",
    # Records
    "CapitalCallRecord",
    "AllocationRecord",
    # Lifecycle
    "AllocationStatus",
    "CapitalCallPurpose",
    "CapitalCallStatus",
    "derive_call_status",
    # Money
    "AllocationSumCheck",
    "CentsAllocation",
    "Recipient",
    "allocate_cents",
    "cents_to_dollars",
    "dollars_to_cents",
    "validate_allocation_sum",
]
