"""
Capital Kernel Integrity Contract.

These invariants are structural law for money movement. They are checked by
the IntegrityLogger inside the transaction that would violate them, and a
failure aborts that transaction. No configuration switches them off.

This module exists solely to name the invariants and the operations that
check them, so log lines and persisted violations carry stable identifiers.
"""

from enum import Enum, unique


@unique
class IntegrityInvariant(str, Enum):
    """Named financial invariants checked by the integrity logger."""

    ALLOCATION_SUM_EQUALS_TOTAL = "ALLOCATION_SUM_EQUALS_TOTAL"
    """Computed allocation cents sum exactly to the call's total cents.
    Checked before any allocation row is written."""

    FINAL_ALLOCATION_SUM_MATCHES = "FINAL_ALLOCATION_SUM_MATCHES"
    """Flushed allocation rows sum exactly to the persisted total cents.
    Checked after the write, before commit."""

    ALLOCATION_AMOUNT_NON_NEGATIVE = "ALLOCATION_AMOUNT_NON_NEGATIVE"
    """No allocation carries a negative cent amount."""

    VERSION_MATCH = "VERSION_MATCH"
    """A funding mutation moved the stored allocation version by exactly one,
    from the version read under the row lock."""

    LP_ACTOR_DEAL_MATCH = "LP_ACTOR_DEAL_MATCH"
    """An allocation's LP actor belongs to the call's deal."""


@unique
class IntegrityOperation(str, Enum):
    """Operations that open an integrity log."""

    CAPITAL_CALL_CREATE = "CAPITAL_CALL_CREATE"
    CAPITAL_CALL_UPDATE = "CAPITAL_CALL_UPDATE"
    CAPITAL_CALL_ISSUE = "CAPITAL_CALL_ISSUE"
    CAPITAL_CALL_CANCEL = "CAPITAL_CALL_CANCEL"
    CAPITAL_CALL_FUND = "CAPITAL_CALL_FUND"
    ALLOCATION_WIRE = "ALLOCATION_WIRE"
