"""
Capital Kernel - Capital Call & Allocation Engine

A transactional core for calling capital from Limited Partners with:
- Exact integer-cents apportionment (no rounding leakage)
- Capital call and allocation lifecycle state machines
- Optimistic concurrency on allocation funding
- Idempotent call creation scoped to organization + deal + key
- Fail-closed integrity logging around financial invariants
"""

__version__ = "0.1.0"
