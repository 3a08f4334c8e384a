"""Selectors for the capital kernel (read side)."""

from capital_kernel.selectors.base import BaseSelector
from capital_kernel.selectors.capital_call_selector import (
    CapitalCallListItem,
    CapitalCallSelector,
    DealCapitalCalls,
    LPCapitalCallView,
    OrganizationCapitalSummary,
)

__all__ = [
    "BaseSelector",
    "CapitalCallListItem",
    "CapitalCallSelector",
    "DealCapitalCalls",
    "LPCapitalCallView",
    "OrganizationCapitalSummary",
]
