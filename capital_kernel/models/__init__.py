"""ORM models for the capital kernel."""

from capital_kernel.models.approval_record import ApprovalRecord
from capital_kernel.models.capital_call import CapitalCall, CapitalCallAllocation
from capital_kernel.models.deal_event import DealEvent
from capital_kernel.models.integrity import IntegrityLog, IntegrityViolation
from capital_kernel.models.roster import Deal, LPActor

__all__ = [
    "ApprovalRecord",
    "CapitalCall",
    "CapitalCallAllocation",
    "Deal",
    "DealEvent",
    "IntegrityLog",
    "IntegrityViolation",
    "LPActor",
]
