"""Services for the capital kernel (write side)."""

from capital_kernel.services.allocation_service import AllocationService, FundingOutcome
from capital_kernel.services.capital_call_orchestrator import (
    CapitalCallOrchestrator,
    CapitalCallResult,
    ResultStatus,
)
from capital_kernel.services.capital_call_service import CapitalCallService, CreateOutcome
from capital_kernel.services.collaborators import (
    LoggingNotificationDispatcher,
    SqlAuditSink,
    SqlDealRoster,
    SqlViolationRecorder,
)
from capital_kernel.services.idempotency_guard import IdempotencyGuard, IdempotentHit
from capital_kernel.services.integrity_logger import IntegrityEntry, IntegrityLevel, IntegrityLogger

__all__ = [
    "AllocationService",
    "CapitalCallOrchestrator",
    "CapitalCallResult",
    "CapitalCallService",
    "CreateOutcome",
    "FundingOutcome",
    "IdempotencyGuard",
    "IdempotentHit",
    "IntegrityEntry",
    "IntegrityLevel",
    "IntegrityLogger",
    "LoggingNotificationDispatcher",
    "ResultStatus",
    "SqlAuditSink",
    "SqlDealRoster",
    "SqlViolationRecorder",
]
