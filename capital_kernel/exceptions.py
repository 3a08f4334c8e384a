"""
Typed Exception Hierarchy for the Capital Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Capital calls move real money. Callers must be able to tell a bad request from
a lost race from a broken invariant without parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        orchestrator.mark_funded(...)
    except Exception as e:
        if "version" in str(e):  # FRAGILE
            refetch()

Example - RIGHT way:
    except ConcurrencyError as e:
        return conflict(code=e.code, current_version=e.current_version)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CapitalKernelError (base)
    |
    +-- ValidationError
    +-- NotFoundError
    |   +-- DealNotFoundError
    |   +-- CapitalCallNotFoundError
    |   +-- AllocationNotFoundError
    |   +-- LPActorNotFoundError
    +-- PermissionDeniedError
    +-- StateConflictError
    |   +-- InvalidTransitionError
    |   +-- MakerCheckerViolationError
    +-- ConcurrencyError
    +-- AlreadyFundedError
    +-- FinancialIntegrityError
    +-- DuplicateKeyError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                    | When Raised                               | Boundary
------------------------|-------------------------------------------|----------
VALIDATION_ERROR        | Bad shape or range of input               | 400
DEAL_NOT_FOUND          | Deal id unknown to the roster             | 404
CAPITAL_CALL_NOT_FOUND  | Call id unknown (or not on that deal)     | 404
ALLOCATION_NOT_FOUND    | Allocation id unknown on that call        | 404
LP_ACTOR_NOT_FOUND      | Actor has no active LP position on deal   | 404
PERMISSION_DENIED       | Actor lacks GP/Admin (or LP) capability   | 403
STATE_CONFLICT          | Operation invalid for current status      | 409
INVALID_TRANSITION      | Status transition not in lifecycle table  | 409
MAKER_CHECKER_VIOLATION | Creator tried to issue own capital call   | 403
CONCURRENCY_ERROR       | expected_version != stored version        | 409
ALREADY_FUNDED          | Allocation already FUNDED                 | 400
INTEGRITY_ERROR         | Financial invariant failed (system bug)   | 500
DUPLICATE_KEY           | Uniqueness collision with no read fallback| 409

===============================================================================
DESIGN DECISIONS
===============================================================================

1. ConcurrencyError is distinct from StateConflictError so callers know to
   re-fetch and resubmit. It is never retried inside the kernel.
2. AlreadyFundedError is not a success: a second confirmation must be seen.
3. FinancialIntegrityError is never converted into a result status. It aborts
   the transaction and propagates to the caller.
4. The integrity error is not called IntegrityError to stay distinct from
   sqlalchemy.exc.IntegrityError, which signals a storage constraint hit.

===============================================================================
"""

from typing import Any


class CapitalKernelError(Exception):
    """
    Base exception for all capital kernel errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "CAPITAL_KERNEL_ERROR"


# Validation


class ValidationError(CapitalKernelError):
    """Input failed shape or range validation. No side effects occurred."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field}: {message}")


# Lookup


class NotFoundError(CapitalKernelError):
    """Base exception for missing records."""

    code: str = "NOT_FOUND"


class DealNotFoundError(NotFoundError):
    """Deal with given ID was not found."""

    code: str = "DEAL_NOT_FOUND"

    def __init__(self, deal_id: str):
        self.deal_id = deal_id
        super().__init__(f"Deal not found: {deal_id}")


class CapitalCallNotFoundError(NotFoundError):
    """Capital call with given ID was not found."""

    code: str = "CAPITAL_CALL_NOT_FOUND"

    def __init__(self, capital_call_id: str):
        self.capital_call_id = capital_call_id
        super().__init__(f"Capital call not found: {capital_call_id}")


class AllocationNotFoundError(NotFoundError):
    """Allocation was not found on the given capital call."""

    code: str = "ALLOCATION_NOT_FOUND"

    def __init__(self, capital_call_id: str, allocation_id: str | None = None):
        self.capital_call_id = capital_call_id
        self.allocation_id = allocation_id
        target = allocation_id or "for actor"
        super().__init__(
            f"Allocation {target} not found on capital call {capital_call_id}"
        )


class LPActorNotFoundError(NotFoundError):
    """Actor has no active LP position on the deal."""

    code: str = "LP_ACTOR_NOT_FOUND"

    def __init__(self, deal_id: str, actor_id: str):
        self.deal_id = deal_id
        self.actor_id = actor_id
        super().__init__(f"No active LP position for actor {actor_id} on deal {deal_id}")


# Authorization


class PermissionDeniedError(CapitalKernelError):
    """Actor lacks the capability required for the operation."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, actor_id: str, required: str):
        self.actor_id = actor_id
        self.required = required
        super().__init__(f"Actor {actor_id} requires {required}")


# State machine


class StateConflictError(CapitalKernelError):
    """Operation is not valid for the current status of the record."""

    code: str = "STATE_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, status: str, message: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.status = status
        super().__init__(message)


class InvalidTransitionError(StateConflictError):
    """Requested status transition is not in the lifecycle table."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, from_status: str, to_status: str):
        self.to_status = to_status
        super().__init__(
            entity_type,
            entity_id,
            from_status,
            f"Cannot move {entity_type} {entity_id} from {from_status} to {to_status}",
        )


class MakerCheckerViolationError(StateConflictError):
    """The creator of a capital call attempted to issue it."""

    code: str = "MAKER_CHECKER_VIOLATION"

    def __init__(self, capital_call_id: str, actor_id: str):
        self.actor_id = actor_id
        super().__init__(
            "CapitalCall",
            capital_call_id,
            "DRAFT",
            "Cannot issue your own capital call - requires another GP/Admin to issue",
        )


# Concurrency


class ConcurrencyError(CapitalKernelError):
    """Optimistic concurrency conflict: the row moved past the caller's version."""

    code: str = "CONCURRENCY_ERROR"

    def __init__(self, entity_type: str, entity_id: str, expected_version: int, current_version: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(
            f"{entity_type} {entity_id} was modified by another user. "
            f"Expected version {expected_version}, found {current_version}. "
            "Please refresh and try again."
        )


class AlreadyFundedError(CapitalKernelError):
    """Allocation has already been confirmed as funded."""

    code: str = "ALREADY_FUNDED"

    def __init__(self, allocation_id: str, version: int):
        self.allocation_id = allocation_id
        self.version = version
        super().__init__(f"Allocation {allocation_id} is already funded")


# Integrity


class FinancialIntegrityError(CapitalKernelError):
    """
    A financial invariant check failed.

    Treated as a system bug: the enclosing transaction is aborted and nothing
    is persisted. Never downgraded to a user-facing validation result.
    """

    code: str = "INTEGRITY_ERROR"

    def __init__(self, invariant: str, operation: str, details: dict[str, Any] | None = None):
        self.invariant = invariant
        self.operation = operation
        self.details = details or {}
        super().__init__(f"Invariant {invariant} failed during {operation}")


class DuplicateKeyError(CapitalKernelError):
    """A uniqueness constraint fired and the read fallback found nothing."""

    code: str = "DUPLICATE_KEY"

    def __init__(self, scope: str, key: str | None):
        self.scope = scope
        self.key = key
        super().__init__(f"Duplicate key in {scope}: {key}")
