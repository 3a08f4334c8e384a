"""
IntegrityLogger -- per-operation audit trail with fail-closed invariant checks.

Responsibility:
    Buffers a structured record of one financial operation: the state it
    started from, the values it computed, and every named invariant it
    checked.  A failed invariant is logged CRITICAL, queued for the
    ViolationRecorder, and (via ``enforce``) raised as
    ``FinancialIntegrityError`` so the enclosing transaction aborts.

Architecture position:
    Kernel > Services -- imperative shell.  Created by the orchestrator for
    each mutating operation and passed to the services that do the work.

Invariants enforced:
    - A failed ``enforce`` check never returns; the caller's transaction is
      rolled back by session_scope and nothing is committed.
    - Violations are persisted by ``flush()``, which the orchestrator calls
      after the business transaction has ended, so they survive its
      rollback.

Failure modes:
    - FinancialIntegrityError from ``enforce``.
    - Recorder failures are logged at ERROR and do not mask the integrity
      failure that triggered them.

Audit relevance:
    Every entry is mirrored to the ``capital_kernel.integrity`` logger as a
    JSON line.  ``flush()`` persists the WARN-or-worse entries with a
    summary of the session.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any
from uuid import UUID

from capital_kernel.domain.clock import Clock, SystemClock
from capital_kernel.domain.ports import ViolationRecorder
from capital_kernel.exceptions import FinancialIntegrityError
from capital_kernel.logging_config import get_logger
from capital_kernel.utils.hashing import to_json_safe

logger = get_logger("integrity")


class IntegrityLevel(IntEnum):
    """Entry severity.  Values line up with the stdlib logging levels."""

    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARN = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


@dataclass(frozen=True)
class IntegrityEntry:
    """One buffered log entry."""

    timestamp: datetime
    level: IntegrityLevel
    message: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.name,
            "message": self.message,
            "data": to_json_safe(self.data),
        }


class IntegrityLogger:
    """
    Buffered integrity log for a single operation.

    Contract:
        Entries accumulate in memory in call order.  ``entries()`` returns a
        copy; ``flush()`` summarises and persists once.

    Non-goals:
        - Does NOT commit or roll back the business transaction.
        - Does NOT retry the recorder.
    """

    def __init__(
        self,
        operation: str,
        *,
        deal_id: UUID | str | None = None,
        user_id: str | None = None,
        request_id: str | None = None,
        clock: Clock | None = None,
        recorder: ViolationRecorder | None = None,
    ):
        self.operation = str(getattr(operation, "value", operation))
        self.deal_id = deal_id
        self.user_id = user_id
        self.request_id = request_id
        self._clock = clock or SystemClock()
        self._recorder = recorder
        self._entries: list[IntegrityEntry] = []
        self._violations: list[dict[str, Any]] = []
        self._started = time.monotonic()
        self._summary: dict[str, Any] | None = None

    # ------------------------------------------------------------------
    # Levelled entries
    # ------------------------------------------------------------------

    def _log(self, level: IntegrityLevel, message: str, data: dict[str, Any] | None = None) -> None:
        entry = IntegrityEntry(
            timestamp=self._clock.now(),
            level=level,
            message=message,
            data=dict(data or {}),
        )
        self._entries.append(entry)
        logger.log(
            int(level),
            "integrity_entry",
            extra={
                "integrity_operation": self.operation,
                "entry": message,
                "data": entry.data,
            },
        )

    def debug(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._log(IntegrityLevel.DEBUG, message, data)

    def info(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._log(IntegrityLevel.INFO, message, data)

    def warn(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._log(IntegrityLevel.WARN, message, data)

    def error(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._log(IntegrityLevel.ERROR, message, data)

    def critical(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._log(IntegrityLevel.CRITICAL, message, data)

    # ------------------------------------------------------------------
    # State and computation tracing
    # ------------------------------------------------------------------

    def before_state(self, entity: str, state: Any) -> None:
        self._log(IntegrityLevel.INFO, f"BEFORE_STATE:{entity}", {"state": state})

    def after_state(self, entity: str, state: Any) -> None:
        self._log(IntegrityLevel.INFO, f"AFTER_STATE:{entity}", {"state": state})

    def computed_value(self, name: str, value: Any, inputs: dict[str, Any] | None = None) -> None:
        self._log(IntegrityLevel.DEBUG, f"COMPUTED:{name}", {"value": value, "inputs": inputs or {}})

    # ------------------------------------------------------------------
    # Invariants
    # ------------------------------------------------------------------

    def invariant_check(self, name: str, passed: bool, details: dict[str, Any] | None = None) -> bool:
        """
        Record the outcome of a named invariant check.

        Returns ``passed``.  A failure is logged CRITICAL and queued for
        the violation recorder.
        """
        name = str(getattr(name, "value", name))
        details = dict(details or {})
        level = IntegrityLevel.INFO if passed else IntegrityLevel.CRITICAL
        self._log(level, f"INVARIANT:{name}", {"passed": passed, **details})
        if not passed:
            self._violations.append({
                "invariant_name": name,
                "operation": self.operation,
                "deal_id": self.deal_id,
                "user_id": self.user_id,
                "request_id": self.request_id,
                "details": to_json_safe(details),
                "detected_at": self._clock.now(),
            })
        return passed

    def enforce(self, name: str, passed: bool, details: dict[str, Any] | None = None) -> None:
        """
        Check an invariant and abort on failure.

        Raises:
            FinancialIntegrityError: If ``passed`` is false.
        """
        if not self.invariant_check(name, passed, details):
            raise FinancialIntegrityError(
                invariant=str(getattr(name, "value", name)),
                operation=self.operation,
                details=to_json_safe(details or {}),
            )

    # ------------------------------------------------------------------
    # Read / flush
    # ------------------------------------------------------------------

    @property
    def violations(self) -> list[str]:
        return [v["invariant_name"] for v in self._violations]

    def entries(self) -> list[IntegrityEntry]:
        return list(self._entries)

    def flush(self) -> dict[str, Any]:
        """
        Summarise the session, persist queued violations and the
        WARN-or-worse entries.

        Safe to call more than once; persistence happens on the first call.
        """
        if self._summary is not None:
            return self._summary

        summary = {
            "operation": self.operation,
            "deal_id": str(self.deal_id) if self.deal_id is not None else None,
            "user_id": self.user_id,
            "request_id": self.request_id,
            "duration_ms": round((time.monotonic() - self._started) * 1000, 2),
            "entry_count": len(self._entries),
            "has_errors": any(e.level >= IntegrityLevel.ERROR for e in self._entries),
            "has_warnings": any(e.level >= IntegrityLevel.WARN for e in self._entries),
            "violations": self.violations,
        }
        logger.info("integrity_log_flushed", extra={"summary": summary})

        if self._recorder is not None:
            for violation in self._violations:
                try:
                    self._recorder.record_violation(violation)
                except Exception:
                    logger.error(
                        "integrity_violation_persist_failed",
                        extra={
                            "invariant": violation["invariant_name"],
                            "integrity_operation": self.operation,
                        },
                        exc_info=True,
                    )

        notable = [e.to_dict() for e in self._entries if e.level >= IntegrityLevel.WARN]
        if notable and self._recorder is not None:
            try:
                self._recorder.persist_log(summary, notable)
            except Exception:
                logger.error(
                    "integrity_log_persist_failed",
                    extra={"integrity_operation": self.operation},
                    exc_info=True,
                )

        self._summary = summary
        return summary
