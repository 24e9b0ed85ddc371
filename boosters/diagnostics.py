"""
Reconciliation diagnostics.

Diagnostics are non-fatal observations about the event stream (stale,
duplicate or unmatched events, skipped states). They are logged and kept
in a bounded history; they are never raised.
"""

from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from shared.config.logging import get_logger
from shared.utils.datetime_utils import get_utc_now

logger = get_logger(__name__)


class DiagnosticKind(str, Enum):
    """Kinds of reconciliation diagnostics."""

    STALE_EVENT = "stale_event"
    TERMINAL_DISCARD = "terminal_discard"
    UNKNOWN_OPERATION_DROPPED = "unknown_operation_dropped"
    BUFFER_OVERFLOW = "buffer_overflow"
    SKIPPED_INTERMEDIATE_STATE = "skipped_intermediate_state"
    OVERRIDE_APPLIED = "override_applied"
    BATCH_COUNT_MISMATCH = "batch_count_mismatch"
    MALFORMED_EVENT = "malformed_event"
    UNKNOWN_EVENT_TYPE = "unknown_event_type"


# Expected during normal operation; everything else is logged as a warning
_INFO_KINDS = frozenset(
    {
        DiagnosticKind.STALE_EVENT,
        DiagnosticKind.TERMINAL_DISCARD,
        DiagnosticKind.SKIPPED_INTERMEDIATE_STATE,
        DiagnosticKind.OVERRIDE_APPLIED,
    }
)


@dataclass(frozen=True)
class ReconciliationDiagnostic:
    """A single recorded diagnostic."""

    kind: DiagnosticKind
    detail: str
    operation_id: str | None = None
    batch_id: str | None = None
    event_type: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    recorded_at: datetime = field(default_factory=get_utc_now)


class DiagnosticsLog:
    """Bounded history of reconciliation diagnostics."""

    def __init__(self, maxlen: int = 500):
        """
        Initialize diagnostics log.

        Args:
            maxlen: Number of diagnostics retained
        """
        self._entries: deque[ReconciliationDiagnostic] = deque(maxlen=maxlen)
        self._counts: Counter[DiagnosticKind] = Counter()

    def record(
        self,
        kind: DiagnosticKind,
        detail: str,
        operation_id: str | None = None,
        batch_id: str | None = None,
        event_type: str | None = None,
        **context: Any,
    ) -> ReconciliationDiagnostic:
        """
        Record and log a diagnostic.

        Args:
            kind: Diagnostic kind
            detail: Human-readable description
            operation_id: Operation the event targeted
            batch_id: Batch the event targeted
            event_type: Event type involved
            **context: Extra key/value context for the log line

        Returns:
            The recorded diagnostic
        """
        diagnostic = ReconciliationDiagnostic(
            kind=kind,
            detail=detail,
            operation_id=operation_id,
            batch_id=batch_id,
            event_type=event_type,
            context=context,
        )
        self._entries.append(diagnostic)
        self._counts[kind] += 1

        log = logger.info if kind in _INFO_KINDS else logger.warning
        log(
            "reconciliation_diagnostic",
            kind=kind.value,
            detail=detail,
            operation_id=operation_id,
            batch_id=batch_id,
            event_type=event_type,
            **context,
        )
        return diagnostic

    def entries(self, kind: DiagnosticKind | None = None) -> list[ReconciliationDiagnostic]:
        """Return retained diagnostics, optionally filtered by kind."""
        if kind is None:
            return list(self._entries)
        return [entry for entry in self._entries if entry.kind is kind]

    def count(self, kind: DiagnosticKind) -> int:
        """Total diagnostics of a kind recorded since startup."""
        return self._counts[kind]

    def __len__(self) -> int:
        return len(self._entries)
