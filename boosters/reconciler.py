"""
Event reconciliation.

The Reconciler is the only authority on whether and how a normalized event
changes an operation. For each event it applies, in order: buffering of
events for operations that are not known yet, a timestamp staleness check,
the terminal-state guard (with the single override for locally assumed
cancellations) and the status transition function.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from boosters.config import BoosterQueueSettings, get_booster_queue_settings
from boosters.diagnostics import DiagnosticKind, DiagnosticsLog
from boosters.models import (
    OUTCOME_EVENTS,
    BatchQueuedEvent,
    EventSource,
    EventType,
    NormalizedEvent,
    OperationEvent,
    OperationItem,
    OperationStatus,
)
from boosters.store import QueueStateStore
from shared.config.logging import get_logger
from shared.utils.datetime_utils import get_utc_now

logger = get_logger(__name__)

_S = OperationStatus
_E = EventType

# Status an event drives the operation to; None means status is unchanged
_EVENT_TARGETS: dict[EventType, OperationStatus | None] = {
    _E.PROCESSING: _S.PROCESSING,
    _E.SUCCESS: _S.APPLIED,
    _E.ERROR: _S.ERROR,
    _E.FAILED: _S.FAILED,
    _E.CANCELLED: _S.CANCELLED,
    _E.QUEUED: None,
    _E.BATCH_QUEUED: None,
}

_STARTED = frozenset({_S.PROCESSING, _S.APPLIED, _S.ERROR, _S.FAILED})

_EXPECTED_EDGES = frozenset(
    {
        (_S.QUEUED, _E.PROCESSING),
        (_S.PROCESSING, _E.PROCESSING),
        (_S.PROCESSING, _E.SUCCESS),
        (_S.PROCESSING, _E.ERROR),
        (_S.ERROR, _E.ERROR),
        (_S.PROCESSING, _E.FAILED),
        (_S.QUEUED, _E.CANCELLED),
        (_S.PROCESSING, _E.CANCELLED),
        (_S.ERROR, _E.CANCELLED),
    }
)

DEFAULT_FAILURE_MESSAGE = "Operation failed"


def next_status(current: OperationStatus, event_type: EventType) -> tuple[OperationStatus, bool]:
    """
    Transition function for non-terminal operations.

    Args:
        current: Current status
        event_type: Incoming event type

    Returns:
        Tuple of (new_status, is_expected_edge)
    """
    target = _EVENT_TARGETS[event_type]
    if target is None:
        return current, True
    return target, (current, event_type) in _EXPECTED_EDGES


class ReconcileOutcome(str, Enum):
    """What happened to an event."""

    APPLIED = "applied"
    BUFFERED = "buffered"
    DISCARDED = "discarded"


@dataclass
class _PendingEvent:
    event: NormalizedEvent
    received_at: float


class Reconciler:
    """Merges normalized events into the queue state store."""

    def __init__(
        self,
        store: QueueStateStore,
        diagnostics: DiagnosticsLog | None = None,
        settings: BoosterQueueSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize reconciler.

        Args:
            store: Store to mutate
            diagnostics: Diagnostics log (a private one is created if omitted)
            settings: Queue settings
            clock: Monotonic clock used for the grace window
        """
        self.store = store
        self.settings = settings or get_booster_queue_settings()
        if diagnostics is None:
            diagnostics = DiagnosticsLog(self.settings.diagnostics_history)
        self.diagnostics = diagnostics
        self._clock = clock
        self._pending: dict[str, list[_PendingEvent]] = {}
        self._pending_batches: dict[str, list[_PendingEvent]] = {}

    @property
    def pending_count(self) -> int:
        """Number of buffered events awaiting their operation or batch."""
        return sum(len(events) for events in self._pending.values()) + sum(
            len(events) for events in self._pending_batches.values()
        )

    def apply(self, event: NormalizedEvent) -> ReconcileOutcome:
        """
        Reconcile one normalized event against the store.

        Args:
            event: Operation or batch event

        Returns:
            Whether the event was applied, buffered or discarded
        """
        self.expire_pending()
        if isinstance(event, BatchQueuedEvent):
            return self._apply_batch_event(event)
        return self._apply_operation_event(event)

    # Operation events

    def _apply_operation_event(self, event: OperationEvent) -> ReconcileOutcome:
        item = self.store.get(event.operation_id)

        if item is None:
            if self.store.is_retired(event.operation_id):
                self.diagnostics.record(
                    DiagnosticKind.TERMINAL_DISCARD,
                    "Event for an operation that was removed",
                    operation_id=event.operation_id,
                    event_type=event.type.value,
                )
                return ReconcileOutcome.DISCARDED
            if event.source is EventSource.LOCAL:
                logger.warning("local_event_for_unknown_operation", operation_id=event.operation_id)
                return ReconcileOutcome.DISCARDED

            item = self._correlate_batch_member(event)
            if item is None:
                return self._buffer(self._pending, event.operation_id, event)

        return self._reconcile(item, event)

    def _reconcile(self, item: OperationItem, event: OperationEvent) -> ReconcileOutcome:
        is_local = event.source is EventSource.LOCAL

        if (
            not is_local
            and item.last_event_timestamp is not None
            and event.timestamp <= item.last_event_timestamp
        ):
            self.diagnostics.record(
                DiagnosticKind.STALE_EVENT,
                "Event is not newer than the last accepted event",
                operation_id=item.id,
                event_type=event.type.value,
                event_timestamp=event.timestamp.isoformat(),
                last_event_timestamp=item.last_event_timestamp.isoformat(),
            )
            return ReconcileOutcome.DISCARDED

        if item.is_terminal:
            if (
                event.authoritative_override
                and item.locally_assumed
                and event.type in OUTCOME_EVENTS
            ):
                return self._override(item, event)
            self.diagnostics.record(
                DiagnosticKind.TERMINAL_DISCARD,
                f"Operation already {item.status.value}",
                operation_id=item.id,
                event_type=event.type.value,
            )
            return ReconcileOutcome.DISCARDED

        new_status, expected = next_status(item.status, event.type)
        if not expected and not is_local:
            self.diagnostics.record(
                DiagnosticKind.SKIPPED_INTERMEDIATE_STATE,
                f"Transition {item.status.value} -> {new_status.value} skips intermediate states",
                operation_id=item.id,
                event_type=event.type.value,
            )

        self.store.upsert(self._transition(item, event, new_status))
        logger.debug(
            "event_applied",
            operation_id=item.id,
            event_type=event.type.value,
            previous_status=item.status.value,
            status=new_status.value,
        )
        return ReconcileOutcome.APPLIED

    def _override(self, item: OperationItem, event: OperationEvent) -> ReconcileOutcome:
        new_status, _ = next_status(item.status, event.type)
        self.store.upsert(self._transition(item, event, new_status), override=True)
        self.diagnostics.record(
            DiagnosticKind.OVERRIDE_APPLIED,
            f"Assumed cancellation replaced by backend outcome {new_status.value}",
            operation_id=item.id,
            event_type=event.type.value,
        )
        return ReconcileOutcome.APPLIED

    def _transition(
        self,
        item: OperationItem,
        event: OperationEvent,
        new_status: OperationStatus,
    ) -> OperationItem:
        is_local = event.source is EventSource.LOCAL
        occurred_at = get_utc_now() if is_local else event.timestamp

        progress = item.progress
        if new_status is OperationStatus.APPLIED:
            progress = 100
        elif new_status.is_terminal:
            pass
        elif event.progress is not None:
            if new_status is OperationStatus.PROCESSING:
                progress = max(progress, event.progress)
            else:
                progress = event.progress

        error = None
        if new_status in (OperationStatus.ERROR, OperationStatus.FAILED):
            error = event.error or item.error or DEFAULT_FAILURE_MESSAGE

        update: dict[str, Any] = {
            "status": new_status,
            "progress": progress,
            "error": error,
            "locally_assumed": is_local and new_status is OperationStatus.CANCELLED,
        }
        # An outcome implies the backend started work, even if Processing was never seen
        if item.started_at is None and new_status in _STARTED and not is_local:
            update["started_at"] = occurred_at
        if new_status.is_terminal:
            update["completed_at"] = event.end_at or occurred_at
        if event.queue_size is not None:
            update["queue_size"] = event.queue_size
        if not is_local:
            update["last_event_timestamp"] = event.timestamp

        return item.model_copy(update=update)

    def _correlate_batch_member(self, event: OperationEvent) -> OperationItem | None:
        """Attach a backend id to the single provisional batch member for the booster."""
        if not event.booster_id:
            return None

        candidates = [
            item
            for item in self.store.list()
            if item.provisional
            and item.batch_id is not None
            and not item.is_terminal
            and item.booster_id == event.booster_id
            and (event.operation_type is None or item.operation_type.value == event.operation_type)
        ]
        if len(candidates) != 1:
            return None

        member = candidates[0]
        self.store.rekey(member.id, event.operation_id)
        logger.info(
            "batch_member_correlated",
            local_id=member.local_id,
            operation_id=event.operation_id,
            booster_id=event.booster_id,
            batch_id=member.batch_id,
        )
        self.flush_pending(event.operation_id)
        return self.store.get(event.operation_id)

    # Batch events

    def _apply_batch_event(self, event: BatchQueuedEvent) -> ReconcileOutcome:
        batch = self.store.get_batch(event.batch_id)
        if batch is None:
            return self._buffer(self._pending_batches, event.batch_id, event)

        if batch.last_event_timestamp is not None and event.timestamp <= batch.last_event_timestamp:
            self.diagnostics.record(
                DiagnosticKind.STALE_EVENT,
                "Batch event is not newer than the last accepted event",
                batch_id=batch.batch_id,
                event_type=event.type.value,
            )
            return ReconcileOutcome.DISCARDED

        if (event.total_count, event.queued_count) != (batch.total_count, batch.queued_count):
            self.diagnostics.record(
                DiagnosticKind.BATCH_COUNT_MISMATCH,
                "Backend batch counts differ from the locally accepted batch",
                batch_id=batch.batch_id,
                event_type=event.type.value,
                reported_total=event.total_count,
                reported_queued=event.queued_count,
                total=batch.total_count,
                queued=batch.queued_count,
            )

        self.store.update_batch(
            batch.model_copy(
                update={
                    "reported_total_count": event.total_count,
                    "reported_queued_count": event.queued_count,
                    "reported_validation_errors": dict(event.validation_errors),
                    "queue_size": event.queue_size,
                    "last_event_timestamp": event.timestamp,
                }
            )
        )
        return ReconcileOutcome.APPLIED

    # Buffering

    def _buffer(
        self,
        pending: dict[str, list[_PendingEvent]],
        key: str,
        event: NormalizedEvent,
    ) -> ReconcileOutcome:
        if self.pending_count >= self.settings.max_pending_events:
            self.diagnostics.record(
                DiagnosticKind.BUFFER_OVERFLOW,
                "Pending event buffer is full; event dropped",
                operation_id=key if isinstance(event, OperationEvent) else None,
                batch_id=key if isinstance(event, BatchQueuedEvent) else None,
                event_type=event.type.value,
            )
            return ReconcileOutcome.DISCARDED

        pending.setdefault(key, []).append(_PendingEvent(event=event, received_at=self._clock()))
        logger.debug("event_buffered", target=key, event_type=event.type.value)
        return ReconcileOutcome.BUFFERED

    def flush_pending(self, operation_id: str) -> int:
        """
        Replay events buffered for an operation that just became known.

        Args:
            operation_id: Backend id attached to the operation

        Returns:
            Number of events applied
        """
        self.expire_pending()
        return self._replay(self._pending.pop(operation_id, []))

    def flush_pending_batch(self, batch_id: str) -> int:
        """
        Replay events buffered for a batch that just became known.

        Args:
            batch_id: Backend id attached to the batch

        Returns:
            Number of events applied
        """
        self.expire_pending()
        return self._replay(self._pending_batches.pop(batch_id, []))

    def _replay(self, buffered: list[_PendingEvent]) -> int:
        applied = 0
        for pending in sorted(buffered, key=lambda p: p.event.timestamp):
            if isinstance(pending.event, BatchQueuedEvent):
                outcome = self._apply_batch_event(pending.event)
            else:
                outcome = self._apply_operation_event(pending.event)
            if outcome is ReconcileOutcome.APPLIED:
                applied += 1
        if buffered:
            logger.info("buffered_events_replayed", received=len(buffered), applied=applied)
        return applied

    def expire_pending(self) -> int:
        """
        Drop buffered events whose grace window has elapsed.

        Returns:
            Number of events dropped
        """
        deadline = self._clock() - self.settings.event_grace_period_seconds
        dropped = 0

        for pending in (self._pending, self._pending_batches):
            for key in list(pending):
                kept = []
                for entry in pending[key]:
                    if entry.received_at > deadline:
                        kept.append(entry)
                        continue
                    dropped += 1
                    is_batch = isinstance(entry.event, BatchQueuedEvent)
                    self.diagnostics.record(
                        DiagnosticKind.UNKNOWN_OPERATION_DROPPED,
                        "No matching operation appeared within the grace period",
                        operation_id=None if is_batch else key,
                        batch_id=key if is_batch else None,
                        event_type=entry.event.type.value,
                    )
                if kept:
                    pending[key] = kept
                else:
                    del pending[key]

        return dropped
