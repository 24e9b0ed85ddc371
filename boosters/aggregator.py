"""
Progress aggregation.

Derives batch progress, terminal outcome counts and queue-wide status
counts from the store. Figures are recomputed synchronously after every
store mutation, then subscribers are notified.
"""

from collections import Counter
from collections.abc import Callable

from boosters.models import (
    Batch,
    BatchOutcome,
    BatchProgress,
    OperationStatus,
    QueueStats,
    QueueUpdate,
)
from boosters.store import ChangeKind, QueueStateStore, StoreChange
from shared.config.logging import get_logger

logger = get_logger(__name__)

Subscriber = Callable[[QueueUpdate], None]


class ProgressAggregator:
    """Keeps derived progress in step with the store."""

    def __init__(self, store: QueueStateStore):
        """
        Initialize aggregator and start listening to the store.

        Args:
            store: Store to derive progress from
        """
        self.store = store
        self._progress: dict[str, BatchProgress] = {}
        self._stats = QueueStats()
        self._subscribers: list[Subscriber] = []
        self._remove_listener = store.add_listener(self._on_store_change)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback invoked after each store change.

        Args:
            callback: Receives a QueueUpdate

        Returns:
            Function removing the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def batch_progress(self, batch_id: str) -> BatchProgress | None:
        """
        Progress of a batch.

        Args:
            batch_id: Backend batch id or local alias

        Returns:
            BatchProgress, or None for an unknown batch
        """
        batch = self.store.get_batch(batch_id)
        if batch is None:
            return None
        cached = self._progress.get(batch.batch_id)
        if cached is None:
            cached = self._progress[batch.batch_id] = self._compute(batch)
        return cached

    def batch_outcome(self, batch_id: str) -> BatchOutcome | None:
        """Counts per terminal status for a batch."""
        progress = self.batch_progress(batch_id)
        return progress.outcome_counts if progress else None

    def stats(self) -> QueueStats:
        """Status counts across all live operations."""
        return self._stats

    def close(self) -> None:
        """Stop listening to the store and drop subscribers."""
        self._remove_listener()
        self._subscribers.clear()

    def _compute(self, batch: Batch) -> BatchProgress:
        statuses: Counter[OperationStatus] = Counter(
            item.status for item in self.store.batch_members(batch.batch_id)
        )
        statuses.update(batch.evicted_outcomes)

        member_count = sum(statuses.values())
        outcome = BatchOutcome(
            applied=statuses[OperationStatus.APPLIED],
            failed=statuses[OperationStatus.FAILED],
            cancelled=statuses[OperationStatus.CANCELLED],
        )
        settled = outcome.applied + outcome.failed + outcome.cancelled
        percent = settled / member_count * 100 if member_count else 100.0

        return BatchProgress(
            batch_id=batch.batch_id,
            percent=percent,
            member_count=member_count,
            settled_count=settled,
            outcome_counts=outcome,
        )

    def _compute_stats(self) -> QueueStats:
        counts = Counter(item.status for item in self.store.list())
        return QueueStats(
            total=sum(counts.values()),
            queued=counts[OperationStatus.QUEUED],
            processing=counts[OperationStatus.PROCESSING],
            applied=counts[OperationStatus.APPLIED],
            error=counts[OperationStatus.ERROR],
            failed=counts[OperationStatus.FAILED],
            cancelled=counts[OperationStatus.CANCELLED],
        )

    def _on_store_change(self, change: StoreChange) -> None:
        batch_progress = None
        if change.batch_id is not None:
            if change.kind is ChangeKind.BATCH and change.previous_id is not None:
                self._progress.pop(change.previous_id, None)
            batch = self.store.get_batch(change.batch_id)
            if batch is not None:
                batch_progress = self._progress[batch.batch_id] = self._compute(batch)
                if batch_progress.is_complete and batch_progress.member_count:
                    logger.debug(
                        "batch_settled",
                        batch_id=batch.batch_id,
                        applied=batch_progress.outcome_counts.applied,
                        failed=batch_progress.outcome_counts.failed,
                        cancelled=batch_progress.outcome_counts.cancelled,
                    )

        self._stats = self._compute_stats()

        update = QueueUpdate(
            kind=change.kind.value,
            operation_id=change.operation_id,
            batch_id=change.batch_id,
            item=self.store.get(change.operation_id) if change.operation_id else None,
            batch_progress=batch_progress,
            stats=self._stats,
        )
        for callback in list(self._subscribers):
            try:
                callback(update)
            except Exception:
                logger.exception("subscriber_failed", kind=update.kind)
