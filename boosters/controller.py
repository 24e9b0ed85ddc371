"""
Operation controller.

Public entry point of the booster queue: submits single operations and
batches, requests cancellation, and exposes the read and subscribe API used
by the presentation layer. The controller owns the store; every change to an
existing operation is routed through the Reconciler.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Iterable
from typing import Any

from boosters.aggregator import ProgressAggregator, Subscriber
from boosters.backend import BoosterBackend
from boosters.config import BoosterQueueSettings, get_booster_queue_settings
from boosters.diagnostics import DiagnosticsLog, ReconciliationDiagnostic
from boosters.ingestor import EventIngestor
from boosters.models import (
    Batch,
    BatchProgress,
    BatchSubmitResult,
    EventSource,
    EventType,
    OperationEvent,
    OperationItem,
    OperationStatus,
    OperationType,
    QueueStats,
)
from boosters.reconciler import Reconciler, ReconcileOutcome
from boosters.store import QueueStateStore
from shared.config.logging import get_logger
from shared.exceptions import (
    InvalidStateError,
    OperationError,
    OperationFailure,
    OperationNotFoundError,
    StoreIntegrityError,
    SubmissionError,
    ValidationError,
)
from shared.utils.datetime_utils import get_utc_now

logger = get_logger(__name__)

# Validation reasons reported per booster id
ALREADY_QUEUED = "AlreadyQueued"
ALREADY_APPLIED = "AlreadyApplied"
UNKNOWN_BOOSTER = "UnknownBooster"

# Statuses that block a new submission for the same booster
_IN_FLIGHT = frozenset({OperationStatus.QUEUED, OperationStatus.PROCESSING})


class OperationController:
    """Submits, cancels and exposes booster operations."""

    def __init__(
        self,
        backend: BoosterBackend,
        settings: BoosterQueueSettings | None = None,
        known_boosters: Iterable[str] | None = None,
        clock: Callable[[], float] | None = None,
    ):
        """
        Initialize controller and its pipeline.

        Args:
            backend: Backend operation API
            settings: Queue settings
            known_boosters: Catalog of valid booster ids (None accepts any id)
            clock: Monotonic clock for the reconciler's grace window
        """
        self.backend = backend
        self.settings = settings or get_booster_queue_settings()
        self.known_boosters = frozenset(known_boosters) if known_boosters is not None else None

        self._store = QueueStateStore()
        self.diagnostics_log = DiagnosticsLog(self.settings.diagnostics_history)
        reconciler_kwargs: dict[str, Any] = {"clock": clock} if clock else {}
        self.reconciler = Reconciler(
            self._store, self.diagnostics_log, self.settings, **reconciler_kwargs
        )
        self.ingestor = EventIngestor(self.reconciler, self.diagnostics_log)
        self.aggregator = ProgressAggregator(self._store)

        self._cancel_timers: dict[str, asyncio.Task] = {}

    async def __aenter__(self) -> "OperationController":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.aclose()

    # Submission

    async def submit(
        self,
        booster_id: str,
        operation_type: OperationType = OperationType.APPLY,
    ) -> str:
        """
        Submit a single booster operation.

        The operation is stored as Queued before the backend is contacted;
        once acknowledged it is rekeyed to the backend id and any events
        that arrived early are replayed.

        Args:
            booster_id: Booster to apply or revert
            operation_type: Apply or revert

        Returns:
            Operation id (the backend id when acknowledged, else the local id)

        Raises:
            ValidationError: If the booster is unknown, in flight or already applied
        """
        reason = self._validate(booster_id, operation_type)
        if reason:
            raise ValidationError(
                f"Cannot submit booster {booster_id}: {reason}",
                booster_id=booster_id,
                reason=reason,
            )

        local_id = self._new_local_id()
        self._store.upsert(
            OperationItem(
                id=local_id,
                local_id=local_id,
                booster_id=booster_id,
                operation_type=operation_type,
            )
        )
        logger.info(
            "operation_submitted",
            operation_id=local_id,
            booster_id=booster_id,
            operation_type=operation_type.value,
        )

        try:
            ack = await self.backend.submit(booster_id, operation_type)
        except Exception as e:
            logger.exception("submission_request_failed", operation_id=local_id)
            self._fail_submission(local_id, SubmissionError(f"Submission failed: {e}", booster_id))
            return local_id

        if not ack.success or not ack.operation_id:
            self._fail_submission(
                local_id,
                SubmissionError(ack.reason or "Backend rejected the submission", booster_id),
            )
            return local_id

        try:
            self._store.rekey(local_id, ack.operation_id)
        except StoreIntegrityError as e:
            self._fail_submission(local_id, SubmissionError(e.message, booster_id))
            return local_id

        logger.info("operation_acknowledged", local_id=local_id, operation_id=ack.operation_id)
        self.reconciler.flush_pending(ack.operation_id)
        return ack.operation_id

    async def submit_batch(
        self,
        booster_ids: Iterable[str],
        operation_type: OperationType = OperationType.APPLY,
    ) -> BatchSubmitResult:
        """
        Submit several boosters as one batch.

        Repeated ids are collapsed to their first occurrence. Each booster is
        validated independently; rejected ids are reported in validation_errors
        and excluded from the batch. The remaining ids are sent to the backend
        in a single request.

        Args:
            booster_ids: Boosters to apply or revert
            operation_type: Apply or revert

        Returns:
            BatchSubmitResult with counts and per-booster validation errors

        Raises:
            ValidationError: If no booster ids were given
        """
        requested = list(dict.fromkeys(booster_ids))
        if not requested:
            raise ValidationError("No boosters to submit")

        validation_errors: dict[str, str] = {}
        accepted: list[str] = []
        for booster_id in requested:
            reason = self._validate(booster_id, operation_type)
            if reason:
                validation_errors[booster_id] = reason
            else:
                accepted.append(booster_id)

        local_batch_id = self._new_local_id("batch-")
        members = [
            OperationItem(
                id=local_id,
                local_id=local_id,
                booster_id=booster_id,
                operation_type=operation_type,
                batch_id=local_batch_id,
            )
            for booster_id, local_id in ((b, self._new_local_id()) for b in accepted)
        ]
        self._store.create_batch(
            Batch(
                batch_id=local_batch_id,
                local_id=local_batch_id,
                operation_type=operation_type,
                total_count=len(requested),
                queued_count=len(members),
                validation_errors=validation_errors,
            ),
            members,
        )
        logger.info(
            "batch_submitted",
            batch_id=local_batch_id,
            total_count=len(requested),
            queued_count=len(members),
            rejected=len(validation_errors),
        )

        if members:
            await self._acknowledge_batch(local_batch_id, accepted, operation_type)

        batch = self._store.get_batch(local_batch_id)
        if batch is None:
            raise StoreIntegrityError(
                f"Batch {local_batch_id} disappeared during submission", local_batch_id
            )
        return BatchSubmitResult(
            batch_id=batch.batch_id,
            total_count=batch.total_count,
            queued_count=batch.queued_count,
            validation_errors=dict(batch.validation_errors),
        )

    async def _acknowledge_batch(
        self,
        local_batch_id: str,
        booster_ids: list[str],
        operation_type: OperationType,
    ) -> None:
        try:
            ack = await self.backend.submit_batch(booster_ids, operation_type)
        except Exception as e:
            logger.exception("batch_submission_request_failed", batch_id=local_batch_id)
            self._fail_batch(local_batch_id, f"Batch submission failed: {e}")
            return

        if not ack.success or not ack.batch_id:
            self._fail_batch(local_batch_id, ack.reason or "Backend rejected the batch")
            return

        try:
            self._store.rekey_batch(local_batch_id, ack.batch_id)
        except StoreIntegrityError as e:
            self._fail_batch(local_batch_id, e.message)
            return

        for member in self._store.batch_members(ack.batch_id):
            reason = ack.validation_errors.get(member.booster_id)
            if reason and not member.is_terminal:
                self._fail_submission(member.id, SubmissionError(reason, member.booster_id))

        logger.info("batch_acknowledged", local_id=local_batch_id, batch_id=ack.batch_id)
        self.reconciler.flush_pending_batch(ack.batch_id)

    def _fail_batch(self, batch_id: str, message: str) -> None:
        for member in self._store.batch_members(batch_id):
            if not member.is_terminal:
                self._fail_submission(member.id, SubmissionError(message, member.booster_id))

    def _fail_submission(self, operation_id: str, error: SubmissionError) -> None:
        logger.warning("submission_failed", operation_id=operation_id, error=error.message)
        self.reconciler.apply(
            OperationEvent(
                operation_id=operation_id,
                type=EventType.FAILED,
                timestamp=get_utc_now(),
                error=error.message,
                source=EventSource.LOCAL,
            )
        )

    def _validate(self, booster_id: str, operation_type: OperationType) -> str | None:
        if self.known_boosters is not None and booster_id not in self.known_boosters:
            return UNKNOWN_BOOSTER

        operations = [item for item in self._store.list() if item.booster_id == booster_id]
        if any(item.status in _IN_FLIGHT for item in operations):
            return ALREADY_QUEUED

        if operation_type is OperationType.APPLY:
            # The most recent successful operation decides whether the booster is applied
            for item in reversed(operations):
                if item.status is OperationStatus.APPLIED:
                    if item.operation_type is OperationType.APPLY:
                        return ALREADY_APPLIED
                    break

        return None

    def _new_local_id(self, kind: str = "") -> str:
        return f"{self.settings.local_id_prefix}{kind}{uuid.uuid4().hex}"

    # Cancellation

    async def cancel(self, operation_id: str) -> None:
        """
        Request cancellation of an operation.

        The backend decides the final state. If no terminal event arrives
        within the cancellation timeout, the operation is cancelled locally
        and marked as assumed.

        Args:
            operation_id: Operation id or local alias

        Raises:
            OperationNotFoundError: If the operation is unknown
            InvalidStateError: If the operation settled, is not acknowledged yet,
                or a cancellation is already pending
            SubmissionError: If the backend rejects the cancellation request
        """
        item = self._require(operation_id)
        if item.is_terminal:
            raise InvalidStateError(item.id, item.status.value)
        if item.provisional:
            raise InvalidStateError(
                item.id,
                item.status.value,
                f"Operation {item.id} has not been acknowledged by the backend yet",
            )
        if item.id in self._cancel_timers:
            raise InvalidStateError(
                item.id, item.status.value, f"Cancellation of {item.id} is already pending"
            )

        try:
            ack = await self.backend.cancel(item.id)
        except Exception as e:
            raise SubmissionError(f"Cancellation request failed: {e}", item.booster_id) from e

        if not ack.success:
            raise SubmissionError(
                ack.reason or "Backend rejected the cancellation", item.booster_id
            )

        logger.info("cancellation_requested", operation_id=item.id)
        self._cancel_timers[item.id] = asyncio.create_task(self._await_cancellation(item.id))

    async def _await_cancellation(self, operation_id: str) -> None:
        try:
            settled = await self._wait_until(
                operation_id,
                lambda item: item.is_terminal,
                self.settings.cancel_timeout_seconds,
            )
            if settled is not None:
                return

            item = self._store.get(operation_id)
            if item is None or item.is_terminal:
                return

            logger.warning(
                "cancellation_assumed",
                operation_id=operation_id,
                timeout=self.settings.cancel_timeout_seconds,
            )
            self.reconciler.apply(
                OperationEvent(
                    operation_id=operation_id,
                    type=EventType.CANCELLED,
                    timestamp=get_utc_now(),
                    source=EventSource.LOCAL,
                )
            )
        finally:
            self._cancel_timers.pop(operation_id, None)

    # Waiting

    async def wait_for(self, operation_id: str, timeout: float | None = None) -> OperationItem:
        """
        Wait until an operation settles.

        Args:
            operation_id: Operation id or local alias
            timeout: Seconds to wait (None waits indefinitely)

        Returns:
            The operation once Applied or Cancelled

        Raises:
            OperationNotFoundError: If the operation is unknown
            OperationFailure: If the operation Failed
            OperationError: If the operation reported a recoverable Error
            TimeoutError: If the operation did not settle in time
        """
        self._require(operation_id)
        item = await self._wait_until(
            operation_id,
            lambda current: current.is_terminal or current.status is OperationStatus.ERROR,
            timeout,
        )
        if item is None:
            raise TimeoutError(f"Operation {operation_id} did not settle within {timeout}s")
        if item.status is OperationStatus.FAILED:
            raise OperationFailure(item.id, item.error or "Operation failed")
        if item.status is OperationStatus.ERROR:
            raise OperationError(item.id, item.error or "Operation reported an error")
        return item

    async def _wait_until(
        self,
        operation_id: str,
        predicate: Callable[[OperationItem], bool],
        timeout: float | None,
    ) -> OperationItem | None:
        item = self._store.get(operation_id)
        if item is not None and predicate(item):
            return item

        done: asyncio.Future[OperationItem] = asyncio.get_running_loop().create_future()

        def on_update(_update: Any) -> None:
            current = self._store.get(operation_id)
            if current is not None and predicate(current) and not done.done():
                done.set_result(current)

        unsubscribe = self.aggregator.subscribe(on_update)
        try:
            return await asyncio.wait_for(done, timeout)
        except TimeoutError:
            return None
        finally:
            unsubscribe()

    # Events

    def ingest(self, payload: dict[str, Any]) -> ReconcileOutcome | None:
        """Feed one raw backend event payload into the pipeline."""
        return self.ingestor.ingest(payload)

    # Queries

    def get_by_id(self, operation_id: str) -> OperationItem | None:
        """Operation by backend id or local alias."""
        return self._store.get(operation_id)

    def list(self) -> list[OperationItem]:
        """All operations in submission order."""
        return self._store.list()

    def get_batch(self, batch_id: str) -> Batch | None:
        """Batch by backend id or local alias."""
        return self._store.get_batch(batch_id)

    def get_batch_progress(self, batch_id: str) -> BatchProgress | None:
        """Percent complete and outcome counts for a batch."""
        return self.aggregator.batch_progress(batch_id)

    def stats(self) -> QueueStats:
        """Status counts across all operations."""
        return self.aggregator.stats()

    def diagnostics(self) -> list[ReconciliationDiagnostic]:
        """Retained reconciliation diagnostics."""
        return self.diagnostics_log.entries()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Subscribe to queue updates.

        Args:
            callback: Receives a QueueUpdate after every change

        Returns:
            Unsubscribe function
        """
        return self.aggregator.subscribe(callback)

    def remove(self, operation_id: str) -> OperationItem:
        """
        Evict a settled operation.

        Raises:
            OperationNotFoundError: If the operation is unknown
            InvalidStateError: If the operation has not settled
        """
        self._require(operation_id)
        return self._store.remove(operation_id)

    def _require(self, operation_id: str) -> OperationItem:
        item = self._store.get(operation_id)
        if item is None:
            raise OperationNotFoundError(operation_id)
        return item

    # Lifecycle

    async def aclose(self) -> None:
        """Cancel pending cancellation timers and detach subscribers."""
        timers = list(self._cancel_timers.values())
        for timer in timers:
            timer.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
        self._cancel_timers.clear()
        self.aggregator.close()
