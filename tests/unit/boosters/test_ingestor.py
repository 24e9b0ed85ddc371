"""
Unit tests for event ingestion.
"""

from datetime import UTC, datetime

import pytest

from boosters.diagnostics import DiagnosticKind
from boosters.ingestor import EventIngestor
from boosters.models import (
    BatchQueuedEvent,
    EventType,
    OperationEvent,
    OperationItem,
    OperationStatus,
)
from boosters.reconciler import ReconcileOutcome


@pytest.fixture
def ingestor(reconciler):
    """Ingestor sharing the reconciler's diagnostics."""
    return EventIngestor(reconciler)


class TestNormalize:
    """Tests for payload normalization."""

    def test_operation_event(self, ingestor, make_payload):
        """Test a per-operation payload becomes an OperationEvent."""
        event = ingestor.normalize(
            make_payload(
                "booster.processing",
                at=1,
                OperationID="op-1",
                BoosterID="b1",
                OperationType="apply",
                Status="processing",
                Progress=42.7,
                QueueSize=3,
            )
        )

        assert isinstance(event, OperationEvent)
        assert event.operation_id == "op-1"
        assert event.type is EventType.PROCESSING
        assert event.timestamp == datetime(2024, 5, 1, 12, 0, 1, tzinfo=UTC)
        assert event.booster_id == "b1"
        assert event.status is OperationStatus.PROCESSING
        assert event.progress == 42
        assert event.queue_size == 3
        assert event.authoritative_override is False

    @pytest.mark.parametrize(
        "event_type", ["booster.success", "booster.failed", "booster.cancelled"]
    )
    def test_outcome_events_are_authoritative(self, ingestor, make_payload, event_type):
        """Test backend outcomes carry the override flag."""
        event = ingestor.normalize(make_payload(event_type, OperationID="op-1"))

        assert event.authoritative_override is True

    def test_progress_clamped(self, ingestor, make_payload):
        """Test out-of-range progress is clamped."""
        event = ingestor.normalize(
            make_payload("booster.processing", OperationID="op-1", Progress=140)
        )

        assert event.progress == 100

    def test_status_aliases(self, ingestor, make_payload):
        """Test backend status spellings are mapped."""
        event = ingestor.normalize(
            make_payload("booster.success", OperationID="op-1", Status="Success")
        )

        assert event.status is OperationStatus.APPLIED

    def test_empty_end_at(self, ingestor, make_payload):
        """Test an empty completion time means absent."""
        event = ingestor.normalize(make_payload("booster.success", OperationID="op-1", EndAt=""))

        assert event.end_at is None

    def test_nanosecond_timestamp(self, ingestor):
        """Test RFC 3339 timestamps with nanoseconds."""
        event = ingestor.normalize(
            {
                "EventType": "booster.queued",
                "Timestamp": "2024-05-01T12:00:00.123456789Z",
                "OperationID": "op-1",
            }
        )

        assert event.timestamp.microsecond == 123456

    def test_envelope(self, ingestor, make_payload):
        """Test payloads wrapped in a data envelope."""
        event = ingestor.normalize({"data": make_payload("booster.queued", OperationID="op-1")})

        assert event.operation_id == "op-1"

    def test_batch_event(self, ingestor, make_payload):
        """Test a batch payload becomes a BatchQueuedEvent."""
        event = ingestor.normalize(
            make_payload(
                "booster.batch_queued",
                BatchID="batch-1",
                TotalCount=3,
                QueuedCount=2,
                ValidationErrors={"b3": "Locked"},
            )
        )

        assert isinstance(event, BatchQueuedEvent)
        assert event.total_count == 3
        assert event.queued_count == 2
        assert event.validation_errors == {"b3": "Locked"}

    def test_batch_event_null_errors(self, ingestor, make_payload):
        """Test a null validation error map."""
        event = ingestor.normalize(
            make_payload(
                "booster.batch_queued",
                BatchID="batch-1",
                TotalCount=1,
                QueuedCount=1,
                ValidationErrors=None,
            )
        )

        assert event.validation_errors == {}

    def test_unknown_event_type(self, ingestor, make_payload, diagnostics):
        """Test unknown event types are recorded and dropped."""
        assert ingestor.normalize(make_payload("booster.exploded", OperationID="op-1")) is None

        assert diagnostics.count(DiagnosticKind.UNKNOWN_EVENT_TYPE) == 1

    def test_missing_operation_id(self, ingestor, make_payload, diagnostics):
        """Test payloads missing required fields are malformed."""
        assert ingestor.normalize(make_payload("booster.processing")) is None

        assert diagnostics.count(DiagnosticKind.MALFORMED_EVENT) == 1

    def test_bad_timestamp(self, ingestor, diagnostics):
        """Test unparseable timestamps are malformed."""
        payload = {"EventType": "booster.queued", "Timestamp": "yesterday", "OperationID": "op-1"}

        assert ingestor.normalize(payload) is None
        assert diagnostics.count(DiagnosticKind.MALFORMED_EVENT) == 1

    def test_non_mapping_payload(self, ingestor, diagnostics):
        """Test non-object payloads are malformed."""
        assert ingestor.normalize(["not", "an", "object"]) is None

        assert diagnostics.count(DiagnosticKind.MALFORMED_EVENT) == 1


class TestIngest:
    """Tests for feeding payloads to the reconciler."""

    def test_ingest_applies_event(self, store, ingestor, make_payload):
        """Test a valid payload updates the store."""
        store.upsert(OperationItem(id="op-1", local_id="local-1", booster_id="b1", provisional=False))

        outcome = ingestor.ingest(make_payload("booster.processing", at=1, OperationID="op-1"))

        assert outcome is ReconcileOutcome.APPLIED
        assert store.get("op-1").status is OperationStatus.PROCESSING

    def test_ingest_many_keeps_order(self, store, ingestor, make_payload):
        """Test a stream with a malformed payload continues."""
        store.upsert(OperationItem(id="op-1", local_id="local-1", booster_id="b1", provisional=False))

        outcomes = ingestor.ingest_many(
            [
                make_payload("booster.processing", at=1, OperationID="op-1"),
                {"EventType": "booster.processing"},
                make_payload("booster.success", at=2, OperationID="op-1"),
            ]
        )

        assert outcomes == [ReconcileOutcome.APPLIED, None, ReconcileOutcome.APPLIED]
        assert store.get("op-1").status is OperationStatus.APPLIED

    @pytest.mark.asyncio
    async def test_handle_message(self, store, ingestor, make_payload):
        """Test the message consumer entry point."""
        store.upsert(OperationItem(id="op-1", local_id="local-1", booster_id="b1", provisional=False))

        await ingestor.handle_message(make_payload("booster.cancelled", at=1, OperationID="op-1"))

        assert store.get("op-1").status is OperationStatus.CANCELLED
