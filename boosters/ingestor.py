"""
Event ingestion.

Normalizes raw backend event payloads into typed events and hands them to
the Reconciler. Malformed or unrecognized payloads are recorded as
diagnostics and never interrupt the stream.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from boosters.diagnostics import DiagnosticKind, DiagnosticsLog
from boosters.models import (
    OUTCOME_EVENTS,
    BatchQueuedEvent,
    EventType,
    NormalizedEvent,
    OperationEvent,
    OperationStatus,
)
from boosters.reconciler import Reconciler, ReconcileOutcome
from shared.config.logging import get_logger
from shared.utils.datetime_utils import parse_utc

logger = get_logger(__name__)

# Backend status strings that do not match an OperationStatus value
_STATUS_ALIASES = {
    "success": OperationStatus.APPLIED,
    "completed": OperationStatus.APPLIED,
    "canceled": OperationStatus.CANCELLED,
}


def _parse_status(raw: str | None) -> OperationStatus | None:
    if not raw:
        return None
    value = raw.strip().lower()
    if value in _STATUS_ALIASES:
        return _STATUS_ALIASES[value]
    try:
        return OperationStatus(value)
    except ValueError:
        return None


class _RawEvent(BaseModel):
    """Fields shared by every backend event payload."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_type: str = Field(..., alias="EventType")
    timestamp: datetime = Field(..., alias="Timestamp")
    operation_type: str | None = Field(None, alias="OperationType")
    queue_size: int | None = Field(None, alias="QueueSize")

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, value: Any) -> datetime:
        """Parse RFC 3339 timestamps into aware UTC datetimes."""
        if isinstance(value, str | datetime):
            return parse_utc(value)
        raise ValueError(f"Unsupported timestamp: {value!r}")


class RawOperationEvent(_RawEvent):
    """Per-operation event payload as emitted by the backend."""

    operation_id: str = Field(..., alias="OperationID", min_length=1)
    booster_id: str | None = Field(None, alias="BoosterID")
    status: str | None = Field(None, alias="Status")
    end_at: datetime | None = Field(None, alias="EndAt")
    error: str | None = Field(None, alias="Error")
    progress: float | None = Field(None, alias="Progress")

    @field_validator("end_at", mode="before")
    @classmethod
    def parse_end_at(cls, value: Any) -> datetime | None:
        """Parse optional completion time; empty strings mean absent."""
        if value in (None, ""):
            return None
        return parse_utc(value)

    def to_event(self, event_type: EventType) -> OperationEvent:
        """Build the normalized event."""
        progress = None
        if self.progress is not None:
            progress = int(min(max(self.progress, 0), 100))

        return OperationEvent(
            operation_id=self.operation_id,
            type=event_type,
            timestamp=self.timestamp,
            booster_id=self.booster_id or None,
            operation_type=self.operation_type or None,
            status=_parse_status(self.status),
            progress=progress,
            error=self.error or None,
            end_at=self.end_at,
            queue_size=self.queue_size,
            authoritative_override=event_type in OUTCOME_EVENTS,
        )


class RawBatchEvent(_RawEvent):
    """Batch progress payload as emitted by the backend."""

    batch_id: str = Field(..., alias="BatchID", min_length=1)
    total_count: int = Field(..., alias="TotalCount", ge=0)
    queued_count: int = Field(..., alias="QueuedCount", ge=0)
    validation_errors: dict[str, str] | None = Field(None, alias="ValidationErrors")

    def to_event(self) -> BatchQueuedEvent:
        """Build the normalized event."""
        return BatchQueuedEvent(
            batch_id=self.batch_id,
            timestamp=self.timestamp,
            operation_type=self.operation_type or None,
            total_count=self.total_count,
            queued_count=self.queued_count,
            validation_errors=self.validation_errors or {},
            queue_size=self.queue_size,
        )


class EventIngestor:
    """Normalizes backend payloads and feeds them to the Reconciler."""

    def __init__(self, reconciler: Reconciler, diagnostics: DiagnosticsLog | None = None):
        """
        Initialize event ingestor.

        Args:
            reconciler: Reconciler receiving normalized events
            diagnostics: Diagnostics log (defaults to the reconciler's)
        """
        self.reconciler = reconciler
        self.diagnostics = diagnostics if diagnostics is not None else reconciler.diagnostics

    def normalize(self, payload: Mapping[str, Any]) -> NormalizedEvent | None:
        """
        Convert a raw payload into a typed event.

        Args:
            payload: Event payload, optionally wrapped as {"data": {...}}

        Returns:
            Normalized event, or None if the payload was rejected
        """
        if not isinstance(payload, Mapping):
            self.diagnostics.record(
                DiagnosticKind.MALFORMED_EVENT,
                f"Payload is not an object: {type(payload).__name__}",
            )
            return None

        body = payload.get("data") if isinstance(payload.get("data"), Mapping) else payload
        raw_type = body.get("EventType")

        try:
            event_type = EventType(raw_type)
        except ValueError:
            self.diagnostics.record(
                DiagnosticKind.UNKNOWN_EVENT_TYPE,
                f"Unrecognized event type {raw_type!r}",
                event_type=str(raw_type),
            )
            return None

        try:
            if event_type is EventType.BATCH_QUEUED:
                return RawBatchEvent.model_validate(body).to_event()
            return RawOperationEvent.model_validate(body).to_event(event_type)
        except (PydanticValidationError, ValueError) as e:
            self.diagnostics.record(
                DiagnosticKind.MALFORMED_EVENT,
                f"Payload failed validation: {e}",
                operation_id=body.get("OperationID"),
                batch_id=body.get("BatchID"),
                event_type=event_type.value,
            )
            return None

    def ingest(self, payload: Mapping[str, Any]) -> ReconcileOutcome | None:
        """
        Normalize a payload and reconcile it.

        Args:
            payload: Raw backend event payload

        Returns:
            Reconcile outcome, or None if the payload was rejected
        """
        event = self.normalize(payload)
        if event is None:
            return None
        return self.reconciler.apply(event)

    def ingest_many(self, payloads: Iterable[Mapping[str, Any]]) -> list[ReconcileOutcome | None]:
        """Ingest payloads in delivery order."""
        return [self.ingest(payload) for payload in payloads]

    async def handle_message(self, message_data: dict[str, Any]) -> None:
        """
        Message consumer handler.

        Args:
            message_data: Decoded message body
        """
        outcome = self.ingest(message_data)
        logger.debug("event_ingested", outcome=outcome.value if outcome else None)
