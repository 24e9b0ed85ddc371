"""
Domain models for the booster operation queue.

Operations and batches are immutable snapshots: every accepted change
produces a new instance through ``model_copy(update=...)``.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from shared.utils.datetime_utils import get_utc_now


class OperationType(str, Enum):
    """What an operation does to its booster."""

    APPLY = "apply"
    REVERT = "revert"


class OperationStatus(str, Enum):
    """Lifecycle status of an operation."""

    QUEUED = "queued"
    PROCESSING = "processing"
    APPLIED = "applied"
    ERROR = "error"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is allowed."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {OperationStatus.APPLIED, OperationStatus.FAILED, OperationStatus.CANCELLED}
)


class EventType(str, Enum):
    """Closed set of backend event types."""

    PROCESSING = "booster.processing"
    SUCCESS = "booster.success"
    ERROR = "booster.error"
    FAILED = "booster.failed"
    QUEUED = "booster.queued"
    BATCH_QUEUED = "booster.batch_queued"
    CANCELLED = "booster.cancelled"


# Backend outcomes that may revise a locally assumed cancellation
OUTCOME_EVENTS = frozenset({EventType.SUCCESS, EventType.FAILED, EventType.CANCELLED})


class EventSource(str, Enum):
    """Where a normalized event originated."""

    BACKEND = "backend"
    LOCAL = "local"


class FrozenModel(BaseModel):
    """Base model for immutable snapshots."""

    model_config = ConfigDict(frozen=True)


class OperationItem(FrozenModel):
    """One submitted booster operation."""

    id: str = Field(..., description="Current identifier (backend id once acknowledged)")
    local_id: str = Field(..., description="Provisional identifier assigned at submit time")
    booster_id: str = Field(..., description="Booster this operation applies to")
    operation_type: OperationType = Field(OperationType.APPLY, description="Apply or revert")
    batch_id: str | None = Field(None, description="Batch the operation was submitted with")
    status: OperationStatus = Field(OperationStatus.QUEUED, description="Lifecycle status")
    progress: int = Field(0, ge=0, le=100, description="Progress percentage")
    error: str | None = Field(None, description="Error message for Error/Failed")
    created_at: datetime = Field(default_factory=get_utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_event_timestamp: datetime | None = Field(
        None, description="Timestamp of the last accepted backend event"
    )
    locally_assumed: bool = Field(
        False, description="Cancelled status was forced by the local cancellation timeout"
    )
    provisional: bool = Field(True, description="Backend id not attached yet")
    queue_size: int | None = Field(None, description="Last backend queue size reported")

    @property
    def is_terminal(self) -> bool:
        """Whether the operation has settled."""
        return self.status.is_terminal


class Batch(FrozenModel):
    """A set of operations submitted together."""

    batch_id: str
    local_id: str
    operation_type: OperationType = OperationType.APPLY
    total_count: int = Field(..., ge=0, description="Requested size")
    queued_count: int = Field(..., ge=0, description="Accepted after local validation")
    validation_errors: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=get_utc_now)
    provisional: bool = True
    evicted_outcomes: dict[OperationStatus, int] = Field(
        default_factory=dict, description="Settled members removed from the store"
    )
    reported_total_count: int | None = None
    reported_queued_count: int | None = None
    reported_validation_errors: dict[str, str] = Field(default_factory=dict)
    queue_size: int | None = None
    last_event_timestamp: datetime | None = None


class OperationEvent(FrozenModel):
    """Normalized per-operation event."""

    operation_id: str
    type: EventType
    timestamp: datetime
    booster_id: str | None = None
    operation_type: str | None = None
    status: OperationStatus | None = None
    progress: int | None = Field(None, ge=0, le=100)
    error: str | None = None
    end_at: datetime | None = None
    queue_size: int | None = None
    authoritative_override: bool = False
    source: EventSource = EventSource.BACKEND


class BatchQueuedEvent(FrozenModel):
    """Normalized batch progress event."""

    batch_id: str
    timestamp: datetime
    operation_type: str | None = None
    total_count: int = Field(..., ge=0)
    queued_count: int = Field(..., ge=0)
    validation_errors: dict[str, str] = Field(default_factory=dict)
    queue_size: int | None = None
    type: EventType = EventType.BATCH_QUEUED


NormalizedEvent = OperationEvent | BatchQueuedEvent


class BatchSubmitResult(FrozenModel):
    """Outcome of a batch submission."""

    batch_id: str
    total_count: int
    queued_count: int
    validation_errors: dict[str, str] = Field(default_factory=dict)


class BatchOutcome(FrozenModel):
    """Counts per terminal status for a batch."""

    applied: int = 0
    failed: int = 0
    cancelled: int = 0

    def as_dict(self) -> dict[OperationStatus, int]:
        """Counts keyed by status."""
        return {
            OperationStatus.APPLIED: self.applied,
            OperationStatus.FAILED: self.failed,
            OperationStatus.CANCELLED: self.cancelled,
        }


class BatchProgress(FrozenModel):
    """Derived progress of a batch."""

    batch_id: str
    percent: float
    member_count: int
    settled_count: int
    outcome_counts: BatchOutcome

    @property
    def is_complete(self) -> bool:
        """Every member has settled."""
        return self.settled_count == self.member_count


class QueueStats(FrozenModel):
    """Status counts across all live operations."""

    total: int = 0
    queued: int = 0
    processing: int = 0
    applied: int = 0
    error: int = 0
    failed: int = 0
    cancelled: int = 0


class QueueUpdate(FrozenModel):
    """Notification delivered to subscribers after each store change."""

    kind: str
    operation_id: str | None = None
    batch_id: str | None = None
    item: OperationItem | None = None
    batch_progress: BatchProgress | None = None
    stats: QueueStats
