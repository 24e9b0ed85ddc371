"""
Booster operation queue and event reconciliation.

Tracks asynchronous booster operations, reconciles backend status events
against optimistic local state and derives per-batch progress.
"""

from boosters.aggregator import ProgressAggregator
from boosters.backend import BatchAck, BoosterBackend, CancelAck, SubmitAck
from boosters.config import BoosterQueueSettings, get_booster_queue_settings
from boosters.controller import OperationController
from boosters.diagnostics import DiagnosticKind, DiagnosticsLog, ReconciliationDiagnostic
from boosters.ingestor import EventIngestor
from boosters.models import (
    Batch,
    BatchOutcome,
    BatchProgress,
    BatchQueuedEvent,
    BatchSubmitResult,
    EventType,
    OperationEvent,
    OperationItem,
    OperationStatus,
    OperationType,
    QueueStats,
    QueueUpdate,
)
from boosters.reconciler import Reconciler, ReconcileOutcome
from boosters.store import QueueStateStore

__all__ = [
    "OperationController",
    "EventIngestor",
    "Reconciler",
    "ReconcileOutcome",
    "QueueStateStore",
    "ProgressAggregator",
    "BoosterBackend",
    "SubmitAck",
    "BatchAck",
    "CancelAck",
    "BoosterQueueSettings",
    "get_booster_queue_settings",
    "DiagnosticKind",
    "DiagnosticsLog",
    "ReconciliationDiagnostic",
    "Batch",
    "BatchOutcome",
    "BatchProgress",
    "BatchQueuedEvent",
    "BatchSubmitResult",
    "EventType",
    "OperationEvent",
    "OperationItem",
    "OperationStatus",
    "OperationType",
    "QueueStats",
    "QueueUpdate",
]
