"""
Shared fixtures for booster queue tests.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from boosters.backend import BatchAck, CancelAck, SubmitAck
from boosters.config import BoosterQueueSettings
from boosters.diagnostics import DiagnosticsLog
from boosters.models import EventSource, EventType, OperationEvent
from boosters.reconciler import Reconciler
from boosters.store import QueueStateStore

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """Fake monotonic clock."""
    return FakeClock()


@pytest.fixture
def settings():
    """Queue settings with short timeouts."""
    return BoosterQueueSettings(
        cancel_timeout_seconds=0.05,
        event_grace_period_seconds=10.0,
        max_pending_events=5,
        diagnostics_history=100,
    )


@pytest.fixture
def store():
    """Empty queue state store."""
    return QueueStateStore()


@pytest.fixture
def diagnostics():
    """Empty diagnostics log."""
    return DiagnosticsLog(maxlen=100)


@pytest.fixture
def reconciler(store, diagnostics, settings, clock):
    """Reconciler over the store with a fake clock."""
    return Reconciler(store, diagnostics, settings, clock=clock)


@pytest.fixture
def make_event():
    """
    Factory for normalized operation events.

    ``at`` is an offset in seconds from a fixed base time.
    """

    def _make(
        operation_id: str,
        event_type: EventType,
        at: float = 0,
        **kwargs,
    ) -> OperationEvent:
        return OperationEvent(
            operation_id=operation_id,
            type=event_type,
            timestamp=BASE_TIME + timedelta(seconds=at),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_local_event():
    """Factory for locally generated events."""

    def _make(operation_id: str, event_type: EventType, **kwargs) -> OperationEvent:
        return OperationEvent(
            operation_id=operation_id,
            type=event_type,
            timestamp=BASE_TIME,
            source=EventSource.LOCAL,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_payload():
    """Factory for raw backend event payloads."""

    def _make(event_type: str, at: float = 0, **fields) -> dict:
        payload = {
            "EventType": event_type,
            "Timestamp": (BASE_TIME + timedelta(seconds=at)).isoformat().replace("+00:00", "Z"),
        }
        payload.update(fields)
        return payload

    return _make


@pytest.fixture
def backend():
    """Backend that acknowledges everything with sequential ids."""
    counter = {"op": 0, "batch": 0}

    async def submit(booster_id, operation_type):
        counter["op"] += 1
        return SubmitAck(success=True, operation_id=f"op-{counter['op']}")

    async def submit_batch(booster_ids, operation_type):
        counter["batch"] += 1
        return BatchAck(success=True, batch_id=f"batch-{counter['batch']}")

    mock = AsyncMock()
    mock.submit = AsyncMock(side_effect=submit)
    mock.submit_batch = AsyncMock(side_effect=submit_batch)
    mock.cancel = AsyncMock(return_value=CancelAck(success=True))
    return mock
