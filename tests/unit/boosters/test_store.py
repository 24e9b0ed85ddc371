"""
Unit tests for the queue state store.
"""

from typing import get_type_hints

import pytest

from boosters.models import Batch, OperationItem, OperationStatus
from boosters.store import ChangeKind, QueueStateStore
from shared.exceptions import InvalidStateError, StoreIntegrityError


def _item(item_id: str, booster_id: str = "b1", **kwargs) -> OperationItem:
    return OperationItem(id=item_id, local_id=item_id, booster_id=booster_id, **kwargs)


def _batch(batch_id: str, total: int, queued: int) -> Batch:
    return Batch(batch_id=batch_id, local_id=batch_id, total_count=total, queued_count=queued)


@pytest.fixture
def changes(store):
    """Changes recorded by a store listener."""
    recorded = []
    store.add_listener(recorded.append)
    return recorded


class TestUpsert:
    """Tests for inserting and replacing operations."""

    def test_insert_and_get(self, store, changes):
        """Test a new operation is stored and announced."""
        store.upsert(_item("local-1"))

        assert store.get("local-1").booster_id == "b1"
        assert "local-1" in store
        assert len(store) == 1
        assert changes[0].kind is ChangeKind.UPSERT
        assert changes[0].operation_id == "local-1"

    def test_replace(self, store):
        """Test replacing an operation with a new snapshot."""
        item = store.upsert(_item("local-1"))
        store.upsert(item.model_copy(update={"status": OperationStatus.PROCESSING}))

        assert store.get("local-1").status is OperationStatus.PROCESSING
        assert len(store) == 1

    def test_terminal_is_immutable(self, store):
        """Test a settled operation cannot change without override."""
        store.upsert(_item("local-1", status=OperationStatus.APPLIED))

        with pytest.raises(StoreIntegrityError):
            store.upsert(_item("local-1", status=OperationStatus.PROCESSING))

    def test_terminal_override(self, store):
        """Test the override path may replace a settled operation."""
        store.upsert(_item("local-1", status=OperationStatus.CANCELLED))

        store.upsert(_item("local-1", status=OperationStatus.APPLIED), override=True)

        assert store.get("local-1").status is OperationStatus.APPLIED

    def test_cannot_join_batch_after_creation(self, store):
        """Test standalone inserts cannot reference a batch."""
        with pytest.raises(StoreIntegrityError):
            store.upsert(_item("local-1", batch_id="batch-1"))

    def test_cannot_change_booster(self, store):
        """Test the booster of an operation is fixed."""
        store.upsert(_item("local-1"))

        with pytest.raises(StoreIntegrityError):
            store.upsert(_item("local-1", booster_id="b2"))

    def test_preserves_insertion_order(self, store):
        """Test list() returns operations in submission order."""
        for index in range(3):
            store.upsert(_item(f"local-{index}", booster_id=f"b{index}"))

        assert [item.id for item in store.list()] == ["local-0", "local-1", "local-2"]


class TestRekey:
    """Tests for attaching backend ids."""

    def test_rekey_keeps_alias(self, store, changes):
        """Test the local id still resolves after rekeying."""
        store.upsert(_item("local-1"))

        updated = store.rekey("local-1", "op-1")

        assert updated.id == "op-1"
        assert updated.local_id == "local-1"
        assert updated.provisional is False
        assert store.get("local-1") is store.get("op-1")
        assert store.resolve("local-1") == "op-1"
        assert changes[-1].kind is ChangeKind.REKEY
        assert changes[-1].previous_id == "local-1"

    def test_rekey_preserves_order(self, store):
        """Test rekeying does not move the operation."""
        store.upsert(_item("local-1", booster_id="b1"))
        store.upsert(_item("local-2", booster_id="b2"))

        store.rekey("local-1", "op-1")

        assert [item.id for item in store.list()] == ["op-1", "local-2"]

    def test_rekey_to_taken_id(self, store):
        """Test a backend id cannot be attached twice."""
        store.upsert(_item("local-1", booster_id="b1"))
        store.upsert(_item("local-2", booster_id="b2"))
        store.rekey("local-1", "op-1")

        with pytest.raises(StoreIntegrityError):
            store.rekey("local-2", "op-1")

    def test_rekey_unknown(self, store):
        """Test rekeying an unknown operation fails."""
        with pytest.raises(StoreIntegrityError):
            store.rekey("missing", "op-1")


class TestBatches:
    """Tests for batch creation and maintenance."""

    def test_create_batch(self, store, changes):
        """Test members and batch are stored atomically."""
        members = [
            _item("local-1", booster_id="b1", batch_id="local-batch"),
            _item("local-2", booster_id="b2", batch_id="local-batch"),
        ]

        store.create_batch(_batch("local-batch", total=3, queued=2), members)

        assert store.get_batch("local-batch").queued_count == 2
        assert [m.id for m in store.batch_members("local-batch")] == ["local-1", "local-2"]
        assert [change.kind for change in changes] == [ChangeKind.BATCH]

    def test_create_batch_count_mismatch(self, store):
        """Test queued count must match the members given."""
        members = [_item("local-1", batch_id="local-batch")]

        with pytest.raises(StoreIntegrityError):
            store.create_batch(_batch("local-batch", total=2, queued=2), members)

        assert store.get_batch("local-batch") is None
        assert len(store) == 0

    def test_create_batch_queued_exceeds_total(self, store):
        """Test a batch cannot queue more than requested."""
        members = [
            _item("local-1", booster_id="b1", batch_id="local-batch"),
            _item("local-2", booster_id="b2", batch_id="local-batch"),
        ]

        with pytest.raises(StoreIntegrityError):
            store.create_batch(_batch("local-batch", total=1, queued=2), members)

    def test_create_batch_member_must_reference_batch(self, store):
        """Test every member references the batch."""
        with pytest.raises(StoreIntegrityError):
            store.create_batch(_batch("local-batch", total=1, queued=1), [_item("local-1")])

    def test_empty_batch(self, store):
        """Test a batch whose every id was rejected."""
        store.create_batch(_batch("local-batch", total=2, queued=0), [])

        assert store.batch_members("local-batch") == []

    def test_counts_are_historical(self, store):
        """Test batch counts cannot change after creation."""
        batch = store.create_batch(_batch("local-batch", total=1, queued=0), [])

        with pytest.raises(StoreIntegrityError):
            store.update_batch(batch.model_copy(update={"total_count": 5}))

    def test_rekey_batch(self, store):
        """Test rekeying a batch rewrites its members."""
        members = [_item("local-1", batch_id="local-batch")]
        store.create_batch(_batch("local-batch", total=1, queued=1), members)

        store.rekey_batch("local-batch", "batch-1")

        assert store.get_batch("local-batch").batch_id == "batch-1"
        assert store.get("local-1").batch_id == "batch-1"
        assert [m.id for m in store.batch_members("batch-1")] == ["local-1"]

    def test_list_batches(self, store):
        """Test batches are listed in creation order with resolvable annotations."""
        store.create_batch(_batch("batch-a", total=1, queued=0), [])
        store.create_batch(_batch("batch-b", total=1, queued=0), [])

        assert [batch.batch_id for batch in store.list_batches()] == ["batch-a", "batch-b"]
        assert get_type_hints(QueueStateStore.list_batches)["return"] == list[Batch]


class TestRemove:
    """Tests for evicting settled operations."""

    def test_remove_settled(self, store, changes):
        """Test removing retires the id and its aliases."""
        store.upsert(_item("local-1", status=OperationStatus.APPLIED))
        store.rekey("local-1", "op-1")

        removed = store.remove("op-1")

        assert removed.id == "op-1"
        assert store.get("op-1") is None
        assert store.is_retired("op-1")
        assert store.is_retired("local-1")
        assert changes[-1].kind is ChangeKind.REMOVE

    def test_remove_in_flight(self, store):
        """Test in-flight operations cannot be removed."""
        store.upsert(_item("local-1"))

        with pytest.raises(InvalidStateError):
            store.remove("local-1")

    def test_retired_id_not_reused(self, store):
        """Test a removed id cannot be inserted again."""
        store.upsert(_item("local-1", status=OperationStatus.FAILED))
        store.remove("local-1")

        with pytest.raises(StoreIntegrityError):
            store.upsert(_item("local-1"))

    def test_remove_batch_member_records_outcome(self, store):
        """Test evicted batch members are still counted by the batch."""
        members = [_item("local-1", batch_id="local-batch", status=OperationStatus.APPLIED)]
        store.create_batch(_batch("local-batch", total=1, queued=1), members)

        store.remove("local-1")

        batch = store.get_batch("local-batch")
        assert batch.evicted_outcomes == {OperationStatus.APPLIED: 1}
        assert store.batch_members("local-batch") == []


class TestListeners:
    """Tests for listener registration."""

    def test_remove_listener(self):
        """Test a removed listener is not called."""
        store = QueueStateStore()
        recorded = []
        remove = store.add_listener(recorded.append)

        remove()
        store.upsert(_item("local-1"))

        assert recorded == []
