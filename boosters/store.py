"""
In-memory queue state store.

Holds every known operation and batch. The store enforces the queue
invariants (unique ids, batch membership fixed at creation, terminal
operations immutable outside the override path) and performs no other
business logic; transitions are decided by the Reconciler.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from boosters.models import Batch, OperationItem
from shared.config.logging import get_logger
from shared.exceptions import InvalidStateError, StoreIntegrityError

logger = get_logger(__name__)


class ChangeKind(str, Enum):
    """Kinds of store mutations."""

    UPSERT = "upsert"
    REKEY = "rekey"
    REMOVE = "remove"
    BATCH = "batch"


@dataclass(frozen=True)
class StoreChange:
    """Description of a successful store mutation."""

    kind: ChangeKind
    operation_id: str | None = None
    batch_id: str | None = None
    previous_id: str | None = None


StoreListener = Callable[[StoreChange], None]


class QueueStateStore:
    """Authoritative in-memory representation of operations and batches."""

    def __init__(self):
        """Initialize an empty store."""
        self._items: dict[str, OperationItem] = {}
        self._aliases: dict[str, str] = {}
        self._retired: set[str] = set()
        self._batches: dict[str, Batch] = {}
        self._batch_aliases: dict[str, str] = {}
        self._listeners: list[StoreListener] = []

    # Listeners

    def add_listener(self, listener: StoreListener) -> Callable[[], None]:
        """
        Register a listener called synchronously after every mutation.

        Args:
            listener: Callable receiving the StoreChange

        Returns:
            Function removing the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self, change: StoreChange) -> None:
        for listener in list(self._listeners):
            listener(change)

    # Queries

    def resolve(self, operation_id: str) -> str | None:
        """Map a backend id or local alias to the current id."""
        if operation_id in self._items:
            return operation_id
        return self._aliases.get(operation_id)

    def get(self, operation_id: str) -> OperationItem | None:
        """Get an operation by current id or alias."""
        current = self.resolve(operation_id)
        return self._items.get(current) if current else None

    def list(self) -> list[OperationItem]:
        """All operations in insertion order."""
        return list(self._items.values())

    def is_retired(self, operation_id: str) -> bool:
        """Whether the id belonged to an operation that was removed."""
        return operation_id in self._retired

    def resolve_batch(self, batch_id: str) -> str | None:
        """Map a backend batch id or local alias to the current batch id."""
        if batch_id in self._batches:
            return batch_id
        return self._batch_aliases.get(batch_id)

    def get_batch(self, batch_id: str) -> Batch | None:
        """Get a batch by current id or alias."""
        current = self.resolve_batch(batch_id)
        return self._batches.get(current) if current else None

    def list_batches(self) -> list[Batch]:
        """All batches in creation order."""
        return list(self._batches.values())

    def batch_members(self, batch_id: str) -> list[OperationItem]:
        """Live operations that belong to a batch."""
        current = self.resolve_batch(batch_id)
        if current is None:
            return []
        return [item for item in self._items.values() if item.batch_id == current]

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, operation_id: object) -> bool:
        return isinstance(operation_id, str) and self.resolve(operation_id) is not None

    # Mutations

    def _is_taken(self, operation_id: str) -> bool:
        return (
            operation_id in self._items
            or operation_id in self._aliases
            or operation_id in self._retired
        )

    def upsert(self, item: OperationItem, override: bool = False) -> OperationItem:
        """
        Insert a new operation or replace an existing one.

        Args:
            item: Operation snapshot keyed by its current id
            override: Allow replacing a terminal operation (reconciler override path)

        Returns:
            The stored snapshot

        Raises:
            StoreIntegrityError: If the change would break a queue invariant
        """
        existing = self._items.get(item.id)

        if existing is None:
            if self._is_taken(item.id):
                raise StoreIntegrityError(f"Operation id {item.id} is already in use", item.id)
            if item.batch_id is not None:
                raise StoreIntegrityError(
                    f"Operation {item.id} cannot join batch {item.batch_id} after creation",
                    item.id,
                )
        else:
            if existing.is_terminal and not override:
                raise StoreIntegrityError(
                    f"Operation {item.id} is {existing.status.value} and cannot change", item.id
                )
            if item.batch_id != existing.batch_id or item.booster_id != existing.booster_id:
                raise StoreIntegrityError(
                    f"Operation {item.id} cannot change its booster or batch", item.id
                )

        self._items[item.id] = item
        self._notify(StoreChange(ChangeKind.UPSERT, operation_id=item.id, batch_id=item.batch_id))
        return item

    def create_batch(self, batch: Batch, items: Iterable[OperationItem]) -> Batch:
        """
        Insert a batch together with all of its members.

        Args:
            batch: Batch metadata
            items: Member operations, all referencing the batch

        Returns:
            The stored batch

        Raises:
            StoreIntegrityError: If ids collide or counts are inconsistent
        """
        members = list(items)

        if batch.batch_id in self._batches or batch.batch_id in self._batch_aliases:
            raise StoreIntegrityError(f"Batch id {batch.batch_id} is already in use", batch.batch_id)
        if batch.queued_count != len(members):
            raise StoreIntegrityError(
                f"Batch {batch.batch_id} declares {batch.queued_count} members "
                f"but {len(members)} were given",
                batch.batch_id,
            )
        if batch.total_count < batch.queued_count:
            raise StoreIntegrityError(
                f"Batch {batch.batch_id} queued more operations than requested", batch.batch_id
            )

        ids = [member.id for member in members]
        if len(set(ids)) != len(ids) or any(self._is_taken(member_id) for member_id in ids):
            raise StoreIntegrityError(f"Batch {batch.batch_id} reuses an operation id", batch.batch_id)
        if any(member.batch_id != batch.batch_id for member in members):
            raise StoreIntegrityError(
                f"Every member must reference batch {batch.batch_id}", batch.batch_id
            )

        self._batches[batch.batch_id] = batch
        for member in members:
            self._items[member.id] = member

        self._notify(StoreChange(ChangeKind.BATCH, batch_id=batch.batch_id))
        return batch

    def update_batch(self, batch: Batch) -> Batch:
        """
        Replace batch metadata. Membership counts are fixed at creation.

        Raises:
            StoreIntegrityError: If the batch is unknown or its counts change
        """
        existing = self._batches.get(batch.batch_id)
        if existing is None:
            raise StoreIntegrityError(f"Unknown batch {batch.batch_id}", batch.batch_id)
        if (batch.total_count, batch.queued_count) != (existing.total_count, existing.queued_count):
            raise StoreIntegrityError(
                f"Batch {batch.batch_id} counts are historical and cannot change", batch.batch_id
            )

        self._batches[batch.batch_id] = batch
        self._notify(StoreChange(ChangeKind.BATCH, batch_id=batch.batch_id))
        return batch

    def rekey(self, operation_id: str, new_id: str) -> OperationItem:
        """
        Attach a backend id to an operation, keeping the old id as an alias.

        Args:
            operation_id: Current id or alias
            new_id: Backend-assigned id

        Returns:
            The rekeyed snapshot

        Raises:
            StoreIntegrityError: If the operation is unknown or new_id is taken
        """
        current = self.resolve(operation_id)
        if current is None:
            raise StoreIntegrityError(f"Unknown operation {operation_id}", operation_id)

        item = self._items[current]
        if new_id == current:
            updated = item.model_copy(update={"provisional": False})
            self._items[current] = updated
        else:
            if self._is_taken(new_id):
                raise StoreIntegrityError(f"Operation id {new_id} is already in use", new_id)
            updated = item.model_copy(update={"id": new_id, "provisional": False})
            # Keep insertion order stable
            self._items = {
                (new_id if key == current else key): (updated if key == current else value)
                for key, value in self._items.items()
            }
            for alias, target in self._aliases.items():
                if target == current:
                    self._aliases[alias] = new_id
            self._aliases[current] = new_id

        logger.debug("operation_rekeyed", previous_id=current, operation_id=new_id)
        self._notify(
            StoreChange(
                ChangeKind.REKEY,
                operation_id=new_id,
                batch_id=updated.batch_id,
                previous_id=current,
            )
        )
        return updated

    def rekey_batch(self, batch_id: str, new_id: str) -> Batch:
        """
        Attach a backend id to a batch and rewrite its members' batch reference.

        Raises:
            StoreIntegrityError: If the batch is unknown or new_id is taken
        """
        current = self.resolve_batch(batch_id)
        if current is None:
            raise StoreIntegrityError(f"Unknown batch {batch_id}", batch_id)

        batch = self._batches[current]
        if new_id != current and (new_id in self._batches or new_id in self._batch_aliases):
            raise StoreIntegrityError(f"Batch id {new_id} is already in use", new_id)

        updated = batch.model_copy(update={"batch_id": new_id, "provisional": False})
        self._batches = {
            (new_id if key == current else key): (updated if key == current else value)
            for key, value in self._batches.items()
        }
        if new_id != current:
            for alias, target in self._batch_aliases.items():
                if target == current:
                    self._batch_aliases[alias] = new_id
            self._batch_aliases[current] = new_id
            for item_id, item in self._items.items():
                if item.batch_id == current:
                    self._items[item_id] = item.model_copy(update={"batch_id": new_id})

        self._notify(StoreChange(ChangeKind.BATCH, batch_id=new_id, previous_id=current))
        return updated

    def remove(self, operation_id: str) -> OperationItem:
        """
        Evict a settled operation. Its id is retired and never reused.

        Args:
            operation_id: Current id or alias

        Returns:
            The removed snapshot

        Raises:
            StoreIntegrityError: If the operation is unknown
            InvalidStateError: If the operation has not settled
        """
        current = self.resolve(operation_id)
        if current is None:
            raise StoreIntegrityError(f"Unknown operation {operation_id}", operation_id)

        item = self._items[current]
        if not item.is_terminal:
            raise InvalidStateError(
                current,
                item.status.value,
                f"Operation {current} is {item.status.value}; only settled operations can be removed",
            )

        del self._items[current]
        self._retired.add(current)
        for alias in [alias for alias, target in self._aliases.items() if target == current]:
            del self._aliases[alias]
            self._retired.add(alias)

        if item.batch_id is not None:
            batch = self._batches[item.batch_id]
            evicted = dict(batch.evicted_outcomes)
            evicted[item.status] = evicted.get(item.status, 0) + 1
            self._batches[item.batch_id] = batch.model_copy(update={"evicted_outcomes": evicted})

        self._notify(StoreChange(ChangeKind.REMOVE, operation_id=current, batch_id=item.batch_id))
        return item
