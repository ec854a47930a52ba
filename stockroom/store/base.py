"""Document store contract shared by the in-memory and DynamoDB backends.

Every document lives in a named collection under a string ``id``. Writes go
through ``commit_batch``, which applies a list of operations as one atomic
unit: either every operation and every attached condition holds and all of
them are applied, or nothing is written.
"""

from __future__ import annotations

import logging
import operator
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Sequence, Union

from stockroom.models.inventory import format_timestamp

logger = logging.getLogger(__name__)

# (field, op, value); op is one of FILTER_OPERATORS
Filter = tuple[str, str, Any]
SnapshotCallback = Callable[[str, list[dict]], None]

FILTER_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    ">=": operator.ge,
    "<=": operator.le,
    ">": operator.gt,
    "<": operator.lt,
}


@dataclass(frozen=True)
class Put:
    """Create (or replace, when ``if_absent`` is False) a whole document."""

    collection: str
    doc_id: str
    data: dict
    if_absent: bool = True


@dataclass(frozen=True)
class Update:
    """Partial update of an existing document.

    ``increments`` are applied server-side (``field = field + delta``).
    ``min_values`` and ``equals`` are conditions checked at commit time
    against the stored document, before any increment is applied.
    """

    collection: str
    doc_id: str
    set_fields: dict = field(default_factory=dict)
    increments: dict = field(default_factory=dict)
    min_values: dict = field(default_factory=dict)
    equals: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Delete:
    collection: str
    doc_id: str


WriteOperation = Union[Put, Update, Delete]


def matches(document: dict, filters: Iterable[Filter]) -> bool:
    for field_name, op, value in filters:
        if op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {op}")
        current = document.get(field_name)
        if current is None:
            if op == "==" and value is None:
                continue
            if op == "!=" and value is not None:
                continue
            return False
        try:
            if not FILTER_OPERATORS[op](current, value):
                return False
        except TypeError:
            return False
    return True


def sort_and_limit(
    documents: list[dict],
    order_by: Optional[str] = None,
    descending: bool = False,
    limit: Optional[int] = None,
) -> list[dict]:
    if order_by:
        # Missing values sort first ascending, last descending
        documents = sorted(
            documents,
            key=lambda d: (d.get(order_by) is not None, d.get(order_by)),
            reverse=descending,
        )
    if limit is not None:
        documents = documents[:limit]
    return documents


class DocumentStore(ABC):
    """Base class: key lookups, filtered queries, atomic batches, snapshots."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or datetime.now
        self._subscribers: dict[str, list[SnapshotCallback]] = {}
        self._subscribers_lock = threading.Lock()

    # --- Reads ---

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        """Return a copy of the document or None."""

    @abstractmethod
    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """Return copies of every matching document."""

    # --- Writes ---

    @abstractmethod
    def commit_batch(
        self, operations: Sequence[WriteOperation], token: Optional[str] = None
    ) -> None:
        """Apply all operations atomically.

        Raises ``ConditionFailed`` when a condition does not hold and
        ``PersistenceFailed`` (or ``OutcomeUnknown``) when the write itself
        fails. ``token`` is an idempotency key for backends that support one.
        """

    def put(self, collection: str, doc_id: str, data: dict, if_absent: bool = False) -> None:
        self.commit_batch([Put(collection, doc_id, data, if_absent=if_absent)])

    def update(self, collection: str, doc_id: str, **changes: Any) -> None:
        self.commit_batch([Update(collection, doc_id, set_fields=changes)])

    def delete(self, collection: str, doc_id: str) -> None:
        self.commit_batch([Delete(collection, doc_id)])

    # --- Snapshot subscriptions ---

    def subscribe(self, collection: str, callback: SnapshotCallback) -> Callable[[], None]:
        """Register a callback receiving the full collection after each change.

        The current snapshot is delivered immediately. Returns an
        unsubscribe function.
        """
        with self._subscribers_lock:
            self._subscribers.setdefault(collection, []).append(callback)
        callback(collection, self.query(collection))

        def unsubscribe() -> None:
            with self._subscribers_lock:
                callbacks = self._subscribers.get(collection, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def _notify(self, collections: Iterable[str]) -> None:
        for collection in sorted(set(collections)):
            with self._subscribers_lock:
                callbacks = list(self._subscribers.get(collection, []))
            if not callbacks:
                continue
            snapshot = self.query(collection)
            for callback in callbacks:
                try:
                    callback(collection, [dict(d) for d in snapshot])
                except Exception:
                    logger.exception("Snapshot listener failed for %s", collection)

    def _now(self) -> str:
        return format_timestamp(self._clock())
