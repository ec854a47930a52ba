"""Process-local document store guarded by a single lock."""

from __future__ import annotations

import copy
import logging
import threading
from typing import Optional, Sequence

from stockroom.exceptions import ConditionFailed, PersistenceFailed
from stockroom.store.base import (
    Delete,
    DocumentStore,
    Filter,
    Put,
    Update,
    WriteOperation,
    matches,
    sort_and_limit,
)

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store with the same batch semantics as the DynamoDB backend.

    A batch is checked and applied into a staging area while holding the
    lock; the staging area replaces the live documents only when every
    operation succeeded.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._collections: dict[str, dict[str, dict]] = {}
        self._lock = threading.RLock()

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._lock:
            document = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(document) if document is not None else None

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        with self._lock:
            documents = [
                copy.deepcopy(d)
                for d in self._collections.get(collection, {}).values()
                if matches(d, filters)
            ]
        return sort_and_limit(documents, order_by, descending, limit)

    def commit_batch(
        self, operations: Sequence[WriteOperation], token: Optional[str] = None
    ) -> None:
        if not operations:
            return
        with self._lock:
            failed = [
                (op.collection, op.doc_id)
                for op in operations
                if not self._condition_holds(op)
            ]
            if failed:
                logger.debug("Batch rejected, conditions failed for %s", failed)
                raise ConditionFailed(failed_keys=failed)

            staged: dict[tuple[str, str], Optional[dict]] = {}
            now = self._now()
            for index, op in enumerate(operations):
                self._apply_operation(index, op, staged, now)

            for (collection, doc_id), document in staged.items():
                documents = self._collections.setdefault(collection, {})
                if document is None:
                    documents.pop(doc_id, None)
                else:
                    documents[doc_id] = document

        self._notify(op.collection for op in operations)

    # --- Internals ---

    def _current(self, staged: dict, collection: str, doc_id: str) -> Optional[dict]:
        key = (collection, doc_id)
        if key in staged:
            return staged[key]
        return self._collections.get(collection, {}).get(doc_id)

    def _condition_holds(self, op: WriteOperation) -> bool:
        existing = self._collections.get(op.collection, {}).get(op.doc_id)
        if isinstance(op, Put):
            return not (op.if_absent and existing is not None)
        if isinstance(op, Update):
            if existing is None:
                return False
            for field_name, minimum in op.min_values.items():
                value = existing.get(field_name)
                if value is None or value < minimum:
                    return False
            for field_name, expected in op.equals.items():
                if existing.get(field_name) != expected:
                    return False
        return True

    def _apply_operation(
        self, index: int, op: WriteOperation, staged: dict, now: str
    ) -> None:
        key = (op.collection, op.doc_id)
        if isinstance(op, Put):
            existing = self._current(staged, op.collection, op.doc_id) or {}
            document = copy.deepcopy(op.data)
            document["id"] = op.doc_id
            if not document.get("created_at"):
                document["created_at"] = existing.get("created_at") or now
            document["updated_at"] = now
            staged[key] = document
        elif isinstance(op, Update):
            current = self._current(staged, op.collection, op.doc_id)
            if current is None:
                raise PersistenceFailed(f"Document vanished during batch: {key}")
            document = copy.deepcopy(current)
            document.update(copy.deepcopy(op.set_fields))
            for field_name, delta in op.increments.items():
                document[field_name] = (document.get(field_name) or 0) + delta
            document["updated_at"] = now
            staged[key] = document
        elif isinstance(op, Delete):
            staged[key] = None
        else:
            raise TypeError(f"Unknown write operation: {op!r}")
