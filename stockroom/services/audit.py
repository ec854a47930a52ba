"""Best-effort audit trail for catalog edits and stock movements."""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Optional

from stockroom.models.inventory import AuditAction, AuditLogEntry, UserIdentity
from stockroom.store.base import DocumentStore

logger = logging.getLogger(__name__)


class AuditSink(ABC):
    @abstractmethod
    def record(
        self,
        action: AuditAction,
        collection: str,
        document_id: str,
        user: UserIdentity,
        details: Optional[str] = None,
    ) -> AuditLogEntry:
        """Persist one audit entry. May raise; callers treat failures as non-fatal."""


class StoreAuditSink(AuditSink):
    """Writes entries to the ``audit_logs`` collection of a document store."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def record(
        self,
        action: AuditAction,
        collection: str,
        document_id: str,
        user: UserIdentity,
        details: Optional[str] = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            id=str(uuid.uuid4()),
            action=action,
            collection=collection,
            document_id=document_id,
            user_id=user.id,
            user_name=user.display_name,
            user_email=user.email,
            details=details,
        )
        self.store.put(AuditLogEntry.COLLECTION, entry.id, entry.to_item(), if_absent=True)
        return entry

    def recent(self, limit: int = 500) -> list[AuditLogEntry]:
        items = self.store.query(
            AuditLogEntry.COLLECTION, order_by="created_at", descending=True, limit=limit
        )
        return [AuditLogEntry.from_item(i) for i in items]
