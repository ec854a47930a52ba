"""Common plumbing for services that read and write the document store."""

from __future__ import annotations

import logging
from typing import Optional

from stockroom.models.inventory import AuditAction, AuditLogEntry, UserIdentity
from stockroom.services.audit import AuditSink
from stockroom.store.base import DocumentStore

logger = logging.getLogger(__name__)


class BaseService:
    """Holds the store and the optional audit sink (both injected)."""

    service_name = "BaseService"

    def __init__(self, store: DocumentStore, audit_sink: Optional[AuditSink] = None):
        self.store = store
        self.audit_sink = audit_sink
        logger.debug("Service ready: %s (store: %s)", self.service_name, type(store).__name__)

    def record_audit(
        self,
        action: AuditAction,
        collection: str,
        document_id: str,
        user: Optional[UserIdentity],
        details: Optional[str] = None,
    ) -> Optional[AuditLogEntry]:
        """Send an audit entry after a committed write.

        Failures are logged and dropped; the write they describe stays.
        """
        if self.audit_sink is None or user is None:
            return None
        try:
            return self.audit_sink.record(action, collection, document_id, user, details)
        except Exception as e:
            logger.warning(
                "Audit log write failed [%s %s/%s]: %s",
                action.value,
                collection,
                document_id,
                e,
            )
            return None
