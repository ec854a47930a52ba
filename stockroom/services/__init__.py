from stockroom.services.audit import AuditSink, StoreAuditSink
from stockroom.services.base_service import BaseService
from stockroom.services.catalog import CatalogService, EntityKind
from stockroom.services.ledger import TransactionLedger
from stockroom.services.reference_data import ReferenceDataCache, ReferenceSnapshot
from stockroom.services.stock_engine import (
    LineItemRequest,
    StockMovementRequest,
    StockMovementResult,
    StockMutationEngine,
)

__all__ = [
    "AuditSink",
    "BaseService",
    "CatalogService",
    "EntityKind",
    "LineItemRequest",
    "ReferenceDataCache",
    "ReferenceSnapshot",
    "StockMovementRequest",
    "StockMovementResult",
    "StockMutationEngine",
    "StoreAuditSink",
    "TransactionLedger",
]
