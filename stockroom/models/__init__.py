from stockroom.models.inventory import (
    SKU,
    AuditAction,
    AuditLogEntry,
    Category,
    Color,
    InventoryTransaction,
    Platform,
    Product,
    ReasonCategory,
    Size,
    SourceType,
    StockStatus,
    Supplier,
    SystemSettings,
    TransactionDirection,
    TransactionLineItem,
    UserIdentity,
    UserRole,
)

__all__ = [
    "SKU",
    "AuditAction",
    "AuditLogEntry",
    "Category",
    "Color",
    "InventoryTransaction",
    "Platform",
    "Product",
    "ReasonCategory",
    "Size",
    "SourceType",
    "StockStatus",
    "Supplier",
    "SystemSettings",
    "TransactionDirection",
    "TransactionLineItem",
    "UserIdentity",
    "UserRole",
]
