"""Catalog, reference data and ledger records."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, ClassVar, Optional

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


def format_timestamp(value: datetime) -> str:
    """Fixed-width ISO form so stored timestamps sort lexicographically."""
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value))


class TransactionDirection(str, Enum):
    IN = "IN"
    OUT = "OUT"
    ADJUSTMENT = "ADJUSTMENT"


class SourceType(str, Enum):
    SUPPLIER = "SUPPLIER"
    RTS = "RTS"
    MANUAL = "MANUAL"


class UserRole(str, Enum):
    SUPERADMIN = "SUPERADMIN"
    ADMIN = "ADMIN"
    USER = "USER"


class StockStatus(str, Enum):
    IN_STOCK = "IN_STOCK"
    LOW_STOCK = "LOW_STOCK"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    CRITICAL = "CRITICAL"

    @property
    def label(self) -> str:
        return _STOCK_STATUS_LABELS[self]


_STOCK_STATUS_LABELS = {
    StockStatus.IN_STOCK: "In Stock",
    StockStatus.LOW_STOCK: "Low Stock",
    StockStatus.OUT_OF_STOCK: "Out of Stock",
    StockStatus.CRITICAL: "Critical",
}


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    STOCK_IN = "STOCK_IN"
    STOCK_OUT = "STOCK_OUT"


class Record:
    """Document mapping shared by every stored record.

    Enum values are stored by value and datetimes with ``TIMESTAMP_FORMAT``.
    Unknown keys in a stored document are ignored when loading.
    """

    COLLECTION: ClassVar[str] = ""
    _ENUM_FIELDS: ClassVar[dict[str, type]] = {}
    _DATETIME_FIELDS: ClassVar[tuple[str, ...]] = ()

    def to_item(self) -> dict[str, Any]:
        item: dict[str, Any] = {}
        for f in fields(self):
            item[f.name] = _encode(getattr(self, f.name))
        return item

    @classmethod
    def from_item(cls, item: dict[str, Any]):
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in item.items() if k in known}
        for name, enum_type in cls._ENUM_FIELDS.items():
            if kwargs.get(name) is not None:
                kwargs[name] = enum_type(kwargs[name])
        for name in cls._DATETIME_FIELDS:
            if name in kwargs:
                kwargs[name] = parse_timestamp(kwargs[name])
        return cls(**kwargs)


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, Record):
        return value.to_item()
    if isinstance(value, list):
        return [_encode(v) for v in value]
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    return value


# --- Catalog ---


@dataclass
class Product(Record):
    COLLECTION: ClassVar[str] = "products"

    id: str
    name: str
    category_id: str
    description: str = ""
    color_id: Optional[str] = None
    size_id: Optional[str] = None
    is_active: bool = True
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class SKU(Record):
    COLLECTION: ClassVar[str] = "skus"
    # one document per normalized code, holding the owning sku_id
    CODE_INDEX: ClassVar[str] = "sku_codes"

    id: str
    product_id: str
    sku_code: str
    price: float = 0.0
    cost: float = 0.0
    stock: int = 0
    reorder_point: int = 0
    size_id: Optional[str] = None
    color_id: Optional[str] = None
    is_active: bool = True
    version: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# --- Reference data ---


@dataclass
class Category(Record):
    COLLECTION: ClassVar[str] = "categories"

    id: str
    name: str
    sort_order: int = 0
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Color(Record):
    COLLECTION: ClassVar[str] = "colors"

    id: str
    name: str
    hex_code: str = ""
    sort_order: int = 0
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Size(Record):
    COLLECTION: ClassVar[str] = "sizes"

    id: str
    name: str
    sort_order: int = 0
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Supplier(Record):
    COLLECTION: ClassVar[str] = "suppliers"

    id: str
    name: str
    contact_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Platform(Record):
    COLLECTION: ClassVar[str] = "platforms"

    id: str
    name: str
    fee_percentage: float = 0.0
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class ReasonCategory(Record):
    COLLECTION: ClassVar[str] = "reason_categories"
    _ENUM_FIELDS: ClassVar[dict[str, type]] = {"direction": TransactionDirection}

    id: str
    name: str
    direction: TransactionDirection
    requires_platform: bool = False
    requires_supplier: bool = False
    is_active: bool = True
    sort_order: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class SystemSettings(Record):
    COLLECTION: ClassVar[str] = "settings"
    DOCUMENT_ID: ClassVar[str] = "general"

    business_name: str = "My Inventory"
    currency: str = "PHP"
    currency_symbol: str = "₱"
    default_reorder_point: int = 10
    low_stock_threshold: int = 5
    enable_low_stock_alerts: bool = True
    enable_negative_stock: bool = False


@dataclass(frozen=True)
class UserIdentity:
    id: str
    display_name: str
    email: str = ""
    role: UserRole = UserRole.USER


# --- Ledger ---


@dataclass
class TransactionLineItem(Record):
    sku_id: str
    sku_code: str
    product_name: str
    quantity: int
    unit_price: float
    unit_cost: float
    total_price: float


@dataclass
class InventoryTransaction(Record):
    COLLECTION: ClassVar[str] = "inventory_transactions"
    _ENUM_FIELDS: ClassVar[dict[str, type]] = {
        "direction": TransactionDirection,
        "source_type": SourceType,
    }
    _DATETIME_FIELDS: ClassVar[tuple[str, ...]] = ("transaction_date",)

    id: str
    direction: TransactionDirection
    reason_category_id: str
    transaction_date: datetime
    line_items: list[TransactionLineItem] = field(default_factory=list)
    total_quantity: int = 0
    total_amount: float = 0.0
    source_type: Optional[SourceType] = None
    supplier_id: Optional[str] = None
    platform_id: Optional[str] = None
    platform_fee: Optional[float] = None
    net_amount: Optional[float] = None
    reference_number: Optional[str] = None
    customer_name: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_by_name: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> "InventoryTransaction":
        txn = super().from_item(item)
        txn.line_items = [
            li if isinstance(li, TransactionLineItem) else TransactionLineItem.from_item(li)
            for li in txn.line_items
        ]
        return txn


@dataclass
class AuditLogEntry(Record):
    COLLECTION: ClassVar[str] = "audit_logs"
    _ENUM_FIELDS: ClassVar[dict[str, type]] = {"action": AuditAction}

    id: str
    action: AuditAction
    collection: str
    document_id: str
    user_id: str
    user_name: str
    user_email: str = ""
    details: Optional[str] = None
    created_at: Optional[str] = None


REFERENCE_TYPES: dict[str, type] = {
    Category.COLLECTION: Category,
    Color.COLLECTION: Color,
    Size.COLLECTION: Size,
    Supplier.COLLECTION: Supplier,
    Platform.COLLECTION: Platform,
    ReasonCategory.COLLECTION: ReasonCategory,
}
