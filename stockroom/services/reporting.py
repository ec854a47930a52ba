"""Read-only rollups over SKUs and ledger transactions.

Everything here is a plain function over records the caller already loaded,
so a report never touches the store. Adjustments count toward stock in/out
using their reason's direction, which is why some functions take the
reference snapshot.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Iterable, Optional

from stockroom.models.inventory import (
    SKU,
    InventoryTransaction,
    Product,
    StockStatus,
    TransactionDirection,
)
from stockroom.services.reference_data import ReferenceSnapshot

logger = logging.getLogger(__name__)

NO_PLATFORM = "none"
UNKNOWN_PRODUCT = "Unknown"
UNCATEGORIZED = "Uncategorized"
NO_ATTRIBUTE = "-"


# --- Stock status ---


def stock_status(stock: int, reorder_point: int) -> StockStatus:
    """Classify a stock level. Exactly one status applies to any value."""
    if stock < 0:
        return StockStatus.CRITICAL
    if stock == 0:
        return StockStatus.OUT_OF_STOCK
    if stock <= reorder_point:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


def low_stock_alerts(skus: Iterable[SKU], limit: int = 10) -> list[SKU]:
    """Active SKUs at or below their reorder point, emptiest first."""
    low = [s for s in skus if s.is_active and s.stock <= s.reorder_point]
    low.sort(key=lambda s: s.stock)
    return low[:limit]


def movement_direction(
    transaction: InventoryTransaction, context: Optional[ReferenceSnapshot] = None
) -> Optional[TransactionDirection]:
    """IN or OUT as seen by the stock counter; None for an unresolvable adjustment."""
    if transaction.direction != TransactionDirection.ADJUSTMENT:
        return transaction.direction
    reason = context.reason(transaction.reason_category_id) if context else None
    if reason is None or reason.direction == TransactionDirection.ADJUSTMENT:
        return None
    return reason.direction


def _day(value: datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


# --- Dashboard ---


@dataclass
class DashboardStats:
    active_products: int = 0
    active_skus: int = 0
    total_on_hand: int = 0
    inventory_value: float = 0.0
    low_stock_count: int = 0
    out_of_stock_count: int = 0
    today_revenue: float = 0.0
    today_sales_count: int = 0


def dashboard_stats(
    products: Iterable[Product],
    skus: Iterable[SKU],
    transactions: Iterable[InventoryTransaction] = (),
    today: Optional[date] = None,
) -> DashboardStats:
    """Headline numbers. Only active SKUs count; revenue is gross Stock Out
    for transactions dated ``today``."""
    today = today or date.today()
    active_skus = [s for s in skus if s.is_active]
    todays_sales = [
        t for t in transactions
        if t.direction == TransactionDirection.OUT and _day(t.transaction_date) == today
    ]
    return DashboardStats(
        active_products=sum(1 for p in products if p.is_active),
        active_skus=len(active_skus),
        total_on_hand=sum(s.stock for s in active_skus),
        inventory_value=round(sum(s.stock * s.cost for s in active_skus), 2),
        low_stock_count=sum(1 for s in active_skus if 0 < s.stock <= s.reorder_point),
        out_of_stock_count=sum(1 for s in active_skus if s.stock <= 0),
        today_revenue=round(sum(t.total_amount for t in todays_sales), 2),
        today_sales_count=len(todays_sales),
    )


@dataclass
class SalesPoint:
    label: str
    day: date
    revenue: float = 0.0
    count: int = 0


def sales_series(
    transactions: Iterable[InventoryTransaction],
    today: Optional[date] = None,
    days: int = 7,
) -> list[SalesPoint]:
    """Daily Stock Out revenue for the last ``days`` days, oldest first, today included."""
    today = today or date.today()
    points = [
        SalesPoint(label=d.strftime("%a"), day=d)
        for d in (today - timedelta(days=offset) for offset in range(days - 1, -1, -1))
    ]
    by_day = {p.day: p for p in points}
    for txn in transactions:
        if txn.direction != TransactionDirection.OUT:
            continue
        point = by_day.get(_day(txn.transaction_date))
        if point is None:
            continue
        point.revenue = round(point.revenue + txn.total_amount, 2)
        point.count += 1
    return points


# --- Category breakdown ---


@dataclass
class PlatformMovement:
    stock_in: int = 0
    stock_out: int = 0


@dataclass
class BreakdownRow:
    sku_id: str
    product_id: str
    product_name: str
    sku_code: str
    category_id: str
    category_name: str
    size_name: str
    color_name: str
    current_stock: int
    total_in: int = 0
    total_out: int = 0
    platforms: dict[str, PlatformMovement] = field(default_factory=dict)

    def matches(self, search: str) -> bool:
        needle = search.lower()
        return any(
            needle in value.lower()
            for value in (self.product_name, self.sku_code, self.size_name, self.color_name)
        )


@dataclass
class CategoryGroup:
    category_name: str
    rows: list[BreakdownRow]

    @property
    def total_in(self) -> int:
        return sum(r.total_in for r in self.rows)

    @property
    def total_out(self) -> int:
        return sum(r.total_out for r in self.rows)


def category_breakdown(
    skus: Iterable[SKU],
    products: Iterable[Product],
    transactions: Iterable[InventoryTransaction],
    context: ReferenceSnapshot,
    category_id: Optional[str] = None,
    search: str = "",
) -> list[CategoryGroup]:
    """Per-SKU movement totals with a per-platform matrix, grouped by category.

    Every SKU gets a row even without movements. The platform matrix has one
    column per known platform plus ``NO_PLATFORM``. Groups are sorted by
    category name.
    """
    products_by_id = {p.id: p for p in products}
    platform_ids = list(context.platforms) + [NO_PLATFORM]

    rows: dict[str, BreakdownRow] = {}
    for sku in skus:
        product = products_by_id.get(sku.product_id)
        category = context.category(product.category_id) if product else None
        size = context.size(sku.size_id)
        color = context.color(sku.color_id)
        rows[sku.id] = BreakdownRow(
            sku_id=sku.id,
            product_id=sku.product_id,
            product_name=product.name if product else UNKNOWN_PRODUCT,
            sku_code=sku.sku_code,
            category_id=product.category_id if product else "",
            category_name=category.name if category else UNCATEGORIZED,
            size_name=size.name if size else NO_ATTRIBUTE,
            color_name=color.name if color else NO_ATTRIBUTE,
            current_stock=sku.stock,
            platforms={pid: PlatformMovement() for pid in platform_ids},
        )

    for txn in transactions:
        direction = movement_direction(txn, context)
        if direction is None:
            continue
        platform_id = txn.platform_id or NO_PLATFORM
        for item in txn.line_items:
            row = rows.get(item.sku_id)
            if row is None:
                continue
            cell = row.platforms.get(platform_id)
            if direction == TransactionDirection.IN:
                row.total_in += item.quantity
                if cell:
                    cell.stock_in += item.quantity
            else:
                row.total_out += item.quantity
                if cell:
                    cell.stock_out += item.quantity

    groups: dict[str, list[BreakdownRow]] = defaultdict(list)
    for row in rows.values():
        if category_id and row.category_id != category_id:
            continue
        if search and not row.matches(search):
            continue
        groups[row.category_name].append(row)

    return [CategoryGroup(name, groups[name]) for name in sorted(groups, key=str.lower)]


# --- Transactions page ---


@dataclass
class TransactionSummary:
    count: int = 0
    total_in: int = 0
    total_out: int = 0
    total_revenue: float = 0.0

    @property
    def net_movement(self) -> int:
        return self.total_in - self.total_out


def transaction_summary(
    transactions: Iterable[InventoryTransaction],
    context: Optional[ReferenceSnapshot] = None,
) -> TransactionSummary:
    summary = TransactionSummary()
    for txn in transactions:
        summary.count += 1
        direction = movement_direction(txn, context)
        if direction == TransactionDirection.IN:
            summary.total_in += txn.total_quantity
        elif direction == TransactionDirection.OUT:
            summary.total_out += txn.total_quantity
        if txn.direction == TransactionDirection.OUT:
            summary.total_revenue += txn.total_amount
    summary.total_revenue = round(summary.total_revenue, 2)
    return summary


def filter_transactions(
    transactions: Iterable[InventoryTransaction],
    direction: Optional[TransactionDirection] = None,
    search: str = "",
) -> list[InventoryTransaction]:
    """Match reference number, notes, or any line item's SKU code or product name."""
    needle = search.lower()

    def matches(txn: InventoryTransaction) -> bool:
        if direction is not None and txn.direction != direction:
            return False
        if not needle:
            return True
        if needle in (txn.reference_number or "").lower() or needle in (txn.notes or "").lower():
            return True
        return any(
            needle in li.sku_code.lower() or needle in li.product_name.lower()
            for li in txn.line_items
        )

    return [t for t in transactions if matches(t)]


# --- Inventory report ---


class SortField(str, Enum):
    NAME = "name"
    STOCK = "stock"
    VALUE = "value"


@dataclass
class InventoryRow:
    sku: SKU
    product: Product
    category_name: str
    size_name: str
    color_name: str
    status: StockStatus

    @property
    def value(self) -> float:
        return self.sku.stock * self.sku.cost


@dataclass
class InventoryStats:
    products: int = 0
    skus: int = 0
    total_on_hand: int = 0
    total_value: float = 0.0
    low_stock: int = 0
    out_of_stock: int = 0


@dataclass
class InventoryReport:
    rows: list[InventoryRow]
    stats: InventoryStats


_SORT_KEYS = {
    SortField.NAME: lambda row: row.product.name.lower(),
    SortField.STOCK: lambda row: row.sku.stock,
    SortField.VALUE: lambda row: row.value,
}


def inventory_report(
    skus: Iterable[SKU],
    products: Iterable[Product],
    context: ReferenceSnapshot,
    search: str = "",
    category_id: Optional[str] = None,
    status: Optional[StockStatus] = None,
    sort_by: SortField = SortField.NAME,
    descending: bool = False,
) -> InventoryReport:
    """Filtered, sorted SKU rows with totals over the rows shown.

    SKUs whose product no longer exists are left out. ``search`` matches the
    product name or SKU code.
    """
    products_by_id = {p.id: p for p in products}
    needle = search.lower()
    rows: list[InventoryRow] = []
    for sku in skus:
        product = products_by_id.get(sku.product_id)
        if product is None:
            continue
        if needle and needle not in product.name.lower() and needle not in sku.sku_code.lower():
            continue
        if category_id and product.category_id != category_id:
            continue
        sku_status = stock_status(sku.stock, sku.reorder_point)
        if status is not None and sku_status != status:
            continue
        category = context.category(product.category_id)
        size = context.size(sku.size_id)
        color = context.color(sku.color_id)
        rows.append(InventoryRow(
            sku=sku,
            product=product,
            category_name=category.name if category else "",
            size_name=size.name if size else "",
            color_name=color.name if color else "",
            status=sku_status,
        ))

    rows.sort(key=_SORT_KEYS[SortField(sort_by)], reverse=descending)

    stats = InventoryStats(
        products=len({r.product.id for r in rows}),
        skus=len(rows),
        total_on_hand=sum(r.sku.stock for r in rows),
        total_value=round(sum(r.value for r in rows), 2),
        low_stock=sum(1 for r in rows if 0 < r.sku.stock <= r.sku.reorder_point),
        out_of_stock=sum(1 for r in rows if r.sku.stock <= 0),
    )
    logger.debug("Inventory report: %d rows (sort %s)", len(rows), SortField(sort_by).value)
    return InventoryReport(rows=rows, stats=stats)
