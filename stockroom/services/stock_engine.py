"""Stock mutation engine: the only code path that changes SKU stock.

A movement is validated in a fixed order and stops at the first problem:

1. reason category selected, active, and matching the direction
2. platform / supplier present when the reason requires them
3. at least one line item, every SKU exists and is active, quantities > 0
4. no overselling unless negative stock is enabled
5. prices and costs finite and non-negative

It is then committed as one batch: the ledger entry plus one conditional
update per SKU. The oversell check is repeated inside the batch as a store
condition (``stock >= quantity``), so two sessions selling the last units
cannot both succeed.
"""

from __future__ import annotations

import logging
import math
import threading
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Callable, Optional, Sequence, Union

from stockroom.exceptions import (
    ConditionFailed,
    NotFound,
    PersistenceFailed,
    SubmissionInProgress,
    ValidationFailed,
)
from stockroom.models.inventory import (
    SKU,
    AuditAction,
    InventoryTransaction,
    Platform,
    ReasonCategory,
    SourceType,
    Supplier,
    TransactionDirection,
    TransactionLineItem,
    UserIdentity,
)
from stockroom.services.audit import AuditSink
from stockroom.services.base_service import BaseService
from stockroom.services.catalog import CatalogService, EntityKind
from stockroom.services.ledger import TransactionLedger
from stockroom.services.reference_data import ReferenceSnapshot
from stockroom.store.base import DocumentStore, Update, WriteOperation

logger = logging.getLogger(__name__)

IN = TransactionDirection.IN
OUT = TransactionDirection.OUT
ADJUSTMENT = TransactionDirection.ADJUSTMENT


@dataclass
class LineItemRequest:
    sku_id: str
    quantity: int
    unit_price: Optional[float] = None
    unit_cost: Optional[float] = None


@dataclass
class StockMovementRequest:
    direction: TransactionDirection
    reason_category_id: str
    line_items: list[LineItemRequest] = field(default_factory=list)
    transaction_date: Optional[Union[date, datetime]] = None
    source_type: Optional[SourceType] = None
    supplier_id: Optional[str] = None
    platform_id: Optional[str] = None
    reference_number: Optional[str] = None
    customer_name: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class StockWarning:
    sku_id: str
    message: str
    severity: str  # "warning" | "error"


@dataclass
class StockMovementResult:
    transaction: InventoryTransaction
    item_count: int
    amount: float
    summary: str
    stock_changes: dict[str, int] = field(default_factory=dict)


@dataclass
class _MovementPlan:
    direction: TransactionDirection
    effective_direction: TransactionDirection
    reason: ReasonCategory
    platform: Optional[Platform]
    supplier: Optional[Supplier]
    skus: dict[str, SKU]
    line_items: list[TransactionLineItem]
    quantities: dict[str, int]
    latest_costs: dict[str, float]
    source_type: Optional[SourceType] = None

    @property
    def total_quantity(self) -> int:
        return sum(li.quantity for li in self.line_items)


def money(value: float) -> float:
    return round(float(value) + 0.0, 2)


def platform_fee(gross: float, platform: Optional[Platform]) -> Optional[float]:
    """Fee deducted by a sales platform; ``fee_percentage`` 5 means 5%."""
    if platform is None:
        return None
    return money(gross * platform.fee_percentage / 100)


class StockMutationEngine(BaseService):
    """Validates and commits stock movements for one session.

    An engine refuses a second submission while one is still being written.
    """

    service_name = "StockMutationEngine"

    def __init__(
        self,
        store: DocumentStore,
        audit_sink: Optional[AuditSink] = None,
        catalog: Optional[CatalogService] = None,
        ledger: Optional[TransactionLedger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(store, audit_sink)
        self.catalog = catalog or CatalogService(store)
        self.ledger = ledger or TransactionLedger(store)
        self._clock = clock or datetime.now
        self._submit_lock = threading.Lock()

    # --- Entry points ---

    def stock_in(
        self,
        context: ReferenceSnapshot,
        user: UserIdentity,
        reason_category_id: str,
        line_items: Sequence[LineItemRequest],
        source_type: Optional[SourceType] = None,
        supplier_id: Optional[str] = None,
        **extra,
    ) -> StockMovementResult:
        request = StockMovementRequest(
            direction=IN,
            reason_category_id=reason_category_id,
            line_items=list(line_items),
            source_type=source_type,
            supplier_id=supplier_id,
            **extra,
        )
        return self.submit(request, context, user)

    def stock_out(
        self,
        context: ReferenceSnapshot,
        user: UserIdentity,
        reason_category_id: str,
        line_items: Sequence[LineItemRequest],
        platform_id: Optional[str] = None,
        **extra,
    ) -> StockMovementResult:
        request = StockMovementRequest(
            direction=OUT,
            reason_category_id=reason_category_id,
            line_items=list(line_items),
            platform_id=platform_id,
            **extra,
        )
        return self.submit(request, context, user)

    def adjust(
        self,
        context: ReferenceSnapshot,
        user: UserIdentity,
        reason_category_id: str,
        line_items: Sequence[LineItemRequest],
        **extra,
    ) -> StockMovementResult:
        """Correction whose stock direction comes from the reason category."""
        request = StockMovementRequest(
            direction=ADJUSTMENT,
            reason_category_id=reason_category_id,
            line_items=list(line_items),
            **extra,
        )
        return self.submit(request, context, user)

    def submit(
        self,
        request: StockMovementRequest,
        context: ReferenceSnapshot,
        user: UserIdentity,
    ) -> StockMovementResult:
        if not self._submit_lock.acquire(blocking=False):
            raise SubmissionInProgress(code="SUBMISSION_IN_PROGRESS")
        try:
            plan = self._validate(request, context)
            return self._commit(plan, request, context, user)
        finally:
            self._submit_lock.release()

    def preview(
        self, request: StockMovementRequest, context: ReferenceSnapshot
    ) -> list[StockWarning]:
        """Stock warnings for a draft movement without writing anything.

        ``error`` means the movement would oversell; ``warning`` means the
        SKU would end at or below its reorder point.
        """
        warnings: list[StockWarning] = []
        try:
            effective = self._effective_direction(request, context.reason(request.reason_category_id))
        except ValidationFailed:
            effective = TransactionDirection(request.direction)
        if effective != OUT:
            return warnings

        requested: dict[str, int] = {}
        for item in request.line_items:
            if item.sku_id and _is_positive_int(item.quantity):
                requested[item.sku_id] = requested.get(item.sku_id, 0) + item.quantity
        for sku_id, quantity in requested.items():
            sku = self.catalog.find_by_id(EntityKind.SKU, sku_id)
            if sku is None:
                continue
            remaining = sku.stock - quantity
            if remaining < 0:
                warnings.append(StockWarning(
                    sku_id,
                    f"Insufficient stock: Requesting {quantity} but only {sku.stock} available",
                    "error",
                ))
            elif remaining <= sku.reorder_point:
                warnings.append(StockWarning(
                    sku_id,
                    f"Low stock warning: {remaining} will remain after this transaction",
                    "warning",
                ))
        return warnings

    # --- Validation ---

    def _effective_direction(
        self, request: StockMovementRequest, reason: Optional[ReasonCategory]
    ) -> TransactionDirection:
        try:
            direction = TransactionDirection(request.direction)
        except ValueError:
            raise ValidationFailed(
                f"Unknown direction: {request.direction}", code="INVALID_DIRECTION"
            ) from None
        if reason is None:
            raise ValidationFailed("Reason category is required", code="REASON_REQUIRED")
        if direction == ADJUSTMENT:
            if reason.direction not in (IN, OUT):
                raise ValidationFailed(
                    f"Reason '{reason.name}' must be configured as IN or OUT to be used for an adjustment",
                    code="REASON_DIRECTION_MISMATCH",
                )
            return reason.direction
        if reason.direction != direction:
            raise ValidationFailed(
                f"Reason '{reason.name}' is for {reason.direction.value} transactions, "
                f"not {direction.value}",
                code="REASON_DIRECTION_MISMATCH",
                details={"reason_direction": reason.direction.value, "direction": direction.value},
            )
        return direction

    def _validate(
        self, request: StockMovementRequest, context: ReferenceSnapshot
    ) -> _MovementPlan:
        # 1. reason
        if not request.reason_category_id:
            raise ValidationFailed("Reason category is required", code="REASON_REQUIRED")
        reason = context.reason(request.reason_category_id)
        if reason is None:
            raise NotFound("Reason category", request.reason_category_id)
        if not reason.is_active:
            raise ValidationFailed(
                f"Reason '{reason.name}' is inactive", code="REASON_INACTIVE"
            )
        effective = self._effective_direction(request, reason)
        direction = TransactionDirection(request.direction)

        # 2. platform / supplier, as the reason demands
        if reason.requires_platform and not request.platform_id:
            raise ValidationFailed(
                f"A platform is required for '{reason.name}'", code="PLATFORM_REQUIRED"
            )
        if reason.requires_supplier and not request.supplier_id:
            raise ValidationFailed(
                f"A supplier is required for '{reason.name}'", code="SUPPLIER_REQUIRED"
            )
        source_type = self._source_type(request)
        platform = self._resolve_platform(request, context, effective)
        supplier = self._resolve_supplier(request, context, effective)

        # 3. line items
        if not request.line_items:
            raise ValidationFailed("Add at least one line item", code="NO_LINE_ITEMS")
        skus: dict[str, SKU] = {}
        quantities: dict[str, int] = {}
        for number, item in enumerate(request.line_items, start=1):
            if not item.sku_id:
                raise ValidationFailed(f"Line {number}: select a SKU", code="SKU_REQUIRED")
            sku = skus.get(item.sku_id) or self.catalog.find_by_id(EntityKind.SKU, item.sku_id)
            if sku is None:
                raise NotFound("SKU", item.sku_id, f"Line {number}: SKU not found: {item.sku_id}")
            if not sku.is_active:
                raise ValidationFailed(
                    f"Line {number}: SKU {sku.sku_code} is inactive", code="SKU_INACTIVE"
                )
            if not _is_positive_int(item.quantity):
                raise ValidationFailed(
                    f"Line {number}: quantity must be a positive whole number",
                    code="INVALID_QUANTITY",
                    details={"quantity": item.quantity},
                )
            skus[sku.id] = sku
            quantities[sku.id] = quantities.get(sku.id, 0) + item.quantity

        # 4. overselling, against the stock read just now
        if effective == OUT and not context.settings.enable_negative_stock:
            for sku_id, quantity in quantities.items():
                sku = skus[sku_id]
                if sku.stock - quantity < 0:
                    raise ValidationFailed(
                        f"Insufficient stock for {sku.sku_code}: requesting {quantity} "
                        f"but only {sku.stock} available",
                        code="INSUFFICIENT_STOCK",
                        details={"sku_id": sku_id, "stock": sku.stock, "requested": quantity},
                    )

        # 5. amounts
        line_items: list[TransactionLineItem] = []
        latest_costs: dict[str, float] = {}
        for number, item in enumerate(request.line_items, start=1):
            sku = skus[item.sku_id]
            if effective == OUT:
                unit_price = _amount(item.unit_price, sku.price, number, "unit price")
                unit_cost = _amount(None, sku.cost, number, "unit cost")
                total = unit_price * item.quantity
            else:
                unit_cost = _amount(item.unit_cost, sku.cost, number, "unit cost")
                unit_price = _amount(None, sku.price, number, "unit price")
                total = unit_cost * item.quantity
                latest_costs[sku.id] = unit_cost
            line_items.append(TransactionLineItem(
                sku_id=sku.id,
                sku_code=sku.sku_code,
                product_name=self._product_name(sku),
                quantity=item.quantity,
                unit_price=unit_price,
                unit_cost=unit_cost,
                total_price=money(total),
            ))

        return _MovementPlan(
            direction=direction,
            effective_direction=effective,
            reason=reason,
            platform=platform,
            supplier=supplier,
            skus=skus,
            line_items=line_items,
            quantities=quantities,
            latest_costs=latest_costs,
            source_type=source_type,
        )

    def _source_type(self, request: StockMovementRequest) -> Optional[SourceType]:
        """Stock In source. A SUPPLIER source needs a supplier; RTS and MANUAL take none."""
        if request.source_type is None:
            return None
        if request.direction != IN:
            raise ValidationFailed(
                "Source type applies only to Stock In", code="SOURCE_TYPE_NOT_ALLOWED"
            )
        try:
            source_type = SourceType(request.source_type)
        except ValueError:
            raise ValidationFailed(
                f"Unknown source type: {request.source_type}", code="INVALID_SOURCE_TYPE"
            ) from None
        if source_type == SourceType.SUPPLIER and not request.supplier_id:
            raise ValidationFailed(
                "A supplier is required when stock comes from a supplier", code="SUPPLIER_REQUIRED"
            )
        if source_type != SourceType.SUPPLIER and request.supplier_id:
            raise ValidationFailed(
                f"A supplier cannot be attached to {source_type.value} stock",
                code="SUPPLIER_NOT_ALLOWED",
                details={"source_type": source_type.value},
            )
        return source_type

    def _resolve_platform(
        self, request: StockMovementRequest, context: ReferenceSnapshot, effective: TransactionDirection
    ) -> Optional[Platform]:
        if not request.platform_id:
            return None
        if effective != OUT:
            raise ValidationFailed(
                "A platform can only be attached to outgoing stock", code="PLATFORM_NOT_ALLOWED"
            )
        platform = context.platform(request.platform_id)
        if platform is None:
            raise NotFound("Platform", request.platform_id)
        if not platform.is_active:
            raise ValidationFailed(f"Platform '{platform.name}' is inactive", code="PLATFORM_INACTIVE")
        return platform

    def _resolve_supplier(
        self, request: StockMovementRequest, context: ReferenceSnapshot, effective: TransactionDirection
    ) -> Optional[Supplier]:
        if not request.supplier_id:
            return None
        if effective != IN:
            raise ValidationFailed(
                "A supplier can only be attached to incoming stock", code="SUPPLIER_NOT_ALLOWED"
            )
        supplier = context.supplier(request.supplier_id)
        if supplier is None:
            raise NotFound("Supplier", request.supplier_id)
        if not supplier.is_active:
            raise ValidationFailed(f"Supplier '{supplier.name}' is inactive", code="SUPPLIER_INACTIVE")
        return supplier

    def _product_name(self, sku: SKU) -> str:
        product = self.catalog.find_by_id(EntityKind.PRODUCT, sku.product_id)
        return product.name if product else ""

    # --- Commit ---

    def _build_transaction(
        self, plan: _MovementPlan, request: StockMovementRequest, user: UserIdentity
    ) -> InventoryTransaction:
        total_amount = money(sum(li.total_price for li in plan.line_items))
        fee: Optional[float] = None
        net: Optional[float] = None
        if plan.direction == OUT:
            fee = platform_fee(total_amount, plan.platform)
            net = money(total_amount - (fee or 0))

        return InventoryTransaction(
            id=str(uuid.uuid4()),
            direction=plan.direction,
            source_type=plan.source_type,
            reason_category_id=plan.reason.id,
            supplier_id=plan.supplier.id if plan.supplier else None,
            platform_id=plan.platform.id if plan.platform else None,
            line_items=plan.line_items,
            total_quantity=plan.total_quantity,
            total_amount=total_amount,
            platform_fee=fee,
            net_amount=net,
            reference_number=request.reference_number or None,
            customer_name=request.customer_name or None,
            notes=request.notes or None,
            transaction_date=self._business_date(request.transaction_date),
            created_by=user.id,
            created_by_name=user.display_name,
        )

    def _business_date(self, value: Optional[Union[date, datetime]]) -> datetime:
        if value is None:
            return self._clock()
        if isinstance(value, datetime):
            return value
        return datetime.combine(value, time.min)

    def _stock_operations(
        self, plan: _MovementPlan, allow_negative: bool
    ) -> list[WriteOperation]:
        operations: list[WriteOperation] = []
        for sku_id, quantity in plan.quantities.items():
            if plan.effective_direction == IN:
                delta = quantity
                min_values = {}
            else:
                delta = -quantity
                min_values = {} if allow_negative else {"stock": quantity}
            # Last-cost-wins: Stock In overwrites the stored unit cost
            set_fields = {"cost": plan.latest_costs[sku_id]} if plan.direction == IN else {}
            operations.append(Update(
                SKU.COLLECTION,
                sku_id,
                set_fields=set_fields,
                increments={"stock": delta, "version": 1},
                min_values=min_values,
                equals={"is_active": True},
            ))
        return operations

    def _commit(
        self,
        plan: _MovementPlan,
        request: StockMovementRequest,
        context: ReferenceSnapshot,
        user: UserIdentity,
    ) -> StockMovementResult:
        transaction = self._build_transaction(plan, request, user)
        operations = [self.ledger.append(transaction)]
        operations.extend(self._stock_operations(plan, context.settings.enable_negative_stock))

        try:
            self.store.commit_batch(operations, token=transaction.id)
        except ConditionFailed as e:
            logger.warning(
                "Stock movement rejected at commit (%s): %s",
                plan.direction.value,
                e.failed_keys,
            )
            raise self._explain_rejection(e, plan) from e
        except PersistenceFailed as e:
            logger.error("Stock movement %s failed to save: %s", transaction.id, e)
            raise

        sign = 1 if plan.effective_direction == IN else -1
        stock_changes = {sku_id: sign * qty for sku_id, qty in plan.quantities.items()}
        amount = transaction.net_amount if transaction.net_amount is not None else transaction.total_amount
        summary = self._summary(transaction, plan, context)

        logger.info(
            "Stock movement committed: %s %s, %d items, amount %.2f",
            transaction.direction.value,
            transaction.id,
            transaction.total_quantity,
            amount,
        )
        action = AuditAction.STOCK_IN if plan.effective_direction == IN else AuditAction.STOCK_OUT
        self.record_audit(action, InventoryTransaction.COLLECTION, transaction.id, user, summary)

        return StockMovementResult(
            transaction=transaction,
            item_count=transaction.total_quantity,
            amount=amount,
            summary=summary,
            stock_changes=stock_changes,
        )

    def _explain_rejection(self, error: ConditionFailed, plan: _MovementPlan) -> ValidationFailed:
        """Turn a failed store condition into a message the user can act on."""
        failed_skus = [doc_id for collection, doc_id in error.failed_keys if collection == SKU.COLLECTION]
        for sku_id in failed_skus or list(plan.quantities):
            sku = self.catalog.find_by_id(EntityKind.SKU, sku_id)
            if sku is None:
                return NotFound("SKU", sku_id)
            if not sku.is_active:
                return ValidationFailed(f"SKU {sku.sku_code} is inactive", code="SKU_INACTIVE")
            requested = plan.quantities.get(sku_id, 0)
            if plan.effective_direction == OUT and sku.stock < requested:
                return ValidationFailed(
                    f"Insufficient stock for {sku.sku_code}: requesting {requested} "
                    f"but only {sku.stock} available",
                    code="INSUFFICIENT_STOCK",
                    details={"sku_id": sku_id, "stock": sku.stock, "requested": requested},
                )
        return ValidationFailed(
            "Stock changed while saving. Review the quantities and submit again",
            code="STALE_STOCK",
        )

    def _summary(
        self, transaction: InventoryTransaction, plan: _MovementPlan, context: ReferenceSnapshot
    ) -> str:
        fmt = context.format_currency
        if transaction.direction == IN:
            text = f"Stock In: {transaction.total_quantity} items, Total Cost: {fmt(transaction.total_amount)}"
            if transaction.reference_number:
                text += f", Ref: {transaction.reference_number}"
            return text
        if transaction.direction == OUT:
            text = f"Stock Out: {transaction.total_quantity} items, Revenue: {fmt(transaction.net_amount)}"
            if plan.platform:
                text += f", Platform: {plan.platform.name}"
            if transaction.customer_name:
                text += f", Customer: {transaction.customer_name}"
            return text
        sign = "+" if plan.effective_direction == IN else "-"
        return (
            f"Adjustment ({plan.reason.name}): {sign}{transaction.total_quantity} items, "
            f"Value: {fmt(transaction.total_amount)}"
        )


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _amount(value: Optional[float], default: float, number: int, label: str) -> float:
    amount = default if value is None else value
    if (
        isinstance(amount, bool)
        or not isinstance(amount, (int, float))
        or not math.isfinite(amount)
        or amount < 0
    ):
        raise ValidationFailed(
            f"Line {number}: {label} must be a finite, non-negative number",
            code="INVALID_AMOUNT",
            details={"line": number, label.replace(" ", "_"): value},
        )
    return float(amount)
