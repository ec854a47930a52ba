"""Stock mutation engine tests."""

import math
from datetime import date, datetime
from unittest.mock import MagicMock

import pytest

from stockroom.exceptions import (
    NotFound,
    OutcomeUnknown,
    PersistenceFailed,
    SubmissionInProgress,
    ValidationFailed,
)
from stockroom.models.inventory import (
    SKU,
    AuditAction,
    InventoryTransaction,
    Platform,
    Product,
    ReasonCategory,
    SourceType,
    StockStatus,
    Supplier,
    SystemSettings,
    TransactionDirection,
    UserIdentity,
)
from stockroom.services.ledger import TransactionLedger
from stockroom.services.reference_data import ReferenceDataCache
from stockroom.services.reporting import stock_status
from stockroom.services.stock_engine import (
    LineItemRequest,
    StockMovementRequest,
    StockMutationEngine,
    platform_fee,
)
from stockroom.store.base import Update
from stockroom.store.memory import InMemoryDocumentStore

IN = TransactionDirection.IN
OUT = TransactionDirection.OUT
ADJUSTMENT = TransactionDirection.ADJUSTMENT

USER = UserIdentity(id="u-ana", display_name="Ana Cruz", email="ana@example.com")


class FailingStore(InMemoryDocumentStore):
    """Raises while staging the operation at ``fail_at`` in the next batch."""

    def __init__(self, fail_at: int):
        super().__init__()
        self.fail_at = fail_at
        self.armed = False

    def _apply_operation(self, index, op, staged, now):
        if self.armed and index == self.fail_at:
            raise PersistenceFailed(f"injected failure at operation {index}")
        super()._apply_operation(index, op, staged, now)


class RacingStore(InMemoryDocumentStore):
    """Lets another session sell ``competing_quantity`` of a SKU right before the next batch."""

    def __init__(self, sku_id: str, competing_quantity: int):
        super().__init__()
        self.sku_id = sku_id
        self.competing_quantity = competing_quantity
        self.armed = False

    def commit_batch(self, operations, token=None):
        if self.armed:
            self.armed = False
            super().commit_batch([
                Update(SKU.COLLECTION, self.sku_id, increments={"stock": -self.competing_quantity})
            ])
        super().commit_batch(operations, token)


class TimeoutStore(InMemoryDocumentStore):
    def commit_batch(self, operations, token=None):
        if any(op.collection == InventoryTransaction.COLLECTION for op in operations):
            raise OutcomeUnknown()
        super().commit_batch(operations, token)


def _seed(store, negative_stock=False):
    reasons = [
        ReasonCategory(id="rsn-purchase", name="Purchase", direction=IN, requires_supplier=True),
        ReasonCategory(id="rsn-found", name="Found in Count", direction=IN),
        ReasonCategory(id="rsn-sale", name="Platform Sale", direction=OUT, requires_platform=True),
        ReasonCategory(id="rsn-walkin", name="Walk-in Sale", direction=OUT),
        ReasonCategory(id="rsn-damaged", name="Damaged", direction=OUT),
        ReasonCategory(id="rsn-retired", name="Retired", direction=OUT, is_active=False),
        ReasonCategory(id="rsn-recount", name="Recount", direction=ADJUSTMENT),
    ]
    records = reasons + [
        Platform(id="plat-shopee", name="Shopee", fee_percentage=5),
        Platform(id="plat-closed", name="Closed Shop", fee_percentage=3, is_active=False),
        Supplier(id="sup-manila", name="Manila Garments"),
        Product(id="prod-tee", name="Basic Tee", category_id="cat-tops"),
        SKU(id="sku-tee", product_id="prod-tee", sku_code="TEE-BLK-M",
            price=100.0, cost=60.0, stock=20, reorder_point=10),
        SKU(id="sku-cap", product_id="prod-tee", sku_code="TEE-WHT-L",
            price=120.0, cost=70.0, stock=3, reorder_point=2),
        SKU(id="sku-off", product_id="prod-tee", sku_code="TEE-OLD", stock=50, is_active=False),
        SKU(id="sku-orphan", product_id="prod-gone", sku_code="ORPHAN-1", price=10.0, stock=5),
    ]
    for record in records:
        store.put(record.COLLECTION, record.id, record.to_item())
    if negative_stock:
        settings = SystemSettings(enable_negative_stock=True)
        store.put(SystemSettings.COLLECTION, SystemSettings.DOCUMENT_ID, settings.to_item())
    return store


def _create_engine(store=None, negative_stock=False, audit_sink=None):
    store = _seed(store or InMemoryDocumentStore(), negative_stock)
    engine = StockMutationEngine(store, audit_sink=audit_sink or MagicMock())
    context = ReferenceDataCache(store).load()
    return engine, context, store


def _stock(store, sku_id):
    return store.get(SKU.COLLECTION, sku_id)["stock"]


def _ledger_count(store):
    return len(store.query(InventoryTransaction.COLLECTION))


class TestEndToEnd:
    def test_sell_then_reject_oversell(self):
        engine, context, store = _create_engine()

        result = engine.stock_out(context, USER, "rsn-walkin", [LineItemRequest("sku-tee", 15)])

        assert _stock(store, "sku-tee") == 5
        assert stock_status(5, 10) == StockStatus.LOW_STOCK
        txn = result.transaction
        assert txn.total_quantity == 15
        assert txn.total_amount == 1500.0
        assert txn.net_amount == 1500.0
        assert txn.platform_fee is None
        assert result.summary == "Stock Out: 15 items, Revenue: ₱1,500.00"

        with pytest.raises(ValidationFailed) as exc:
            engine.stock_out(context, USER, "rsn-walkin", [LineItemRequest("sku-tee", 10)])
        assert exc.value.code == "INSUFFICIENT_STOCK"
        assert _stock(store, "sku-tee") == 5
        assert _ledger_count(store) == 1

    def test_committed_transaction_is_in_ledger(self):
        engine, context, store = _create_engine()
        result = engine.stock_out(context, USER, "rsn-walkin", [LineItemRequest("sku-tee", 2)])

        stored = TransactionLedger(store).get(result.transaction.id)
        assert stored is not None
        assert stored.direction == OUT
        assert stored.line_items[0].sku_code == "TEE-BLK-M"
        assert stored.line_items[0].product_name == "Basic Tee"
        assert stored.created_by == "u-ana"
        assert stored.created_by_name == "Ana Cruz"
        assert stored.created_at is not None


class TestPlatformFee:
    def test_fee_and_net(self):
        engine, context, _ = _create_engine()
        result = engine.stock_out(
            context, USER, "rsn-sale", [LineItemRequest("sku-tee", 10)], platform_id="plat-shopee"
        )
        assert result.transaction.total_amount == 1000.0
        assert result.transaction.platform_fee == 50.0
        assert result.transaction.net_amount == 950.0
        assert result.amount == 950.0
        assert "Platform: Shopee" in result.summary

    def test_fee_rounded_to_cents(self):
        assert platform_fee(333.33, Platform(id="p", name="P", fee_percentage=6.5)) == 21.67
        assert platform_fee(1000, None) is None

    def test_unit_price_override(self):
        engine, context, store = _create_engine()
        result = engine.stock_out(
            context, USER, "rsn-walkin", [LineItemRequest("sku-tee", 2, unit_price=90.0)]
        )
        assert result.transaction.total_amount == 180.0
        assert result.transaction.line_items[0].unit_cost == 60.0
        # selling never rewrites the stored price
        assert store.get(SKU.COLLECTION, "sku-tee")["price"] == 100.0


class TestReasonValidation:
    def test_direction_mismatch(self):
        engine, context, store = _create_engine()
        with pytest.raises(ValidationFailed) as exc:
            engine.stock_in(context, USER, "rsn-walkin", [LineItemRequest("sku-tee", 1)])
        assert exc.value.code == "REASON_DIRECTION_MISMATCH"
        assert _stock(store, "sku-tee") == 20
        assert _ledger_count(store) == 0

    def test_missing_reason(self):
        engine, context, _ = _create_engine()
        with pytest.raises(ValidationFailed) as exc:
            engine.stock_in(context, USER, "", [LineItemRequest("sku-tee", 1)])
        assert exc.value.code == "REASON_REQUIRED"

    def test_unknown_reason(self):
        engine, context, _ = _create_engine()
        with pytest.raises(NotFound):
            engine.stock_in(context, USER, "rsn-nope", [LineItemRequest("sku-tee", 1)])

    def test_inactive_reason(self):
        engine, context, _ = _create_engine()
        with pytest.raises(ValidationFailed) as exc:
            engine.stock_out(context, USER, "rsn-retired", [LineItemRequest("sku-tee", 1)])
        assert exc.value.code == "REASON_INACTIVE"

    def test_reason_checked_before_line_items(self):
        engine, context, _ = _create_engine()
        with pytest.raises(ValidationFailed) as exc:
            engine.stock_in(context, USER, "rsn-sale", [])
        assert exc.value.code == "REASON_DIRECTION_MISMATCH"


class TestPlatformAndSupplier:
    def test_platform_required(self):
        engine, context, _ = _create_engine()
        with pytest.raises(ValidationFailed) as exc:
            engine.stock_out(context, USER, "rsn-sale", [LineItemRequest("sku-tee", 1)])
        assert exc.value.code == "PLATFORM_REQUIRED"

    def test_supplier_required(self):
        engine, context, _ = _create_engine()
        with pytest.raises(ValidationFailed) as exc:
            engine.stock_in(context, USER, "rsn-purchase", [LineItemRequest("sku-tee", 1)])
        assert exc.value.code == "SUPPLIER_REQUIRED"

    def test_inactive_platform(self):
        engine, context, _ = _create_engine()
        with pytest.raises(ValidationFailed) as exc:
            engine.stock_out(
                context, USER, "rsn-sale", [LineItemRequest("sku-tee", 1)], platform_id="plat-closed"
            )
        assert exc.value.code == "PLATFORM_INACTIVE"

    def test_unknown_supplier(self):
        engine, context, _ = _create_engine()
        with pytest.raises(NotFound):
            engine.stock_in(
                context, USER, "rsn-purchase", [LineItemRequest("sku-tee", 1)], supplier_id="sup-x"
            )

    def test_platform_on_stock_in_rejected(self):
        engine, context, _ = _create_engine()
        request = StockMovementRequest(
            direction=IN,
            reason_category_id="rsn-found",
            line_items=[LineItemRequest("sku-tee", 1)],
            platform_id="plat-shopee",
        )
        with pytest.raises(ValidationFailed) as exc:
            engine.submit(request, context, USER)
        assert exc.value.code == "PLATFORM_NOT_ALLOWED"

    def test_source_type_only_on_stock_in(self):
        engine, context, _ = _create_engine()
        request = StockMovementRequest(
            direction=OUT,
            reason_category_id="rsn-walkin",
            line_items=[LineItemRequest("sku-tee", 1)],
            source_type=SourceType.RTS,
        )
        with pytest.raises(ValidationFailed) as exc:
            engine.submit(request, context, USER)
        assert exc.value.code == "SOURCE_TYPE_NOT_ALLOWED"

    def test_supplier_source_requires_supplier(self):
        engine, context, store = _create_engine()
        with pytest.raises(ValidationFailed) as exc:
            engine.stock_in(
                context, USER, "rsn-found", [LineItemRequest("sku-tee", 5)],
                source_type=SourceType.SUPPLIER,
            )
        assert exc.value.code == "SUPPLIER_REQUIRED"
        assert _stock(store, "sku-tee") == 20

    @pytest.mark.parametrize("source_type", [SourceType.RTS, SourceType.MANUAL])
    def test_supplier_rejected_for_other_sources(self, source_type):
        engine, context, store = _create_engine()
        with pytest.raises(ValidationFailed) as exc:
            engine.stock_in(
                context, USER, "rsn-found", [LineItemRequest("sku-tee", 5)],
                source_type=source_type, supplier_id="sup-manila",
            )
        assert exc.value.code == "SUPPLIER_NOT_ALLOWED"
        assert _stock(store, "sku-tee") == 20

    def test_manual_source_without_supplier(self):
        engine, context, store = _create_engine()
        result = engine.stock_in(
            context, USER, "rsn-found", [LineItemRequest("sku-tee", 2)],
            source_type=SourceType.MANUAL,
        )
        assert result.transaction.source_type == SourceType.MANUAL
        assert result.transaction.supplier_id is None
        assert _stock(store, "sku-tee") == 22

    def test_stock_in_with_supplier(self):
        engine, context, store = _create_engine()
        result = engine.stock_in(
            context, USER, "rsn-purchase", [LineItemRequest("sku-tee", 5, unit_cost=58.0)],
            source_type=SourceType.SUPPLIER, supplier_id="sup-manila", reference_number="PO-1001",
        )
        assert _stock(store, "sku-tee") == 25
        assert result.transaction.supplier_id == "sup-manila"
        assert result.transaction.source_type == SourceType.SUPPLIER
        assert result.transaction.platform_fee is None
        assert result.transaction.net_amount is None
        assert result.summary == "Stock In: 5 items, Total Cost: ₱290.00, Ref: PO-1001"


class TestLineItemValidation:
    @pytest.mark.parametrize("quantity", [0, -3, 1.5, None, True])
    def test_quantity_must_be_positive_integer(self, quantity):
        engine, context, _ = _create_engine()
        with pytest.raises(ValidationFailed) as exc:
            engine.stock_in(context, USER, "rsn-found", [LineItemRequest("sku-tee", quantity)])
        assert exc.value.code == "INVALID_QUANTITY"

    def test_no_line_items(self):
        engine, context, _ = _create_engine()
        with pytest.raises(ValidationFailed) as exc:
            engine.stock_in(context, USER, "rsn-found", [])
        assert exc.value.code == "NO_LINE_ITEMS"

    def test_missing_sku(self):
        engine, context, _ = _create_engine()
        with pytest.raises(ValidationFailed) as exc:
            engine.stock_in(context, USER, "rsn-found", [LineItemRequest("", 1)])
        assert exc.value.code == "SKU_REQUIRED"

    def test_unknown_sku(self):
        engine, context, _ = _create_engine()
        with pytest.raises(NotFound):
            engine.stock_in(context, USER, "rsn-found", [LineItemRequest("sku-nope", 1)])

    def test_inactive_sku(self):
        engine, context, _ = _create_engine()
        with pytest.raises(ValidationFailed) as exc:
            engine.stock_in(context, USER, "rsn-found", [LineItemRequest("sku-off", 1)])
        assert exc.value.code == "SKU_INACTIVE"

    @pytest.mark.parametrize("cost", [-1.0, math.nan, math.inf])
    def test_cost_must_be_finite_and_non_negative(self, cost):
        engine, context, store = _create_engine()
        with pytest.raises(ValidationFailed) as exc:
            engine.stock_in(context, USER, "rsn-found", [LineItemRequest("sku-tee", 1, unit_cost=cost)])
        assert exc.value.code == "INVALID_AMOUNT"
        assert _stock(store, "sku-tee") == 20

    def test_negative_price(self):
        engine, context, _ = _create_engine()
        with pytest.raises(ValidationFailed) as exc:
            engine.stock_out(context, USER, "rsn-walkin", [LineItemRequest("sku-tee", 1, unit_price=-5)])
        assert exc.value.code == "INVALID_AMOUNT"

    def test_missing_product_snapshot_is_blank(self):
        engine, context, _ = _create_engine()
        result = engine.stock_out(context, USER, "rsn-walkin", [LineItemRequest("sku-orphan", 1)])
        assert result.transaction.line_items[0].product_name == ""


class TestOversell:
    def test_lines_for_same_sku_are_summed(self):
        engine, context, store = _create_engine()
        with pytest.raises(ValidationFailed) as exc:
            engine.stock_out(
                context, USER, "rsn-walkin",
                [LineItemRequest("sku-cap", 2), LineItemRequest("sku-cap", 2)],
            )
        assert exc.value.code == "INSUFFICIENT_STOCK"
        assert exc.value.details["requested"] == 4
        assert _stock(store, "sku-cap") == 3

    def test_selling_exactly_to_zero(self):
        engine, context, store = _create_engine()
        engine.stock_out(context, USER, "rsn-walkin", [LineItemRequest("sku-cap", 3)])
        assert _stock(store, "sku-cap") == 0

    def test_negative_stock_when_enabled(self):
        engine, context, store = _create_engine(negative_stock=True)
        engine.stock_out(context, USER, "rsn-walkin", [LineItemRequest("sku-tee", 25)])
        assert _stock(store, "sku-tee") == -5
        assert stock_status(-5, 10) == StockStatus.CRITICAL

    def test_concurrent_sale_rejected_at_commit(self):
        store = RacingStore("sku-tee", competing_quantity=18)
        engine, context, store = _create_engine(store)
        store.armed = True

        with pytest.raises(ValidationFailed) as exc:
            engine.stock_out(context, USER, "rsn-walkin", [LineItemRequest("sku-tee", 15)])

        assert exc.value.code == "INSUFFICIENT_STOCK"
        assert _stock(store, "sku-tee") == 2
        assert _ledger_count(store) == 0

    def test_sku_deactivated_before_commit(self):
        engine, context, store = _create_engine()
        original_commit = store.commit_batch

        def deactivate_then_commit(operations, token=None):
            original_commit([Update(SKU.COLLECTION, "sku-tee", set_fields={"is_active": False})])
            original_commit(operations, token)

        store.commit_batch = deactivate_then_commit
        with pytest.raises(ValidationFailed) as exc:
            engine.stock_in(context, USER, "rsn-found", [LineItemRequest("sku-tee", 1)])
        assert exc.value.code == "SKU_INACTIVE"
        assert _stock(store, "sku-tee") == 20


class TestAtomicity:
    @pytest.mark.parametrize("fail_at", [0, 1, 2])
    def test_failure_at_any_step_writes_nothing(self, fail_at):
        engine, context, store = _create_engine(FailingStore(fail_at))
        store.armed = True

        with pytest.raises(PersistenceFailed):
            engine.stock_out(
                context, USER, "rsn-walkin",
                [LineItemRequest("sku-tee", 4), LineItemRequest("sku-cap", 1)],
            )

        assert _stock(store, "sku-tee") == 20
        assert _stock(store, "sku-cap") == 3
        assert _ledger_count(store) == 0

    def test_outcome_unknown_propagates(self):
        engine, context, store = _create_engine(TimeoutStore())
        with pytest.raises(OutcomeUnknown) as exc:
            engine.stock_out(context, USER, "rsn-walkin", [LineItemRequest("sku-tee", 1)])
        assert "Re-check stock" in exc.value.message


class TestStockAccounting:
    def test_conservation(self):
        engine, context, store = _create_engine()
        engine.stock_in(context, USER, "rsn-found", [LineItemRequest("sku-tee", 7)])
        engine.stock_out(context, USER, "rsn-walkin", [LineItemRequest("sku-tee", 12)])
        engine.stock_out(context, USER, "rsn-sale", [LineItemRequest("sku-tee", 3)], platform_id="plat-shopee")
        engine.stock_in(context, USER, "rsn-found", [LineItemRequest("sku-tee", 1)])

        ledger = TransactionLedger(store).query_recent(100)
        moved_in = sum(li.quantity for t in ledger if t.direction == IN for li in t.line_items)
        moved_out = sum(li.quantity for t in ledger if t.direction == OUT for li in t.line_items)
        assert _stock(store, "sku-tee") == 20 + moved_in - moved_out == 13

    def test_stock_in_updates_cost_last_cost_wins(self):
        engine, context, store = _create_engine()
        result = engine.stock_in(
            context, USER, "rsn-found",
            [LineItemRequest("sku-tee", 2, unit_cost=50.0), LineItemRequest("sku-tee", 3, unit_cost=55.0)],
        )
        sku = store.get(SKU.COLLECTION, "sku-tee")
        assert sku["stock"] == 25
        assert sku["cost"] == 55.0
        assert sku["price"] == 100.0
        assert result.transaction.total_amount == 265.0
        assert result.stock_changes == {"sku-tee": 5}

    def test_stock_in_defaults_to_stored_cost(self):
        engine, context, _ = _create_engine()
        result = engine.stock_in(context, USER, "rsn-found", [LineItemRequest("sku-tee", 2)])
        assert result.transaction.line_items[0].unit_cost == 60.0
        assert result.transaction.total_amount == 120.0

    def test_version_incremented(self):
        engine, context, store = _create_engine()
        engine.stock_in(context, USER, "rsn-found", [LineItemRequest("sku-tee", 1)])
        engine.stock_out(context, USER, "rsn-walkin", [LineItemRequest("sku-tee", 1)])
        assert store.get(SKU.COLLECTION, "sku-tee")["version"] == 2

    def test_transaction_date(self):
        engine, context, _ = _create_engine()
        result = engine.stock_in(
            context, USER, "rsn-found", [LineItemRequest("sku-tee", 1)],
            transaction_date=date(2024, 3, 9),
        )
        assert result.transaction.transaction_date == datetime(2024, 3, 9)


class TestAdjustment:
    def test_adjustment_follows_reason_direction(self):
        engine, context, store = _create_engine()
        result = engine.adjust(context, USER, "rsn-damaged", [LineItemRequest("sku-tee", 4)])
        assert _stock(store, "sku-tee") == 16
        assert result.transaction.direction == ADJUSTMENT
        assert result.transaction.platform_fee is None
        assert result.stock_changes == {"sku-tee": -4}
        assert result.summary == "Adjustment (Damaged): -4 items, Value: ₱400.00"

    def test_adjustment_in(self):
        engine, context, store = _create_engine()
        engine.adjust(context, USER, "rsn-found", [LineItemRequest("sku-tee", 4)])
        assert _stock(store, "sku-tee") == 24
        # only Stock In rewrites the stored cost
        assert store.get(SKU.COLLECTION, "sku-tee")["cost"] == 60.0

    def test_adjustment_cannot_oversell(self):
        engine, context, store = _create_engine()
        with pytest.raises(ValidationFailed) as exc:
            engine.adjust(context, USER, "rsn-damaged", [LineItemRequest("sku-cap", 4)])
        assert exc.value.code == "INSUFFICIENT_STOCK"
        assert _stock(store, "sku-cap") == 3

    def test_adjustment_reason_needs_stock_direction(self):
        engine, context, _ = _create_engine()
        with pytest.raises(ValidationFailed) as exc:
            engine.adjust(context, USER, "rsn-recount", [LineItemRequest("sku-tee", 1)])
        assert exc.value.code == "REASON_DIRECTION_MISMATCH"


class TestSessionAndAudit:
    def test_second_submission_refused_while_in_flight(self):
        engine, context, store = _create_engine()
        engine._submit_lock.acquire()
        try:
            with pytest.raises(SubmissionInProgress):
                engine.stock_in(context, USER, "rsn-found", [LineItemRequest("sku-tee", 1)])
        finally:
            engine._submit_lock.release()
        assert _stock(store, "sku-tee") == 20

    def test_lock_released_after_rejection(self):
        engine, context, _ = _create_engine()
        with pytest.raises(ValidationFailed):
            engine.stock_in(context, USER, "rsn-found", [])
        engine.stock_in(context, USER, "rsn-found", [LineItemRequest("sku-tee", 1)])

    def test_audit_entry_after_commit(self):
        audit = MagicMock()
        engine, context, _ = _create_engine(audit_sink=audit)
        result = engine.stock_out(context, USER, "rsn-walkin", [LineItemRequest("sku-tee", 15)])
        audit.record.assert_called_once_with(
            AuditAction.STOCK_OUT,
            InventoryTransaction.COLLECTION,
            result.transaction.id,
            USER,
            "Stock Out: 15 items, Revenue: ₱1,500.00",
        )

    def test_audit_failure_keeps_transaction(self):
        audit = MagicMock()
        audit.record.side_effect = RuntimeError("audit store down")
        engine, context, store = _create_engine(audit_sink=audit)

        result = engine.stock_out(context, USER, "rsn-walkin", [LineItemRequest("sku-tee", 5)])

        assert _stock(store, "sku-tee") == 15
        assert TransactionLedger(store).get(result.transaction.id) is not None

    def test_no_audit_on_rejection(self):
        audit = MagicMock()
        engine, context, _ = _create_engine(audit_sink=audit)
        with pytest.raises(ValidationFailed):
            engine.stock_out(context, USER, "rsn-walkin", [LineItemRequest("sku-tee", 99)])
        audit.record.assert_not_called()


class TestPreview:
    def test_warnings(self):
        engine, context, store = _create_engine()
        request = StockMovementRequest(
            direction=OUT,
            reason_category_id="rsn-walkin",
            line_items=[LineItemRequest("sku-tee", 12), LineItemRequest("sku-cap", 5)],
        )
        warnings = {w.sku_id: w for w in engine.preview(request, context)}
        assert warnings["sku-tee"].severity == "warning"
        assert warnings["sku-cap"].severity == "error"
        assert _stock(store, "sku-tee") == 20

    def test_no_warnings_for_stock_in(self):
        engine, context, _ = _create_engine()
        request = StockMovementRequest(
            direction=IN, reason_category_id="rsn-found", line_items=[LineItemRequest("sku-cap", 50)]
        )
        assert engine.preview(request, context) == []
