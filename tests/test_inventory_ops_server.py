"""MCP tool function tests against an in-memory store."""

import json
from datetime import date

import pytest

from mcp_servers import inventory_ops_server as server
from stockroom.models.inventory import (
    SKU,
    Platform,
    Product,
    ReasonCategory,
    TransactionDirection,
)
from stockroom.store.memory import InMemoryDocumentStore


@pytest.fixture
def services(monkeypatch):
    monkeypatch.setenv("STOCKROOM_USER_ID", "u-mcp")
    monkeypatch.setenv("STOCKROOM_USER_NAME", "MCP Client")
    store = InMemoryDocumentStore()
    for record in [
        ReasonCategory(id="rsn-sale", name="Sale", direction=TransactionDirection.OUT, requires_platform=True),
        ReasonCategory(id="rsn-found", name="Found", direction=TransactionDirection.IN),
        Platform(id="plat-shopee", name="Shopee", fee_percentage=5),
        Product(id="prod-tee", name="Basic Tee", category_id="cat-tops"),
        SKU(id="sku-tee", product_id="prod-tee", sku_code="TEE-1", price=100.0, cost=60.0,
            stock=20, reorder_point=10),
    ]:
        store.put(record.COLLECTION, record.id, record.to_item())
    yield server.use_store(store)
    server._services.reference.stop()
    server._services = None


class TestStockTools:
    def test_stock_out(self, services):
        result = server.stock_out({
            "reason_category_id": "rsn-sale",
            "platform_id": "plat-shopee",
            "line_items": [{"sku_id": "sku-tee", "quantity": 10}],
        })
        assert result["success"] is True
        assert result["amount"] == 950.0
        assert result["stock_changes"] == {"sku-tee": -10}
        assert services.catalog.get_sku("sku-tee").stock == 10
        assert services.ledger.get(result["transaction_id"]).created_by == "u-mcp"

    def test_stock_out_rejected(self, services):
        result = server.stock_out({
            "reason_category_id": "rsn-sale",
            "line_items": [{"sku_id": "sku-tee", "quantity": 1}],
        })
        assert result["success"] is False
        assert result["code"] == "PLATFORM_REQUIRED"

    def test_stock_in_with_date(self, services):
        result = server.stock_in({
            "reason_category_id": "rsn-found",
            "line_items": [{"sku_id": "sku-tee", "quantity": 3}],
            "transaction_date": "2024-05-01",
        })
        assert result["success"] is True
        assert services.catalog.get_sku("sku-tee").stock == 23


class TestReadTools:
    def test_get_sku(self, services):
        result = server.get_sku("sku-tee")
        assert result["status_label"] == "In Stock"
        assert server.get_sku("nope")["code"] == "NOT_FOUND"

    def test_low_stock(self, services):
        server.stock_out({
            "reason_category_id": "rsn-sale",
            "platform_id": "plat-shopee",
            "line_items": [{"sku_id": "sku-tee", "quantity": 15}],
        })
        result = server.list_low_stock()
        assert result["count"] == 1
        assert result["data"][0].sku_code == "TEE-1"

    def test_dashboard_and_transactions(self, services):
        server.stock_out({
            "reason_category_id": "rsn-sale",
            "platform_id": "plat-shopee",
            "line_items": [{"sku_id": "sku-tee", "quantity": 2}],
        })
        dashboard = server.dashboard_summary()
        assert dashboard["stats"]["today_revenue"] == 200.0
        assert dashboard["today_revenue_display"] == "₱200.00"
        assert len(dashboard["sales_series"]) == 7

        today = date.today().isoformat()
        listing = server.list_transactions(today, today, search="tee-1")
        assert listing["count"] == 1
        assert listing["summary"]["total_out"] == 2
        assert listing["summary"]["net_movement"] == -2

    def test_inverted_range(self, services):
        result = server.list_transactions("2024-05-02", "2024-05-01")
        assert result["success"] is False
        assert result["code"] == "INVALID_DATE_RANGE"

    def test_category_breakdown(self, services):
        result = server.category_breakdown("2024-01-01", date.today().isoformat())
        assert result["data"][0]["category_name"] == "Uncategorized"
        assert result["data"][0]["rows"][0]["platforms"]["none"] == {"stock_in": 0, "stock_out": 0}

    def test_results_serialize(self, services):
        [content] = server._result(server.dashboard_summary())
        assert json.loads(content.text)["success"] is True
