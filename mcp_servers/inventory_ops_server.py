"""
Inventory Operations MCP Server

Exposes stock in/out, SKU lookup and the dashboard reports as MCP tools.
Every write goes through the stock mutation engine; this module only maps
tool arguments to engine calls and results to JSON.

Backend and acting user come from the environment (see stockroom.config).
"""

import json
import logging
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from mcp.server import Server
from mcp.types import TextContent, Tool

from stockroom.config import acting_user_from_env, configure_logging
from stockroom.exceptions import StockroomError
from stockroom.models.inventory import Record, TransactionDirection
from stockroom.services import (
    CatalogService,
    LineItemRequest,
    ReferenceDataCache,
    StockMutationEngine,
    StoreAuditSink,
    TransactionLedger,
)
from stockroom.services import reporting
from stockroom.store import DocumentStore, create_store

logger = logging.getLogger(__name__)

app = Server("inventory-ops")


class _Services:
    def __init__(self, store: DocumentStore):
        self.store = store
        self.audit = StoreAuditSink(store)
        self.catalog = CatalogService(store, self.audit)
        self.ledger = TransactionLedger(store)
        self.engine = StockMutationEngine(store, self.audit, catalog=self.catalog, ledger=self.ledger)
        self.reference = ReferenceDataCache(store)
        self.reference.load()
        self.reference.start()


_services: Optional[_Services] = None


def use_store(store: DocumentStore) -> _Services:
    """Point the tools at ``store`` (the server calls this once at startup)."""
    global _services
    if _services is not None:
        _services.reference.stop()
    _services = _Services(store)
    return _services


def services() -> _Services:
    if _services is None:
        return use_store(create_store())
    return _services


def _to_json(obj):
    if isinstance(obj, Decimal):
        return int(obj) if obj == int(obj) else float(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Record):
        return _to_json(obj.to_item())
    if isinstance(obj, (date,)):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {k: _to_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_json(i) for i in obj]
    return obj


def _result(data):
    return [TextContent(type="text", text=json.dumps(_to_json(data), indent=2, ensure_ascii=False))]


_LINE_ITEMS_SCHEMA = {
    "type": "array",
    "minItems": 1,
    "items": {
        "type": "object",
        "properties": {
            "sku_id": {"type": "string"},
            "quantity": {"type": "integer", "minimum": 1},
            "unit_price": {"type": "number", "minimum": 0},
            "unit_cost": {"type": "number", "minimum": 0},
        },
        "required": ["sku_id", "quantity"],
    },
}


@app.list_tools()
async def list_tools() -> List[Tool]:
    return [
        Tool(name="stock_in", description="Receive stock for one or more SKUs",
             inputSchema={"type": "object", "properties": {
                 "reason_category_id": {"type": "string"},
                 "line_items": _LINE_ITEMS_SCHEMA,
                 "source_type": {"type": "string", "enum": ["SUPPLIER", "RTS", "MANUAL"]},
                 "supplier_id": {"type": "string"}, "reference_number": {"type": "string"},
                 "transaction_date": {"type": "string", "format": "date"}, "notes": {"type": "string"}
             }, "required": ["reason_category_id", "line_items"]}),
        Tool(name="stock_out", description="Sell or remove stock for one or more SKUs",
             inputSchema={"type": "object", "properties": {
                 "reason_category_id": {"type": "string"},
                 "line_items": _LINE_ITEMS_SCHEMA,
                 "platform_id": {"type": "string"}, "customer_name": {"type": "string"},
                 "reference_number": {"type": "string"},
                 "transaction_date": {"type": "string", "format": "date"}, "notes": {"type": "string"}
             }, "required": ["reason_category_id", "line_items"]}),
        Tool(name="get_sku", description="Get a SKU with its current stock status",
             inputSchema={"type": "object", "properties": {"sku_id": {"type": "string"}}, "required": ["sku_id"]}),
        Tool(name="list_low_stock", description="Active SKUs at or below their reorder point",
             inputSchema={"type": "object", "properties": {"limit": {"type": "integer", "default": 10}}}),
        Tool(name="dashboard_summary", description="Headline stock numbers, today's sales and the 7-day sales series",
             inputSchema={"type": "object", "properties": {}}),
        Tool(name="list_transactions", description="Ledger entries for a date range, newest first",
             inputSchema={"type": "object", "properties": {
                 "date_from": {"type": "string", "format": "date"}, "date_to": {"type": "string", "format": "date"},
                 "direction": {"type": "string", "enum": ["IN", "OUT", "ADJUSTMENT"]},
                 "search": {"type": "string"}
             }, "required": ["date_from", "date_to"]}),
        Tool(name="category_breakdown", description="Per-SKU stock in/out by platform, grouped by category",
             inputSchema={"type": "object", "properties": {
                 "date_from": {"type": "string", "format": "date"}, "date_to": {"type": "string", "format": "date"},
                 "category_id": {"type": "string"}, "search": {"type": "string"}
             }, "required": ["date_from", "date_to"]}),
    ]


@app.call_tool()
async def call_tool(name: str, arguments: dict) -> List[TextContent]:
    handlers = {
        "stock_in": stock_in,
        "stock_out": stock_out,
        "get_sku": lambda a: get_sku(a["sku_id"]),
        "list_low_stock": lambda a: list_low_stock(a.get("limit", 10)),
        "dashboard_summary": lambda a: dashboard_summary(),
        "list_transactions": lambda a: list_transactions(
            a["date_from"], a["date_to"], a.get("direction"), a.get("search", "")),
        "category_breakdown": lambda a: category_breakdown(
            a["date_from"], a["date_to"], a.get("category_id"), a.get("search", "")),
    }
    handler = handlers.get(name)
    if not handler:
        raise ValueError(f"Unknown tool: {name}")
    return _result(handler(arguments))


# --- Implementation ---

def _line_items(raw: List[Dict]) -> List[LineItemRequest]:
    return [
        LineItemRequest(
            sku_id=item.get("sku_id", ""),
            quantity=item.get("quantity"),
            unit_price=item.get("unit_price"),
            unit_cost=item.get("unit_cost"),
        )
        for item in raw
    ]


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _movement_response(result) -> Dict:
    return {
        "success": True,
        "transaction_id": result.transaction.id,
        "summary": result.summary,
        "item_count": result.item_count,
        "amount": result.amount,
        "stock_changes": result.stock_changes,
        "transaction": result.transaction,
    }


def stock_in(arguments: Dict) -> Dict:
    svc = services()
    try:
        result = svc.engine.stock_in(
            svc.reference.snapshot(),
            acting_user_from_env(),
            arguments.get("reason_category_id", ""),
            _line_items(arguments.get("line_items", [])),
            source_type=arguments.get("source_type"),
            supplier_id=arguments.get("supplier_id"),
            reference_number=arguments.get("reference_number"),
            transaction_date=_parse_date(arguments.get("transaction_date")),
            notes=arguments.get("notes"),
        )
    except StockroomError as e:
        return {"success": False, **e.to_dict()}
    return _movement_response(result)


def stock_out(arguments: Dict) -> Dict:
    svc = services()
    try:
        result = svc.engine.stock_out(
            svc.reference.snapshot(),
            acting_user_from_env(),
            arguments.get("reason_category_id", ""),
            _line_items(arguments.get("line_items", [])),
            platform_id=arguments.get("platform_id"),
            customer_name=arguments.get("customer_name"),
            reference_number=arguments.get("reference_number"),
            transaction_date=_parse_date(arguments.get("transaction_date")),
            notes=arguments.get("notes"),
        )
    except StockroomError as e:
        return {"success": False, **e.to_dict()}
    return _movement_response(result)


def get_sku(sku_id: str) -> Dict:
    svc = services()
    try:
        sku = svc.catalog.get_sku(sku_id)
    except StockroomError as e:
        return {"success": False, **e.to_dict()}
    status = reporting.stock_status(sku.stock, sku.reorder_point)
    return {"success": True, "data": sku, "status": status, "status_label": status.label}


def list_low_stock(limit: int = 10) -> Dict:
    svc = services()
    if not svc.reference.snapshot().settings.enable_low_stock_alerts:
        return {"success": True, "count": 0, "data": [], "alerts_enabled": False}
    alerts = reporting.low_stock_alerts(svc.catalog.list_skus(), limit=limit)
    return {"success": True, "count": len(alerts), "data": alerts, "alerts_enabled": True}


def dashboard_summary() -> Dict:
    svc = services()
    snapshot = svc.reference.snapshot()
    today = date.today()
    week = svc.ledger.query_by_date_range(today - timedelta(days=6), today, TransactionDirection.OUT)
    stats = reporting.dashboard_stats(
        svc.catalog.list_products(), svc.catalog.list_skus(), week, today=today)
    return {
        "success": True,
        "business_name": snapshot.settings.business_name,
        "stats": stats.__dict__,
        "today_revenue_display": snapshot.format_currency(stats.today_revenue),
        "sales_series": [p.__dict__ for p in reporting.sales_series(week, today=today)],
        "recent_transactions": svc.ledger.query_recent(10),
    }


def list_transactions(date_from: str, date_to: str, direction: Optional[str] = None, search: str = "") -> Dict:
    svc = services()
    try:
        transactions = svc.ledger.query_by_date_range(
            _parse_date(date_from), _parse_date(date_to), direction or None)
    except StockroomError as e:
        return {"success": False, **e.to_dict(), "data": []}
    transactions = reporting.filter_transactions(transactions, search=search)
    summary = reporting.transaction_summary(transactions, svc.reference.snapshot())
    return {
        "success": True,
        "count": len(transactions),
        "summary": {**summary.__dict__, "net_movement": summary.net_movement},
        "data": transactions,
    }


def category_breakdown(date_from: str, date_to: str, category_id: Optional[str] = None, search: str = "") -> Dict:
    svc = services()
    try:
        transactions = svc.ledger.query_by_date_range(_parse_date(date_from), _parse_date(date_to))
    except StockroomError as e:
        return {"success": False, **e.to_dict(), "data": []}
    groups = reporting.category_breakdown(
        svc.catalog.list_skus(), svc.catalog.list_products(), transactions,
        svc.reference.snapshot(), category_id=category_id, search=search)
    return {
        "success": True,
        "data": [
            {
                "category_name": g.category_name,
                "total_in": g.total_in,
                "total_out": g.total_out,
                "rows": [
                    {**row.__dict__, "platforms": {k: v.__dict__ for k, v in row.platforms.items()}}
                    for row in g.rows
                ],
            }
            for g in groups
        ],
    }


if __name__ == "__main__":
    import asyncio
    from mcp.server.stdio import stdio_server

    configure_logging()

    async def run():
        async with stdio_server() as (read, write):
            await app.run(read, write, app.create_initialization_options())

    asyncio.run(run())
