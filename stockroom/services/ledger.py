"""Append-only history of inventory transactions.

There is no update or delete. ``append`` does not write by itself: it
returns the put operation that the stock mutation engine commits in the same
batch as the stock changes.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Optional, Union

from stockroom.exceptions import ValidationFailed
from stockroom.models.inventory import InventoryTransaction, TransactionDirection, format_timestamp
from stockroom.store.base import DocumentStore, Filter, Put

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime]


def start_of_day(value: DateLike) -> datetime:
    day = value.date() if isinstance(value, datetime) else value
    return datetime.combine(day, time.min)


def end_of_day(value: DateLike) -> datetime:
    day = value.date() if isinstance(value, datetime) else value
    return datetime.combine(day, time.max)


class TransactionLedger:
    def __init__(self, store: DocumentStore):
        self.store = store

    def append(self, transaction: InventoryTransaction) -> Put:
        return Put(
            InventoryTransaction.COLLECTION,
            transaction.id,
            transaction.to_item(),
            if_absent=True,
        )

    def get(self, transaction_id: str) -> Optional[InventoryTransaction]:
        item = self.store.get(InventoryTransaction.COLLECTION, transaction_id)
        return InventoryTransaction.from_item(item) if item else None

    def query_by_date_range(
        self,
        date_from: DateLike,
        date_to: DateLike,
        direction: Optional[TransactionDirection] = None,
    ) -> list[InventoryTransaction]:
        """Transactions whose business date falls on ``date_from``..``date_to``.

        Both ends are whole days (local time). Newest first.
        """
        start, end = start_of_day(date_from), end_of_day(date_to)
        if start > end:
            raise ValidationFailed(
                "Date From must be on or before Date To",
                code="INVALID_DATE_RANGE",
                details={"from": start.isoformat(), "to": end.isoformat()},
            )
        filters: list[Filter] = [
            ("transaction_date", ">=", format_timestamp(start)),
            ("transaction_date", "<=", format_timestamp(end)),
        ]
        if direction is not None:
            filters.append(("direction", "==", TransactionDirection(direction).value))
        return self._load(filters)

    def query_since(
        self, since: datetime, direction: Optional[TransactionDirection] = None
    ) -> list[InventoryTransaction]:
        filters: list[Filter] = [("transaction_date", ">=", format_timestamp(since))]
        if direction is not None:
            filters.append(("direction", "==", TransactionDirection(direction).value))
        return self._load(filters)

    def query_recent(self, n: int = 10) -> list[InventoryTransaction]:
        if n <= 0:
            return []
        return self._load([], limit=n)

    def _load(self, filters: list[Filter], limit: Optional[int] = None) -> list[InventoryTransaction]:
        items = self.store.query(
            InventoryTransaction.COLLECTION,
            filters=filters,
            order_by="transaction_date",
            descending=True,
            limit=limit,
        )
        return [InventoryTransaction.from_item(i) for i in items]
