from __future__ import annotations

from typing import Optional

from stockroom.config import StoreConfig
from stockroom.store.base import Delete, DocumentStore, Filter, Put, Update, WriteOperation
from stockroom.store.memory import InMemoryDocumentStore


def create_store(config: Optional[StoreConfig] = None) -> DocumentStore:
    """Build the backend named by ``STOCKROOM_STORE`` (memory or dynamodb)."""
    config = config or StoreConfig.from_env()
    if config.backend == "dynamodb":
        from stockroom.store.dynamodb import DynamoDBDocumentStore

        return DynamoDBDocumentStore(config)
    if config.backend == "memory":
        return InMemoryDocumentStore()
    raise ValueError(f"Unknown store backend: {config.backend}")


__all__ = [
    "Delete",
    "DocumentStore",
    "Filter",
    "InMemoryDocumentStore",
    "Put",
    "Update",
    "WriteOperation",
    "create_store",
]
