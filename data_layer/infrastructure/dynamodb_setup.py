"""DynamoDB table creation and seed data loading.

One table per collection, hash key ``id``, named ``<STOCKROOM_TABLE_PREFIX><collection>``.

Usage:
    python -m data_layer.infrastructure.dynamodb_setup            # create + seed
    python -m data_layer.infrastructure.dynamodb_setup --delete   # drop tables
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import boto3
from botocore.exceptions import ClientError

from stockroom.config import StoreConfig, configure_logging
from stockroom.models.inventory import (
    REFERENCE_TYPES,
    SKU,
    AuditLogEntry,
    InventoryTransaction,
    Product,
    SystemSettings,
)
from stockroom.store.dynamodb import to_dynamo

logger = logging.getLogger(__name__)

SEED_FILE = Path(__file__).resolve().parent.parent / "data" / "seed.json"

COLLECTIONS = [
    *REFERENCE_TYPES,
    SystemSettings.COLLECTION,
    Product.COLLECTION,
    SKU.COLLECTION,
    SKU.CODE_INDEX,
    InventoryTransaction.COLLECTION,
    AuditLogEntry.COLLECTION,
]


def table_definitions(config: StoreConfig) -> list[dict]:
    return [
        {
            "TableName": config.table_name(collection),
            "KeySchema": [{"AttributeName": "id", "KeyType": "HASH"}],
            "AttributeDefinitions": [{"AttributeName": "id", "AttributeType": "S"}],
            "BillingMode": "PAY_PER_REQUEST",
        }
        for collection in COLLECTIONS
    ]


def _client(config: StoreConfig, client: Optional[Any] = None):
    return client or boto3.client(
        "dynamodb", endpoint_url=config.endpoint_url, config=config.boto_config()
    )


def create_tables(config: Optional[StoreConfig] = None, client: Optional[Any] = None) -> list[str]:
    """Create the missing tables and wait for them. Returns the names created."""
    config = config or StoreConfig.from_env()
    dynamodb = _client(config, client)
    created = []

    for table_def in table_definitions(config):
        table_name = table_def["TableName"]
        try:
            dynamodb.describe_table(TableName=table_name)
            logger.info("%s already exists, skipping", table_name)
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceNotFoundException":
                raise
            logger.info("Creating %s", table_name)
            dynamodb.create_table(**table_def)
            dynamodb.get_waiter("table_exists").wait(TableName=table_name)
            created.append(table_name)
    return created


def delete_tables(config: Optional[StoreConfig] = None, client: Optional[Any] = None) -> None:
    config = config or StoreConfig.from_env()
    dynamodb = _client(config, client)
    for table_def in table_definitions(config):
        table_name = table_def["TableName"]
        try:
            dynamodb.delete_table(TableName=table_name)
            logger.info("%s deleted", table_name)
        except ClientError:
            logger.info("%s not found, skipping", table_name)


def load_seed_data(
    config: Optional[StoreConfig] = None,
    seed_file: Path = SEED_FILE,
    resource: Optional[Any] = None,
) -> dict[str, int]:
    """Write every document from the seed file. Tables that already hold data
    are left alone. Returns the number of documents written per collection."""
    config = config or StoreConfig.from_env()
    dynamodb = resource or boto3.resource(
        "dynamodb", endpoint_url=config.endpoint_url, config=config.boto_config()
    )
    with open(seed_file, "r", encoding="utf-8") as f:
        seed: dict[str, list[dict]] = json.load(f)

    written: dict[str, int] = {}
    for collection, documents in seed.items():
        table = dynamodb.Table(config.table_name(collection))
        if table.scan(Limit=1, Select="COUNT").get("Count", 0) > 0:
            logger.info("%s already has data, skipping", collection)
            continue
        with table.batch_writer() as batch:
            for document in documents:
                batch.put_item(Item=to_dynamo(document))
        written[collection] = len(documents)
        logger.info("%s: %d documents loaded", collection, len(documents))
    return written


if __name__ == "__main__":
    configure_logging()
    if len(sys.argv) > 1 and sys.argv[1] == "--delete":
        delete_tables()
    else:
        create_tables()
        load_seed_data()
