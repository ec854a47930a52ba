"""DynamoDB-backed document store.

One table per collection, hash key ``id``. Batches are sent as a single
``transact_write_items`` call so that the ledger put and every conditional
stock update either all land or none do.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import reduce
from typing import Any, Optional, Sequence

import boto3
from boto3.dynamodb.conditions import Attr
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from stockroom.config import StoreConfig
from stockroom.exceptions import ConditionFailed, OutcomeUnknown, PersistenceFailed
from stockroom.store.base import (
    Delete,
    DocumentStore,
    Filter,
    Put,
    Update,
    WriteOperation,
    sort_and_limit,
)

logger = logging.getLogger(__name__)

MAX_TRANSACTION_ITEMS = 100

_serializer = TypeSerializer()


def to_dynamo(obj: Any) -> Any:
    """Floats are not accepted by boto3; convert them to Decimal."""
    if isinstance(obj, bool):
        return obj
    if isinstance(obj, float):
        return Decimal(str(obj))
    if isinstance(obj, dict):
        return {k: to_dynamo(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_dynamo(i) for i in obj]
    return obj


def to_native(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return int(obj) if obj == int(obj) else float(obj)
    if isinstance(obj, dict):
        return {k: to_native(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [to_native(i) for i in obj]
    return obj


def _typed(value: Any) -> dict:
    return _serializer.serialize(to_dynamo(value))


_FILTER_BUILDERS = {
    "==": lambda a, v: a.eq(v),
    "!=": lambda a, v: a.ne(v),
    ">=": lambda a, v: a.gte(v),
    "<=": lambda a, v: a.lte(v),
    ">": lambda a, v: a.gt(v),
    "<": lambda a, v: a.lt(v),
}


class DynamoDBDocumentStore(DocumentStore):
    """Document store over DynamoDB tables named ``<prefix><collection>``."""

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        dynamodb_resource: Optional[Any] = None,
        dynamodb_client: Optional[Any] = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.config = config or StoreConfig.from_env()

        # AWS clients, injectable for tests
        self.dynamodb = dynamodb_resource or boto3.resource(
            "dynamodb",
            endpoint_url=self.config.endpoint_url,
            config=self.config.boto_config(),
        )
        self.client = dynamodb_client or boto3.client(
            "dynamodb",
            endpoint_url=self.config.endpoint_url,
            config=self.config.boto_config(),
        )
        self._last_snapshots: dict[str, list[dict]] = {}

        logger.info(
            "DynamoDB store ready (region=%s, prefix=%r)",
            self.config.region_name,
            self.config.table_prefix,
        )

    def _table(self, collection: str):
        return self.dynamodb.Table(self.config.table_name(collection))

    # --- Reads ---

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        try:
            response = self._table(collection).get_item(Key={"id": doc_id}, ConsistentRead=True)
        except (ReadTimeoutError, ConnectTimeoutError, EndpointConnectionError) as e:
            raise PersistenceFailed(f"Read of {collection}/{doc_id} failed: {e}") from e
        except ClientError as e:
            logger.error("DynamoDB get_item error [%s]: %s", collection, e)
            raise PersistenceFailed(f"Read of {collection}/{doc_id} failed") from e
        item = response.get("Item")
        return to_native(item) if item is not None else None

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        scan_kwargs: dict[str, Any] = {"ConsistentRead": True}
        if filters:
            conditions = [
                _FILTER_BUILDERS[op](Attr(field_name), to_dynamo(value))
                for field_name, op, value in filters
            ]
            scan_kwargs["FilterExpression"] = reduce(lambda a, b: a & b, conditions)

        table = self._table(collection)
        items: list[dict] = []
        try:
            while True:
                response = table.scan(**scan_kwargs)
                items.extend(response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                scan_kwargs["ExclusiveStartKey"] = last_key
        except (ReadTimeoutError, ConnectTimeoutError, EndpointConnectionError) as e:
            raise PersistenceFailed(f"Scan of {collection} failed: {e}") from e
        except ClientError as e:
            logger.error("DynamoDB scan error [%s]: %s", collection, e)
            raise PersistenceFailed(f"Scan of {collection} failed") from e

        return sort_and_limit([to_native(i) for i in items], order_by, descending, limit)

    # --- Writes ---

    def commit_batch(
        self, operations: Sequence[WriteOperation], token: Optional[str] = None
    ) -> None:
        if not operations:
            return
        if len(operations) > MAX_TRANSACTION_ITEMS:
            raise PersistenceFailed(
                f"Batch has {len(operations)} writes, DynamoDB allows {MAX_TRANSACTION_ITEMS}",
                code="BATCH_TOO_LARGE",
            )

        now = self._now()
        request: dict[str, Any] = {
            "TransactItems": [self._transact_item(op, now) for op in operations]
        }
        if token:
            request["ClientRequestToken"] = token[:36]

        try:
            self.client.transact_write_items(**request)
        except ReadTimeoutError as e:
            logger.error("DynamoDB transaction timed out, outcome unknown: %s", e)
            raise OutcomeUnknown(details={"operations": len(operations)}) from e
        except (ConnectTimeoutError, EndpointConnectionError) as e:
            logger.error("DynamoDB unreachable: %s", e)
            raise PersistenceFailed(str(e)) from e
        except ClientError as e:
            failed = self._conditional_failures(e, operations)
            if failed:
                raise ConditionFailed(failed_keys=failed) from e
            logger.error("DynamoDB transaction error: %s", e)
            raise PersistenceFailed(
                e.response.get("Error", {}).get("Message") or str(e),
                code=e.response.get("Error", {}).get("Code"),
            ) from e

        self._notify(op.collection for op in operations)

    def poll_subscriptions(self) -> None:
        """Re-read subscribed collections and notify listeners of changes.

        DynamoDB has no push channel here; hosts call this periodically to
        pick up writes made by other sessions.
        """
        with self._subscribers_lock:
            collections = [c for c, callbacks in self._subscribers.items() if callbacks]
        changed = []
        for collection in collections:
            snapshot = self.query(collection)
            if snapshot != self._last_snapshots.get(collection):
                self._last_snapshots[collection] = snapshot
                changed.append(collection)
        self._notify(changed)

    # --- Request building ---

    def _transact_item(self, op: WriteOperation, now: str) -> dict:
        table_name = self.config.table_name(op.collection)
        key = {"id": _typed(op.doc_id)}

        if isinstance(op, Put):
            data = dict(op.data)
            data["id"] = op.doc_id
            data["created_at"] = data.get("created_at") or now
            data["updated_at"] = now
            put: dict[str, Any] = {
                "TableName": table_name,
                "Item": {k: _typed(v) for k, v in data.items()},
            }
            if op.if_absent:
                put["ConditionExpression"] = "attribute_not_exists(#pk)"
                put["ExpressionAttributeNames"] = {"#pk": "id"}
            return {"Put": put}

        if isinstance(op, Update):
            names = {"#pk": "id", "#updated_at": "updated_at"}
            values: dict[str, Any] = {":updated_at": now}
            assignments = ["#updated_at = :updated_at"]
            for i, (field_name, value) in enumerate(op.set_fields.items()):
                names[f"#s{i}"] = field_name
                values[f":s{i}"] = value
                assignments.append(f"#s{i} = :s{i}")
            for i, (field_name, delta) in enumerate(op.increments.items()):
                names[f"#i{i}"] = field_name
                values[f":i{i}"] = delta
                values[":zero"] = 0
                assignments.append(f"#i{i} = if_not_exists(#i{i}, :zero) + :i{i}")

            conditions = ["attribute_exists(#pk)"]
            for i, (field_name, minimum) in enumerate(op.min_values.items()):
                names[f"#m{i}"] = field_name
                values[f":m{i}"] = minimum
                conditions.append(f"#m{i} >= :m{i}")
            for i, (field_name, expected) in enumerate(op.equals.items()):
                names[f"#e{i}"] = field_name
                values[f":e{i}"] = expected
                conditions.append(f"#e{i} = :e{i}")

            return {
                "Update": {
                    "TableName": table_name,
                    "Key": key,
                    "UpdateExpression": "SET " + ", ".join(assignments),
                    "ConditionExpression": " AND ".join(conditions),
                    "ExpressionAttributeNames": names,
                    "ExpressionAttributeValues": {k: _typed(v) for k, v in values.items()},
                }
            }

        if isinstance(op, Delete):
            return {"Delete": {"TableName": table_name, "Key": key}}

        raise TypeError(f"Unknown write operation: {op!r}")

    @staticmethod
    def _conditional_failures(
        error: ClientError, operations: Sequence[WriteOperation]
    ) -> list[tuple[str, str]]:
        if error.response.get("Error", {}).get("Code") != "TransactionCanceledException":
            return []
        reasons = error.response.get("CancellationReasons", [])
        return [
            (op.collection, op.doc_id)
            for op, reason in zip(operations, reasons)
            if reason.get("Code") == "ConditionalCheckFailed"
        ]
