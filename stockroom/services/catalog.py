"""Catalog: products and their stock-tracked variants (SKUs).

Stock is set once when a SKU is created. Every later change goes through
the stock mutation engine, so ``update_sku`` refuses a ``stock`` field.
"""

from __future__ import annotations

import logging
import math
import uuid
from enum import Enum
from typing import Any, Optional, Union

from stockroom.exceptions import ConditionFailed, NotFound, ValidationFailed
from stockroom.models.inventory import SKU, AuditAction, Product, SystemSettings, UserIdentity
from stockroom.services.base_service import BaseService
from stockroom.store.base import Delete, Put, Update, WriteOperation

logger = logging.getLogger(__name__)


class EntityKind(str, Enum):
    PRODUCT = "PRODUCT"
    SKU = "SKU"


_RECORD_TYPES = {EntityKind.PRODUCT: Product, EntityKind.SKU: SKU}

_SKU_EDITABLE = {
    "product_id",
    "sku_code",
    "size_id",
    "color_id",
    "price",
    "cost",
    "reorder_point",
    "is_active",
}
_PRODUCT_EDITABLE = {"name", "description", "category_id", "color_id", "size_id", "is_active"}


def normalize_sku_code(code: str) -> str:
    return code.strip().upper()


class CatalogService(BaseService):
    service_name = "CatalogService"

    # --- Lookups ---

    def find_by_id(self, kind: EntityKind, record_id: str) -> Optional[Union[Product, SKU]]:
        """Return the product or SKU with this id, or None."""
        record_type = _RECORD_TYPES[EntityKind(kind)]
        if not record_id:
            return None
        item = self.store.get(record_type.COLLECTION, record_id)
        return record_type.from_item(item) if item else None

    def get_product(self, product_id: str) -> Product:
        product = self.find_by_id(EntityKind.PRODUCT, product_id)
        if product is None:
            raise NotFound("Product", product_id)
        return product

    def get_sku(self, sku_id: str) -> SKU:
        sku = self.find_by_id(EntityKind.SKU, sku_id)
        if sku is None:
            raise NotFound("SKU", sku_id)
        return sku

    def find_by_parent(self, product_id: str) -> list[SKU]:
        items = self.store.query(SKU.COLLECTION, filters=[("product_id", "==", product_id)])
        return sorted((SKU.from_item(i) for i in items), key=lambda s: s.sku_code)

    def list_products(self, active_only: bool = False) -> list[Product]:
        filters = [("is_active", "==", True)] if active_only else []
        items = self.store.query(Product.COLLECTION, filters=filters)
        return sorted((Product.from_item(i) for i in items), key=lambda p: p.name.lower())

    def list_skus(self, active_only: bool = False) -> list[SKU]:
        filters = [("is_active", "==", True)] if active_only else []
        items = self.store.query(SKU.COLLECTION, filters=filters)
        return sorted((SKU.from_item(i) for i in items), key=lambda s: s.sku_code)

    def is_sku_code_taken(self, code: str, exclude_id: Optional[str] = None) -> bool:
        wanted = code.strip().lower()
        return any(
            str(item.get("sku_code", "")).lower() == wanted and item.get("id") != exclude_id
            for item in self.store.query(SKU.COLLECTION)
        )

    # --- Products ---

    def create_product(
        self,
        user: UserIdentity,
        name: str,
        category_id: str,
        description: str = "",
        color_id: Optional[str] = None,
        size_id: Optional[str] = None,
        is_active: bool = True,
    ) -> Product:
        if not name or not name.strip():
            raise ValidationFailed("Product name is required", code="PRODUCT_NAME_REQUIRED")
        if not category_id:
            raise ValidationFailed("Product category is required", code="CATEGORY_REQUIRED")

        product = Product(
            id=str(uuid.uuid4()),
            name=name.strip(),
            category_id=category_id,
            description=description,
            color_id=color_id or None,
            size_id=size_id or None,
            is_active=is_active,
            created_by=user.id,
        )
        self.store.put(Product.COLLECTION, product.id, product.to_item(), if_absent=True)
        logger.info("Product created: %s (%s)", product.name, product.id)
        self.record_audit(AuditAction.CREATE, Product.COLLECTION, product.id, user, product.name)
        return self.get_product(product.id)

    def update_product(self, user: UserIdentity, product_id: str, **changes: Any) -> Product:
        unknown = set(changes) - _PRODUCT_EDITABLE
        if unknown:
            raise ValidationFailed(
                f"Fields cannot be edited: {', '.join(sorted(unknown))}",
                code="FIELD_NOT_EDITABLE",
            )
        self.get_product(product_id)
        if "name" in changes:
            if not changes["name"] or not str(changes["name"]).strip():
                raise ValidationFailed("Product name is required", code="PRODUCT_NAME_REQUIRED")
            changes["name"] = str(changes["name"]).strip()
        self.store.update(Product.COLLECTION, product_id, **changes)
        self.record_audit(AuditAction.UPDATE, Product.COLLECTION, product_id, user, str(changes))
        return self.get_product(product_id)

    def delete_product(self, user: UserIdentity, product_id: str) -> None:
        product = self.get_product(product_id)
        if self.find_by_parent(product_id):
            raise ValidationFailed(
                "This product has SKUs. Delete SKUs first.",
                code="PRODUCT_HAS_SKUS",
                details={"product_id": product_id},
            )
        self.store.delete(Product.COLLECTION, product_id)
        logger.info("Product deleted: %s (%s)", product.name, product_id)
        self.record_audit(AuditAction.DELETE, Product.COLLECTION, product_id, user, product.name)

    # --- SKUs ---

    def create_sku(
        self,
        user: UserIdentity,
        product_id: str,
        sku_code: str,
        price: float = 0.0,
        cost: float = 0.0,
        stock: int = 0,
        reorder_point: Optional[int] = None,
        size_id: Optional[str] = None,
        color_id: Optional[str] = None,
        is_active: bool = True,
        settings: Optional[SystemSettings] = None,
    ) -> SKU:
        """Create a SKU with its one-time initial stock.

        The SKU and its code-index entry are written in one batch, so two
        sessions creating the same code cannot both succeed.
        """
        if not product_id or not sku_code or not sku_code.strip():
            raise ValidationFailed("Product and SKU Code are required", code="SKU_FIELDS_REQUIRED")
        self.get_product(product_id)
        code = normalize_sku_code(sku_code)
        if self.is_sku_code_taken(code):
            raise _duplicate_code(code)
        if isinstance(stock, bool) or not isinstance(stock, int):
            raise ValidationFailed("Initial stock must be a whole number", code="INVALID_STOCK")
        if reorder_point is None:
            reorder_point = (settings or SystemSettings()).default_reorder_point
        _check_non_negative(price=price, cost=cost, reorder_point=reorder_point)
        _check_whole_number(reorder_point=reorder_point)

        sku = SKU(
            id=str(uuid.uuid4()),
            product_id=product_id,
            sku_code=code,
            price=float(price),
            cost=float(cost),
            stock=stock,
            reorder_point=reorder_point,
            size_id=size_id or None,
            color_id=color_id or None,
            is_active=is_active,
        )
        self._commit_with_code(
            [Put(SKU.COLLECTION, sku.id, sku.to_item(), if_absent=True), _claim_code(code, sku.id)],
            code,
        )
        logger.info("SKU created: %s (initial stock %d)", sku.sku_code, sku.stock)
        self.record_audit(AuditAction.CREATE, SKU.COLLECTION, sku.id, user, sku.sku_code)
        return self.get_sku(sku.id)

    def update_sku(self, user: UserIdentity, sku_id: str, **changes: Any) -> SKU:
        if "stock" in changes:
            raise ValidationFailed(
                "Stock cannot be edited directly. Use Stock In/Out to adjust stock",
                code="STOCK_NOT_EDITABLE",
            )
        unknown = set(changes) - _SKU_EDITABLE
        if unknown:
            raise ValidationFailed(
                f"Fields cannot be edited: {', '.join(sorted(unknown))}",
                code="FIELD_NOT_EDITABLE",
            )
        current = self.get_sku(sku_id)
        code_operations: list[WriteOperation] = []
        if "sku_code" in changes:
            if not changes["sku_code"] or not str(changes["sku_code"]).strip():
                raise ValidationFailed("SKU Code is required", code="SKU_FIELDS_REQUIRED")
            changes["sku_code"] = normalize_sku_code(changes["sku_code"])
            if self.is_sku_code_taken(changes["sku_code"], exclude_id=sku_id):
                raise _duplicate_code(changes["sku_code"])
            old_code = normalize_sku_code(current.sku_code)
            if changes["sku_code"] != old_code:
                code_operations = [Delete(SKU.CODE_INDEX, old_code), _claim_code(changes["sku_code"], sku_id)]
        if "product_id" in changes:
            self.get_product(changes["product_id"])
        _check_non_negative(
            **{k: changes[k] for k in ("price", "cost", "reorder_point") if k in changes}
        )
        if "reorder_point" in changes:
            _check_whole_number(reorder_point=changes["reorder_point"])

        self._commit_with_code(
            [Update(SKU.COLLECTION, sku_id, set_fields=changes), *code_operations],
            changes.get("sku_code"),
        )
        self.record_audit(AuditAction.UPDATE, SKU.COLLECTION, sku_id, user, str(changes))
        return self.get_sku(sku_id)

    def delete_sku(self, user: UserIdentity, sku_id: str) -> None:
        sku = self.get_sku(sku_id)
        self.store.commit_batch([
            Delete(SKU.COLLECTION, sku_id),
            Delete(SKU.CODE_INDEX, normalize_sku_code(sku.sku_code)),
        ])
        logger.info("SKU deleted: %s", sku.sku_code)
        self.record_audit(AuditAction.DELETE, SKU.COLLECTION, sku_id, user, sku.sku_code)

    def _commit_with_code(self, operations: list[WriteOperation], code: Optional[str]) -> None:
        try:
            self.store.commit_batch(operations)
        except ConditionFailed as e:
            if code and (SKU.CODE_INDEX, code) in e.failed_keys:
                logger.warning("SKU code %s claimed by another session", code)
                raise _duplicate_code(code) from e
            raise


def _claim_code(code: str, sku_id: str) -> Put:
    return Put(SKU.CODE_INDEX, code, {"sku_id": sku_id}, if_absent=True)


def _duplicate_code(code: str) -> ValidationFailed:
    return ValidationFailed(
        "SKU code already exists", code="DUPLICATE_SKU_CODE", details={"sku_code": code}
    )


def _check_whole_number(**values: Any) -> None:
    for name, value in values.items():
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationFailed(
                f"{name} must be a whole number", code="INVALID_NUMBER", details={name: value}
            )


def _check_non_negative(**values: Any) -> None:
    for name, value in values.items():
        if (
            isinstance(value, bool)
            or not isinstance(value, (int, float))
            or not math.isfinite(value)
            or value < 0
        ):
            raise ValidationFailed(
                f"{name} must be a finite, non-negative number",
                code="INVALID_NUMBER",
                details={name: value},
            )
