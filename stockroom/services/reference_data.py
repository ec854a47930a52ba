"""Session context: system settings plus a snapshot of the reference data.

The engine and the report functions take a ``ReferenceSnapshot`` argument
instead of reaching for shared state. ``ReferenceDataCache`` owns the
subscriptions and swaps in a new snapshot when a collection changes; a
snapshot already handed out is never modified.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

from stockroom.exceptions import PermissionDenied
from stockroom.models.inventory import (
    REFERENCE_TYPES,
    Category,
    Color,
    Platform,
    ReasonCategory,
    Size,
    Supplier,
    SystemSettings,
    TransactionDirection,
    UserIdentity,
    UserRole,
)
from stockroom.store.base import DocumentStore

logger = logging.getLogger(__name__)

# ReferenceSnapshot attribute holding each collection
_SNAPSHOT_FIELDS = {
    Category.COLLECTION: "categories",
    Color.COLLECTION: "colors",
    Size.COLLECTION: "sizes",
    Supplier.COLLECTION: "suppliers",
    Platform.COLLECTION: "platforms",
    ReasonCategory.COLLECTION: "reasons",
}


@dataclass(frozen=True)
class ReferenceSnapshot:
    settings: SystemSettings = field(default_factory=SystemSettings)
    categories: dict[str, Category] = field(default_factory=dict)
    colors: dict[str, Color] = field(default_factory=dict)
    sizes: dict[str, Size] = field(default_factory=dict)
    suppliers: dict[str, Supplier] = field(default_factory=dict)
    platforms: dict[str, Platform] = field(default_factory=dict)
    reasons: dict[str, ReasonCategory] = field(default_factory=dict)

    def reason(self, reason_id: Optional[str]) -> Optional[ReasonCategory]:
        return self.reasons.get(reason_id) if reason_id else None

    def platform(self, platform_id: Optional[str]) -> Optional[Platform]:
        return self.platforms.get(platform_id) if platform_id else None

    def supplier(self, supplier_id: Optional[str]) -> Optional[Supplier]:
        return self.suppliers.get(supplier_id) if supplier_id else None

    def category(self, category_id: Optional[str]) -> Optional[Category]:
        return self.categories.get(category_id) if category_id else None

    def size(self, size_id: Optional[str]) -> Optional[Size]:
        return self.sizes.get(size_id) if size_id else None

    def color(self, color_id: Optional[str]) -> Optional[Color]:
        return self.colors.get(color_id) if color_id else None

    def active_reasons(self, direction: TransactionDirection) -> list[ReasonCategory]:
        """Selectable reasons for a form, in display order."""
        return sorted(
            (r for r in self.reasons.values() if r.is_active and r.direction == direction),
            key=lambda r: (r.sort_order, r.name),
        )

    def active_platforms(self) -> list[Platform]:
        return sorted((p for p in self.platforms.values() if p.is_active), key=lambda p: p.name)

    def active_suppliers(self) -> list[Supplier]:
        return sorted((s for s in self.suppliers.values() if s.is_active), key=lambda s: s.name)

    def format_currency(self, amount: float) -> str:
        return f"{self.settings.currency_symbol}{amount:,.2f}"


def load_settings(store: DocumentStore) -> SystemSettings:
    """Stored settings merged over the defaults."""
    item = store.get(SystemSettings.COLLECTION, SystemSettings.DOCUMENT_ID)
    return SystemSettings.from_item(item) if item else SystemSettings()


def save_settings(store: DocumentStore, user: UserIdentity, settings: SystemSettings) -> None:
    if user.role != UserRole.SUPERADMIN:
        raise PermissionDenied(
            "Only a super administrator can change system settings",
            code="SETTINGS_FORBIDDEN",
            details={"user_id": user.id, "role": user.role.value},
        )
    store.put(SystemSettings.COLLECTION, SystemSettings.DOCUMENT_ID, settings.to_item())
    logger.info("System settings updated by %s", user.id)


def build_snapshot(
    settings: SystemSettings, documents: dict[str, list[dict]]
) -> ReferenceSnapshot:
    kwargs = {}
    for collection, attr in _SNAPSHOT_FIELDS.items():
        record_type = REFERENCE_TYPES[collection]
        kwargs[attr] = {d["id"]: record_type.from_item(d) for d in documents.get(collection, [])}
    return ReferenceSnapshot(settings=settings, **kwargs)


class ReferenceDataCache:
    """Loaded once per session, refreshed through store subscriptions."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self._snapshot = ReferenceSnapshot()
        self._lock = threading.Lock()
        self._unsubscribers: list[Callable[[], None]] = []

    def load(self) -> ReferenceSnapshot:
        documents = {c: self.store.query(c) for c in _SNAPSHOT_FIELDS}
        snapshot = build_snapshot(load_settings(self.store), documents)
        with self._lock:
            self._snapshot = snapshot
        logger.info(
            "Reference data loaded: %d reasons, %d platforms, %d suppliers",
            len(snapshot.reasons),
            len(snapshot.platforms),
            len(snapshot.suppliers),
        )
        return snapshot

    def start(self) -> ReferenceSnapshot:
        """Load and subscribe to every reference collection and the settings."""
        self.stop()
        for collection in list(_SNAPSHOT_FIELDS) + [SystemSettings.COLLECTION]:
            self._unsubscribers.append(self.store.subscribe(collection, self.on_snapshot_changed))
        return self.snapshot()

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def snapshot(self) -> ReferenceSnapshot:
        with self._lock:
            return self._snapshot

    def on_snapshot_changed(self, collection: str, documents: list[dict]) -> None:
        with self._lock:
            if collection == SystemSettings.COLLECTION:
                item = next(
                    (d for d in documents if d.get("id") == SystemSettings.DOCUMENT_ID), None
                )
                settings = SystemSettings.from_item(item) if item else SystemSettings()
                self._snapshot = replace(self._snapshot, settings=settings)
            elif collection in _SNAPSHOT_FIELDS:
                record_type = REFERENCE_TYPES[collection]
                records = {d["id"]: record_type.from_item(d) for d in documents}
                self._snapshot = replace(self._snapshot, **{_SNAPSHOT_FIELDS[collection]: records})
            else:
                return
        logger.debug("Reference snapshot refreshed: %s (%d docs)", collection, len(documents))
