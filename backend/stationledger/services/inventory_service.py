# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# backend/stationledger/services/inventory_service.py

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryAdjustment, InventoryItem, Product, Station
from ..models.inventory import (
    ADJUST_REASON_MANUAL,
    ADJUST_REASON_SALE,
    ADJUST_REASON_SALE_REVERSAL,
)
from ..money import ZERO, quantize_liters, to_decimal
from ..time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import inventory_key, lock_for_update, run_atomic
"""
Inventory Invariants (authoritative)

Model:
- One InventoryItem row per (station, product), provisioned before use.
- quantity is a stored counter changed only through adjust(); every applied
  delta also lands in the InventoryAdjustment journal in the same DB
  transaction.

Negative stock policy:
- SALE (outbound) adjustments never drive quantity below zero.
- MANUAL corrections may go negative only when ALLOW_NEGATIVE_MANUAL_ADJUST
  is enabled (the default).
- A rejected adjustment leaves quantity untouched.

Concurrency:
- Adjustments on the same (station, product) serialize on the keyed lock
  plus a row lock; the version column turns a cross-process lost update into
  ConcurrencyConflictError.
"""

VALID_ADJUST_REASONS = [ADJUST_REASON_MANUAL, ADJUST_REASON_SALE, ADJUST_REASON_SALE_REVERSAL]


def _require_id(value, field: str) -> int:
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required", field=field)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", field=field)


def _parse_delta(delta) -> Decimal:
    value = to_decimal(delta, "delta")
    if value == 0:
        raise ValidationError("delta must be non-zero", field="delta")
    if quantize_liters(value) != value:
        raise ValidationError("delta supports at most 3 decimal places", field="delta")
    return value


def _negative_allowed(reason: str) -> bool:
    if reason == ADJUST_REASON_MANUAL:
        return bool(current_app.config.get("ALLOW_NEGATIVE_MANUAL_ADJUST", True))
    return False


def _get_item_locked(station_id: int, product_id: int) -> InventoryItem:
    item = lock_for_update(
        db.session.query(InventoryItem).filter_by(station_id=station_id, product_id=product_id)
    ).first()
    if item is None:
        raise NotFoundError(
            f"no inventory row for station {station_id} / product {product_id}",
            station_id=station_id,
            product_id=product_id,
        )
    return item


def find_item(station_id: int, product_id: int) -> InventoryItem | None:
    return db.session.query(InventoryItem).filter_by(station_id=station_id, product_id=product_id).first()


def _adjust_inner(
    *,
    station_id: int,
    product_id: int,
    delta: Decimal,
    reason: str,
    note: str | None = None,
    transaction_id: int | None = None,
    actor_id: str | None = None,
) -> InventoryItem:
    """Core ADJUST logic without keyed locking or commit.

    Called by the public adjust() and by transaction ingestion, which holds
    the inventory key for its own unit.
    """
    item = _get_item_locked(station_id, product_id)

    current = item.quantity if item.quantity is not None else ZERO
    new_quantity = current + delta
    if new_quantity < 0 and not _negative_allowed(reason):
        raise InsufficientStockError(
            f"adjustment would make stock negative (on hand {current}, delta {delta})",
            station_id=station_id,
            product_id=product_id,
            quantity=current,
            delta=delta,
        )

    now = utcnow()
    item.quantity = new_quantity
    item.last_adjusted_at = now

    adj = InventoryAdjustment(
        inventory_item_id=item.id,
        delta=delta,
        quantity_after=new_quantity,
        reason=reason,
        transaction_id=transaction_id,
        note=note,
        occurred_at=now,
    )
    db.session.add(adj)
    db.session.flush()

    append_audit_event(
        event_type="inventory.adjusted",
        entity_type="inventory_item",
        entity_id=item.id,
        station_id=station_id,
        actor_id=actor_id,
        occurred_at=now,
        note=note,
        payload={"product_id": product_id, "delta": delta, "quantity_after": new_quantity, "reason": reason},
    )
    return item


def adjust(
    station_id,
    product_id,
    delta,
    *,
    reason: str = ADJUST_REASON_MANUAL,
    note: str | None = None,
    actor_id: str | None = None,
) -> dict:
    """
    Apply a signed quantity change to the (station, product) counter.

    Returns {"station_id", "product_id", "quantity"} with the new quantity.

    Raises:
        ValidationError: zero/malformed delta, missing ids, unknown reason
        NotFoundError: no inventory row provisioned for the pair
        InsufficientStockError: result would go negative under the policy
    """
    station_id = _require_id(station_id, "station_id")
    product_id = _require_id(product_id, "product_id")
    delta_value = _parse_delta(delta)
    if reason not in VALID_ADJUST_REASONS:
        raise ValidationError(f"Invalid reason: {reason}. Must be one of {VALID_ADJUST_REASONS}")

    def _op():
        item = _adjust_inner(
            station_id=station_id,
            product_id=product_id,
            delta=delta_value,
            reason=reason,
            note=note,
            actor_id=actor_id,
        )
        return {
            "station_id": station_id,
            "product_id": product_id,
            "quantity": item.quantity,
        }

    return run_atomic(_op, keys=[inventory_key(station_id, product_id)])


def provision_item(station_id, product_id, *, threshold=None, quantity=0) -> InventoryItem:
    """
    Create the inventory row for a station/product pairing.

    Opening quantity is recorded as-is (no journal row); later changes go
    through adjust().
    """
    station_id = _require_id(station_id, "station_id")
    product_id = _require_id(product_id, "product_id")
    opening = to_decimal(quantity, "quantity")
    if opening < 0:
        raise ValidationError("opening quantity cannot be negative", field="quantity")
    if threshold is None:
        threshold_value = to_decimal(current_app.config.get("DEFAULT_LOW_STOCK_THRESHOLD", 10), "threshold")
    else:
        threshold_value = to_decimal(threshold, "threshold")
    if threshold_value < 0:
        raise ValidationError("threshold cannot be negative", field="threshold")

    def _op():
        if db.session.get(Station, station_id) is None:
            raise NotFoundError(f"Station {station_id} not found", station_id=station_id)
        if db.session.get(Product, product_id) is None:
            raise NotFoundError(f"Product {product_id} not found", product_id=product_id)
        if find_item(station_id, product_id) is not None:
            raise ValidationError(
                f"inventory row already exists for station {station_id} / product {product_id}"
            )
        item = InventoryItem(
            station_id=station_id,
            product_id=product_id,
            quantity=quantize_liters(opening),
            low_stock_threshold=quantize_liters(threshold_value),
        )
        db.session.add(item)
        db.session.flush()
        return item

    return run_atomic(_op, keys=[inventory_key(station_id, product_id)])


def set_low_stock_threshold(station_id, product_id, threshold) -> InventoryItem:
    station_id = _require_id(station_id, "station_id")
    product_id = _require_id(product_id, "product_id")
    threshold_value = to_decimal(threshold, "threshold")
    if threshold_value < 0:
        raise ValidationError("threshold cannot be negative", field="threshold")

    def _op():
        item = _get_item_locked(station_id, product_id)
        item.low_stock_threshold = quantize_liters(threshold_value)
        return item

    return run_atomic(_op, keys=[inventory_key(station_id, product_id)])


def summary(station_id) -> list[dict]:
    """
    Every product tracked at the station with quantity, threshold and is_low.
    """
    station_id = _require_id(station_id, "station_id")
    if db.session.get(Station, station_id) is None:
        raise NotFoundError(f"Station {station_id} not found", station_id=station_id)

    items = (
        db.session.query(InventoryItem)
        .filter_by(station_id=station_id)
        .order_by(InventoryItem.product_id)
        .all()
    )
    return [
        {
            "product_id": item.product_id,
            "product_name": item.product.name if item.product else None,
            "quantity": item.quantity,
            "threshold": item.low_stock_threshold,
            "is_low": item.is_low,
        }
        for item in items
    ]


def check_low_stock(station_id=None) -> list[InventoryItem]:
    """
    Inventory rows below their low-stock threshold, optionally for one station.

    Most urgent first: ordered by quantity as a fraction of threshold.
    """
    q = db.session.query(InventoryItem).filter(
        InventoryItem.quantity < InventoryItem.low_stock_threshold
    )
    if station_id is not None:
        q = q.filter(InventoryItem.station_id == _require_id(station_id, "station_id"))

    items = [item for item in q.all() if item.is_low]

    def _urgency(item: InventoryItem):
        if item.low_stock_threshold > 0:
            return (item.quantity / item.low_stock_threshold, item.station_id, item.product_id)
        return (item.quantity, item.station_id, item.product_id)

    return sorted(items, key=_urgency)


def list_adjustments(station_id, product_id, limit: int = 200) -> list[InventoryAdjustment]:
    station_id = _require_id(station_id, "station_id")
    product_id = _require_id(product_id, "product_id")
    item = find_item(station_id, product_id)
    if item is None:
        raise NotFoundError(
            f"no inventory row for station {station_id} / product {product_id}",
            station_id=station_id,
            product_id=product_id,
        )
    return (
        db.session.query(InventoryAdjustment)
        .filter_by(inventory_item_id=item.id)
        .order_by(InventoryAdjustment.occurred_at.desc(), InventoryAdjustment.id.desc())
        .limit(limit)
        .all()
    )
