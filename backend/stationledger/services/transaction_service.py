# Overview: Sale ingestion; validates a sale and applies its inventory and credit effects in one unit.

# backend/stationledger/services/transaction_service.py

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryAdjustment, Nozzle, Owner, SaleTransaction, Shift, Station
from ..models.inventory import ADJUST_REASON_SALE, ADJUST_REASON_SALE_REVERSAL
from ..models.transactions import VALID_PAYMENT_TYPES
from ..money import LITER_QUANT, quantize_liters, quantize_money, to_decimal
from ..time_utils import normalize_datetime, utcnow
from .audit_service import append_audit_event
from .concurrency import inventory_key, lock_for_update, owner_key, run_atomic, shift_key
from .credit_service import _accrue_inner, _release_inner, is_credit_bearing
from .inventory_service import _adjust_inner, _require_id, find_item
from .shift_service import ensure_shift_modifiable
"""
Ingestion Invariants (authoritative)

- A sale is accepted whole or not at all: the row, its inventory deduction
  (reason SALE) and its credit accrual commit together.
- |amount - liters * price_per_liter| <= AMOUNT_TOLERANCE.
- Sales cannot be added to or deleted from a LOCKED shift.
- Credit payment types require a live owner whose group may use that type.
- Inventory is deducted only when the station tracks the product.
- Rows are never hard-deleted. Soft delete reverses the inventory deduction
  and the credit accrual; billed rows cannot be deleted.
"""


def _optional_id(value, field: str) -> int | None:
    return None if value is None else _require_id(value, field)


def _positive(value, field_name: str, places: Decimal) -> Decimal:
    parsed = to_decimal(value, field_name)
    if parsed <= 0:
        raise ValidationError(f"{field_name} must be positive", field=field_name)
    if parsed.quantize(places) != parsed:
        raise ValidationError(f"{field_name} has too many decimal places", field=field_name)
    return parsed


def get_transaction(transaction_id: int) -> SaleTransaction:
    tx = SaleTransaction.live().filter(SaleTransaction.id == transaction_id).first()
    if tx is None:
        raise NotFoundError(f"Transaction {transaction_id} not found", transaction_id=transaction_id)
    return tx


def record_transaction(
    *,
    station_id: int,
    payment_type: str,
    liters,
    price_per_liter,
    amount=None,
    owner_id: int | None = None,
    shift_id: int | None = None,
    nozzle_id: int | None = None,
    product_id: int | None = None,
    occurred_at=None,
    license_plate: str | None = None,
    allow_over_limit: bool = False,
    actor_id: str | None = None,
) -> SaleTransaction:
    """
    Validate and persist a sale, deduct stock and accrue credit.

    amount defaults to liters * price_per_liter rounded to satang.

    Raises:
        ValidationError: missing/invalid fields or amount outside tolerance
        NotFoundError: unknown station, shift, nozzle or owner
        InsufficientStockError: tracked stock would go negative
        CreditLimitExceededError: credit sale over the owner's limit
        ShiftLockedError: the sale's shift is locked
    """
    station_id = _require_id(station_id, "station_id")
    owner_id = _optional_id(owner_id, "owner_id")
    shift_id = _optional_id(shift_id, "shift_id")
    nozzle_id = _optional_id(nozzle_id, "nozzle_id")
    product_id = _optional_id(product_id, "product_id")
    if payment_type not in VALID_PAYMENT_TYPES:
        raise ValidationError(f"Invalid payment_type: {payment_type}. Must be one of {VALID_PAYMENT_TYPES}")

    liters_value = _positive(liters, "liters", LITER_QUANT)
    price_value = _positive(price_per_liter, "price_per_liter", Decimal("0.01"))
    computed = liters_value * price_value
    if amount is None:
        amount_value = quantize_money(computed)
    else:
        amount_value = _positive(amount, "amount", Decimal("0.01"))
        tolerance = current_app.config.get("AMOUNT_TOLERANCE", Decimal("0.01"))
        if abs(amount_value - computed) > tolerance:
            raise ValidationError(
                f"amount {amount_value} does not match liters x price ({quantize_money(computed)})",
                field="amount",
            )

    try:
        occurred = normalize_datetime(occurred_at)
    except ValueError:
        raise ValidationError("occurred_at must be an ISO-8601 datetime", field="occurred_at")

    credit_types = tuple(current_app.config.get("CREDIT_PAYMENT_TYPES", ()))
    is_credit_type = payment_type in credit_types
    if is_credit_type and owner_id is None:
        raise ValidationError(f"owner_id is required for {payment_type} sales", field="owner_id")

    # Resolve product from the nozzle before taking keys
    if nozzle_id is not None:
        nozzle = db.session.get(Nozzle, nozzle_id)
        if nozzle is None or nozzle.station_id != station_id:
            raise NotFoundError(f"Nozzle {nozzle_id} not found at station {station_id}")
        if product_id is None:
            product_id = nozzle.product_id
        elif product_id != nozzle.product_id:
            raise ValidationError(f"product {product_id} is not dispensed by nozzle {nozzle_id}")

    keys = []
    if product_id is not None:
        keys.append(inventory_key(station_id, product_id))
    if owner_id is not None:
        keys.append(owner_key(owner_id))
    if shift_id is not None:
        keys.append(shift_key(shift_id))

    def _op():
        if db.session.get(Station, station_id) is None:
            raise NotFoundError(f"Station {station_id} not found", station_id=station_id)
        if shift_id is not None:
            shift = lock_for_update(db.session.query(Shift).filter_by(id=shift_id)).first()
            if shift is None or shift.station_id != station_id:
                raise NotFoundError(f"Shift {shift_id} not found at station {station_id}")
            ensure_shift_modifiable(shift)

        owner = None
        if owner_id is not None:
            owner = lock_for_update(Owner.live().filter(Owner.id == owner_id)).first()
            if owner is None:
                raise NotFoundError(f"Owner {owner_id} not found", owner_id=owner_id)
            if is_credit_type and not is_credit_bearing(payment_type, owner.group_type):
                raise ValidationError(
                    f"payment type {payment_type} is not allowed for owner group {owner.group_type}"
                )

        tx = SaleTransaction(
            station_id=station_id,
            shift_id=shift_id,
            nozzle_id=nozzle_id,
            product_id=product_id,
            occurred_at=occurred,
            liters=liters_value,
            price_per_liter=price_value,
            amount=amount_value,
            payment_type=payment_type,
            owner_id=owner_id,
            license_plate=license_plate,
        )
        db.session.add(tx)
        db.session.flush()

        if product_id is not None and find_item(station_id, product_id) is not None:
            _adjust_inner(
                station_id=station_id,
                product_id=product_id,
                delta=-liters_value,
                reason=ADJUST_REASON_SALE,
                transaction_id=tx.id,
                actor_id=actor_id,
            )

        if owner is not None and is_credit_type:
            _accrue_inner(owner, amount_value, allow_over_limit=allow_over_limit)

        return tx

    return run_atomic(_op, keys=keys)


def soft_delete_transaction(transaction_id: int, reason: str, *, actor_id: str | None = None) -> SaleTransaction:
    """
    Mark a sale deleted and reverse its stock and credit effects.

    Raises:
        ValidationError: missing reason or the sale is already invoiced
        NotFoundError: sale missing or already deleted
        ShiftLockedError: the sale's shift is locked
    """
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required", field="reason")

    existing = get_transaction(transaction_id)
    keys = []
    if existing.product_id is not None:
        keys.append(inventory_key(existing.station_id, existing.product_id))
    if existing.owner_id is not None:
        keys.append(owner_key(existing.owner_id))
    if existing.shift_id is not None:
        keys.append(shift_key(existing.shift_id))

    def _op():
        tx = lock_for_update(
            SaleTransaction.live().filter(SaleTransaction.id == transaction_id)
        ).first()
        if tx is None:
            raise NotFoundError(f"Transaction {transaction_id} not found", transaction_id=transaction_id)
        if tx.invoice_id is not None:
            raise ValidationError(
                f"Transaction {transaction_id} is billed on invoice {tx.invoice_id} and cannot be deleted",
                invoice_id=tx.invoice_id,
            )
        if tx.shift_id is not None:
            ensure_shift_modifiable(lock_for_update(db.session.query(Shift).filter_by(id=tx.shift_id)).one())

        deducted = (
            db.session.query(InventoryAdjustment)
            .filter_by(transaction_id=tx.id, reason=ADJUST_REASON_SALE)
            .first()
        )
        if deducted is not None:
            _adjust_inner(
                station_id=tx.station_id,
                product_id=tx.product_id,
                delta=-deducted.delta,
                reason=ADJUST_REASON_SALE_REVERSAL,
                transaction_id=tx.id,
                note=str(reason).strip(),
                actor_id=actor_id,
            )

        if tx.owner_id is not None:
            owner = lock_for_update(db.session.query(Owner).filter_by(id=tx.owner_id)).first()
            if owner is not None and is_credit_bearing(tx.payment_type, owner.group_type):
                _release_inner(owner, tx.amount)

        now = utcnow()
        tx.deleted_at = now
        tx.deleted_reason = str(reason).strip()

        append_audit_event(
            event_type="transaction.deleted",
            entity_type="transaction",
            entity_id=tx.id,
            station_id=tx.station_id,
            owner_id=tx.owner_id,
            actor_id=actor_id,
            occurred_at=now,
            note=tx.deleted_reason,
            payload={"amount": tx.amount, "liters": quantize_liters(tx.liters)},
        )
        return tx

    return run_atomic(_op, keys=keys)
