# backend/stationledger/services/shift_service.py
"""
Shift lifecycle and reading capture.

Readings and the physical cash count are external inputs recorded by the
station; this module only stores them so the anomaly detector can pair them.

LIFECYCLE:
1. OPEN: START readings captured, sales recorded against the shift
2. CLOSED: END readings and cash count captured; anomaly check runs on close
3. LOCKED: supervisor sign-off; readings, cash count and sales are frozen

Late END readings and cash counts are still accepted on a CLOSED shift.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from ..errors import NotFoundError, ShiftLockedError, ValidationError
from ..extensions import db
from ..models import Anomaly, Nozzle, Shift, ShiftReading, Station, Tank
from ..models.shifts import (
    READING_KIND_GAUGE,
    READING_KIND_METER,
    READING_PHASE_END,
    READING_PHASE_START,
    SHIFT_STATUS_CLOSED,
    SHIFT_STATUS_LOCKED,
    SHIFT_STATUS_OPEN,
)
from ..money import quantize_liters, quantize_money, to_decimal
from ..time_utils import normalize_datetime, utcnow
from . import anomaly_service
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_atomic, shift_key
from .inventory_service import _require_id


VALID_READING_KINDS = [READING_KIND_METER, READING_KIND_GAUGE]
VALID_READING_PHASES = [READING_PHASE_START, READING_PHASE_END]


@dataclass
class ShiftCloseResult:
    shift: Shift
    anomalies: list[Anomaly] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "shift": self.shift.to_dict(),
            "anomalies": [a.to_dict() for a in self.anomalies],
        }


def can_modify_shift(status: str) -> bool:
    return status != SHIFT_STATUS_LOCKED


def ensure_shift_modifiable(shift: Shift) -> None:
    """Raise ShiftLockedError when the shift no longer accepts changes."""
    if not can_modify_shift(shift.status):
        raise ShiftLockedError(f"Shift {shift.id} is locked", shift_id=shift.id)


def _get_shift_locked(shift_id: int) -> Shift:
    shift = lock_for_update(db.session.query(Shift).filter_by(id=shift_id)).first()
    if shift is None:
        raise NotFoundError(f"Shift {shift_id} not found", shift_id=shift_id)
    return shift


def get_shift(shift_id: int) -> Shift:
    shift = db.session.get(Shift, shift_id)
    if shift is None:
        raise NotFoundError(f"Shift {shift_id} not found", shift_id=shift_id)
    return shift


def list_readings(shift_id: int) -> list[ShiftReading]:
    get_shift(shift_id)
    return (
        db.session.query(ShiftReading)
        .filter_by(shift_id=shift_id)
        .order_by(ShiftReading.reading_kind, ShiftReading.phase, ShiftReading.id)
        .all()
    )


def open_shift(station_id: int, shift_date: date, shift_number: int = 1, opened_at=None) -> Shift:
    """shift_date may be a date or an ISO string (YYYY-MM-DD)."""
    station_id = _require_id(station_id, "station_id")
    shift_number = _require_id(shift_number, "shift_number")
    if isinstance(shift_date, str):
        try:
            shift_date = date.fromisoformat(shift_date)
        except ValueError:
            raise ValidationError("shift_date must be an ISO date (YYYY-MM-DD)", field="shift_date")
    if not isinstance(shift_date, date):
        raise ValidationError("shift_date is required", field="shift_date")
    try:
        opened = normalize_datetime(opened_at)
    except ValueError:
        raise ValidationError("opened_at must be an ISO-8601 datetime", field="opened_at")

    def _op():
        if db.session.get(Station, station_id) is None:
            raise NotFoundError(f"Station {station_id} not found", station_id=station_id)
        existing = db.session.query(Shift).filter_by(
            station_id=station_id, shift_date=shift_date, shift_number=shift_number
        ).first()
        if existing is not None:
            raise ValidationError(
                f"Shift {shift_number} on {shift_date.isoformat()} already exists for station {station_id}"
            )
        shift = Shift(
            station_id=station_id,
            shift_date=shift_date,
            shift_number=shift_number,
            status=SHIFT_STATUS_OPEN,
            opened_at=opened,
        )
        db.session.add(shift)
        db.session.flush()
        return shift

    return run_atomic(_op)


def record_reading(
    shift_id: int,
    *,
    reading_kind: str,
    phase: str,
    value,
    nozzle_id: int | None = None,
    tank_id: int | None = None,
    recorded_by: str | None = None,
) -> ShiftReading:
    """
    Store a meter or gauge reading; re-entering the same (subject, phase)
    overwrites the previous value.
    """
    if reading_kind not in VALID_READING_KINDS:
        raise ValidationError(f"Invalid reading kind: {reading_kind}. Must be one of {VALID_READING_KINDS}")
    if phase not in VALID_READING_PHASES:
        raise ValidationError(f"Invalid phase: {phase}. Must be one of {VALID_READING_PHASES}")
    if reading_kind == READING_KIND_METER and (nozzle_id is None or tank_id is not None):
        raise ValidationError("meter readings need nozzle_id and no tank_id")
    if reading_kind == READING_KIND_GAUGE and (tank_id is None or nozzle_id is not None):
        raise ValidationError("gauge readings need tank_id and no nozzle_id")

    reading_value = to_decimal(value, "value")
    if reading_value < 0:
        raise ValidationError("reading value cannot be negative", field="value")

    def _op():
        shift = _get_shift_locked(shift_id)
        ensure_shift_modifiable(shift)
        if shift.status != SHIFT_STATUS_OPEN and phase == READING_PHASE_START:
            raise ValidationError("START readings can only be recorded on an OPEN shift")

        if nozzle_id is not None:
            nozzle = db.session.get(Nozzle, nozzle_id)
            if nozzle is None or nozzle.station_id != shift.station_id:
                raise NotFoundError(f"Nozzle {nozzle_id} not found at station {shift.station_id}")
        if tank_id is not None:
            tank = db.session.get(Tank, tank_id)
            if tank is None or tank.station_id != shift.station_id:
                raise NotFoundError(f"Tank {tank_id} not found at station {shift.station_id}")

        reading = db.session.query(ShiftReading).filter_by(
            shift_id=shift_id,
            reading_kind=reading_kind,
            phase=phase,
            nozzle_id=nozzle_id,
            tank_id=tank_id,
        ).first()
        if reading is None:
            reading = ShiftReading(
                shift_id=shift_id,
                reading_kind=reading_kind,
                phase=phase,
                nozzle_id=nozzle_id,
                tank_id=tank_id,
            )
            db.session.add(reading)
        reading.value = quantize_liters(reading_value)
        reading.recorded_at = utcnow()
        reading.recorded_by = recorded_by
        db.session.flush()
        return reading

    return run_atomic(_op, keys=[shift_key(shift_id)])


def record_cash_count(shift_id: int, amount) -> Shift:
    """Store the physical cash counted for the shift."""
    counted = to_decimal(amount, "amount")
    if counted < 0:
        raise ValidationError("cash count cannot be negative", field="amount")

    def _op():
        shift = _get_shift_locked(shift_id)
        ensure_shift_modifiable(shift)
        shift.cash_counted = quantize_money(counted)
        return shift

    return run_atomic(_op, keys=[shift_key(shift_id)])


def close_shift(shift_id: int, *, cash_counted=None, closed_at=None) -> ShiftCloseResult:
    """
    Close an OPEN shift and run the anomaly check on it.

    The close commits first. If the check then fails the shift stays
    CLOSED and the check can be re-run on its own.
    """
    counted = to_decimal(cash_counted, "cash_counted") if cash_counted is not None else None
    if counted is not None and counted < 0:
        raise ValidationError("cash count cannot be negative", field="cash_counted")
    try:
        closed = normalize_datetime(closed_at)
    except ValueError:
        raise ValidationError("closed_at must be an ISO-8601 datetime", field="closed_at")

    def _op():
        shift = _get_shift_locked(shift_id)
        ensure_shift_modifiable(shift)
        if shift.status != SHIFT_STATUS_OPEN:
            raise ValidationError(f"Shift {shift_id} is already closed")
        if counted is not None:
            shift.cash_counted = quantize_money(counted)
        shift.status = SHIFT_STATUS_CLOSED
        shift.closed_at = closed
        return shift

    shift = run_atomic(_op, keys=[shift_key(shift_id)])
    anomalies = anomaly_service.check_shift_anomalies(shift_id)
    return ShiftCloseResult(shift=shift, anomalies=anomalies)


def lock_shift(shift_id: int, locked_by) -> Shift:
    """
    Sign off a CLOSED shift. After this nothing on the shift may change.

    Raises:
        ValidationError: locked_by missing, shift still OPEN or already LOCKED
        NotFoundError: shift does not exist
    """
    if locked_by is None or not str(locked_by).strip():
        raise ValidationError("locked_by is required", field="locked_by")
    locker = str(locked_by).strip()

    def _op():
        shift = _get_shift_locked(shift_id)
        if shift.status == SHIFT_STATUS_OPEN:
            raise ValidationError(f"Shift {shift_id} must be closed before it can be locked")
        if shift.status == SHIFT_STATUS_LOCKED:
            raise ValidationError(f"Shift {shift_id} is already locked")

        now = utcnow()
        shift.status = SHIFT_STATUS_LOCKED
        shift.locked_at = now
        shift.locked_by = locker

        append_audit_event(
            event_type="shift.locked",
            entity_type="shift",
            entity_id=shift.id,
            station_id=shift.station_id,
            actor_id=locker,
            occurred_at=now,
        )
        return shift

    return run_atomic(_op, keys=[shift_key(shift_id)])
