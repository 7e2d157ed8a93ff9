from __future__ import annotations

from ..extensions import db
from ..money import decimal_str
from ..time_utils import to_utc_z, utcnow


SHIFT_STATUS_OPEN = "OPEN"
SHIFT_STATUS_CLOSED = "CLOSED"
SHIFT_STATUS_LOCKED = "LOCKED"

READING_KIND_METER = "METER"
READING_KIND_GAUGE = "GAUGE"

READING_PHASE_START = "START"
READING_PHASE_END = "END"


class Shift(db.Model):
    """
    Station work shift.

    LIFECYCLE:
    - OPEN: readings and sales are being recorded
    - CLOSED: end readings and the physical cash count are in; anomaly check runs
    - LOCKED: signed off by a supervisor; no readings, counts or sales change

    cash_counted is the physical cash counted at close, supplied by the
    station; it stays NULL until counted.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.UniqueConstraint("station_id", "shift_date", "shift_number", name="uq_shifts_station_date_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    shift_date = db.Column(db.Date, nullable=False, index=True)
    shift_number = db.Column(db.Integer, nullable=False, default=1)

    status = db.Column(db.String(16), nullable=False, default=SHIFT_STATUS_OPEN, index=True)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    locked_by = db.Column(db.String(64), nullable=True)

    cash_counted = db.Column(db.Numeric(14, 2), nullable=True)

    station = db.relationship("Station", backref=db.backref("shifts", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "shift_date": self.shift_date.isoformat() if self.shift_date else None,
            "shift_number": self.shift_number,
            "status": self.status,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "locked_at": to_utc_z(self.locked_at) if self.locked_at else None,
            "locked_by": self.locked_by,
            "cash_counted": decimal_str(self.cash_counted),
        }


class ShiftReading(db.Model):
    """
    Meter (nozzle counter) or gauge (tank level, liters) reading.

    Exactly one of nozzle_id / tank_id is set: nozzle_id for METER readings,
    tank_id for GAUGE readings. shift_service.record_reading() keeps one
    reading per (shift, subject, phase) by overwriting on re-entry.
    """
    __tablename__ = "shift_readings"
    __table_args__ = (
        db.Index("ix_shift_readings_shift_kind", "shift_id", "reading_kind"),
        db.CheckConstraint(
            "(nozzle_id IS NULL) <> (tank_id IS NULL)",
            name="ck_shift_readings_one_subject",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)
    reading_kind = db.Column(db.String(8), nullable=False)
    phase = db.Column(db.String(8), nullable=False)

    nozzle_id = db.Column(db.Integer, db.ForeignKey("nozzles.id"), nullable=True)
    tank_id = db.Column(db.Integer, db.ForeignKey("tanks.id"), nullable=True)

    value = db.Column(db.Numeric(14, 3), nullable=False)
    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    recorded_by = db.Column(db.String(64), nullable=True)

    shift = db.relationship("Shift", backref=db.backref("readings", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "reading_kind": self.reading_kind,
            "phase": self.phase,
            "nozzle_id": self.nozzle_id,
            "tank_id": self.tank_id,
            "value": decimal_str(self.value),
            "recorded_at": to_utc_z(self.recorded_at),
            "recorded_by": self.recorded_by,
        }
