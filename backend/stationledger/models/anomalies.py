from __future__ import annotations

from ..extensions import db
from ..money import decimal_str
from ..time_utils import to_utc_z, utcnow


METRIC_CASH_VARIANCE = "CASH_VARIANCE"
METRIC_NOZZLE_LITERS = "NOZZLE_LITERS"
METRIC_TANK_LITERS = "TANK_LITERS"

REVIEW_PENDING = "pending"
REVIEW_REVIEWED = "reviewed"


class Anomaly(db.Model):
    """
    Shift-level discrepancy found by anomaly_service.

    Identity is (shift_id, metric, subject_ref), e.g. (12, NOZZLE_LITERS,
    "nozzle:3"). At most one pending row exists per identity.

    LIFECYCLE:
    - pending: created or refreshed by check_shift_anomalies()
    - reviewed: terminal, set by mark_anomaly_reviewed()

    delta = expected_value - actual_value. expected_value is NULL when the
    reading pair was incomplete.
    """
    __tablename__ = "anomalies"
    __table_args__ = (
        db.Index("ix_anomalies_shift_metric_subject", "shift_id", "metric", "subject_ref"),
        db.Index("ix_anomalies_review_severity", "review_state", "severity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)
    shift_date = db.Column(db.Date, nullable=False)

    metric = db.Column(db.String(32), nullable=False)
    subject_ref = db.Column(db.String(32), nullable=False)

    expected_value = db.Column(db.Numeric(14, 3), nullable=True)
    actual_value = db.Column(db.Numeric(14, 3), nullable=True)
    delta = db.Column(db.Numeric(14, 3), nullable=True)
    severity = db.Column(db.String(16), nullable=False)
    note = db.Column(db.String(255), nullable=True)

    review_state = db.Column(db.String(16), nullable=False, default=REVIEW_PENDING)
    reviewed_by = db.Column(db.String(64), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    shift = db.relationship("Shift", backref=db.backref("anomalies", lazy=True))

    @property
    def identity(self) -> tuple:
        return (self.shift_id, self.metric, self.subject_ref)

    def __repr__(self) -> str:
        return f"<Anomaly id={self.id} {self.metric} {self.subject_ref} {self.severity} {self.review_state}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "shift_id": self.shift_id,
            "shift_date": self.shift_date.isoformat() if self.shift_date else None,
            "metric": self.metric,
            "subject_ref": self.subject_ref,
            "expected_value": decimal_str(self.expected_value),
            "actual_value": decimal_str(self.actual_value),
            "delta": decimal_str(self.delta),
            "severity": self.severity,
            "note": self.note,
            "review_state": self.review_state,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": to_utc_z(self.reviewed_at) if self.reviewed_at else None,
            "created_at": to_utc_z(self.created_at),
        }
