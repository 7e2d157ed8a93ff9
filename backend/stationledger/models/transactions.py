from __future__ import annotations

from ..extensions import db
from ..money import decimal_str
from ..time_utils import to_utc_z, utcnow


PAYMENT_CASH = "CASH"
PAYMENT_CREDIT = "CREDIT"
PAYMENT_TRANSFER = "TRANSFER"
PAYMENT_BOX_TRUCK = "BOX_TRUCK"
PAYMENT_OIL_TRUCK_SUPACHAI = "OIL_TRUCK_SUPACHAI"
PAYMENT_CREDIT_CARD = "CREDIT_CARD"

VALID_PAYMENT_TYPES = [
    PAYMENT_CASH,
    PAYMENT_CREDIT,
    PAYMENT_TRANSFER,
    PAYMENT_BOX_TRUCK,
    PAYMENT_OIL_TRUCK_SUPACHAI,
    PAYMENT_CREDIT_CARD,
]


class SaleTransaction(db.Model):
    """
    A single fuel/product sale recorded at a station.

    IMMUTABLE after ingestion except for:
    - invoice_id, set once by credit_service when the sale is billed
    - deleted_at/deleted_reason, the soft-delete marker

    Soft-deleted rows stay for audit but are excluded from every aggregation.
    All reads go through SaleTransaction.live() so no caller filters
    deleted_at by hand.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_tx_owner_occurred", "owner_id", "occurred_at"),
        db.Index("ix_tx_shift_nozzle", "shift_id", "nozzle_id"),
        db.Index("ix_tx_station_occurred", "station_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)
    nozzle_id = db.Column(db.Integer, db.ForeignKey("nozzles.id"), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    liters = db.Column(db.Numeric(14, 3), nullable=False)
    price_per_liter = db.Column(db.Numeric(10, 2), nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False)

    payment_type = db.Column(db.String(32), nullable=False, index=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("owners.id"), nullable=True, index=True)
    license_plate = db.Column(db.String(32), nullable=True)

    # A sale is billed on at most one invoice
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deleted_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    owner = db.relationship("Owner", backref=db.backref("transactions", lazy=True))
    invoice = db.relationship("Invoice", backref=db.backref("transactions", lazy=True))

    @classmethod
    def live(cls):
        """Query over transactions that are not soft-deleted."""
        return cls.query.filter(cls.deleted_at.is_(None))

    def __repr__(self) -> str:
        return f"<SaleTransaction id={self.id} amount={self.amount} type={self.payment_type}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "shift_id": self.shift_id,
            "nozzle_id": self.nozzle_id,
            "product_id": self.product_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "liters": decimal_str(self.liters),
            "price_per_liter": decimal_str(self.price_per_liter),
            "amount": decimal_str(self.amount),
            "payment_type": self.payment_type,
            "owner_id": self.owner_id,
            "license_plate": self.license_plate,
            "invoice_id": self.invoice_id,
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "deleted_reason": self.deleted_reason,
        }
