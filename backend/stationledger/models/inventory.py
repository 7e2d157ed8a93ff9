from __future__ import annotations

from ..extensions import db
from ..money import decimal_str
from ..time_utils import to_utc_z, utcnow


ADJUST_REASON_SALE = "SALE"
ADJUST_REASON_MANUAL = "MANUAL"
ADJUST_REASON_SALE_REVERSAL = "SALE_REVERSAL"


class InventoryItem(db.Model):
    """
    Stock counter for one product at one station.

    Rows are provisioned before the first adjustment. quantity is only
    changed by inventory_service.adjust(), which also writes an
    InventoryAdjustment journal row in the same DB transaction, so
    quantity always equals the sum of the journal deltas plus the
    provisioned opening quantity.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.UniqueConstraint("station_id", "product_id", name="uq_inventory_station_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    low_stock_threshold = db.Column(db.Numeric(14, 3), nullable=False, default=10)
    last_adjusted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    station = db.relationship("Station", backref=db.backref("inventory_items", lazy=True))
    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low(self) -> bool:
        return self.quantity < self.low_stock_threshold

    def __repr__(self) -> str:
        return f"<InventoryItem station={self.station_id} product={self.product_id} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": decimal_str(self.quantity),
            "threshold": decimal_str(self.low_stock_threshold),
            "is_low": self.is_low,
            "last_adjusted_at": to_utc_z(self.last_adjusted_at) if self.last_adjusted_at else None,
        }


class InventoryAdjustment(db.Model):
    """Append-only journal of applied inventory deltas."""
    __tablename__ = "inventory_adjustments"
    __table_args__ = (
        db.Index("ix_invadj_item_occurred", "inventory_item_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False)
    delta = db.Column(db.Numeric(14, 3), nullable=False)
    quantity_after = db.Column(db.Numeric(14, 3), nullable=False)
    reason = db.Column(db.String(16), nullable=False, default=ADJUST_REASON_MANUAL)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)
    note = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    item = db.relationship("InventoryItem", backref=db.backref("adjustments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_item_id": self.inventory_item_id,
            "delta": decimal_str(self.delta),
            "quantity_after": decimal_str(self.quantity_after),
            "reason": self.reason,
            "transaction_id": self.transaction_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
