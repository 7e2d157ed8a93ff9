from __future__ import annotations

from ..extensions import db
from ..money import decimal_str
from ..time_utils import to_utc_z


INVOICE_STATUS_PENDING = "PENDING"
INVOICE_STATUS_PARTIAL = "PARTIAL"
INVOICE_STATUS_PAID = "PAID"
INVOICE_STATUS_VOIDED = "VOIDED"


class Invoice(db.Model):
    """
    Monthly credit statement for one owner.

    LIFECYCLE:
    - PENDING: generated, nothing paid
    - PARTIAL: 0 < paid_amount < total_amount
    - PAID: paid_amount >= total_amount
    - VOIDED: outstanding written off; linked sales stay linked

    One invoice per (owner, period_year, period_month). Re-running generation
    for a billed month extends the same invoice with newly unlinked sales.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("owner_id", "period_year", "period_month", name="uq_invoices_owner_period"),
        db.UniqueConstraint("invoice_number", name="uq_invoices_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("owners.id"), nullable=False, index=True)
    invoice_number = db.Column(db.String(32), nullable=False)

    period_year = db.Column(db.Integer, nullable=False)
    period_month = db.Column(db.Integer, nullable=False)

    total_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    paid_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=INVOICE_STATUS_PENDING, index=True)

    statement_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)

    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    owner = db.relationship("Owner", backref=db.backref("invoices", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def outstanding_amount(self):
        return self.total_amount - self.paid_amount

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number} owner_id={self.owner_id} status={self.status}>"

    def to_dict(self, include_payments: bool = False) -> dict:
        data = {
            "id": self.id,
            "owner_id": self.owner_id,
            "invoice_number": self.invoice_number,
            "period_year": self.period_year,
            "period_month": self.period_month,
            "total_amount": decimal_str(self.total_amount),
            "paid_amount": decimal_str(self.paid_amount),
            "outstanding_amount": decimal_str(self.outstanding_amount),
            "status": self.status,
            "statement_date": self.statement_date.isoformat() if self.statement_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
            "version_id": self.version_id,
        }
        if include_payments:
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class InvoicePayment(db.Model):
    """Money received against an invoice. Append-only."""
    __tablename__ = "invoice_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=False)
    payment_method = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship(
        "Invoice",
        backref=db.backref("payments", lazy=True, order_by="InvoicePayment.payment_date"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount": decimal_str(self.amount),
            "payment_date": to_utc_z(self.payment_date),
            "payment_method": self.payment_method,
            "notes": self.notes,
        }
