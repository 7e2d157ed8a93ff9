# Overview: Monthly billing run across all credit owners.

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..errors import LedgerError
from ..extensions import db
from ..models import Owner, SaleTransaction
from ..time_utils import month_window
from .credit_service import validate_period, credit_types_for_group, generate_monthly_invoice


@dataclass
class BatchInvoiceResult:
    month: int
    year: int
    succeeded: int = 0
    skipped: int = 0
    failures: list[dict] = field(default_factory=list)
    invoice_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "month": self.month,
            "year": self.year,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": len(self.failures),
            "failures": list(self.failures),
            "invoice_ids": list(self.invoice_ids),
        }


def _eligible_owner_ids(month: int, year: int) -> list[int]:
    """Live owners with at least one live credit-bearing sale in the month."""
    start, end = month_window(year, month)
    rows = (
        db.session.query(Owner.id, Owner.group_type)
        .filter(Owner.deleted_at.is_(None))
        .order_by(Owner.id)
        .all()
    )
    eligible = []
    for owner_id, group_type in rows:
        has_sale = (
            SaleTransaction.live()
            .filter(
                SaleTransaction.owner_id == owner_id,
                SaleTransaction.payment_type.in_(credit_types_for_group(group_type)),
                SaleTransaction.occurred_at >= start,
                SaleTransaction.occurred_at < end,
            )
            .first()
        )
        if has_sale is not None:
            eligible.append(owner_id)
    return eligible


def generate_all_monthly_invoices(month, year) -> BatchInvoiceResult:
    """
    Run generate_monthly_invoice for every eligible owner.

    Each owner is its own unit of work: a failure is rolled back, logged and
    recorded in the result, and the run moves on to the next owner.
    An owner whose sales are all billed already counts as skipped.
    """
    month, year = validate_period(month, year)
    result = BatchInvoiceResult(month=month, year=year)

    for owner_id in _eligible_owner_ids(month, year):
        try:
            invoice = generate_monthly_invoice(owner_id, month, year)
        except LedgerError as e:
            current_app.logger.warning(
                "Invoice generation failed for owner %s (%s-%02d): %s", owner_id, year, month, e
            )
            result.failures.append({"owner_id": owner_id, "reason": str(e)})
            continue

        if invoice is None:
            result.skipped += 1
        else:
            result.succeeded += 1
            result.invoice_ids.append(invoice.id)

    current_app.logger.info(
        "Billing run %s-%02d: %s invoiced, %s skipped, %s failed",
        year, month, result.succeeded, result.skipped, len(result.failures),
    )
    return result
