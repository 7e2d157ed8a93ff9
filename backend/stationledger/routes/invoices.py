# backend/stationledger/routes/invoices.py
"""
Invoice routes: monthly billing run, payments, voids and receivables aging.

Money travels as decimal strings ("1500.00").
"""
from flask import Blueprint, current_app, request

from ..errors import LedgerError
from ..services import billing_service, credit_service

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.post("/generate")
def generate_invoices_route():
    """
    Bill every eligible owner for a month.

    Body: {"month": 1-12, "year": YYYY}
    """
    payload = request.get_json(silent=True) or {}

    try:
        result = billing_service.generate_all_monthly_invoices(payload.get("month"), payload.get("year"))
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Billing run failed")
        return {"error": "internal error"}, 500

    return result.to_dict(), 200


@invoices_bp.get("/aging")
def receivables_aging_route():
    """
    Outstanding invoices grouped by days past due.

    Query: as_of=YYYY-MM-DD (default today), owner_id
    """
    try:
        aging = credit_service.get_receivables_aging(
            as_of=request.args.get("as_of"),
            owner_id=request.args.get("owner_id", type=int),
        )
    except LedgerError as e:
        return e.to_dict(), e.status_code
    return aging.to_dict(), 200


@invoices_bp.get("/<int:invoice_id>")
def get_invoice_route(invoice_id: int):
    try:
        invoice = credit_service.get_invoice(invoice_id)
    except LedgerError as e:
        return e.to_dict(), e.status_code
    return {"invoice": invoice.to_dict(include_payments=True)}, 200


@invoices_bp.post("/<int:invoice_id>/payments")
def apply_payment_route(invoice_id: int):
    """
    Body: {"amount", "payment_date"?, "payment_method"?, "notes"?}
    """
    payload = request.get_json(silent=True) or {}

    try:
        invoice = credit_service.apply_payment(
            invoice_id,
            payload.get("amount"),
            payload.get("payment_date"),
            payment_method=payload.get("payment_method"),
            notes=payload.get("notes"),
        )
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Payment failed for invoice %s", invoice_id)
        return {"error": "internal error"}, 500

    return {"invoice": invoice.to_dict(include_payments=True)}, 200


@invoices_bp.post("/<int:invoice_id>/void")
def void_invoice_route(invoice_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        invoice = credit_service.void_invoice(invoice_id, payload.get("reason"))
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Void failed for invoice %s", invoice_id)
        return {"error": "internal error"}, 500

    return {"invoice": invoice.to_dict()}, 200
