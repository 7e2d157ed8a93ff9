# backend/stationledger/routes/transactions.py
"""
Sale ingestion routes.

A sale is accepted whole or rejected whole: row, stock deduction and credit
accrual commit together.
"""
from flask import Blueprint, current_app, request

from ..errors import LedgerError
from ..services import transaction_service

transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")

TRANSACTION_FIELDS = {
    "station_id",
    "payment_type",
    "liters",
    "price_per_liter",
    "amount",
    "owner_id",
    "shift_id",
    "nozzle_id",
    "product_id",
    "occurred_at",
    "license_plate",
}


@transactions_bp.post("")
def record_transaction_route():
    payload = request.get_json(silent=True) or {}
    unknown = set(payload) - TRANSACTION_FIELDS
    if unknown:
        return {"error": f"Unknown fields: {sorted(unknown)}"}, 400

    try:
        tx = transaction_service.record_transaction(
            **{k: payload.get(k) for k in TRANSACTION_FIELDS},
            actor_id=request.headers.get("X-User-Id"),
        )
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Transaction ingestion failed")
        return {"error": "internal error"}, 500

    return {"transaction": tx.to_dict()}, 201


@transactions_bp.delete("/<int:transaction_id>")
def delete_transaction_route(transaction_id: int):
    payload = request.get_json(silent=True) or {}
    reason = payload.get("reason") or request.args.get("reason")

    try:
        tx = transaction_service.soft_delete_transaction(
            transaction_id,
            reason,
            actor_id=request.headers.get("X-User-Id"),
        )
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Soft delete failed for transaction %s", transaction_id)
        return {"error": "internal error"}, 500

    return {"transaction": tx.to_dict()}, 200
