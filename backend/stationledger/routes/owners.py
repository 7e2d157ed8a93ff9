# backend/stationledger/routes/owners.py
from flask import Blueprint, current_app, request

from ..errors import LedgerError
from ..services import credit_service
from ..services.credit_service import OwnerUpdate

owners_bp = Blueprint("owners", __name__, url_prefix="/api/owners")


@owners_bp.get("/<int:owner_id>")
def get_owner_route(owner_id: int):
    try:
        owner = credit_service.get_owner(owner_id)
    except LedgerError as e:
        return e.to_dict(), e.status_code
    return {"owner": owner.to_dict()}, 200


@owners_bp.patch("/<int:owner_id>")
def update_owner_route(owner_id: int):
    """
    Partial update. Only keys present in the body are applied.

    A credit_limit below the current balance is accepted and returned with
    an "over_limit" warning.
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return {"error": "JSON object body required"}, 400

    try:
        result = credit_service.update_owner(owner_id, OwnerUpdate.from_dict(payload))
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Owner update failed for %s", owner_id)
        return {"error": "internal error"}, 500

    return result.to_dict(), 200


@owners_bp.get("/<int:owner_id>/reconcile")
def reconcile_owner_route(owner_id: int):
    """Read-only balance replay; use the CLI with --fix to repair drift."""
    try:
        result = credit_service.reconcile_owner_credit(owner_id, fix=False)
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Reconciliation failed for owner %s", owner_id)
        return {"error": "internal error"}, 500

    return result.to_dict(), 200


@owners_bp.get("/<int:owner_id>/invoices")
def list_owner_invoices_route(owner_id: int):
    try:
        credit_service.get_owner(owner_id)
    except LedgerError as e:
        return e.to_dict(), e.status_code

    invoices = credit_service.list_owner_invoices(owner_id)
    return {"owner_id": owner_id, "invoices": [inv.to_dict() for inv in invoices]}, 200
