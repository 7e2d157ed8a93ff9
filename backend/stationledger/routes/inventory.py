# backend/stationledger/routes/inventory.py
"""
Inventory routes.

Quantities go out as decimal strings. Adjustments are signed deltas; the
service decides whether the result may go negative.
"""
from flask import Blueprint, current_app, request

from ..errors import LedgerError
from ..money import decimal_str
from ..services import inventory_service

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/adjust")
def adjust_inventory_route():
    """
    Apply a signed quantity change.

    Body: {"station_id", "product_id", "delta", "reason"?, "note"?}
    """
    payload = request.get_json(silent=True) or {}

    try:
        result = inventory_service.adjust(
            payload.get("station_id"),
            payload.get("product_id"),
            payload.get("delta"),
            reason=payload.get("reason", "MANUAL"),
            note=payload.get("note"),
            actor_id=request.headers.get("X-User-Id"),
        )
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Inventory adjustment failed")
        return {"error": "internal error"}, 500

    return {
        "station_id": result["station_id"],
        "product_id": result["product_id"],
        "quantity": decimal_str(result["quantity"]),
    }, 200


@inventory_bp.get("/stations/<int:station_id>/summary")
def station_summary_route(station_id: int):
    try:
        rows = inventory_service.summary(station_id)
    except LedgerError as e:
        return e.to_dict(), e.status_code

    items = [
        {
            **row,
            "quantity": decimal_str(row["quantity"]),
            "threshold": decimal_str(row["threshold"]),
        }
        for row in rows
    ]
    return {"station_id": station_id, "items": items}, 200


@inventory_bp.get("/low-stock")
def low_stock_route():
    station_id = request.args.get("station_id", type=int)
    try:
        items = inventory_service.check_low_stock(station_id)
    except LedgerError as e:
        return e.to_dict(), e.status_code
    return {"items": [item.to_dict() for item in items]}, 200


@inventory_bp.put("/stations/<int:station_id>/products/<int:product_id>/threshold")
def set_threshold_route(station_id: int, product_id: int):
    """Body: {"threshold"}"""
    payload = request.get_json(silent=True) or {}

    try:
        item = inventory_service.set_low_stock_threshold(station_id, product_id, payload.get("threshold"))
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Threshold update failed for %s/%s", station_id, product_id)
        return {"error": "internal error"}, 500

    return {"item": item.to_dict()}, 200


@inventory_bp.get("/stations/<int:station_id>/products/<int:product_id>/adjustments")
def list_adjustments_route(station_id: int, product_id: int):
    limit = request.args.get("limit", default=200, type=int)
    if limit <= 0:
        return {"error": "limit must be positive"}, 400

    try:
        rows = inventory_service.list_adjustments(station_id, product_id, limit=limit)
    except LedgerError as e:
        return e.to_dict(), e.status_code
    return {"adjustments": [row.to_dict() for row in rows]}, 200
