# backend/stationledger/routes/shifts.py
"""
Shift lifecycle routes: open, readings, cash count, close and lock.

Closing a shift runs the anomaly check and returns its findings. The
operator identity comes from the X-User-Id header.
"""
from flask import Blueprint, current_app, request

from ..errors import LedgerError
from ..services import shift_service

shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


@shifts_bp.post("")
def open_shift_route():
    """Body: {"station_id", "shift_date": "YYYY-MM-DD", "shift_number"?, "opened_at"?}"""
    payload = request.get_json(silent=True) or {}

    try:
        shift = shift_service.open_shift(
            payload.get("station_id"),
            payload.get("shift_date"),
            payload.get("shift_number", 1),
            opened_at=payload.get("opened_at"),
        )
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Open shift failed")
        return {"error": "internal error"}, 500

    return {"shift": shift.to_dict()}, 201


@shifts_bp.get("/<int:shift_id>")
def get_shift_route(shift_id: int):
    try:
        shift = shift_service.get_shift(shift_id)
        readings = shift_service.list_readings(shift_id)
    except LedgerError as e:
        return e.to_dict(), e.status_code
    return {"shift": shift.to_dict(), "readings": [r.to_dict() for r in readings]}, 200


@shifts_bp.post("/<int:shift_id>/readings")
def record_reading_route(shift_id: int):
    """Body: {"reading_kind": METER|GAUGE, "phase": START|END, "value", "nozzle_id"?, "tank_id"?}"""
    payload = request.get_json(silent=True) or {}

    try:
        reading = shift_service.record_reading(
            shift_id,
            reading_kind=payload.get("reading_kind"),
            phase=payload.get("phase"),
            value=payload.get("value"),
            nozzle_id=payload.get("nozzle_id"),
            tank_id=payload.get("tank_id"),
            recorded_by=request.headers.get("X-User-Id"),
        )
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Reading failed for shift %s", shift_id)
        return {"error": "internal error"}, 500

    return {"reading": reading.to_dict()}, 200


@shifts_bp.post("/<int:shift_id>/cash-count")
def record_cash_count_route(shift_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        shift = shift_service.record_cash_count(shift_id, payload.get("amount"))
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Cash count failed for shift %s", shift_id)
        return {"error": "internal error"}, 500

    return {"shift": shift.to_dict()}, 200


@shifts_bp.post("/<int:shift_id>/close")
def close_shift_route(shift_id: int):
    """Body: {"cash_counted"?, "closed_at"?}"""
    payload = request.get_json(silent=True) or {}

    try:
        result = shift_service.close_shift(
            shift_id,
            cash_counted=payload.get("cash_counted"),
            closed_at=payload.get("closed_at"),
        )
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Close failed for shift %s", shift_id)
        return {"error": "internal error"}, 500

    return result.to_dict(), 200


@shifts_bp.post("/<int:shift_id>/lock")
def lock_shift_route(shift_id: int):
    try:
        shift = shift_service.lock_shift(shift_id, request.headers.get("X-User-Id"))
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Lock failed for shift %s", shift_id)
        return {"error": "internal error"}, 500

    return {"shift": shift.to_dict()}, 200
