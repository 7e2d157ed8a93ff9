# backend/stationledger/routes/anomalies.py
"""
Shift anomaly routes.

The reviewer identity comes from the X-User-Id header set by the upstream
session layer.
"""
from flask import Blueprint, current_app, request

from ..errors import LedgerError
from ..services import anomaly_service, shift_service

anomalies_bp = Blueprint("anomalies", __name__, url_prefix="/api")


@anomalies_bp.post("/shifts/<int:shift_id>/anomalies/check")
def check_shift_route(shift_id: int):
    try:
        found = anomaly_service.check_shift_anomalies(shift_id)
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Anomaly check failed for shift %s", shift_id)
        return {"error": "internal error"}, 500

    return {"shift_id": shift_id, "anomalies": [a.to_dict() for a in found]}, 200


@anomalies_bp.get("/shifts/<int:shift_id>/anomalies")
def shift_anomalies_route(shift_id: int):
    """Every anomaly recorded for the shift, pending and reviewed."""
    try:
        shift_service.get_shift(shift_id)
    except LedgerError as e:
        return e.to_dict(), e.status_code

    anomalies = anomaly_service.get_shift_anomalies(shift_id)
    return {"shift_id": shift_id, "anomalies": [a.to_dict() for a in anomalies]}, 200


@anomalies_bp.get("/anomalies/pending")
def pending_anomalies_route():
    station_id = request.args.get("station_id", type=int)
    limit = request.args.get("limit", type=int)
    if limit is not None and limit <= 0:
        return {"error": "limit must be positive"}, 400

    anomalies = anomaly_service.get_pending_anomalies(station_id=station_id, limit=limit)
    return {"anomalies": [a.to_dict() for a in anomalies]}, 200


@anomalies_bp.post("/anomalies/<int:anomaly_id>/review")
def review_anomaly_route(anomaly_id: int):
    try:
        anomaly = anomaly_service.mark_anomaly_reviewed(anomaly_id, request.headers.get("X-User-Id"))
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Review failed for anomaly %s", anomaly_id)
        return {"error": "internal error"}, 500

    return {"anomaly": anomaly.to_dict()}, 200
