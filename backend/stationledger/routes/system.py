# backend/stationledger/routes/system.py
"""
System health and audit log endpoints.
"""

import time

from flask import Blueprint, current_app, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..services import audit_service
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Round-trip a trivial query and report latency."""
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "response_time_ms": round(elapsed_ms, 2)}
    except SQLAlchemyError as e:
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "error": e.__class__.__name__}


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    ok = database["status"] == "healthy"
    body = {
        "status": "ok" if ok else "degraded",
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }
    return body, (200 if ok else 503)


@system_bp.get("/api/audit-events")
def audit_events_route():
    """Filters: entity_type, entity_id, owner_id, limit (default 200)."""
    limit = request.args.get("limit", default=200, type=int)
    if limit <= 0:
        return {"error": "limit must be positive"}, 400

    events = audit_service.list_audit_events(
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id", type=int),
        owner_id=request.args.get("owner_id", type=int),
        limit=limit,
    )
    return {"events": [ev.to_dict() for ev in events]}, 200
