# Overview: Append-only audit log writes; no business logic.

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import AuditEvent
"""
Audit Log Invariants (authoritative)

- Append-only: no updates or deletes of existing events.
- No domain/business logic in the audit log itself.
- Events are written inside the same DB transaction as the domain event they
  record, so a rolled-back operation leaves no event behind.
"""


def append_audit_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    station_id: int | None = None,
    owner_id: int | None = None,
    actor_id: str | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> AuditEvent:
    ev = AuditEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        station_id=station_id,
        owner_id=owner_id,
        actor_id=actor_id,
        occurred_at=occurred_at,  # if None, column default applies
        note=note,
        payload=json.dumps(payload, default=str, sort_keys=True) if payload else None,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_audit_events(*, entity_type: str | None = None, entity_id: int | None = None,
                      owner_id: int | None = None, limit: int = 200) -> list[AuditEvent]:
    q = AuditEvent.query
    if entity_type is not None:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(AuditEvent.entity_id == entity_id)
    if owner_id is not None:
        q = q.filter(AuditEvent.owner_id == owner_id)
    return q.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc()).limit(limit).all()
