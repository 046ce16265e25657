"""
Audit trail.

Every mutation (canvas edits, data API writes, logins) appends one
:class:`AuditEvent` in the same session as the change, so the event commits or
rolls back together with it. Events are never updated or deleted.
"""
import json
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.studio.models import AuditEvent, User

DEFAULT_PAGE_SIZE = 200


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    in_request = has_request_context()
    ev = AuditEvent(
        request_id=request_id or (getattr(g, "request_id", None) if in_request else None),
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        # default=str: block metadata can carry datetimes
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        client_ip=request.remote_addr if in_request else None,
    )
    s.add(ev)
    return ev


@dataclass
class AuditFilters:
    action: str = ""  # substring
    actor_email: str = ""  # substring, case-insensitive
    entity_type: str = ""  # exact
    entity_id: str = ""  # exact
    date_from: date | None = None
    date_to: date | None = None  # inclusive


def parse_day(raw: str | None) -> date | None:
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        return None


def query_events(s: Session, filters: AuditFilters, *, limit: int = DEFAULT_PAGE_SIZE) -> list[AuditEvent]:
    q = s.query(AuditEvent)
    if filters.action:
        q = q.filter(AuditEvent.action.like(f"%{filters.action}%"))
    if filters.actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{filters.actor_email.lower()}%"))
    if filters.entity_type:
        q = q.filter(AuditEvent.entity_type == filters.entity_type)
    if filters.entity_id:
        q = q.filter(AuditEvent.entity_id == filters.entity_id)
    if filters.date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(filters.date_from, time.min))
    if filters.date_to:
        q = q.filter(AuditEvent.created_at < datetime.combine(filters.date_to + timedelta(days=1), time.min))
    return q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()


def event_metadata(ev: AuditEvent) -> dict[str, Any]:
    if not ev.metadata_json:
        return {}
    try:
        data = json.loads(ev.metadata_json)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
