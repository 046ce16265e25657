from flask import Blueprint, current_app, flash, g, render_template, request
from sqlalchemy import func

from app.studio.audit import AuditFilters, event_metadata, parse_day, query_events
from app.studio.db import db_session, ping
from app.studio.modules.canvases.blocks import CANVAS_KINDS
from app.studio.rbac import require_permission

bp = Blueprint("admin", __name__)


@bp.get("/")
@require_permission("admin.view")
def index():
    s = db_session()
    db_error = ping(s)
    status = {
        "env": (current_app.config.get("ENV") or "development").strip().lower(),
        "db_connected": db_error is None,
        "db_error": db_error,
    }

    canvas_counts: list[dict] = []
    if status["db_connected"]:
        for kind in CANVAS_KINDS.values():
            total = s.query(func.count(kind.model.id)).scalar() or 0
            canvas_counts.append({"key": kind.key, "label": kind.label, "count": int(total)})

    return render_template("admin/index.html", system_status=status, canvas_counts=canvas_counts)


@bp.get("/me")
@require_permission("admin.view")
def me():
    user = g.current_user
    return render_template("admin/me.html", user=user, role_keys=user.role_keys, perm_keys=user.permission_keys)


@bp.get("/audit")
@require_permission("admin.view")
def audit_list():
    """Audit trail (last 200 events), filterable by action, actor, entity and date range."""
    args = {k: (request.args.get(k) or "").strip() for k in ("action", "actor_email", "entity_type", "entity_id", "date_from", "date_to")}
    filters = AuditFilters(
        action=args["action"],
        actor_email=args["actor_email"],
        entity_type=args["entity_type"],
        entity_id=args["entity_id"],
        date_from=parse_day(args["date_from"]),
        date_to=parse_day(args["date_to"]),
    )
    for key in ("date_from", "date_to"):
        if args[key] and getattr(filters, key) is None:
            flash(f"{key} must be YYYY-MM-DD", "danger")

    events = query_events(db_session(), filters)
    rows = [(e, event_metadata(e)) for e in events]
    return render_template("admin/audit.html", rows=rows, **args)
