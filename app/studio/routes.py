from flask import Blueprint, current_app, render_template

from app.studio.db import db_session, ping

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return render_template("public/index.html")


@bp.get("/health")
def health():
    """Readiness check: app plus a trivial DB round-trip. Returns JSON."""
    error = ping(db_session())
    if error:
        current_app.logger.error("Health check DB ping failed: %s", error)
        return {"ok": False, "db": "down"}, 503
    return {"ok": True, "db": "up"}, 200


@bp.get("/healthz")
def healthz():
    """Liveness probe. No DB access."""
    return "ok", 200
