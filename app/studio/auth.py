"""
Session-cookie login.

Browser users sign in with a form; API clients (the canvas editor, scripts
driving the data API) reuse the same session and read their CSRF token from
``GET /auth/session``.
"""
from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash

from app.studio.audit import record_event
from app.studio.db import db_session
from app.studio.models import User
from app.studio.security import ensure_csrf_token

bp = Blueprint("auth", __name__)

# ip -> attempt timestamps; per process, which is enough for a single-admin studio
_login_attempts: dict[str, list[datetime]] = defaultdict(list)


def _throttled(ip: str) -> bool:
    limit = current_app.config["LOGIN_RATE_LIMIT"]
    window = timedelta(seconds=current_app.config["LOGIN_RATE_WINDOW_SECONDS"])
    cutoff = datetime.utcnow() - window
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= limit


def _safe_next(nxt: str) -> str | None:
    # Only local paths, to avoid open redirects.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


def load_current_user() -> None:
    """Sets g.request_id and g.current_user (None when anonymous or the user is gone/disabled)."""
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None

    user_id = session.get("user_id")
    if not user_id:
        return
    try:
        user = db_session().get(User, int(user_id))
    except (SQLAlchemyError, ValueError) as e:
        current_app.logger.error("load_current_user failed, clearing session (request_id=%s): %s", g.request_id, e)
        session.pop("user_id", None)
        return
    if not user or not user.is_active:
        session.pop("user_id", None)
        return
    g.current_user = user


@bp.get("/session")
def session_info():
    """Who is signed in, what they may do, and the CSRF token mutating API calls must send."""
    user: User | None = getattr(g, "current_user", None)
    if not user:
        return {"authenticated": False}
    return {
        "authenticated": True,
        "user": {"id": user.id, "email": user.email},
        "permissions": user.permission_keys,
        "csrf_token": ensure_csrf_token(),
    }


@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _throttled(ip):
        current_app.logger.warning("Login throttled for %s (request_id=%s)", ip, getattr(g, "request_id", None))
        flash("Too many login attempts. Please wait a few minutes.", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))
    _login_attempts[ip].append(datetime.utcnow())

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        flash("Invalid credentials.", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    session["user_id"] = user.id
    _login_attempts[ip].clear()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    # The OAuth consent step sends users here with next=/oauth/consent.
    return redirect(_safe_next(nxt) or url_for("admin.index"))


@bp.get("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return redirect(url_for("routes.index"))
