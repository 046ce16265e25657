from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, redirect, render_template, request, url_for

from app.studio.modules.oauth.service import OAuthError, dump_request, load_request, parse_authorize_request

bp = Blueprint("oauth", __name__)


def _error(e: OAuthError):
    current_app.logger.info(
        "OAuth authorize rejected: %s (%s) request_id=%s", e.error, e.description, getattr(g, "request_id", None)
    )
    return jsonify(e.to_dict()), e.status


def _login_redirect():
    return redirect(url_for("auth.login_get", next=url_for("oauth.consent")))


@bp.get("/authorize")
def authorize():
    try:
        req = parse_authorize_request(request.args, allowed_clients=current_app.config.get("OAUTH_ALLOWED_CLIENTS") or ())
    except OAuthError as e:
        return _error(e)

    resp = redirect(url_for("oauth.consent")) if getattr(g, "current_user", None) else _login_redirect()
    resp.set_cookie(
        current_app.config["OAUTH_COOKIE_NAME"],
        dump_request(req, current_app.config["SECRET_KEY"]),
        max_age=current_app.config["OAUTH_REQUEST_TTL_SECONDS"],
        httponly=True,
        samesite="Lax",
        secure=bool(current_app.config.get("SESSION_COOKIE_SECURE")),
        path="/oauth",
    )
    return resp


@bp.get("/consent")
def consent():
    user = getattr(g, "current_user", None)
    if not user:
        return _login_redirect()
    try:
        req = load_request(
            request.cookies.get(current_app.config["OAUTH_COOKIE_NAME"]),
            current_app.config["SECRET_KEY"],
            max_age=current_app.config["OAUTH_REQUEST_TTL_SECONDS"],
        )
    except OAuthError as e:
        return _error(e)
    return render_template("oauth/consent.html", oauth_request=req, user=user)
