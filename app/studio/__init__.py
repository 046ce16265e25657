import logging
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, render_template, request, session
from sqlalchemy import inspect as sa_inspect

from app.studio.admin import bp as admin_bp
from app.studio.auth import bp as auth_bp, load_current_user
from app.studio.config import load_config
from app.studio.db import init_db, teardown_db_session
from app.studio.modules.canvases.admin import bp as canvases_bp
from app.studio.modules.data_api.admin import bp as data_api_bp
from app.studio.modules.oauth.routes import bp as oauth_bp
from app.studio.results import ActionErrorCode, fail
from app.studio.routes import bp as routes_bp
from app.studio.security import ensure_csrf_token, is_api_request, validate_csrf

# Tables the code expects; missing ones mean `alembic upgrade head` was not run.
EXPECTED_TABLES = (
    "users",
    "roles",
    "permissions",
    "user_roles",
    "role_permissions",
    "audit_events",
    "business_model_canvases",
    "customer_profiles",
    "value_maps",
    "value_proposition_canvases",
)

_UNGUARDED_PREFIXES = ("/static/", "/health", "/healthz")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.logger.setLevel(app.config.get("LOG_LEVEL") or "INFO")

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_permissions() -> dict:
        from app.studio.rbac import user_has_permission

        def has_perm(key: str) -> bool:
            return user_has_permission(getattr(g, "current_user", None), key)

        return {"has_perm": has_perm}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d %H:%M") -> str:
        if value is None:
            return "-"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNGUARDED_PREFIXES):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Login/logout carry their own form and must work before a token exists.
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                if is_api_request(request):
                    return jsonify(fail("CSRF token missing or invalid.", ActionErrorCode.VALIDATION_ERROR)), 400
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os

        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(canvases_bp, url_prefix="/api/canvases")
    app.register_blueprint(data_api_bp, url_prefix="/api/data")
    app.register_blueprint(oauth_bp, url_prefix="/oauth")

    def _load_user_wrapper():
        if request.path.startswith(_UNGUARDED_PREFIXES):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    # Schema health: checked once, on the first request, so tests and scripts can
    # create tables after create_app() returns.
    app.config.setdefault("_schema_health_checked", False)
    app.config.setdefault("_schema_health_ok", True)
    app.config.setdefault("_schema_health_missing", [])

    def _run_schema_health_check() -> None:
        missing: list[str] = []
        try:
            engine = app.extensions.get("sqlalchemy_engine")
            if engine is None:
                raise RuntimeError("sqlalchemy_engine not initialized")
            insp = sa_inspect(engine)
            missing = [f"{t} (table)" for t in EXPECTED_TABLES if not insp.has_table(t)]
            if insp.has_table("audit_events"):
                cols = {c["name"] for c in insp.get_columns("audit_events")}
                if "client_ip" not in cols:
                    missing.append("audit_events.client_ip")
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)

        app.config["_schema_health_checked"] = True
        app.config["_schema_health_missing"] = missing
        app.config["_schema_health_ok"] = not missing
        if missing:
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if request.path.startswith(_UNGUARDED_PREFIXES):
            return None
        if not app.config.get("_schema_health_checked"):
            _run_schema_health_check()
        if app.config.get("_schema_health_ok"):
            return None
        missing = app.config.get("_schema_health_missing") or []
        if is_api_request(request):
            return jsonify(fail("Database schema out of date", ActionErrorCode.DATABASE_ERROR, details=missing)), 500
        if request.path.startswith("/admin") and getattr(g, "current_user", None):
            return render_template("errors/schema_out_of_date.html", missing=missing), 500
        return None

    @app.errorhandler(400)
    def _err_400(e):  # type: ignore[no-redef]
        if is_api_request(request):
            return jsonify(fail("Bad request", ActionErrorCode.VALIDATION_ERROR)), 400
        return render_template("errors/400.html", message=getattr(e, "description", None)), 400

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        if is_api_request(request):
            return jsonify(fail("Access denied", ActionErrorCode.ACCESS_DENIED)), 403
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        if is_api_request(request):
            return jsonify(fail("Not found", ActionErrorCode.NOT_FOUND)), 404
        return render_template("errors/404.html"), 404

    @app.errorhandler(405)
    def _err_405(e):  # type: ignore[no-redef]
        if is_api_request(request):
            return jsonify(fail("Method not allowed", ActionErrorCode.VALIDATION_ERROR)), 405
        return e

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        max_mb = (app.config.get("MAX_CONTENT_LENGTH") or 0) // (1024 * 1024)
        return jsonify(fail(f"Request too large. Maximum size is {max_mb}MB.", ActionErrorCode.VALIDATION_ERROR)), 413

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        # Ensure stack trace shows in the server logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        if is_api_request(request):
            return jsonify(fail("Internal server error", ActionErrorCode.DATABASE_ERROR)), 500
        return render_template("errors/500.html"), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
