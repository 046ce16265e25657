from app.studio.db import session_scope
from app.studio.models import AuditEvent


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert r.json["db"] == "up"


def test_healthz(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_login_and_admin_access(client):
    # Anonymous should be redirected to login
    r = client.get("/admin/")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]

    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=False)
    assert r.status_code == 302

    r = client.get("/admin/")
    assert r.status_code == 200
    assert b"Business Model Canvas" in r.data


def test_login_failure_is_audited(app, client):
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "wrong"}, follow_redirects=False)
    assert r.status_code == 302
    with client.session_transaction() as sess:
        assert "user_id" not in sess

    with session_scope(app) as s:
        events = s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").all()
        assert len(events) == 1
        assert events[0].entity_id == "admin@example.com"


def test_login_redirects_to_safe_next_only(client):
    r = client.post(
        "/auth/login",
        data={"email": "admin@example.com", "password": "pw", "next": "//evil.example.com/"},
        follow_redirects=False,
    )
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/admin/")


def test_audit_page(client, admin_headers):
    r = client.get("/admin/audit")
    assert r.status_code == 200
    assert b"auth.login" in r.data


def test_api_requires_login(client):
    r = client.get("/api/canvases/business-models")
    assert r.status_code == 401
    assert r.json == {"success": False, "error": "Unauthorized", "code": "unauthorized"}


def test_api_csrf_required_for_writes(client, admin_headers):
    r = client.post("/api/canvases/business-models", json={"name": "No token"})
    assert r.status_code == 400
    assert r.json["code"] == "validation_error"


def test_unknown_api_route_is_json(client, admin_headers):
    r = client.get("/api/nope/nope/nope/nope/nope")
    assert r.status_code == 404
    assert r.json["success"] is False
    assert r.json["code"] == "not_found"


def test_session_endpoint(client):
    assert client.get("/auth/session").json == {"authenticated": False}

    client.post("/auth/login", data={"email": "viewer@example.com", "password": "pw"})
    info = client.get("/auth/session").json
    assert info["authenticated"] is True
    assert info["user"]["email"] == "viewer@example.com"
    assert info["permissions"] == ["admin.view", "canvases.view", "data.read"]
    assert info["csrf_token"]


def test_login_is_throttled(app, client):
    app.config["LOGIN_RATE_LIMIT"] = 2
    for _ in range(2):
        client.post("/auth/login", data={"email": "admin@example.com", "password": "wrong"})
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    assert client.get("/auth/session").json == {"authenticated": False}


def test_audit_filters(client, admin_headers):
    r = client.post("/api/canvases/value-maps", json={"name": "Audit me"}, headers=admin_headers)
    canvas_id = r.json["data"]["id"]

    r = client.get(f"/admin/audit?entity_id={canvas_id}")
    assert r.status_code == 200
    assert b"canvas.create" in r.data
    assert b"auth.login" not in r.data

    r = client.get("/admin/audit?date_from=not-a-date")
    assert r.status_code == 200
