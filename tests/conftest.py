import pytest
from werkzeug.security import generate_password_hash

from app.studio import auth, create_app
from app.studio.constants import PERMISSIONS
from app.studio.db import session_scope
from app.studio.models import Base, Permission, Role, User


def _seed(s):
    perms = {key: Permission(key=key, name=name) for key, name in PERMISSIONS.items()}
    s.add_all(perms.values())

    admin = Role(key="admin", name="Administrator")
    admin.permissions.extend(perms.values())
    viewer = Role(key="viewer", name="Viewer")
    viewer.permissions.extend([perms["admin.view"], perms["canvases.view"], perms["data.read"]])

    u_admin = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
    u_admin.roles.append(admin)
    u_viewer = User(email="viewer@example.com", password_hash=generate_password_hash("pw"), is_active=True)
    u_viewer.roles.append(viewer)
    s.add_all([admin, viewer, u_admin, u_viewer])


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    for k in ("OAUTH_ALLOWED_CLIENTS", "OAUTH_REQUEST_TTL_SECONDS", "DATA_API_MAX_LIMIT", "LOGIN_RATE_LIMIT", "LOGIN_RATE_WINDOW_SECONDS"):
        monkeypatch.delenv(k, raising=False)

    auth._login_attempts.clear()
    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        _seed(s)

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def login(client, email="admin@example.com", password="pw") -> dict:
    """Sign in and return headers carrying the session's CSRF token."""
    client.post("/auth/login", data={"email": email, "password": password}, follow_redirects=False)
    info = client.get("/auth/session").json
    assert info["authenticated"], email
    return {"X-CSRF-Token": info["csrf_token"]}


@pytest.fixture()
def admin_headers(client):
    return login(client)


@pytest.fixture()
def viewer_headers(client):
    return login(client, email="viewer@example.com")
