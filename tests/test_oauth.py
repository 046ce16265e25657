from urllib.parse import parse_qs, urlencode, urlparse

import pytest

from app.studio.modules.oauth.service import (
    AuthorizeRequest,
    OAuthError,
    dump_request,
    load_request,
    parse_authorize_request,
)

CHALLENGE = "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"
COOKIE = "studio_oauth_request"


def _params(**overrides):
    params = {
        "response_type": "code",
        "client_id": "cli",
        "redirect_uri": "http://127.0.0.1:8765/callback",
        "state": "xyz",
        "code_challenge": CHALLENGE,
        "code_challenge_method": "S256",
    }
    params.update(overrides)
    return {k: v for k, v in params.items() if v is not None}


def test_parse_valid_request():
    req = parse_authorize_request(_params(scope="canvases"))
    assert req.client_id == "cli"
    assert req.scope == "canvases"
    assert req.code_challenge_method == "S256"


@pytest.mark.parametrize(
    "overrides,error",
    [
        ({"response_type": "token"}, "unsupported_response_type"),
        ({"response_type": None}, "invalid_request"),
        ({"client_id": None}, "invalid_request"),
        ({"redirect_uri": "ftp://example.com/cb"}, "invalid_request"),
        ({"redirect_uri": "/relative"}, "invalid_request"),
        ({"state": ""}, "invalid_request"),
        ({"code_challenge": "short"}, "invalid_request"),
        ({"code_challenge": CHALLENGE + "="}, "invalid_request"),
        ({"code_challenge_method": "plain"}, "invalid_request"),
    ],
)
def test_parse_rejects_bad_parameters(overrides, error):
    with pytest.raises(OAuthError) as exc:
        parse_authorize_request(_params(**overrides))
    assert exc.value.error == error


def test_client_allow_list():
    with pytest.raises(OAuthError) as exc:
        parse_authorize_request(_params(client_id="other"), allowed_clients=("cli",))
    assert exc.value.error == "unauthorized_client"
    assert parse_authorize_request(_params(), allowed_clients=("cli",)).client_id == "cli"


def test_signed_request_round_trip_and_tamper():
    req = AuthorizeRequest(
        client_id="cli",
        redirect_uri="http://127.0.0.1/cb",
        state="s",
        code_challenge=CHALLENGE,
        code_challenge_method="S256",
    )
    token = dump_request(req, "secret")
    assert load_request(token, "secret", max_age=60) == req

    with pytest.raises(OAuthError):
        load_request(token, "another-secret", max_age=60)
    with pytest.raises(OAuthError):
        load_request(token[:-2] + "xx", "secret", max_age=60)
    with pytest.raises(OAuthError):
        load_request(None, "secret", max_age=60)


def test_authorize_anonymous_redirects_to_login(client):
    r = client.get("/oauth/authorize?" + urlencode(_params()))
    assert r.status_code == 302
    location = urlparse(r.headers["Location"])
    assert location.path == "/auth/login"
    assert parse_qs(location.query)["next"] == ["/oauth/consent"]

    cookie = client.get_cookie(COOKIE, path="/oauth")
    assert cookie is not None
    assert cookie.http_only
    assert cookie.same_site == "Lax"


def test_authorize_rejects_without_cookie(client):
    r = client.get("/oauth/authorize?" + urlencode(_params(code_challenge_method="plain")))
    assert r.status_code == 400
    assert r.json["error"] == "invalid_request"
    assert client.get_cookie(COOKIE, path="/oauth") is None


def test_authorize_then_consent_when_logged_in(client, admin_headers):
    r = client.get("/oauth/authorize?" + urlencode(_params(scope="canvases")))
    assert r.status_code == 302
    assert urlparse(r.headers["Location"]).path == "/oauth/consent"

    r = client.get("/oauth/consent")
    assert r.status_code == 200
    assert b"Authorize cli" in r.data
    assert b"http://127.0.0.1:8765/callback" in r.data


def test_login_resumes_consent(client):
    client.get("/oauth/authorize?" + urlencode(_params()))
    r = client.post(
        "/auth/login",
        data={"email": "admin@example.com", "password": "pw", "next": "/oauth/consent"},
        follow_redirects=False,
    )
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/oauth/consent")
    assert client.get("/oauth/consent").status_code == 200


def test_consent_requires_login(client):
    r = client.get("/oauth/consent")
    assert r.status_code == 302
    assert urlparse(r.headers["Location"]).path == "/auth/login"


def test_consent_without_pending_request(client, admin_headers):
    r = client.get("/oauth/consent")
    assert r.status_code == 400
    assert r.json == {"error": "invalid_request", "error_description": "No pending authorization request"}

    client.set_cookie(COOKIE, "garbage", path="/oauth")
    r = client.get("/oauth/consent")
    assert r.status_code == 400
    assert r.json["error_description"] == "Authorization request is invalid"
