"""
OAuth 2.0 authorization-code + PKCE: the authorize step only.

The incoming query is validated, then carried to the consent page in a short-lived
signed cookie. Codes and tokens are issued elsewhere.
"""
from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from urllib.parse import urlparse

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

# RFC 7636: 43-128 chars; S256 challenges are unpadded base64url.
CODE_CHALLENGE_RE = re.compile(r"^[A-Za-z0-9_-]{43,128}$")
SUPPORTED_CHALLENGE_METHODS = ("S256",)
COOKIE_SALT = "oauth-authorize-request"


class OAuthError(Exception):
    def __init__(self, error: str, description: str, *, status: int = 400) -> None:
        super().__init__(description)
        self.error = error
        self.description = description
        self.status = status

    def to_dict(self) -> dict[str, str]:
        return {"error": self.error, "error_description": self.description}


@dataclass(frozen=True)
class AuthorizeRequest:
    client_id: str
    redirect_uri: str
    state: str
    code_challenge: str
    code_challenge_method: str
    scope: str | None = None
    response_type: str = "code"

    def to_dict(self) -> dict:
        return asdict(self)


def _required(args: Mapping[str, str], name: str) -> str:
    value = (args.get(name) or "").strip()
    if not value:
        raise OAuthError("invalid_request", f"Missing required parameter: {name}")
    return value


def _valid_redirect_uri(uri: str) -> bool:
    parsed = urlparse(uri)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def parse_authorize_request(args: Mapping[str, str], *, allowed_clients: tuple[str, ...] = ()) -> AuthorizeRequest:
    """Validate authorize query parameters. An empty ``allowed_clients`` accepts any client."""
    response_type = _required(args, "response_type")
    if response_type != "code":
        raise OAuthError("unsupported_response_type", "Only response_type=code is supported")

    client_id = _required(args, "client_id")
    if allowed_clients and client_id not in allowed_clients:
        raise OAuthError("unauthorized_client", f"Unknown client_id: {client_id}")

    redirect_uri = _required(args, "redirect_uri")
    if not _valid_redirect_uri(redirect_uri):
        raise OAuthError("invalid_request", "redirect_uri must be an absolute http(s) URL")

    state = _required(args, "state")

    code_challenge = _required(args, "code_challenge")
    if not CODE_CHALLENGE_RE.match(code_challenge):
        raise OAuthError("invalid_request", "code_challenge must be 43-128 base64url characters")

    method = _required(args, "code_challenge_method")
    if method not in SUPPORTED_CHALLENGE_METHODS:
        raise OAuthError("invalid_request", "code_challenge_method must be S256")

    scope = (args.get("scope") or "").strip() or None
    return AuthorizeRequest(
        client_id=client_id,
        redirect_uri=redirect_uri,
        state=state,
        code_challenge=code_challenge,
        code_challenge_method=method,
        scope=scope,
    )


def _serializer(secret_key: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key, salt=COOKIE_SALT)


def dump_request(req: AuthorizeRequest, secret_key: str) -> str:
    return _serializer(secret_key).dumps(req.to_dict())


def load_request(token: str | None, secret_key: str, *, max_age: int) -> AuthorizeRequest:
    if not token:
        raise OAuthError("invalid_request", "No pending authorization request")
    try:
        data = _serializer(secret_key).loads(token, max_age=max_age)
    except SignatureExpired:
        raise OAuthError("invalid_request", "Authorization request expired; start again") from None
    except BadSignature:
        raise OAuthError("invalid_request", "Authorization request is invalid") from None
    try:
        return AuthorizeRequest(**data)
    except TypeError:
        raise OAuthError("invalid_request", "Authorization request is invalid") from None
