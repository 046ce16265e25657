import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    oauth_allowed_clients: tuple[str, ...]
    oauth_request_ttl_seconds: int

    data_api_max_limit: int

    login_rate_limit: int
    login_rate_window_seconds: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getint(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    clients = tuple(c.strip() for c in _getenv("OAUTH_ALLOWED_CLIENTS").split(",") if c.strip())
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///studio.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        oauth_allowed_clients=clients,
        oauth_request_ttl_seconds=_getint("OAUTH_REQUEST_TTL_SECONDS", 600),
        data_api_max_limit=_getint("DATA_API_MAX_LIMIT", 1000),
        login_rate_limit=_getint("LOGIN_RATE_LIMIT", 5),
        login_rate_window_seconds=_getint("LOGIN_RATE_WINDOW_SECONDS", 300),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "OAUTH_ALLOWED_CLIENTS": s.oauth_allowed_clients,
        "OAUTH_REQUEST_TTL_SECONDS": s.oauth_request_ttl_seconds,
        "OAUTH_COOKIE_NAME": "studio_oauth_request",
        "DATA_API_MAX_LIMIT": s.data_api_max_limit,
        "LOGIN_RATE_LIMIT": s.login_rate_limit,
        "LOGIN_RATE_WINDOW_SECONDS": s.login_rate_window_seconds,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # JSON payloads only; no uploads
        "MAX_CONTENT_LENGTH": 2 * 1024 * 1024,
    }
