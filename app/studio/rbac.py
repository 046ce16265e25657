from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, redirect, request, url_for

from app.studio.models import User
from app.studio.results import ActionErrorCode, fail_response


def user_has_permission(user: User | None, permission_key: str) -> bool:
    return user is not None and user.can(permission_key)


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Page guard: anonymous users go to login, signed-in users without the permission get 403."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                nxt = request.full_path or request.path
                # Avoid trailing '?' from full_path when there is no query string.
                if nxt.endswith("?"):
                    nxt = nxt[:-1]
                return redirect(url_for("auth.login_get", next=nxt))
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_api_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """JSON guard: answers with an unauthorized / access_denied result instead of redirecting."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                return fail_response("Unauthorized", ActionErrorCode.UNAUTHORIZED)
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                return fail_response(f"Missing permission: {permission_key}", ActionErrorCode.ACCESS_DENIED)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
