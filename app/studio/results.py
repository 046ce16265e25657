"""
Tagged action results.

Every JSON endpoint answers with either ``{"success": true, "data": ...}`` or
``{"success": false, "error": "...", "code": "..."}``. Services raise
:class:`ActionError`; :func:`json_action` turns it into the failure shape.
"""
from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from functools import wraps
from typing import Any

from flask import current_app, g, jsonify
from sqlalchemy.exc import SQLAlchemyError


class ActionErrorCode(str, Enum):
    UNAUTHORIZED = "unauthorized"
    ACCESS_DENIED = "access_denied"
    VALIDATION_ERROR = "validation_error"
    DATABASE_ERROR = "database_error"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"


HTTP_STATUS = {
    ActionErrorCode.UNAUTHORIZED: 401,
    ActionErrorCode.ACCESS_DENIED: 403,
    ActionErrorCode.VALIDATION_ERROR: 400,
    ActionErrorCode.DATABASE_ERROR: 500,
    ActionErrorCode.NOT_FOUND: 404,
    ActionErrorCode.CONFLICT: 409,
}

CONFLICT_MESSAGE = "Record was modified by someone else. Please refresh and try again."


class ActionError(Exception):
    def __init__(self, code: ActionErrorCode, message: str, *, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return fail(self.message, self.code, details=self.details)


def validation_error(message: str, details: list[str] | None = None) -> ActionError:
    return ActionError(ActionErrorCode.VALIDATION_ERROR, message, details=details)


def not_found(message: str) -> ActionError:
    return ActionError(ActionErrorCode.NOT_FOUND, message)


def conflict(message: str = CONFLICT_MESSAGE) -> ActionError:
    return ActionError(ActionErrorCode.CONFLICT, message)


def ok(data: Any = None) -> dict[str, Any]:
    return {"success": True, "data": data}


def fail(error: str, code: ActionErrorCode, *, details: list[str] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": False, "error": error, "code": code.value}
    if details:
        payload["details"] = details
    return payload


def fail_response(error: str, code: ActionErrorCode, *, details: list[str] | None = None):
    return jsonify(fail(error, code, details=details)), HTTP_STATUS[code]


def json_action(fn: Callable[..., Any]) -> Callable[..., Any]:
    """
    Wrap a view that returns plain data (or ``(data, status)``) into the result envelope.
    ActionError maps to its code; unexpected database errors are rolled back,
    logged with the request id, and reported generically.
    """

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        try:
            rv = fn(*args, **kwargs)
        except ActionError as e:
            _rollback()
            if e.code is ActionErrorCode.CONFLICT:
                current_app.logger.info("Optimistic lock conflict in %s (request_id=%s)", fn.__name__, getattr(g, "request_id", None))
            return jsonify(e.to_dict()), HTTP_STATUS[e.code]
        except SQLAlchemyError:
            _rollback()
            current_app.logger.exception("Database error in %s (request_id=%s)", fn.__name__, getattr(g, "request_id", None))
            return fail_response("Database error", ActionErrorCode.DATABASE_ERROR)

        status = 200
        if isinstance(rv, tuple):
            rv, status = rv
        return jsonify(ok(rv)), status

    return wrapped


def _rollback() -> None:
    s = getattr(g, "db_session", None)
    if s is not None:
        s.rollback()
