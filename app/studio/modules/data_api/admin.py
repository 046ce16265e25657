from __future__ import annotations

from flask import Blueprint, g, request

from app.studio.db import db_session
from app.studio.models import User
from app.studio.modules.data_api import service
from app.studio.modules.data_api.tables import get_table
from app.studio.rbac import require_api_permission
from app.studio.results import json_action

bp = Blueprint("data_api", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _body():
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if isinstance(body, dict):
        # csrf_token may ride in the body; the CSRF guard has already checked it.
        body = {k: v for k, v in body.items() if k != "csrf_token"}
    return body


@bp.get("/tables")
@require_api_permission("data.read")
@json_action
def tables_list():
    return service.list_tables()


@bp.post("/<table>/query")
@require_api_permission("data.read")
@json_action
def rows_query(table: str):
    return service.query_rows(db_session(), get_table(table), _body())


@bp.get("/<table>/<record_id>")
@require_api_permission("data.read")
@json_action
def row_detail(table: str, record_id: str):
    return service.get_row(db_session(), get_table(table), record_id=record_id)


@bp.get("/<table>/by-slug/<slug>")
@require_api_permission("data.read")
@json_action
def row_by_slug(table: str, slug: str):
    return service.get_row(db_session(), get_table(table), slug=slug)


@bp.post("/<table>")
@require_api_permission("data.write")
@json_action
def row_create(table: str):
    s = db_session()
    data = service.create_row(s, get_table(table), _body(), user=_current_user())
    s.commit()
    return data, 201


@bp.patch("/<table>/<record_id>")
@require_api_permission("data.write")
@json_action
def row_update(table: str, record_id: str):
    s = db_session()
    data = service.update_row(s, get_table(table), record_id, _body(), user=_current_user())
    s.commit()
    return data


@bp.delete("/<table>/<record_id>")
@require_api_permission("data.write")
@json_action
def row_delete(table: str, record_id: str):
    s = db_session()
    data = service.delete_row(s, get_table(table), record_id, user=_current_user())
    s.commit()
    return data
