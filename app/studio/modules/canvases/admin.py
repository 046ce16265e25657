from __future__ import annotations

from typing import Any

from flask import Blueprint, g, request

from app.studio.db import db_session
from app.studio.models import User
from app.studio.modules.canvases import service
from app.studio.modules.canvases.blocks import get_kind
from app.studio.rbac import require_api_permission
from app.studio.results import json_action, validation_error

bp = Blueprint("canvases", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload() -> dict[str, Any]:
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise validation_error("Request body must be a JSON object")
    return body


# ---------- Canvases ----------
@bp.get("/<kind_key>")
@require_api_permission("canvases.view")
@json_action
def canvas_list(kind_key: str):
    kind = get_kind(kind_key)
    status = (request.args.get("status") or "").strip() or None
    q = (request.args.get("q") or "").strip() or None
    return service.list_canvases(db_session(), kind, status=status, q=q)


@bp.post("/<kind_key>")
@require_api_permission("canvases.edit")
@json_action
def canvas_create(kind_key: str):
    kind = get_kind(kind_key)
    s = db_session()
    canvas = service.create_canvas(s, kind, _payload(), user=_current_user())
    s.commit()
    return service.canvas_to_dict(canvas, kind), 201


@bp.get("/<kind_key>/<canvas_id>")
@require_api_permission("canvases.view")
@json_action
def canvas_detail(kind_key: str, canvas_id: str):
    kind = get_kind(kind_key)
    return service.canvas_to_dict(service.get_canvas(db_session(), kind, canvas_id), kind)


@bp.patch("/<kind_key>/<canvas_id>")
@require_api_permission("canvases.edit")
@json_action
def canvas_update(kind_key: str, canvas_id: str):
    kind = get_kind(kind_key)
    s = db_session()
    canvas = service.update_canvas(s, kind, canvas_id, _payload(), user=_current_user())
    s.commit()
    return service.canvas_to_dict(canvas, kind)


@bp.delete("/<kind_key>/<canvas_id>")
@require_api_permission("canvases.edit")
@json_action
def canvas_delete(kind_key: str, canvas_id: str):
    kind = get_kind(kind_key)
    s = db_session()
    service.delete_canvas(s, kind, canvas_id, user=_current_user())
    s.commit()
    return {"deleted": canvas_id}


# ---------- Block items ----------
@bp.post("/<kind_key>/<canvas_id>/blocks/<block_id>/items")
@require_api_permission("canvases.edit")
@json_action
def item_add(kind_key: str, canvas_id: str, block_id: str):
    s = db_session()
    data = service.add_item(s, get_kind(kind_key), canvas_id, block_id, _payload(), user=_current_user())
    s.commit()
    return data, 201


@bp.post("/<kind_key>/<canvas_id>/blocks/<block_id>/items/bulk")
@require_api_permission("canvases.edit")
@json_action
def item_bulk_add(kind_key: str, canvas_id: str, block_id: str):
    s = db_session()
    data = service.bulk_add_items(s, get_kind(kind_key), canvas_id, block_id, _payload(), user=_current_user())
    s.commit()
    return data, 201


@bp.patch("/<kind_key>/<canvas_id>/blocks/<block_id>/items/<item_id>")
@require_api_permission("canvases.edit")
@json_action
def item_update(kind_key: str, canvas_id: str, block_id: str, item_id: str):
    s = db_session()
    data = service.update_item(s, get_kind(kind_key), canvas_id, block_id, item_id, _payload(), user=_current_user())
    s.commit()
    return data


@bp.delete("/<kind_key>/<canvas_id>/blocks/<block_id>/items/<item_id>")
@require_api_permission("canvases.edit")
@json_action
def item_delete(kind_key: str, canvas_id: str, block_id: str, item_id: str):
    s = db_session()
    data = service.delete_item(s, get_kind(kind_key), canvas_id, block_id, item_id, _payload(), user=_current_user())
    s.commit()
    return data


@bp.post("/<kind_key>/<canvas_id>/blocks/<block_id>/reorder")
@require_api_permission("canvases.edit")
@json_action
def item_reorder(kind_key: str, canvas_id: str, block_id: str):
    s = db_session()
    data = service.reorder_block(s, get_kind(kind_key), canvas_id, block_id, _payload(), user=_current_user())
    s.commit()
    return data


# ---------- Value-proposition fit ----------
@bp.get("/value-propositions/<vpc_id>/fit")
@require_api_permission("canvases.view")
@json_action
def fit_detail(vpc_id: str):
    return service.get_fit(db_session(), vpc_id)


@bp.post("/value-propositions/<vpc_id>/fit/toggle")
@require_api_permission("canvases.edit")
@json_action
def fit_toggle(vpc_id: str):
    s = db_session()
    data = service.toggle_addressed(s, vpc_id, _payload(), user=_current_user())
    s.commit()
    return data


@bp.post("/value-propositions/<vpc_id>/fit/recalculate")
@require_api_permission("canvases.edit")
@json_action
def fit_recalculate(vpc_id: str):
    s = db_session()
    data = service.recalculate_fit(s, vpc_id, _payload(), user=_current_user())
    s.commit()
    return data
