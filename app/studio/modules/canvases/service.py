"""
Canvas service layer.

Block writes are optimistic: a block is read together with the row's
``updated_at`` and written back with ``UPDATE ... WHERE id = ? AND updated_at = ?``.
Zero affected rows means someone else wrote first and the caller gets a conflict.
Nothing here retries; the caller refreshes and tries again.

Block reads and writes go through Core ``select``/``update`` statements rather than
loaded ORM instances so the identity map never hands back a stale block.
"""
from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import or_, select, update

from app.studio import constants as C
from app.studio.audit import record_event
from app.studio.models import User
from app.studio.modules.canvases import fit
from app.studio.modules.canvases.blocks import (
    CUSTOMER_PROFILES,
    VALUE_MAPS,
    VALUE_PROPOSITIONS,
    CanvasKind,
    build_item,
    count_items,
    empty_block,
    normalize_block,
    reorder_items,
    updated_item,
)
from app.studio.modules.canvases.models import CustomerProfile, ValueMap, ValuePropositionCanvas
from app.studio.results import conflict, not_found, validation_error
from app.studio.utils import next_version, parse_timestamp, slugify, to_iso, utcnow
from app.studio.validation import clean_text, validate_choice, validate_id

SLUG_RE = re.compile(r"^[a-z0-9-]+$")
SLUG_MAX_LENGTH = 128
TAG_MAX_LENGTH = 50

ADDRESSED_COLUMNS = {"jobs": "addressed_jobs", "pains": "addressed_pains", "gains": "addressed_gains"}


# ---------- Optimistic locking ----------
def resolve_expected(payload: dict[str, Any] | None, current: datetime) -> datetime:
    """The compare-and-swap predicate: the client's ``expected_updated_at`` if sent, else what we just read."""
    raw = (payload or {}).get("expected_updated_at")
    if raw in (None, ""):
        return current
    try:
        expected = parse_timestamp(raw)
    except (TypeError, ValueError):
        raise validation_error("expected_updated_at must be an ISO-8601 timestamp") from None
    return expected or current


def compare_and_swap(s, model: type, row_id: str, values: dict, *, expected: datetime, user: User) -> datetime:
    """Write ``values`` only if the row still carries ``expected``. Returns the new updated_at."""
    new_version = next_version(expected)
    result = s.execute(
        update(model)
        .where(model.id == row_id, model.updated_at == expected)
        .values({**values, "updated_at": new_version, "updated_by_user_id": user.id})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise conflict()
    return new_version


def _read_columns(s, kind: CanvasKind, canvas_id: str, *columns):
    model = kind.model
    row = s.execute(select(model.updated_at, *columns).where(model.id == canvas_id)).one_or_none()
    if row is None:
        raise not_found(f"{kind.label} not found")
    return row


def read_block(s, kind: CanvasKind, canvas_id: str, block_id: str) -> tuple[dict, datetime]:
    spec = kind.block(block_id)
    row = _read_columns(s, kind, canvas_id, getattr(kind.model, block_id))
    return normalize_block(row[1], spec), row[0]


def write_block(
    s,
    kind: CanvasKind,
    canvas_id: str,
    block_id: str,
    block: dict,
    *,
    expected: datetime,
    user: User,
) -> datetime:
    return compare_and_swap(s, kind.model, canvas_id, {block_id: block}, expected=expected, user=user)


def _audit_block(s, kind: CanvasKind, canvas_id: str, action: str, *, user: User, metadata: dict) -> None:
    record_event(
        s,
        actor=user,
        action=f"canvas.{action}",
        entity_type=kind.entity_type,
        entity_id=canvas_id,
        metadata=metadata,
    )


# ---------- Item operations ----------
def add_item(s, kind: CanvasKind, canvas_id: str, block_id: str, payload: dict[str, Any], *, user: User) -> dict:
    spec = kind.block(block_id)
    block, current = read_block(s, kind, canvas_id, block_id)
    expected = resolve_expected(payload, current)

    item = build_item(spec, payload, {i["id"] for i in block["items"]})
    block["items"] = [*block["items"], item]

    version = write_block(s, kind, canvas_id, block_id, block, expected=expected, user=user)
    _audit_block(s, kind, canvas_id, "item_add", user=user, metadata={"block": block_id, "item_id": item["id"]})
    return {"item": item, "updated_at": to_iso(version)}


def bulk_add_items(s, kind: CanvasKind, canvas_id: str, block_id: str, payload: dict[str, Any], *, user: User) -> dict:
    spec = kind.block(block_id)
    entries = payload.get("items")
    if not isinstance(entries, list) or not entries:
        raise validation_error("items must be a non-empty list")
    if not all(isinstance(e, dict) for e in entries):
        raise validation_error("Each item must be an object")

    block, current = read_block(s, kind, canvas_id, block_id)
    expected = resolve_expected(payload, current)

    # Validate everything before writing anything.
    existing_ids = {i["id"] for i in block["items"]}
    now = utcnow()
    new_items: list[dict] = []
    for entry in entries:
        item = build_item(spec, entry, existing_ids, now=now)
        existing_ids.add(item["id"])
        new_items.append(item)
    block["items"] = [*block["items"], *new_items]

    version = write_block(s, kind, canvas_id, block_id, block, expected=expected, user=user)
    _audit_block(s, kind, canvas_id, "item_bulk_add", user=user, metadata={"block": block_id, "count": len(new_items)})
    return {"items": new_items, "count": len(new_items), "updated_at": to_iso(version)}


def _find_item(block: dict, item_id: str) -> int:
    for idx, item in enumerate(block["items"]):
        if item["id"] == item_id:
            return idx
    raise not_found("Item not found")


def update_item(
    s, kind: CanvasKind, canvas_id: str, block_id: str, item_id: str, payload: dict[str, Any], *, user: User
) -> dict:
    spec = kind.block(block_id)
    block, current = read_block(s, kind, canvas_id, block_id)
    expected = resolve_expected(payload, current)

    idx = _find_item(block, item_id)
    before = block["items"][idx]
    after = updated_item(spec, before, payload)
    items = list(block["items"])
    items[idx] = after
    block["items"] = items

    version = write_block(s, kind, canvas_id, block_id, block, expected=expected, user=user)
    fields_changed = sorted(k for k in set(before) | set(after) if before.get(k) != after.get(k))
    _audit_block(
        s,
        kind,
        canvas_id,
        "item_update",
        user=user,
        metadata={"block": block_id, "item_id": item_id, "fields_changed": fields_changed},
    )
    return {"item": after, "updated_at": to_iso(version)}


def delete_item(
    s, kind: CanvasKind, canvas_id: str, block_id: str, item_id: str, payload: dict[str, Any] | None, *, user: User
) -> dict:
    kind.block(block_id)
    block, current = read_block(s, kind, canvas_id, block_id)
    expected = resolve_expected(payload, current)

    idx = _find_item(block, item_id)
    block["items"] = block["items"][:idx] + block["items"][idx + 1 :]

    version = write_block(s, kind, canvas_id, block_id, block, expected=expected, user=user)
    _audit_block(s, kind, canvas_id, "item_delete", user=user, metadata={"block": block_id, "item_id": item_id})
    return {"deleted": item_id, "updated_at": to_iso(version)}


def reorder_block(s, kind: CanvasKind, canvas_id: str, block_id: str, payload: dict[str, Any], *, user: User) -> dict:
    kind.block(block_id)
    ordered_ids = payload.get("item_ids")
    if not isinstance(ordered_ids, list) or not all(isinstance(i, str) for i in ordered_ids):
        raise validation_error("item_ids must be a list of item IDs")

    block, current = read_block(s, kind, canvas_id, block_id)
    expected = resolve_expected(payload, current)
    block["items"] = reorder_items(block["items"], ordered_ids)

    version = write_block(s, kind, canvas_id, block_id, block, expected=expected, user=user)
    _audit_block(s, kind, canvas_id, "item_reorder", user=user, metadata={"block": block_id, "count": len(ordered_ids)})
    return {"items": block["items"], "updated_at": to_iso(version)}


# ---------- Canvas CRUD ----------
def canvas_to_dict(canvas, kind: CanvasKind) -> dict:
    data: dict[str, Any] = {
        "id": canvas.id,
        "slug": canvas.slug,
        "name": canvas.name,
        "description": canvas.description,
        "status": canvas.status,
        "tags": canvas.tags or [],
        "metadata": canvas.metadata_json or {},
        "created_at": to_iso(canvas.created_at),
        "updated_at": to_iso(canvas.updated_at),
        "created_by_user_id": canvas.created_by_user_id,
        "updated_by_user_id": canvas.updated_by_user_id,
    }
    for key, spec in kind.blocks.items():
        data[key] = normalize_block(getattr(canvas, key), spec)
    if kind is CUSTOMER_PROFILES:
        data["profile_type"] = canvas.profile_type
    if kind is VALUE_PROPOSITIONS:
        data["value_map_id"] = canvas.value_map_id
        data["customer_profile_id"] = canvas.customer_profile_id
        data["fit_score"] = canvas.fit_score
        data["fit_analysis"] = canvas.fit_analysis or {}
        for link_type, column in ADDRESSED_COLUMNS.items():
            data[column] = fit.normalize_addressed(getattr(canvas, column))
    return data


def canvas_summary(canvas, kind: CanvasKind) -> dict:
    data = {
        "id": canvas.id,
        "slug": canvas.slug,
        "name": canvas.name,
        "description": canvas.description,
        "status": canvas.status,
        "tags": canvas.tags or [],
        "updated_at": to_iso(canvas.updated_at),
    }
    if kind.blocks:
        data["item_count"] = count_items(canvas, kind)
    if kind is VALUE_PROPOSITIONS:
        data["fit_score"] = canvas.fit_score
    return data


def list_canvases(s, kind: CanvasKind, *, status: str | None = None, q: str | None = None) -> list[dict]:
    model = kind.model
    query = s.query(model)
    if status:
        validate_choice(status, C.CANVAS_STATUSES, label="status")
        query = query.filter(model.status == status)
    if q:
        like = f"%{q}%"
        query = query.filter(or_(model.name.ilike(like), model.slug.ilike(like), model.description.ilike(like)))
    rows = query.order_by(model.updated_at.desc(), model.name.asc()).all()
    return [canvas_summary(c, kind) for c in rows]


def get_canvas(s, kind: CanvasKind, canvas_id: str):
    canvas = s.get(kind.model, canvas_id, populate_existing=True)
    if canvas is None:
        raise not_found(f"{kind.label} not found")
    return canvas


def _clean_slug(raw: object, *, fallback_name: str) -> str:
    if raw is not None and not isinstance(raw, str):
        raise validation_error("Slug must be a string")
    slug = (raw or "").strip() or slugify(fallback_name)
    if not slug:
        raise validation_error("Slug is required")
    if len(slug) > SLUG_MAX_LENGTH:
        raise validation_error(f"Slug must be {SLUG_MAX_LENGTH} characters or less")
    if not SLUG_RE.match(slug):
        raise validation_error("Slug may only contain lowercase letters, numbers and hyphens")
    return slug


def _clean_tags(raw: object) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise validation_error("Tags must be a list")
    tags: list[str] = []
    for tag in raw:
        cleaned = clean_text(tag, label="Tag", max_length=TAG_MAX_LENGTH)
        if cleaned and cleaned not in tags:
            tags.append(cleaned)
    return tags


def _clean_metadata(raw: object) -> dict:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise validation_error("Metadata must be an object")
    return raw


def _ensure_slug_available(s, kind: CanvasKind, slug: str, *, exclude_id: str | None = None) -> None:
    model = kind.model
    query = s.query(model.id).filter(model.slug == slug)
    if exclude_id:
        query = query.filter(model.id != exclude_id)
    if query.first() is not None:
        raise validation_error(f"Slug already exists: {slug}")


def create_canvas(s, kind: CanvasKind, payload: dict[str, Any], *, user: User):
    name: str = clean_text(payload.get("name"), label="Name", max_length=C.NAME_MAX_LENGTH, required=True)  # type: ignore[assignment]
    description = clean_text(payload.get("description"), label="Description", max_length=C.DESCRIPTION_MAX_LENGTH)
    status = validate_choice(payload.get("status"), C.CANVAS_STATUSES, label="status") or "draft"
    slug = _clean_slug(payload.get("slug"), fallback_name=name)
    _ensure_slug_available(s, kind, slug)

    now = utcnow()
    fields: dict[str, Any] = {
        "id": str(uuid.uuid4()),
        "slug": slug,
        "name": name,
        "description": description,
        "status": status,
        "tags": _clean_tags(payload.get("tags")),
        "metadata_json": _clean_metadata(payload.get("metadata")),
        "created_at": now,
        "updated_at": now,
        "created_by_user_id": user.id,
        "updated_by_user_id": user.id,
    }
    for key, spec in kind.blocks.items():
        fields[key] = empty_block(spec)

    if kind is CUSTOMER_PROFILES:
        fields["profile_type"] = validate_choice(payload.get("profile_type"), C.PROFILE_TYPES, label="profile_type")
    if kind is VALUE_PROPOSITIONS:
        fields.update(_vpc_links(s, payload))
        empty = {t: {"items": [], "coverage": None} for t in ADDRESSED_COLUMNS}
        fields.update(_fit_fields(s.get(CustomerProfile, fields["customer_profile_id"]), empty))

    canvas = kind.model(**fields)
    s.add(canvas)
    s.flush()

    record_event(
        s,
        actor=user,
        action="canvas.create",
        entity_type=kind.entity_type,
        entity_id=canvas.id,
        metadata={"slug": slug, "name": name},
    )
    return canvas


def _vpc_links(s, payload: dict[str, Any]) -> dict:
    value_map_id = validate_id(payload.get("value_map_id"), label="value_map_id")
    customer_profile_id = validate_id(payload.get("customer_profile_id"), label="customer_profile_id")
    if s.get(ValueMap, value_map_id) is None:
        raise validation_error("Value map not found")
    if s.get(CustomerProfile, customer_profile_id) is None:
        raise validation_error("Customer profile not found")
    return {"value_map_id": value_map_id, "customer_profile_id": customer_profile_id}


def update_canvas(s, kind: CanvasKind, canvas_id: str, payload: dict[str, Any], *, user: User):
    model = kind.model
    current = get_canvas(s, kind, canvas_id)
    expected = resolve_expected(payload, current.updated_at)

    values: dict = {}
    changed: list[str] = []
    if "name" in payload:
        values["name"] = clean_text(payload.get("name"), label="Name", max_length=C.NAME_MAX_LENGTH, required=True)
        changed.append("name")
    if "description" in payload:
        values["description"] = clean_text(
            payload.get("description"), label="Description", max_length=C.DESCRIPTION_MAX_LENGTH
        )
        changed.append("description")
    if "status" in payload:
        status = validate_choice(payload.get("status"), C.CANVAS_STATUSES, label="status")
        if status is None:
            raise validation_error("status is required")
        values["status"] = status
        changed.append("status")
    if "slug" in payload:
        slug = _clean_slug(payload.get("slug"), fallback_name=current.name)
        _ensure_slug_available(s, kind, slug, exclude_id=canvas_id)
        values["slug"] = slug
        changed.append("slug")
    if "tags" in payload:
        values["tags"] = _clean_tags(payload.get("tags"))
        changed.append("tags")
    if "metadata" in payload:
        values["metadata_json"] = _clean_metadata(payload.get("metadata"))
        changed.append("metadata")
    if kind is CUSTOMER_PROFILES and "profile_type" in payload:
        values["profile_type"] = validate_choice(
            payload.get("profile_type"), C.PROFILE_TYPES, label="profile_type"
        )
        changed.append("profile_type")
    if not values:
        raise validation_error("No updatable fields supplied")

    compare_and_swap(s, model, canvas_id, values, expected=expected, user=user)
    record_event(
        s,
        actor=user,
        action="canvas.update",
        entity_type=kind.entity_type,
        entity_id=canvas_id,
        metadata={"fields_changed": changed},
    )
    return get_canvas(s, kind, canvas_id)


def delete_canvas(s, kind: CanvasKind, canvas_id: str, *, user: User) -> None:
    canvas = get_canvas(s, kind, canvas_id)
    slug = canvas.slug
    s.delete(canvas)
    record_event(
        s,
        actor=user,
        action="canvas.delete",
        entity_type=kind.entity_type,
        entity_id=canvas_id,
        metadata={"slug": slug},
    )


# ---------- Value-proposition fit ----------
def _profile_blocks(profile: CustomerProfile | None) -> dict[str, dict]:
    if profile is None:
        raise not_found("Customer profile not found")
    return {key: normalize_block(getattr(profile, key), spec) for key, spec in CUSTOMER_PROFILES.blocks.items()}


def _value_map_blocks(value_map: ValueMap | None) -> dict[str, dict]:
    if value_map is None:
        return {}
    return {key: normalize_block(getattr(value_map, key), spec) for key, spec in VALUE_MAPS.blocks.items()}


def _fit_fields(profile: CustomerProfile | None, addressed: dict[str, dict]) -> dict:
    profile_blocks = _profile_blocks(profile)
    analysis = fit.fit_analysis(profile_blocks, addressed)
    values = {
        "fit_score": analysis["overall_score"] / 100,
        "fit_analysis": analysis,
    }
    for link_type, column in ADDRESSED_COLUMNS.items():
        block = addressed[link_type]
        profile_ids = {i["id"] for i in profile_blocks[link_type]["items"]}
        hit = len(profile_ids & set(block["items"]))
        values[column] = {**block, "coverage": fit.coverage_percent(hit, len(profile_ids))}
    return values


def _load_vpc(s, vpc_id: str) -> ValuePropositionCanvas:
    return get_canvas(s, VALUE_PROPOSITIONS, vpc_id)


def _addressed(vpc: ValuePropositionCanvas) -> dict[str, dict]:
    return {link_type: fit.normalize_addressed(getattr(vpc, column)) for link_type, column in ADDRESSED_COLUMNS.items()}


def _write_fit(s, vpc_id: str, values: dict, *, expected: datetime, user: User) -> datetime:
    return compare_and_swap(s, ValuePropositionCanvas, vpc_id, values, expected=expected, user=user)


def toggle_addressed(s, vpc_id: str, payload: dict[str, Any], *, user: User) -> dict:
    link_type = validate_choice(payload.get("link_type"), C.FIT_LINK_TYPES, label="link_type")
    if link_type is None:
        raise validation_error("link_type is required")
    item_id = validate_id(payload.get("item_id"), label="item_id")

    vpc = _load_vpc(s, vpc_id)
    expected = resolve_expected(payload, vpc.updated_at)
    profile_blocks = _profile_blocks(vpc.customer_profile)
    if not any(item["id"] == item_id for item in profile_blocks[link_type]["items"]):
        raise validation_error(f"{link_type} item not found in customer profile")

    addressed = _addressed(vpc)
    addressed[link_type] = fit.toggle_addressed(addressed[link_type], item_id)
    now_addressed = item_id in addressed[link_type]["items"]

    values = _fit_fields(vpc.customer_profile, addressed)
    version = _write_fit(s, vpc_id, values, expected=expected, user=user)
    record_event(
        s,
        actor=user,
        action="canvas.fit_toggle",
        entity_type=VALUE_PROPOSITIONS.entity_type,
        entity_id=vpc_id,
        metadata={"link_type": link_type, "item_id": item_id, "addressed": now_addressed},
    )
    return {
        "addressed": now_addressed,
        "fit_score": values["fit_score"],
        "fit_analysis": values["fit_analysis"],
        "updated_at": to_iso(version),
    }


def recalculate_fit(s, vpc_id: str, payload: dict[str, Any] | None, *, user: User) -> dict:
    vpc = _load_vpc(s, vpc_id)
    expected = resolve_expected(payload, vpc.updated_at)
    values = _fit_fields(vpc.customer_profile, _addressed(vpc))
    version = _write_fit(s, vpc_id, values, expected=expected, user=user)
    record_event(
        s,
        actor=user,
        action="canvas.fit_recalculate",
        entity_type=VALUE_PROPOSITIONS.entity_type,
        entity_id=vpc_id,
        metadata={"fit_score": values["fit_score"]},
    )
    return {"fit_score": values["fit_score"], "fit_analysis": values["fit_analysis"], "updated_at": to_iso(version)}


def get_fit(s, vpc_id: str) -> dict:
    """Compute the analysis from current data without writing anything."""
    vpc = _load_vpc(s, vpc_id)
    profile_blocks = _profile_blocks(vpc.customer_profile)
    addressed = _addressed(vpc)
    return {
        "analysis": fit.fit_analysis(profile_blocks, addressed),
        "stats": fit.fit_stats(profile_blocks, _value_map_blocks(vpc.value_map), addressed),
        "stored_fit_score": vpc.fit_score,
        "updated_at": to_iso(vpc.updated_at),
    }
