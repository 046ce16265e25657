"""
Data API service.

Generic CRUD over the allow-listed tables in :mod:`tables`. Payloads are
validated with the table's pydantic schemas; reads go straight to Core
``select`` over the table so column names (not ORM attribute names) are what the
caller sees.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from flask import current_app
from pydantic import BaseModel, ValidationError
from sqlalchemy import delete, func, select

from app.studio.audit import record_event
from app.studio.models import User
from app.studio.modules.canvases.service import compare_and_swap, resolve_expected
from app.studio.modules.data_api.schemas import QueryParams
from app.studio.modules.data_api.tables import TABLES, TableDefinition
from app.studio.results import not_found, validation_error
from app.studio.utils import to_iso, utcnow


def format_validation_errors(exc: ValidationError) -> list[str]:
    return [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]


def _validate(schema: type[BaseModel], payload: Any) -> BaseModel:
    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        details = format_validation_errors(e)
        raise validation_error("Validation failed: " + "; ".join(details), details=details) from None


def _serialize(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_iso(value)
    return value


def _row_to_dict(row) -> dict[str, Any]:
    return {key: _serialize(value) for key, value in row.items()}


# ---------- Reads ----------
def list_tables() -> list[dict[str, Any]]:
    result = []
    for definition in TABLES.values():
        fields = definition.create_schema.model_fields
        columns = [
            {
                "name": col.name,
                "type": str(col.type),
                "required": col.name in fields and fields[col.name].is_required(),
            }
            for col in definition.table.columns
        ]
        result.append(
            {
                "name": definition.name,
                "description": definition.description,
                "has_slug": definition.has_slug,
                "columns": columns,
            }
        )
    return result


def _selected_columns(definition: TableDefinition, select_expr: str) -> list:
    select_expr = (select_expr or "*").strip()
    if select_expr == "*":
        return list(definition.table.columns)
    names = [n.strip() for n in select_expr.split(",") if n.strip()]
    if not names:
        raise validation_error("select must be '*' or a comma-separated list of columns")
    return [definition.column(n) for n in names]


def query_rows(s, definition: TableDefinition, payload: dict[str, Any]) -> dict[str, Any]:
    params: QueryParams = _validate(QueryParams, payload)  # type: ignore[assignment]

    conditions = []
    for name, value in params.filter.items():
        col = definition.column(name)
        conditions.append(col.is_(None) if value is None else col == value)
    for name, values in params.filter_in.items():
        conditions.append(definition.column(name).in_(values))
    for name, pattern in params.filter_like.items():
        conditions.append(definition.column(name).ilike(pattern))

    stmt = select(*_selected_columns(definition, params.select)).where(*conditions)
    if params.order_by is not None:
        col = definition.column(params.order_by.column)
        stmt = stmt.order_by(col.asc() if params.order_by.ascending else col.desc())

    max_limit = int(current_app.config.get("DATA_API_MAX_LIMIT") or 1000)
    limit = min(params.limit, max_limit)
    stmt = stmt.limit(limit).offset(params.offset)

    total = s.execute(select(func.count()).select_from(definition.table).where(*conditions)).scalar_one()
    rows = [_row_to_dict(r) for r in s.execute(stmt).mappings()]
    return {"rows": rows, "count": total, "limit": limit, "offset": params.offset}


def get_row(s, definition: TableDefinition, *, record_id: str | None = None, slug: str | None = None) -> dict[str, Any]:
    if not record_id and not slug:
        raise validation_error("Must provide either id or slug")
    table = definition.table
    if record_id:
        where = table.c.id == record_id
    else:
        if not definition.has_slug:
            raise validation_error(f"Table {definition.name} does not have a slug field")
        where = table.c.slug == slug
    row = s.execute(select(table).where(where)).mappings().one_or_none()
    if row is None:
        raise not_found("Record not found")
    return _row_to_dict(row)


# ---------- Writes ----------
def _check_not_null(definition: TableDefinition, data: dict[str, Any]) -> None:
    errors = [f"{name}: may not be null" for name, value in data.items() if value is None and not definition.column(name).nullable]
    if errors:
        raise validation_error("Validation failed: " + "; ".join(errors), details=errors)


def _check_slug_free(s, definition: TableDefinition, slug: str, *, exclude_id: str | None = None) -> None:
    table = definition.table
    stmt = select(table.c.id).where(table.c.slug == slug)
    if exclude_id:
        stmt = stmt.where(table.c.id != exclude_id)
    if s.execute(stmt).first() is not None:
        raise validation_error(f"Slug already exists: {slug}")


def _check_references(s, definition: TableDefinition, data: dict[str, Any]) -> None:
    """Foreign keys set by the caller must point at existing rows."""
    for fk in definition.table.foreign_keys:
        name = fk.parent.name
        value = data.get(name)
        if value is None:
            continue
        target = fk.column
        if s.execute(select(target).where(target == value)).first() is None:
            raise validation_error(f"{name}: referenced {target.table.name} row not found")


def create_row(s, definition: TableDefinition, payload: Any, *, user: User) -> dict[str, Any]:
    obj = _validate(definition.create_schema, payload)
    # Unset blocks fall back to the column defaults.
    data = {k: v for k, v in obj.model_dump().items() if v is not None or definition.column(k).nullable}
    if definition.has_slug:
        _check_slug_free(s, definition, data["slug"])
    _check_references(s, definition, data)

    now = utcnow()
    attrs = {definition.attribute(name): value for name, value in data.items()}
    attrs.update(
        id=str(uuid.uuid4()),
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
        updated_by_user_id=user.id,
    )
    row = definition.model(**attrs)
    s.add(row)
    s.flush()

    record_event(
        s,
        actor=user,
        action="data.create",
        entity_type=definition.name,
        entity_id=row.id,
        metadata={"fields": sorted(data)},
    )
    return get_row(s, definition, record_id=row.id)


def update_row(s, definition: TableDefinition, record_id: str, payload: Any, *, user: User) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise validation_error("Request body must be a JSON object")
    payload = dict(payload)
    expected_raw = payload.pop("expected_updated_at", None)

    obj = _validate(definition.update_schema, payload)
    data = obj.model_dump(exclude_unset=True)
    if not data:
        raise validation_error("No fields to update")
    _check_not_null(definition, data)

    table = definition.table
    current = s.execute(select(table.c.updated_at).where(table.c.id == record_id)).scalar_one_or_none()
    if current is None:
        raise not_found("Record not found")
    expected = resolve_expected({"expected_updated_at": expected_raw}, current)

    if definition.has_slug and data.get("slug"):
        _check_slug_free(s, definition, data["slug"], exclude_id=record_id)
    _check_references(s, definition, data)

    values = {definition.attribute(name): value for name, value in data.items()}
    compare_and_swap(s, definition.model, record_id, values, expected=expected, user=user)
    record_event(
        s,
        actor=user,
        action="data.update",
        entity_type=definition.name,
        entity_id=record_id,
        metadata={"fields_changed": sorted(data)},
    )
    return get_row(s, definition, record_id=record_id)


def delete_row(s, definition: TableDefinition, record_id: str, *, user: User) -> dict[str, Any]:
    table = definition.table
    result = s.execute(delete(table).where(table.c.id == record_id))
    if result.rowcount == 0:
        raise not_found("Record not found")
    record_event(
        s,
        actor=user,
        action="data.delete",
        entity_type=definition.name,
        entity_id=record_id,
    )
    return {"deleted": record_id}
