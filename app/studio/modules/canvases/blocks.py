"""
Canvas kinds and their JSON blocks.

A block is ``{"items": [...], ...}`` stored in one JSON column of a canvas row.
Each canvas kind declares which columns are blocks and which optional enum /
link / evidence fields its items may carry. Everything read from the database
goes through :func:`normalize_block` so malformed rows never reach the caller.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from app.studio import constants as C
from app.studio.modules.canvases.models import BusinessModelCanvas, CustomerProfile, ValueMap, ValuePropositionCanvas
from app.studio.results import not_found, validation_error
from app.studio.utils import parse_timestamp, to_iso, utcnow
from app.studio.validation import validate_choice, validate_evidence, validate_item_content

logger = logging.getLogger(__name__)

ID_COLLISION_RETRIES = 3


@dataclass(frozen=True)
class BlockSpec:
    key: str
    label: str
    choice_fields: dict[str, tuple[str, ...]] = field(default_factory=dict)
    link_field: str | None = None
    allows_evidence: bool = False
    tracks_validation: bool = False


@dataclass(frozen=True)
class CanvasKind:
    key: str  # URL segment, e.g. "value-maps"
    label: str
    entity_type: str  # audit entity_type
    model: type
    blocks: dict[str, BlockSpec] = field(default_factory=dict)

    def block(self, block_id: str) -> BlockSpec:
        spec = self.blocks.get(block_id)
        if spec is None:
            raise validation_error(f"Invalid block ID: {block_id}")
        return spec


def _bmc_block(key: str, label: str) -> BlockSpec:
    return BlockSpec(key=key, label=label, choice_fields={"priority": C.PRIORITIES}, tracks_validation=True)


BUSINESS_MODELS = CanvasKind(
    key="business-models",
    label="Business Model Canvas",
    entity_type="BusinessModelCanvas",
    model=BusinessModelCanvas,
    blocks={
        spec.key: spec
        for spec in (
            _bmc_block("key_partners", "Key Partners"),
            _bmc_block("key_activities", "Key Activities"),
            _bmc_block("key_resources", "Key Resources"),
            _bmc_block("value_propositions", "Value Propositions"),
            _bmc_block("customer_relationships", "Customer Relationships"),
            _bmc_block("channels", "Channels"),
            _bmc_block("customer_segments", "Customer Segments"),
            _bmc_block("cost_structure", "Cost Structure"),
            _bmc_block("revenue_streams", "Revenue Streams"),
        )
    },
)

CUSTOMER_PROFILES = CanvasKind(
    key="customer-profiles",
    label="Customer Profile",
    entity_type="CustomerProfile",
    model=CustomerProfile,
    blocks={
        "jobs": BlockSpec(
            key="jobs",
            label="Customer Jobs",
            choice_fields={"type": C.JOB_TYPES, "importance": C.IMPORTANCE_LEVELS},
            allows_evidence=True,
        ),
        "pains": BlockSpec(key="pains", label="Pains", choice_fields={"severity": C.SEVERITY_LEVELS}, allows_evidence=True),
        "gains": BlockSpec(key="gains", label="Gains", choice_fields={"importance": C.IMPORTANCE_LEVELS}, allows_evidence=True),
    },
)

VALUE_MAPS = CanvasKind(
    key="value-maps",
    label="Value Map",
    entity_type="ValueMap",
    model=ValueMap,
    blocks={
        "products_services": BlockSpec(
            key="products_services",
            label="Products & Services",
            choice_fields={"type": C.PRODUCT_TYPES},
            allows_evidence=True,
        ),
        "pain_relievers": BlockSpec(
            key="pain_relievers",
            label="Pain Relievers",
            choice_fields={"effectiveness": C.EFFECTIVENESS_LEVELS},
            link_field="linked_pain_id",
            allows_evidence=True,
        ),
        "gain_creators": BlockSpec(
            key="gain_creators",
            label="Gain Creators",
            choice_fields={"effectiveness": C.EFFECTIVENESS_LEVELS},
            link_field="linked_gain_id",
            allows_evidence=True,
        ),
    },
)

VALUE_PROPOSITIONS = CanvasKind(
    key="value-propositions",
    label="Value Proposition Canvas",
    entity_type="ValuePropositionCanvas",
    model=ValuePropositionCanvas,
)

CANVAS_KINDS: dict[str, CanvasKind] = {
    k.key: k for k in (BUSINESS_MODELS, CUSTOMER_PROFILES, VALUE_MAPS, VALUE_PROPOSITIONS)
}


def get_kind(key: str) -> CanvasKind:
    kind = CANVAS_KINDS.get(key)
    if kind is None:
        raise not_found(f"Unknown canvas type: {key}")
    return kind


# ---------- Normalization ----------
def _is_valid_created_at(value: object) -> bool:
    if not isinstance(value, str):
        return False
    try:
        parse_timestamp(value)
    except ValueError:
        return False
    return True


def normalize_item(raw: object, spec: BlockSpec) -> dict | None:
    if not isinstance(raw, dict):
        return None
    item_id = raw.get("id")
    content = raw.get("content")
    if not isinstance(item_id, str) or not item_id or not isinstance(content, str):
        return None
    if not _is_valid_created_at(raw.get("created_at")):
        return None
    for name, choices in spec.choice_fields.items():
        value = raw.get(name)
        if value is not None and value not in choices:
            return None
    return dict(raw)


def empty_block(spec: BlockSpec) -> dict:
    block: dict = {"items": []}
    if spec.tracks_validation:
        block["validation_status"] = "untested"
    return block


def normalize_block(raw: object, spec: BlockSpec) -> dict:
    """Return a well-formed copy of a stored block; invalid items are dropped with a warning."""
    if not isinstance(raw, dict):
        return empty_block(spec)

    block = {k: v for k, v in raw.items() if k != "items"}
    items: list[dict] = []
    seen: set[str] = set()
    for entry in raw.get("items") or []:
        item = normalize_item(entry, spec)
        if item is None:
            logger.warning("Skipping invalid item in block %s: %r", spec.key, entry)
            continue
        if item["id"] in seen:
            logger.warning("Skipping duplicate item id %s in block %s", item["id"], spec.key)
            continue
        seen.add(item["id"])
        items.append(item)
    block["items"] = items

    if spec.tracks_validation:
        if block.get("validation_status") not in C.VALIDATION_STATUSES:
            block["validation_status"] = "untested"
    return block


# ---------- Items ----------
def new_item_id(existing_ids: set[str]) -> str:
    item_id = str(uuid.uuid4())
    retries = 0
    while item_id in existing_ids and retries < ID_COLLISION_RETRIES:
        logger.warning("Item id collision, retrying (attempt %s)", retries + 1)
        item_id = str(uuid.uuid4())
        retries += 1
    if item_id in existing_ids:
        logger.error("Item id collision persisted after %s retries; appending timestamp", ID_COLLISION_RETRIES)
        item_id = f"{uuid.uuid4()}-{int(utcnow().timestamp() * 1000)}"
    return item_id


def _item_fields(spec: BlockSpec, payload: dict) -> dict:
    """Validated optional fields for an item of this block (None means "unset")."""
    fields: dict[str, object] = {}
    for name, choices in spec.choice_fields.items():
        fields[name] = validate_choice(payload.get(name), choices, label=name)
    if spec.allows_evidence:
        fields["evidence"] = validate_evidence(payload.get("evidence"))
    if spec.link_field:
        link = payload.get(spec.link_field)
        if link is not None and not isinstance(link, str):
            raise validation_error(f"{spec.link_field} must be a string")
        fields[spec.link_field] = link or None
    return fields


def build_item(spec: BlockSpec, payload: dict, existing_ids: set[str], *, now: datetime | None = None) -> dict:
    content = validate_item_content(payload.get("content"))
    item: dict = {"id": new_item_id(existing_ids), "content": content}
    for name, value in _item_fields(spec, payload).items():
        if value is not None:
            item[name] = value
    item["created_at"] = to_iso(now or utcnow())
    return item


def updated_item(spec: BlockSpec, existing: dict, payload: dict) -> dict:
    """Replace content and the optional fields; id, created_at and metadata are kept."""
    content = validate_item_content(payload.get("content"))
    item = dict(existing)
    item["content"] = content
    for name, value in _item_fields(spec, payload).items():
        if value is None:
            item.pop(name, None)
        else:
            item[name] = value
    return item


def reorder_items(items: list[dict], ordered_ids: Iterable[str]) -> list[dict]:
    """Listed ids first, in the given order; unknown ids ignored; the rest keep their order."""
    by_id = {item["id"]: item for item in items}
    result: list[dict] = []
    for item_id in ordered_ids:
        item = by_id.pop(item_id, None)
        if item is not None:
            result.append(item)
    result.extend(item for item in items if item["id"] in by_id)
    return result


def count_items(canvas: object, kind: CanvasKind) -> int:
    return sum(len(normalize_block(getattr(canvas, key), spec)["items"]) for key, spec in kind.blocks.items())
