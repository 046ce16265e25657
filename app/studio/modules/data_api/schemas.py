"""
Row schemas for the data API.

One create schema and one update schema per allow-listed table. Update schemas
make every field optional; the service dumps them with ``exclude_unset`` so only
the fields the caller sent are written.
"""
from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializerFunctionWrapHandler,
    field_validator,
    model_serializer,
    model_validator,
)

from app.studio import constants as C
from app.studio.utils import parse_timestamp
from app.studio.validation import unsafe_markup_reason

CanvasStatus = Literal["draft", "active", "validated", "archived"]
ProfileType = Literal["persona", "segment", "archetype", "icp"]
Priority = Literal["high", "medium", "low"]
ValidationStatus = Literal["untested", "testing", "validated", "invalidated"]
JobType = Literal["functional", "social", "emotional"]
Importance = Literal["nice_to_have", "important", "critical"]
Severity = Literal["low", "medium", "high", "extreme"]
ProductType = Literal["product", "service", "feature"]
Effectiveness = Literal["low", "medium", "high"]

SLUG_PATTERN = r"^[a-z0-9-]+$"


def _check_markup(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    reason = unsafe_markup_reason(value)
    if reason:
        raise ValueError(reason)
    return value


# ---------- Block items ----------
class Item(BaseModel):
    """A block item. Unknown keys pass through; enum fields are declared per block below."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    content: str = Field(min_length=1, max_length=C.CONTENT_MAX_LENGTH)
    created_at: str = Field(min_length=1)

    @field_validator("content")
    @classmethod
    def _content_safe(cls, v: str) -> str:
        return _check_markup(v)  # type: ignore[return-value]

    @field_validator("created_at")
    @classmethod
    def _created_at_parses(cls, v: str) -> str:
        try:
            parse_timestamp(v)
        except ValueError:
            raise ValueError("must be an ISO-8601 timestamp") from None
        return v


class EvidenceItem(Item):
    evidence: Optional[str] = Field(default=None, max_length=C.EVIDENCE_MAX_LENGTH)

    @field_validator("evidence")
    @classmethod
    def _evidence_safe(cls, v: Optional[str]) -> Optional[str]:
        return _check_markup(v)


class BusinessModelItem(Item):
    priority: Optional[Priority] = None


class JobItem(EvidenceItem):
    type: Optional[JobType] = None
    importance: Optional[Importance] = None


class PainItem(EvidenceItem):
    severity: Optional[Severity] = None


class GainItem(EvidenceItem):
    importance: Optional[Importance] = None


class ProductServiceItem(EvidenceItem):
    type: Optional[ProductType] = None


class PainRelieverItem(EvidenceItem):
    effectiveness: Optional[Effectiveness] = None
    linked_pain_id: Optional[str] = None


class GainCreatorItem(EvidenceItem):
    effectiveness: Optional[Effectiveness] = None
    linked_gain_id: Optional[str] = None


# ---------- Blocks ----------
class Block(BaseModel):
    model_config = ConfigDict(extra="allow")

    items: list[Item] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_item_ids(self) -> "Block":
        seen: set[str] = set()
        for item in self.items:
            if item.id in seen:
                raise ValueError(f"duplicate item id: {item.id}")
            seen.add(item.id)
        return self

    @model_serializer(mode="wrap")
    def _drop_unset(self, handler: SerializerFunctionWrapHandler) -> dict[str, Any]:
        # Unset optional fields are left out of the stored JSON rather than written as null.
        data = handler(self)
        if "items" in data:
            data["items"] = [{k: v for k, v in item.items() if v is not None} for item in data["items"]]
        return {k: v for k, v in data.items() if v is not None}


class BusinessModelBlock(Block):
    items: list[BusinessModelItem] = Field(default_factory=list)
    validation_status: Optional[ValidationStatus] = None


class JobsBlock(Block):
    items: list[JobItem] = Field(default_factory=list)


class PainsBlock(Block):
    items: list[PainItem] = Field(default_factory=list)


class GainsBlock(Block):
    items: list[GainItem] = Field(default_factory=list)


class ProductsServicesBlock(Block):
    items: list[ProductServiceItem] = Field(default_factory=list)


class PainRelieversBlock(Block):
    items: list[PainRelieverItem] = Field(default_factory=list)


class GainCreatorsBlock(Block):
    items: list[GainCreatorItem] = Field(default_factory=list)


class AddressedBlock(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: list[str] = Field(default_factory=list)
    coverage: Optional[int] = Field(default=None, ge=0, le=100)


# ---------- Shared canvas fields ----------
class CanvasCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    slug: str = Field(min_length=1, max_length=128, pattern=SLUG_PATTERN)
    name: str = Field(min_length=1, max_length=C.NAME_MAX_LENGTH)
    description: Optional[str] = Field(default=None, max_length=C.DESCRIPTION_MAX_LENGTH)
    status: CanvasStatus = "draft"
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name", "description")
    @classmethod
    def _text_safe(cls, v: Optional[str]) -> Optional[str]:
        return _check_markup(v)


class CanvasUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    slug: Optional[str] = Field(default=None, min_length=1, max_length=128, pattern=SLUG_PATTERN)
    name: Optional[str] = Field(default=None, min_length=1, max_length=C.NAME_MAX_LENGTH)
    description: Optional[str] = Field(default=None, max_length=C.DESCRIPTION_MAX_LENGTH)
    status: Optional[CanvasStatus] = None
    tags: Optional[list[str]] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("name", "description")
    @classmethod
    def _text_safe(cls, v: Optional[str]) -> Optional[str]:
        return _check_markup(v)


# ---------- Business model canvases ----------
class BusinessModelCanvasCreate(CanvasCreate):
    key_partners: Optional[BusinessModelBlock] = None
    key_activities: Optional[BusinessModelBlock] = None
    key_resources: Optional[BusinessModelBlock] = None
    value_propositions: Optional[BusinessModelBlock] = None
    customer_relationships: Optional[BusinessModelBlock] = None
    channels: Optional[BusinessModelBlock] = None
    customer_segments: Optional[BusinessModelBlock] = None
    cost_structure: Optional[BusinessModelBlock] = None
    revenue_streams: Optional[BusinessModelBlock] = None


class BusinessModelCanvasUpdate(CanvasUpdate):
    key_partners: Optional[BusinessModelBlock] = None
    key_activities: Optional[BusinessModelBlock] = None
    key_resources: Optional[BusinessModelBlock] = None
    value_propositions: Optional[BusinessModelBlock] = None
    customer_relationships: Optional[BusinessModelBlock] = None
    channels: Optional[BusinessModelBlock] = None
    customer_segments: Optional[BusinessModelBlock] = None
    cost_structure: Optional[BusinessModelBlock] = None
    revenue_streams: Optional[BusinessModelBlock] = None


# ---------- Customer profiles ----------
class CustomerProfileCreate(CanvasCreate):
    profile_type: Optional[ProfileType] = None
    jobs: Optional[JobsBlock] = None
    pains: Optional[PainsBlock] = None
    gains: Optional[GainsBlock] = None


class CustomerProfileUpdate(CanvasUpdate):
    profile_type: Optional[ProfileType] = None
    jobs: Optional[JobsBlock] = None
    pains: Optional[PainsBlock] = None
    gains: Optional[GainsBlock] = None


# ---------- Value maps ----------
class ValueMapCreate(CanvasCreate):
    products_services: Optional[ProductsServicesBlock] = None
    pain_relievers: Optional[PainRelieversBlock] = None
    gain_creators: Optional[GainCreatorsBlock] = None


class ValueMapUpdate(CanvasUpdate):
    products_services: Optional[ProductsServicesBlock] = None
    pain_relievers: Optional[PainRelieversBlock] = None
    gain_creators: Optional[GainCreatorsBlock] = None


# ---------- Value-proposition canvases ----------
class ValuePropositionCanvasCreate(CanvasCreate):
    value_map_id: str = Field(min_length=1)
    customer_profile_id: str = Field(min_length=1)
    fit_score: Optional[float] = Field(default=None, ge=0, le=1)
    fit_analysis: Optional[dict[str, Any]] = None
    addressed_jobs: Optional[AddressedBlock] = None
    addressed_pains: Optional[AddressedBlock] = None
    addressed_gains: Optional[AddressedBlock] = None


class ValuePropositionCanvasUpdate(CanvasUpdate):
    value_map_id: Optional[str] = Field(default=None, min_length=1)
    customer_profile_id: Optional[str] = Field(default=None, min_length=1)
    fit_score: Optional[float] = Field(default=None, ge=0, le=1)
    fit_analysis: Optional[dict[str, Any]] = None
    addressed_jobs: Optional[AddressedBlock] = None
    addressed_pains: Optional[AddressedBlock] = None
    addressed_gains: Optional[AddressedBlock] = None


# ---------- Query ----------
class OrderBy(BaseModel):
    model_config = ConfigDict(extra="forbid")

    column: str
    ascending: bool = True


class QueryParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    select: str = "*"
    filter: dict[str, Any] = Field(default_factory=dict)
    filter_in: dict[str, list[Any]] = Field(default_factory=dict)
    filter_like: dict[str, str] = Field(default_factory=dict)
    order_by: Optional[OrderBy] = None
    limit: int = Field(default=100, ge=1)
    offset: int = Field(default=0, ge=0)
