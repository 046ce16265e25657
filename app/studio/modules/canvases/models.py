from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.studio.models import Base, JSONType


def _uuid() -> str:
    return str(uuid.uuid4())


def _empty_block() -> dict:
    return {"items": []}


def _empty_bmc_block() -> dict:
    return {"items": [], "validation_status": "untested"}


def _empty_addressed() -> dict:
    return {"items": [], "coverage": None}


class CanvasMixin:
    """Columns every canvas table carries."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)

    slug: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")  # draft, active, validated, archived

    tags: Mapped[list | None] = mapped_column(JSONType, nullable=True, default=list)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True, default=dict)

    # updated_at doubles as the optimistic-lock version for block writes.
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class BusinessModelCanvas(CanvasMixin, Base):
    __tablename__ = "business_model_canvases"
    __table_args__ = (Index("idx_bmc_status", "status"),)

    key_partners: Mapped[dict] = mapped_column(JSONType, nullable=False, default=_empty_bmc_block)
    key_activities: Mapped[dict] = mapped_column(JSONType, nullable=False, default=_empty_bmc_block)
    key_resources: Mapped[dict] = mapped_column(JSONType, nullable=False, default=_empty_bmc_block)
    value_propositions: Mapped[dict] = mapped_column(JSONType, nullable=False, default=_empty_bmc_block)
    customer_relationships: Mapped[dict] = mapped_column(JSONType, nullable=False, default=_empty_bmc_block)
    channels: Mapped[dict] = mapped_column(JSONType, nullable=False, default=_empty_bmc_block)
    customer_segments: Mapped[dict] = mapped_column(JSONType, nullable=False, default=_empty_bmc_block)
    cost_structure: Mapped[dict] = mapped_column(JSONType, nullable=False, default=_empty_bmc_block)
    revenue_streams: Mapped[dict] = mapped_column(JSONType, nullable=False, default=_empty_bmc_block)


class CustomerProfile(CanvasMixin, Base):
    __tablename__ = "customer_profiles"
    __table_args__ = (Index("idx_customer_profiles_status", "status"),)

    profile_type: Mapped[str | None] = mapped_column(String(32), nullable=True)  # persona, segment, archetype, icp

    jobs: Mapped[dict] = mapped_column(JSONType, nullable=False, default=_empty_block)
    pains: Mapped[dict] = mapped_column(JSONType, nullable=False, default=_empty_block)
    gains: Mapped[dict] = mapped_column(JSONType, nullable=False, default=_empty_block)


class ValueMap(CanvasMixin, Base):
    __tablename__ = "value_maps"
    __table_args__ = (Index("idx_value_maps_status", "status"),)

    products_services: Mapped[dict] = mapped_column(JSONType, nullable=False, default=_empty_block)
    pain_relievers: Mapped[dict] = mapped_column(JSONType, nullable=False, default=_empty_block)
    gain_creators: Mapped[dict] = mapped_column(JSONType, nullable=False, default=_empty_block)


class ValuePropositionCanvas(CanvasMixin, Base):
    """Pairs a value map with a customer profile and tracks which profile items it addresses."""

    __tablename__ = "value_proposition_canvases"
    __table_args__ = (
        Index("idx_vpc_value_map", "value_map_id"),
        Index("idx_vpc_customer_profile", "customer_profile_id"),
    )

    value_map_id: Mapped[str] = mapped_column(ForeignKey("value_maps.id", ondelete="CASCADE"), nullable=False)
    customer_profile_id: Mapped[str] = mapped_column(ForeignKey("customer_profiles.id", ondelete="CASCADE"), nullable=False)

    fit_score: Mapped[float | None] = mapped_column(Float, nullable=True)  # 0.0 - 1.0
    fit_analysis: Mapped[dict | None] = mapped_column(JSONType, nullable=True, default=dict)

    addressed_jobs: Mapped[dict] = mapped_column(JSONType, nullable=False, default=_empty_addressed)
    addressed_pains: Mapped[dict] = mapped_column(JSONType, nullable=False, default=_empty_addressed)
    addressed_gains: Mapped[dict] = mapped_column(JSONType, nullable=False, default=_empty_addressed)

    value_map: Mapped[ValueMap] = relationship("ValueMap", lazy="selectin")
    customer_profile: Mapped[CustomerProfile] = relationship("CustomerProfile", lazy="selectin")
