"""Funnel persistence models -- tables for the stage-transition engine.

SQLAlchemy models on the shared declarative Base:
- FunnelModel: Named pipelines
- StageModel: Ordered stages with win/loss flags and reason configuration
- RequiredFieldModel / RequiredTaskModel: Per-stage entry requirements
- OpportunityModel: Records moving through stages
- StageHistoryModel: Append-only audit trail of stage transitions
- ScheduledTaskModel: Tasks materialized from a stage's required tasks
- WebhookModel: Outbound webhook subscriptions

Identifiers are UUID strings generated application-side. Referential
integrity between stages, opportunities and history rows is kept by the
repository (no FK constraints), matching the rest of the schema.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from src.stageflow.core.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class FunnelModel(Base):
    """Named pipeline composed of ordered stages."""

    __tablename__ = "funnels"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class StageModel(Base):
    """One step of a funnel.

    ``order`` is dense and zero-based within a funnel. Reason lists and the
    alert configuration are stored as JSON documents.
    """

    __tablename__ = "stages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    funnel_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    order: Mapped[int] = mapped_column("order", Integer, nullable=False, default=0)
    color: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_win_stage: Mapped[bool] = mapped_column(Boolean, default=False)
    is_loss_stage: Mapped[bool] = mapped_column(Boolean, default=False)
    win_reason_required: Mapped[bool] = mapped_column(Boolean, default=False)
    loss_reason_required: Mapped[bool] = mapped_column(Boolean, default=False)
    win_reasons: Mapped[list] = mapped_column(JSON, default=list)
    loss_reasons: Mapped[list] = mapped_column(JSON, default=list)
    alert_config: Mapped[dict] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )


class RequiredFieldModel(Base):
    """Custom field an opportunity must fill before entering a stage."""

    __tablename__ = "required_fields"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    stage_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="text")
    options: Mapped[list] = mapped_column(JSON, default=list)
    is_required: Mapped[bool] = mapped_column(Boolean, default=True)


class RequiredTaskModel(Base):
    """Task created for an opportunity when it enters a stage."""

    __tablename__ = "required_tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    stage_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    default_duration_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_required: Mapped[bool] = mapped_column(Boolean, default=True)


class OpportunityModel(Base):
    """Tracked business record owned by exactly one stage."""

    __tablename__ = "opportunities"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    funnel_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    stage_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    value: Mapped[float] = mapped_column(Float, default=0.0)
    client: Mapped[str] = mapped_column(String(200), default="")
    company: Mapped[str | None] = mapped_column(String(100), nullable=True)
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    custom_fields: Mapped[dict] = mapped_column(JSON, default=dict)
    win_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)
    loss_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)
    last_stage_change_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )


class StageHistoryModel(Base):
    """Append-only stage transition record. Rows are never updated."""

    __tablename__ = "opportunity_stage_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    opportunity_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    from_stage_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    to_stage_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    moved_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)


class ScheduledTaskModel(Base):
    """Task scheduled against an opportunity."""

    __tablename__ = "scheduled_tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    opportunity_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending")


class WebhookModel(Base):
    """Outbound webhook subscription. target_id "*" matches every entity."""

    __tablename__ = "webhooks"
    __table_args__ = (Index("ix_webhooks_target_event", "target_type", "event"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    target_type: Mapped[str] = mapped_column(String(20), nullable=False)
    target_id: Mapped[str] = mapped_column(String(36), nullable=False, default="*")
    url: Mapped[str] = mapped_column(String(500), nullable=False)
    event: Mapped[str] = mapped_column(String(20), nullable=False)
