"""Pydantic schemas for funnels, stages, opportunities, history and webhooks.

Defines all structured types the stage-transition engine reads and writes:
- Enums: FieldType, EntityType, EntityEvent
- Stage configuration: RequiredField, RequiredTask, AlertConfig, StageRequirements
- Board records: Opportunity, Stage, Funnel
- Store payloads: StageUpdate, OpportunityUpdate, ScheduledTaskCreate
- Audit trail: StageHistoryEntry
- Outbound webhooks: WebhookSubscription, WebhookPayload, DispatchResult

Stage.opportunities is the in-memory board view of the stage; it is not a
persisted column.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


# ── Enums ───────────────────────────────────────────────────────────────────


class FieldType(str, Enum):
    """Input type of a stage's required custom field."""

    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    CHECKBOX = "checkbox"
    SELECT = "select"


class EntityType(str, Enum):
    """Entity kinds that webhooks can subscribe to."""

    FUNNEL = "funnel"
    STAGE = "stage"
    OPPORTUNITY = "opportunity"


class EntityEvent(str, Enum):
    """Lifecycle events announced to webhook subscribers."""

    CREATE = "create"
    UPDATE = "update"
    MOVE = "move"


# ── Stage Configuration ─────────────────────────────────────────────────────


class RequiredField(BaseModel):
    """Custom field an opportunity must carry before entering a stage."""

    id: str | None = None
    name: str
    type: FieldType = FieldType.TEXT
    options: list[str] = Field(default_factory=list)
    is_required: bool = True
    stage_id: str | None = None

    def is_satisfied_by(self, custom_fields: dict[str, Any]) -> bool:
        """Return True if custom_fields holds a usable value for this field.

        Checkbox fields only count as filled when the value is exactly True.
        Every other type counts as filled unless the value is missing, None,
        or an empty string.
        """
        value = custom_fields.get(self.name)
        if self.type == FieldType.CHECKBOX:
            return value is True
        return value is not None and value != ""


class RequiredTask(BaseModel):
    """Task created for an opportunity when it enters a stage."""

    id: str | None = None
    name: str
    description: str = ""
    default_duration_hours: int | None = Field(default=None, ge=0)
    is_required: bool = True
    stage_id: str | None = None


class AlertConfig(BaseModel):
    """Days-in-stage alert threshold (consumed by the alerting service)."""

    enabled: bool = False
    max_days_in_stage: int = Field(default=7, ge=1)


class StageRequirements(BaseModel):
    """Everything a stage asks of an incoming opportunity."""

    required_fields: list[RequiredField] = Field(default_factory=list)
    required_tasks: list[RequiredTask] = Field(default_factory=list)


# ── Board Records ───────────────────────────────────────────────────────────


class Opportunity(BaseModel):
    """Tracked business record that moves between stages."""

    id: str
    funnel_id: str
    stage_id: str
    title: str = ""
    value: float = 0.0
    client: str = ""
    company: str | None = None
    email: str | None = None
    phone: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    win_reason: str | None = None
    loss_reason: str | None = None
    last_stage_change_at: datetime | None = None
    created_at: datetime | None = None


class Stage(BaseModel):
    """One step of a funnel, with its gating configuration and board column."""

    id: str
    funnel_id: str
    name: str = ""
    description: str = ""
    order: int = Field(default=0, ge=0)
    color: str | None = None
    is_win_stage: bool = False
    is_loss_stage: bool = False
    required_fields: list[RequiredField] = Field(default_factory=list)
    win_reason_required: bool = False
    loss_reason_required: bool = False
    win_reasons: list[str] = Field(default_factory=list)
    loss_reasons: list[str] = Field(default_factory=list)
    alert_config: AlertConfig = Field(default_factory=AlertConfig)
    opportunities: list[Opportunity] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_win_loss_exclusive(self) -> Stage:
        """Reject a stage flagged as both a win and a loss stage."""
        if self.is_win_stage and self.is_loss_stage:
            raise ValueError(f"Stage {self.id} cannot be both a win and a loss stage")
        return self


class Funnel(BaseModel):
    """Named pipeline of ordered stages."""

    id: str
    name: str
    description: str = ""
    stages: list[Stage] = Field(default_factory=list)


# ── Store Payloads ──────────────────────────────────────────────────────────


class StageUpdate(BaseModel):
    """Partial stage update (all fields optional)."""

    name: str | None = None
    description: str | None = None
    order: int | None = Field(default=None, ge=0)
    color: str | None = None
    is_win_stage: bool | None = None
    is_loss_stage: bool | None = None
    win_reason_required: bool | None = None
    loss_reason_required: bool | None = None
    win_reasons: list[str] | None = None
    loss_reasons: list[str] | None = None


class OpportunityUpdate(BaseModel):
    """Partial opportunity update (all fields optional)."""

    stage_id: str | None = None
    title: str | None = None
    value: float | None = None
    client: str | None = None
    company: str | None = None
    email: str | None = None
    phone: str | None = None
    custom_fields: dict[str, Any] | None = None
    win_reason: str | None = None
    loss_reason: str | None = None
    last_stage_change_at: datetime | None = None


class ScheduledTaskCreate(BaseModel):
    """Task to schedule against an opportunity."""

    title: str
    description: str = ""
    scheduled_at: datetime


# ── Audit Trail ─────────────────────────────────────────────────────────────


class StageHistoryEntry(BaseModel):
    """Immutable record of one completed stage transition.

    from_stage_id is None for the opportunity's first entry into its funnel.
    """

    id: str
    opportunity_id: str
    from_stage_id: str | None = None
    to_stage_id: str
    moved_at: datetime
    user_id: str | None = None


# ── Outbound Webhooks ───────────────────────────────────────────────────────


class WebhookSubscription(BaseModel):
    """Registered outbound webhook. target_id "*" matches every entity."""

    id: str
    target_type: EntityType
    target_id: str = "*"
    url: str
    event: EntityEvent


class WebhookPayload(BaseModel):
    """Body POSTed to subscribers, e.g. {"event": "opportunity.move", ...}."""

    event: str
    data: dict[str, Any] = Field(default_factory=dict)


class DispatchResult(BaseModel):
    """Delivery summary for one entity event."""

    dispatched: int = 0
    success: int = 0
    failed: int = 0
