"""Funnel repository -- async CRUD behind the StageStore interface.

Provides FunnelRepository with the session_factory callable pattern: every
method opens its own session via ``async for session in factory()``.
Handles serialization between Pydantic schemas and SQLAlchemy models for
stages (with required fields and board opportunities), opportunities,
scheduled tasks and webhook subscriptions.

Lookups that miss return None, except update_stage which raises
ValueError since a stage update is always issued for a stage on screen.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.stageflow.funnels.models import (
    OpportunityModel,
    RequiredFieldModel,
    RequiredTaskModel,
    ScheduledTaskModel,
    StageModel,
    WebhookModel,
)
from src.stageflow.funnels.schemas import (
    AlertConfig,
    EntityEvent,
    EntityType,
    FieldType,
    Opportunity,
    OpportunityUpdate,
    RequiredField,
    RequiredTask,
    ScheduledTaskCreate,
    Stage,
    StageRequirements,
    StageUpdate,
    WebhookSubscription,
)
from src.stageflow.funnels.store import StageStore

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_opportunity(model: OpportunityModel) -> Opportunity:
    """Convert OpportunityModel to Opportunity schema."""
    return Opportunity(
        id=model.id,
        funnel_id=model.funnel_id,
        stage_id=model.stage_id,
        title=model.title or "",
        value=model.value or 0.0,
        client=model.client or "",
        company=model.company,
        email=model.email,
        phone=model.phone,
        custom_fields=dict(model.custom_fields or {}),
        win_reason=model.win_reason,
        loss_reason=model.loss_reason,
        last_stage_change_at=model.last_stage_change_at,
        created_at=model.created_at,
    )


def _model_to_required_field(model: RequiredFieldModel) -> RequiredField:
    """Convert RequiredFieldModel to RequiredField schema."""
    try:
        field_type = FieldType(model.type)
    except ValueError:
        logger.warning(
            "funnel_repo.unknown_field_type",
            field_id=model.id,
            field_type=model.type,
        )
        field_type = FieldType.TEXT

    return RequiredField(
        id=model.id,
        name=model.name,
        type=field_type,
        options=list(model.options or []),
        is_required=bool(model.is_required),
        stage_id=model.stage_id,
    )


def _model_to_required_task(model: RequiredTaskModel) -> RequiredTask:
    """Convert RequiredTaskModel to RequiredTask schema."""
    return RequiredTask(
        id=model.id,
        name=model.name,
        description=model.description or "",
        default_duration_hours=model.default_duration_hours,
        is_required=bool(model.is_required),
        stage_id=model.stage_id,
    )


def _model_to_stage(
    model: StageModel,
    required_fields: list[RequiredField] | None = None,
    opportunities: list[Opportunity] | None = None,
) -> Stage:
    """Convert StageModel (plus its loaded children) to Stage schema."""
    return Stage(
        id=model.id,
        funnel_id=model.funnel_id,
        name=model.name,
        description=model.description or "",
        order=model.order,
        color=model.color,
        is_win_stage=bool(model.is_win_stage),
        is_loss_stage=bool(model.is_loss_stage),
        required_fields=required_fields or [],
        win_reason_required=bool(model.win_reason_required),
        loss_reason_required=bool(model.loss_reason_required),
        win_reasons=list(model.win_reasons or []),
        loss_reasons=list(model.loss_reasons or []),
        alert_config=AlertConfig.model_validate(model.alert_config or {}),
        opportunities=opportunities or [],
    )


def _model_to_webhook(model: WebhookModel) -> WebhookSubscription:
    """Convert WebhookModel to WebhookSubscription schema."""
    return WebhookSubscription(
        id=model.id,
        target_type=EntityType(model.target_type),
        target_id=model.target_id,
        url=model.url,
        event=EntityEvent(model.event),
    )


# ── Repository ──────────────────────────────────────────────────────────────


class FunnelRepository(StageStore):
    """Async CRUD for stages, opportunities, tasks and webhook subscriptions.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Stages ──────────────────────────────────────────────────────────────

    async def get_stage_by_id(self, stage_id: str) -> Stage | None:
        """Get a stage with its required fields and current opportunities.

        Args:
            stage_id: Stage ID string.

        Returns:
            Stage if found, None otherwise.
        """
        async for session in self._session_factory():
            model = await session.get(StageModel, stage_id)
            if model is None:
                return None

            fields = await session.execute(
                select(RequiredFieldModel).where(
                    RequiredFieldModel.stage_id == stage_id
                )
            )
            opps = await session.execute(
                select(OpportunityModel).where(OpportunityModel.stage_id == stage_id)
            )
            return _model_to_stage(
                model,
                required_fields=[
                    _model_to_required_field(f) for f in fields.scalars().all()
                ],
                opportunities=[_model_to_opportunity(o) for o in opps.scalars().all()],
            )

    async def list_stages_by_funnel(self, funnel_id: str) -> list[Stage]:
        """List a funnel's stages with required fields and opportunities.

        The returned order is whatever the database yields; callers that
        need column order sort by ``Stage.order``.

        Args:
            funnel_id: Funnel ID string.

        Returns:
            List of Stage objects (possibly empty).
        """
        async for session in self._session_factory():
            result = await session.execute(
                select(StageModel).where(StageModel.funnel_id == funnel_id)
            )
            stage_models = result.scalars().all()
            if not stage_models:
                return []

            stage_ids = [s.id for s in stage_models]

            fields_result = await session.execute(
                select(RequiredFieldModel).where(
                    RequiredFieldModel.stage_id.in_(stage_ids)
                )
            )
            fields_by_stage: dict[str, list[RequiredField]] = {}
            for field in fields_result.scalars().all():
                fields_by_stage.setdefault(field.stage_id, []).append(
                    _model_to_required_field(field)
                )

            opps_result = await session.execute(
                select(OpportunityModel)
                .where(OpportunityModel.funnel_id == funnel_id)
                .order_by(OpportunityModel.created_at)
            )
            opps_by_stage: dict[str, list[Opportunity]] = {}
            for opp in opps_result.scalars().all():
                opps_by_stage.setdefault(opp.stage_id, []).append(
                    _model_to_opportunity(opp)
                )

            return [
                _model_to_stage(
                    s,
                    required_fields=fields_by_stage.get(s.id, []),
                    opportunities=opps_by_stage.get(s.id, []),
                )
                for s in stage_models
            ]

    async def update_stage(self, stage_id: str, data: StageUpdate) -> Stage:
        """Update an existing stage.

        Args:
            stage_id: Stage ID string.
            data: StageUpdate with fields to update.

        Returns:
            Updated Stage (without board opportunities).

        Raises:
            ValueError: If stage not found, or the update would flag the
                stage as both a win and a loss stage.
        """
        async for session in self._session_factory():
            model = await session.get(StageModel, stage_id)
            if model is None:
                raise ValueError(f"Stage not found: id={stage_id}")

            update_data = data.model_dump(exclude_none=True)
            is_win = update_data.get("is_win_stage", model.is_win_stage)
            is_loss = update_data.get("is_loss_stage", model.is_loss_stage)
            if is_win and is_loss:
                raise ValueError(
                    f"Stage cannot be both a win and a loss stage: id={stage_id}"
                )

            for key, value in update_data.items():
                setattr(model, key, value)

            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_stage(model)

    async def get_stage_requirements(self, stage_id: str) -> StageRequirements:
        """Get a stage's required fields and required tasks.

        Args:
            stage_id: Stage ID string.

        Returns:
            StageRequirements (empty lists when the stage has none).
        """
        async for session in self._session_factory():
            fields = await session.execute(
                select(RequiredFieldModel).where(
                    RequiredFieldModel.stage_id == stage_id
                )
            )
            tasks = await session.execute(
                select(RequiredTaskModel).where(RequiredTaskModel.stage_id == stage_id)
            )
            return StageRequirements(
                required_fields=[
                    _model_to_required_field(f) for f in fields.scalars().all()
                ],
                required_tasks=[
                    _model_to_required_task(t) for t in tasks.scalars().all()
                ],
            )

    # ── Opportunities ───────────────────────────────────────────────────────

    async def get_opportunity(self, opportunity_id: str) -> Opportunity | None:
        """Get an opportunity by ID."""
        async for session in self._session_factory():
            model = await session.get(OpportunityModel, opportunity_id)
            if model is None:
                return None
            return _model_to_opportunity(model)

    async def update_opportunity(
        self, opportunity_id: str, data: OpportunityUpdate
    ) -> Opportunity | None:
        """Update an existing opportunity.

        Only non-None fields are written. A change of stage_id also stamps
        last_stage_change_at unless the caller supplied one.

        Args:
            opportunity_id: Opportunity ID string.
            data: OpportunityUpdate with fields to update.

        Returns:
            Updated Opportunity, or None if not found.
        """
        async for session in self._session_factory():
            model = await session.get(OpportunityModel, opportunity_id)
            if model is None:
                return None

            update_data = data.model_dump(exclude_none=True)
            stage_changed = (
                "stage_id" in update_data and update_data["stage_id"] != model.stage_id
            )
            for key, value in update_data.items():
                setattr(model, key, value)

            now = datetime.now(timezone.utc)
            if stage_changed and data.last_stage_change_at is None:
                model.last_stage_change_at = now
            model.updated_at = now
            await session.commit()
            await session.refresh(model)
            return _model_to_opportunity(model)

    async def move_opportunity(
        self, opportunity_id: str, destination_stage_id: str
    ) -> Opportunity | None:
        """Write only the opportunity's stage_id (and its change timestamp).

        Args:
            opportunity_id: Opportunity ID string.
            destination_stage_id: Stage the opportunity now belongs to.

        Returns:
            Updated Opportunity, or None if not found.
        """
        async for session in self._session_factory():
            model = await session.get(OpportunityModel, opportunity_id)
            if model is None:
                return None

            now = datetime.now(timezone.utc)
            model.stage_id = destination_stage_id
            model.last_stage_change_at = now
            model.updated_at = now
            await session.commit()
            await session.refresh(model)
            return _model_to_opportunity(model)

    # ── Scheduled Tasks ─────────────────────────────────────────────────────

    async def list_task_titles(self, opportunity_id: str) -> list[str]:
        """Titles of tasks already scheduled for an opportunity."""
        async for session in self._session_factory():
            result = await session.execute(
                select(ScheduledTaskModel.title).where(
                    ScheduledTaskModel.opportunity_id == opportunity_id
                )
            )
            return list(result.scalars().all())

    async def create_tasks(
        self, opportunity_id: str, tasks: list[ScheduledTaskCreate]
    ) -> int:
        """Schedule tasks for an opportunity in a single commit.

        Args:
            opportunity_id: Opportunity ID string.
            tasks: Tasks to create.

        Returns:
            Number of tasks created.
        """
        if not tasks:
            return 0

        async for session in self._session_factory():
            for task in tasks:
                session.add(
                    ScheduledTaskModel(
                        opportunity_id=opportunity_id,
                        title=task.title,
                        description=task.description,
                        scheduled_at=task.scheduled_at,
                        status="pending",
                    )
                )
            await session.commit()
            logger.info(
                "funnel_repo.tasks_created",
                opportunity_id=opportunity_id,
                count=len(tasks),
            )
            return len(tasks)

    # ── Webhooks ────────────────────────────────────────────────────────────

    async def list_webhooks(
        self, target_type: EntityType, event: EntityEvent, entity_id: str
    ) -> list[WebhookSubscription]:
        """Subscriptions for this entity plus wildcard ("*") subscriptions.

        Args:
            target_type: Entity kind the event concerns.
            event: Lifecycle event being announced.
            entity_id: ID of the entity the event concerns.

        Returns:
            Matching WebhookSubscription objects.
        """
        async for session in self._session_factory():
            result = await session.execute(
                select(WebhookModel).where(
                    WebhookModel.target_type == target_type.value,
                    WebhookModel.event == event.value,
                    or_(
                        WebhookModel.target_id == entity_id,
                        WebhookModel.target_id == "*",
                    ),
                )
            )
            return [_model_to_webhook(m) for m in result.scalars().all()]
