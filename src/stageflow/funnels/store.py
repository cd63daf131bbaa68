"""Abstract collaborator interfaces consumed by the stage-transition engine.

The engine is an orchestration layer: it never talks to the database or to
HTTP directly. It reads and writes through these ABCs, which are implemented
by FunnelRepository (StageStore), StageHistoryRepository (HistorySink) and
WebhookDispatcher (EntityEventNotifier).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from src.stageflow.funnels.schemas import (
    DispatchResult,
    EntityEvent,
    EntityType,
    Opportunity,
    OpportunityUpdate,
    ScheduledTaskCreate,
    Stage,
    StageHistoryEntry,
    StageRequirements,
    StageUpdate,
)


class StageStore(ABC):
    """Durable record of stages and opportunities. No business logic.

    Methods:
        get_stage_by_id: Fetch a stage with its required fields, or None.
        list_stages_by_funnel: All stages of a funnel, in no guaranteed order.
        update_stage: Apply a partial update to a stage.
        update_opportunity: Apply a partial update, None if not found.
        move_opportunity: Stage-only update, None if not found.
        get_stage_requirements: Required fields and tasks of a stage.
        list_task_titles: Titles of tasks already scheduled for an opportunity.
        create_tasks: Schedule tasks against an opportunity.
    """

    @abstractmethod
    async def get_stage_by_id(self, stage_id: str) -> Stage | None:
        """Fetch a stage by ID."""
        ...

    @abstractmethod
    async def list_stages_by_funnel(self, funnel_id: str) -> list[Stage]:
        """List a funnel's stages with their opportunities (unsorted)."""
        ...

    @abstractmethod
    async def update_stage(self, stage_id: str, data: StageUpdate) -> Stage:
        """Update stage fields by ID."""
        ...

    @abstractmethod
    async def update_opportunity(
        self, opportunity_id: str, data: OpportunityUpdate
    ) -> Opportunity | None:
        """Update opportunity fields by ID."""
        ...

    @abstractmethod
    async def move_opportunity(
        self, opportunity_id: str, destination_stage_id: str
    ) -> Opportunity | None:
        """Set only the opportunity's stage_id."""
        ...

    @abstractmethod
    async def get_stage_requirements(self, stage_id: str) -> StageRequirements:
        """Fetch a stage's required fields and required tasks."""
        ...

    @abstractmethod
    async def list_task_titles(self, opportunity_id: str) -> list[str]:
        """Titles of tasks already scheduled for an opportunity."""
        ...

    @abstractmethod
    async def create_tasks(
        self, opportunity_id: str, tasks: list[ScheduledTaskCreate]
    ) -> int:
        """Schedule tasks for an opportunity, return how many were created."""
        ...


class HistorySink(ABC):
    """Append-only audit trail of stage transitions."""

    @abstractmethod
    async def record_move(
        self,
        opportunity_id: str,
        from_stage_id: str | None,
        to_stage_id: str,
        user_id: str | None = None,
    ) -> StageHistoryEntry:
        """Append one history entry."""
        ...

    @abstractmethod
    async def get_opportunity_history(
        self, opportunity_id: str
    ) -> list[StageHistoryEntry]:
        """All entries for an opportunity, oldest first."""
        ...


class EntityEventNotifier(ABC):
    """Outbound announcement of entity lifecycle events (webhooks)."""

    @abstractmethod
    async def notify_entity_event(
        self,
        entity_type: EntityType,
        entity_id: str,
        event: EntityEvent,
        payload: dict[str, Any],
    ) -> DispatchResult:
        """Announce an event to every matching subscriber. Never raises."""
        ...
