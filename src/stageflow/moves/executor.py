"""Opportunity move executor -- optimistic apply, persist, confirm or refetch.

Runs a move that has already passed the gate:

1. Merge the data collected by the gating dialogs into a working copy.
2. Optimistically move the copy between board columns (stage_id and
   last_stage_change_at updated), replacing the board wholesale.
3. Persist: a single update_opportunity when extra data was collected,
   otherwise the lightweight move_opportunity (stage only).
4. On success: queue the history append, celebrate win-stage entries,
   queue the webhook announcement and the destination's required tasks.
5. On failure: report once, then refetch the funnel's stages and replace
   the board with the authoritative copy. The optimistic mutation is never
   hand-reverted.
6. On cancellation while persisting: put back the board snapshot taken
   before the optimistic apply (no awaits) and let CancelledError propagate.

Side effects are fire-and-forget through SideEffectQueue: their failure
cannot undo or delay the move result.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import structlog
from pydantic import BaseModel

from src.stageflow.funnels.schemas import (
    EntityEvent,
    EntityType,
    Opportunity,
    OpportunityUpdate,
    ScheduledTaskCreate,
)
from src.stageflow.funnels.store import EntityEventNotifier, HistorySink, StageStore
from src.stageflow.moves.board import BoardState, move_opportunity
from src.stageflow.moves.errors import PersistenceError
from src.stageflow.moves.notifier import UserNotifier
from src.stageflow.moves.pending import MoveExtraData
from src.stageflow.moves.side_effects import SideEffectQueue

logger = structlog.get_logger(__name__)


class MoveOutcome(BaseModel):
    """Result of one executed move."""

    success: bool
    opportunity: Opportunity | None = None
    persisted: bool = False
    error: str | None = None


class OpportunityMoveExecutor:
    """Apply, persist and reconcile opportunity moves on a board.

    Args:
        board: Board state of the funnel being edited.
        store: StageStore for persistence and authoritative refetch.
        history: HistorySink for the audit trail.
        notifier: UserNotifier for success/failure/celebration.
        side_effects: Queue running history, webhook and task side effects.
        events: Optional EntityEventNotifier (webhooks).
        default_task_hours: Scheduling offset for required tasks with no duration.
    """

    def __init__(
        self,
        board: BoardState,
        store: StageStore,
        history: HistorySink,
        notifier: UserNotifier,
        side_effects: SideEffectQueue,
        events: EntityEventNotifier | None = None,
        default_task_hours: int = 1,
    ) -> None:
        self._board = board
        self._store = store
        self._history = history
        self._notifier = notifier
        self._side_effects = side_effects
        self._events = events
        self._default_task_hours = default_task_hours

    async def complete(
        self,
        opportunity: Opportunity,
        source_stage_id: str,
        destination_stage_id: str,
        destination_index: int,
        extra_data: MoveExtraData | None = None,
        user_id: str | None = None,
    ) -> MoveOutcome:
        """Execute a gated-or-direct move.

        Args:
            opportunity: Opportunity as currently shown on the board.
            source_stage_id: Column the opportunity leaves.
            destination_stage_id: Column it enters.
            destination_index: Position within the destination column.
            extra_data: Fields/reasons collected by the gating dialogs.
            user_id: Acting user, recorded in the history entry.

        Returns:
            MoveOutcome. Persistence failures are reported and reconciled
            here and come back as ``success=False``; they are not raised.
        """
        extra = extra_data if extra_data is not None and not extra_data.is_empty() else None
        working = self._merge_extra(opportunity, extra)

        if source_stage_id == destination_stage_id:
            # Same-column reposition only reorders the local list
            self._board.replace(
                move_opportunity(
                    self._board.stages,
                    working,
                    source_stage_id,
                    destination_stage_id,
                    destination_index,
                )
            )
            logger.debug(
                "executor.repositioned",
                opportunity_id=opportunity.id,
                stage_id=destination_stage_id,
                index=destination_index,
            )
            return MoveOutcome(success=True, opportunity=working)

        destination = self._board.find_stage(destination_stage_id)
        moved_at = datetime.now(timezone.utc)
        moved = working.model_copy(
            update={"stage_id": destination_stage_id, "last_stage_change_at": moved_at}
        )

        # ── Optimistic apply ──────────────────────────────────────────────
        snapshot = self._board.stages
        self._board.replace(
            move_opportunity(
                self._board.stages,
                moved,
                source_stage_id,
                destination_stage_id,
                destination_index,
            )
        )

        # ── Persist ───────────────────────────────────────────────────────
        try:
            persisted = await self._persist(moved, extra)
        except asyncio.CancelledError:
            logger.warning(
                "executor.persist_cancelled",
                opportunity_id=opportunity.id,
                from_stage=source_stage_id,
                to_stage=destination_stage_id,
            )
            self._board.replace(snapshot)
            raise
        except Exception as exc:
            logger.warning(
                "executor.persist_failed",
                opportunity_id=opportunity.id,
                from_stage=source_stage_id,
                to_stage=destination_stage_id,
                error=str(exc),
            )
            self._notifier.failure("Could not move the opportunity. Please try again.")
            await self._refresh()
            return MoveOutcome(success=False, opportunity=moved, error=str(exc))

        logger.info(
            "executor.move_persisted",
            opportunity_id=opportunity.id,
            from_stage=source_stage_id,
            to_stage=destination_stage_id,
            with_extra_data=extra is not None,
        )

        # ── Side effects (best-effort) ────────────────────────────────────
        self._side_effects.submit(
            "history.record_move",
            lambda: self._history.record_move(
                opportunity.id, source_stage_id, destination_stage_id, user_id
            ),
        )
        if destination is not None and destination.is_win_stage:
            self._notifier.celebrate(moved)
        if self._events is not None:
            payload = {
                "id": moved.id,
                "title": moved.title,
                "client": moved.client,
                "value": moved.value,
                "previous_stage_id": source_stage_id,
                "new_stage_id": destination_stage_id,
                "funnel_id": moved.funnel_id,
                "custom_fields": moved.custom_fields,
            }
            events = self._events
            self._side_effects.submit(
                "webhooks.opportunity_move",
                lambda: events.notify_entity_event(
                    EntityType.OPPORTUNITY, moved.id, EntityEvent.MOVE, payload
                ),
            )
        self._side_effects.submit(
            "tasks.required_tasks",
            lambda: self.create_required_tasks(moved.id, destination_stage_id),
        )

        self._notifier.success("Opportunity moved successfully.")
        return MoveOutcome(success=True, opportunity=persisted, persisted=True)

    async def create_required_tasks(self, opportunity_id: str, stage_id: str) -> int:
        """Schedule the stage's required tasks the opportunity does not have yet.

        Tasks are matched by title, so re-entering a stage does not duplicate
        them.

        Returns:
            Number of tasks created.
        """
        requirements = await self._store.get_stage_requirements(stage_id)
        if not requirements.required_tasks:
            return 0

        existing = set(await self._store.list_task_titles(opportunity_id))
        now = datetime.now(timezone.utc)
        to_create = [
            ScheduledTaskCreate(
                title=task.name,
                description=task.description,
                scheduled_at=now
                + timedelta(hours=task.default_duration_hours or self._default_task_hours),
            )
            for task in requirements.required_tasks
            if task.name not in existing
        ]
        if not to_create:
            return 0
        return await self._store.create_tasks(opportunity_id, to_create)

    async def _persist(
        self, moved: Opportunity, extra: MoveExtraData | None
    ) -> Opportunity:
        """Write the move to the store, raising PersistenceError on not-found."""
        if extra is not None:
            update = OpportunityUpdate(
                stage_id=moved.stage_id,
                custom_fields=moved.custom_fields if extra.custom_fields else None,
                win_reason=extra.win_reason,
                loss_reason=extra.loss_reason,
                last_stage_change_at=moved.last_stage_change_at,
            )
            result = await self._store.update_opportunity(moved.id, update)
        else:
            result = await self._store.move_opportunity(moved.id, moved.stage_id)

        if result is None:
            raise PersistenceError(f"Opportunity not found: id={moved.id}")
        return result

    async def _refresh(self) -> None:
        """Replace the board with the store's authoritative stage list."""
        try:
            stages = await self._store.list_stages_by_funnel(self._board.funnel_id)
        except Exception:
            logger.error(
                "executor.refresh_failed",
                funnel_id=self._board.funnel_id,
                exc_info=True,
            )
            return
        self._board.replace(stages)
        logger.info("executor.board_refreshed", funnel_id=self._board.funnel_id)

    @staticmethod
    def _merge_extra(
        opportunity: Opportunity, extra: MoveExtraData | None
    ) -> Opportunity:
        """Working copy of the opportunity with the collected data applied."""
        if extra is None:
            return opportunity.model_copy()

        update: dict = {
            "custom_fields": {**opportunity.custom_fields, **extra.custom_fields}
        }
        if extra.win_reason:
            update["win_reason"] = extra.win_reason
        if extra.loss_reason:
            update["loss_reason"] = extra.loss_reason
        return opportunity.model_copy(update=update)
