"""Stage reorder coordinator.

Moves a stage column to a new position, renumbers every stage so that
``order`` equals its position, applies the result to the board, then
persists the changed orders concurrently. If any write fails the board is
replaced with a fresh fetch from the store.
"""

from __future__ import annotations

import asyncio

import structlog

from src.stageflow.funnels.schemas import StageUpdate
from src.stageflow.funnels.store import StageStore
from src.stageflow.moves.board import BoardState, reorder_stages
from src.stageflow.moves.errors import DragValidationError
from src.stageflow.moves.notifier import UserNotifier

logger = structlog.get_logger(__name__)


class StageReorderCoordinator:
    """Reorder the columns of one funnel board.

    Args:
        board: Board state of the funnel.
        store: StageStore used to persist orders and to refetch on failure.
        notifier: UserNotifier for the single success/failure message.
    """

    def __init__(
        self, board: BoardState, store: StageStore, notifier: UserNotifier
    ) -> None:
        self._board = board
        self._store = store
        self._notifier = notifier

    async def reorder(
        self, stage_id: str, source_index: int, destination_index: int
    ) -> bool:
        """Move a stage from source_index to destination_index.

        Args:
            stage_id: Stage being dragged. Must sit at source_index.
            source_index: Current position of the stage.
            destination_index: Target position.

        Returns:
            True if the new order was persisted (or nothing needed to change),
            False if persistence failed and the board was refetched.

        Raises:
            DragValidationError: The stage is unknown, the source index does
                not point at it, or the destination is out of range.
        """
        if source_index == destination_index:
            return True

        stages = self._board.stages
        if not 0 <= source_index < len(stages) or stages[source_index].id != stage_id:
            raise DragValidationError(
                f"Stage {stage_id} is not at position {source_index}"
            )
        if not 0 <= destination_index < len(stages):
            raise DragValidationError(
                f"Destination position {destination_index} is out of range"
            )

        previous = {stage.id: stage.order for stage in stages}
        reordered = reorder_stages(stages, source_index, destination_index)
        changed = [s for s in reordered if previous.get(s.id) != s.order]

        self._board.replace(reordered)
        logger.info(
            "reorder.applied",
            funnel_id=self._board.funnel_id,
            stage_id=stage_id,
            from_index=source_index,
            to_index=destination_index,
            changed=len(changed),
        )

        results = await asyncio.gather(
            *(
                self._store.update_stage(stage.id, StageUpdate(order=stage.order))
                for stage in changed
            ),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            logger.warning(
                "reorder.persist_failed",
                funnel_id=self._board.funnel_id,
                stage_id=stage_id,
                failures=len(errors),
                error=str(errors[0]),
            )
            self._notifier.failure("Could not reorder the stages. Please try again.")
            await self._refresh()
            return False

        self._notifier.success("Stage order updated.")
        return True

    async def _refresh(self) -> None:
        try:
            stages = await self._store.list_stages_by_funnel(self._board.funnel_id)
        except Exception:
            logger.error(
                "reorder.refresh_failed", funnel_id=self._board.funnel_id, exc_info=True
            )
            return
        self._board.replace(stages)
