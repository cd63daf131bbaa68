"""Drag event dispatcher -- entry point for board drag-and-drop results.

Raw drag results arrive as camelCase dicts from the board UI::

    {
        "draggableId": "opp-1",
        "type": "opportunity",
        "source": {"droppableId": "stage-a", "index": 0},
        "destination": {"droppableId": "stage-b", "index": 2},
    }

They are parsed into a tagged union of OpportunityDragIntent and
StageDragIntent discriminated on ``type``. A missing or unknown type is a
DragValidationError; there is no fallback routing. Stage intents go to the
StageReorderCoordinator and opportunity intents to the TransitionController.

While a move is gated or executing, every new intent is rejected with
MoveInProgressError, so at most one transition is ever in flight.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from src.stageflow.moves.board import BoardState
from src.stageflow.moves.controller import TransitionController, TransitionResult
from src.stageflow.moves.errors import DragValidationError, MoveInProgressError
from src.stageflow.moves.reorder import StageReorderCoordinator

logger = structlog.get_logger(__name__)


# ── Drag intents ────────────────────────────────────────────────────────────


class _DragModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DraggableLocation(_DragModel):
    """A column (droppable) and a position inside it."""

    droppable_id: str
    index: int = Field(ge=0)


class OpportunityDragIntent(_DragModel):
    """An opportunity card dropped on a stage column."""

    type: Literal["opportunity"]
    draggable_id: str
    source: DraggableLocation
    destination: DraggableLocation | None = None


class StageDragIntent(_DragModel):
    """A stage column dragged to a new position."""

    type: Literal["stage"]
    draggable_id: str
    source: DraggableLocation
    destination: DraggableLocation | None = None


DragIntent = Annotated[
    Union[OpportunityDragIntent, StageDragIntent], Field(discriminator="type")
]

_drag_intent_adapter: TypeAdapter[DragIntent] = TypeAdapter(DragIntent)


def parse_drag_result(raw: dict[str, Any]) -> OpportunityDragIntent | StageDragIntent:
    """Parse a raw drag result into a typed intent.

    Raises:
        DragValidationError: Missing/unknown ``type`` or malformed locations.
    """
    try:
        return _drag_intent_adapter.validate_python(raw)
    except ValidationError as exc:
        raise DragValidationError(f"Invalid drag result: {exc}") from exc


# ── Dispatcher ──────────────────────────────────────────────────────────────


class DragDispositionKind(str, Enum):
    IGNORED = "ignored"
    STAGE_REORDER = "stage_reorder"
    OPPORTUNITY_MOVE = "opportunity_move"


class DragDisposition(BaseModel):
    """What the dispatcher did with one drag result."""

    kind: DragDispositionKind
    reordered: bool | None = None
    transition: TransitionResult | None = None


class NavigationDirection(str, Enum):
    PREVIOUS = "previous"
    NEXT = "next"


class DragEventDispatcher:
    """Route drag results to the reorder coordinator or the transition controller.

    Args:
        controller: TransitionController for opportunity moves.
        reorder_coordinator: StageReorderCoordinator for column drags.
        board: Board state, used by quick navigation to find neighbours.
    """

    def __init__(
        self,
        controller: TransitionController,
        reorder_coordinator: StageReorderCoordinator,
        board: BoardState,
    ) -> None:
        self._controller = controller
        self._reorder = reorder_coordinator
        self._board = board

    async def handle_drag_end(self, raw: dict[str, Any]) -> DragDisposition:
        """Handle one drag result from the board.

        Returns:
            DragDisposition: IGNORED for drops outside a column or back on
            the starting position, otherwise what was dispatched.

        Raises:
            DragValidationError: The payload is malformed.
            MoveInProgressError: A move is already gated or executing.
        """
        intent = parse_drag_result(raw)
        return await self._dispatch(intent)

    async def move_to_adjacent_stage(
        self,
        opportunity_id: str,
        current_stage_id: str,
        direction: NavigationDirection | str,
    ) -> DragDisposition:
        """Move an opportunity to the end of the previous or next stage.

        Goes through the same gated path as a drag. At the first/last stage
        the call is a no-op.

        Raises:
            DragValidationError: Unknown stage/opportunity or direction.
            MoveInProgressError: A move is already gated or executing.
        """
        try:
            direction = NavigationDirection(direction)
        except ValueError as exc:
            raise DragValidationError(f"Unknown direction {direction!r}") from exc

        stage_index = self._board.index_of_stage(current_stage_id)
        if stage_index is None:
            raise DragValidationError(f"Unknown stage {current_stage_id}")
        stages = self._board.stages
        current = stages[stage_index]
        source_index = next(
            (i for i, o in enumerate(current.opportunities) if o.id == opportunity_id),
            None,
        )
        if source_index is None:
            raise DragValidationError(
                f"Opportunity {opportunity_id} not found in stage {current_stage_id}"
            )

        target_index = stage_index + (1 if direction == NavigationDirection.NEXT else -1)
        if not 0 <= target_index < len(stages):
            logger.debug(
                "dispatcher.navigation_at_edge",
                opportunity_id=opportunity_id,
                stage_id=current_stage_id,
                direction=direction.value,
            )
            return DragDisposition(kind=DragDispositionKind.IGNORED)

        target = stages[target_index]
        intent = OpportunityDragIntent(
            type="opportunity",
            draggable_id=opportunity_id,
            source=DraggableLocation(droppable_id=current_stage_id, index=source_index),
            destination=DraggableLocation(
                droppable_id=target.id, index=len(target.opportunities)
            ),
        )
        return await self._dispatch(intent)

    async def _dispatch(
        self, intent: OpportunityDragIntent | StageDragIntent
    ) -> DragDisposition:
        destination = intent.destination
        if destination is None:
            return DragDisposition(kind=DragDispositionKind.IGNORED)
        if (
            destination.droppable_id == intent.source.droppable_id
            and destination.index == intent.source.index
        ):
            return DragDisposition(kind=DragDispositionKind.IGNORED)

        if not self._controller.is_idle:
            logger.info(
                "dispatcher.rejected_in_progress",
                draggable_id=intent.draggable_id,
                state=self._controller.state.value,
            )
            raise MoveInProgressError(
                f"A move is already in progress ({self._controller.state.value})"
            )

        logger.debug(
            "dispatcher.dispatch",
            type=intent.type,
            draggable_id=intent.draggable_id,
            source=intent.source.droppable_id,
            destination=destination.droppable_id,
            index=destination.index,
        )

        if isinstance(intent, StageDragIntent):
            reordered = await self._reorder.reorder(
                intent.draggable_id, intent.source.index, destination.index
            )
            return DragDisposition(
                kind=DragDispositionKind.STAGE_REORDER, reordered=reordered
            )

        result = await self._controller.request_move(
            intent.draggable_id,
            intent.source.droppable_id,
            destination.droppable_id,
            destination.index,
        )
        return DragDisposition(
            kind=DragDispositionKind.OPPORTUNITY_MOVE, transition=result
        )
