"""Tests for drag result parsing and DragEventDispatcher routing.

Covers the tagged drag intent union (camelCase and snake_case payloads,
unknown/missing type), no-op drops, routing to the reorder coordinator and
transition controller, the in-progress guard, and quick navigation to the
adjacent stage.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, PropertyMock

import pytest

from src.stageflow.funnels.schemas import Opportunity, Stage
from src.stageflow.moves.board import BoardState
from src.stageflow.moves.controller import TransitionResult
from src.stageflow.moves.dispatcher import (
    DragDispositionKind,
    DragEventDispatcher,
    NavigationDirection,
    OpportunityDragIntent,
    StageDragIntent,
    parse_drag_result,
)
from src.stageflow.moves.errors import DragValidationError, MoveInProgressError
from src.stageflow.moves.pending import TransitionState


FUNNEL_ID = "funnel-1"


def _make_raw(type_: str | None = "opportunity", **overrides) -> dict:
    """Raw drag result as the board UI emits it."""
    raw = {
        "draggableId": "opp-1",
        "source": {"droppableId": "s0", "index": 0},
        "destination": {"droppableId": "s1", "index": 2},
    }
    if type_ is not None:
        raw["type"] = type_
    raw.update(overrides)
    return raw


def _make_board() -> BoardState:
    stages = [
        Stage(
            id=f"s{i}",
            funnel_id=FUNNEL_ID,
            name=f"Stage {i}",
            order=i,
            opportunities=[
                Opportunity(id=f"opp-{i}-{j}", funnel_id=FUNNEL_ID, stage_id=f"s{i}")
                for j in range(2)
            ],
        )
        for i in range(3)
    ]
    return BoardState(FUNNEL_ID, stages)


def _make_dispatcher(idle: bool = True, board: BoardState | None = None):
    """Create a dispatcher over mocked controller and reorder coordinator."""
    controller = MagicMock()
    type(controller).is_idle = PropertyMock(return_value=idle)
    type(controller).state = PropertyMock(
        return_value=TransitionState.IDLE if idle else TransitionState.AWAITING_FIELDS
    )
    controller.request_move = AsyncMock(
        return_value=TransitionResult(state=TransitionState.IDLE, completed=True)
    )
    reorder = MagicMock()
    reorder.reorder = AsyncMock(return_value=True)
    dispatcher = DragEventDispatcher(controller, reorder, board or _make_board())
    return dispatcher, controller, reorder


# ── Parsing ──────────────────────────────────────────────────────────────────


class TestParseDragResult:
    """Tests for the tagged drag intent union."""

    def test_opportunity_intent_from_camel_case(self) -> None:
        intent = parse_drag_result(_make_raw())

        assert isinstance(intent, OpportunityDragIntent)
        assert intent.draggable_id == "opp-1"
        assert intent.source.droppable_id == "s0"
        assert intent.destination.index == 2

    def test_stage_intent(self) -> None:
        intent = parse_drag_result(_make_raw("stage", draggableId="s2"))

        assert isinstance(intent, StageDragIntent)
        assert intent.draggable_id == "s2"

    def test_snake_case_payload_is_accepted(self) -> None:
        intent = parse_drag_result(
            {
                "type": "opportunity",
                "draggable_id": "opp-1",
                "source": {"droppable_id": "s0", "index": 0},
                "destination": None,
            }
        )

        assert intent.destination is None

    def test_missing_type_is_rejected(self) -> None:
        """No silent default to an opportunity move."""
        with pytest.raises(DragValidationError):
            parse_drag_result(_make_raw(None))

    def test_unknown_type_is_rejected(self) -> None:
        with pytest.raises(DragValidationError):
            parse_drag_result(_make_raw("column"))

    def test_negative_index_is_rejected(self) -> None:
        with pytest.raises(DragValidationError):
            parse_drag_result(_make_raw(source={"droppableId": "s0", "index": -1}))

    def test_validation_error_is_a_value_error(self) -> None:
        with pytest.raises(ValueError):
            parse_drag_result({"type": "opportunity"})


# ── Routing ──────────────────────────────────────────────────────────────────


class TestHandleDragEnd:
    """Tests for handle_drag_end routing and no-ops."""

    async def test_drop_outside_any_column_is_ignored(self) -> None:
        dispatcher, controller, reorder = _make_dispatcher()

        result = await dispatcher.handle_drag_end(_make_raw(destination=None))

        assert result.kind == DragDispositionKind.IGNORED
        controller.request_move.assert_not_awaited()
        reorder.reorder.assert_not_awaited()

    async def test_drop_on_starting_position_is_ignored(self) -> None:
        dispatcher, controller, _ = _make_dispatcher()

        result = await dispatcher.handle_drag_end(
            _make_raw(destination={"droppableId": "s0", "index": 0})
        )

        assert result.kind == DragDispositionKind.IGNORED
        controller.request_move.assert_not_awaited()

    async def test_opportunity_drag_goes_to_controller(self) -> None:
        dispatcher, controller, reorder = _make_dispatcher()

        result = await dispatcher.handle_drag_end(_make_raw())

        assert result.kind == DragDispositionKind.OPPORTUNITY_MOVE
        assert result.transition.completed is True
        controller.request_move.assert_awaited_once_with("opp-1", "s0", "s1", 2)
        reorder.reorder.assert_not_awaited()

    async def test_same_column_new_index_is_dispatched(self) -> None:
        dispatcher, controller, _ = _make_dispatcher()

        await dispatcher.handle_drag_end(
            _make_raw(destination={"droppableId": "s0", "index": 1})
        )

        controller.request_move.assert_awaited_once_with("opp-1", "s0", "s0", 1)

    async def test_stage_drag_goes_to_reorder(self) -> None:
        dispatcher, controller, reorder = _make_dispatcher()

        result = await dispatcher.handle_drag_end(
            {
                "draggableId": "s2",
                "type": "stage",
                "source": {"droppableId": "board", "index": 2},
                "destination": {"droppableId": "board", "index": 0},
            }
        )

        assert result.kind == DragDispositionKind.STAGE_REORDER
        assert result.reordered is True
        reorder.reorder.assert_awaited_once_with("s2", 2, 0)
        controller.request_move.assert_not_awaited()

    async def test_drag_while_busy_is_rejected(self) -> None:
        dispatcher, controller, reorder = _make_dispatcher(idle=False)

        with pytest.raises(MoveInProgressError):
            await dispatcher.handle_drag_end(_make_raw())

        with pytest.raises(MoveInProgressError):
            await dispatcher.handle_drag_end(
                _make_raw("stage", draggableId="s1", source={"droppableId": "b", "index": 1})
            )

        controller.request_move.assert_not_awaited()
        reorder.reorder.assert_not_awaited()

    async def test_ignored_drop_while_busy_is_still_ignored(self) -> None:
        dispatcher, _, _ = _make_dispatcher(idle=False)

        result = await dispatcher.handle_drag_end(_make_raw(destination=None))

        assert result.kind == DragDispositionKind.IGNORED


# ── Quick navigation ─────────────────────────────────────────────────────────


class TestMoveToAdjacentStage:
    """Tests for move_to_adjacent_stage."""

    async def test_next_moves_to_end_of_following_stage(self) -> None:
        dispatcher, controller, _ = _make_dispatcher()

        result = await dispatcher.move_to_adjacent_stage(
            "opp-1-1", "s1", NavigationDirection.NEXT
        )

        assert result.kind == DragDispositionKind.OPPORTUNITY_MOVE
        controller.request_move.assert_awaited_once_with("opp-1-1", "s1", "s2", 2)

    async def test_previous_accepts_plain_string(self) -> None:
        dispatcher, controller, _ = _make_dispatcher()

        await dispatcher.move_to_adjacent_stage("opp-1-0", "s1", "previous")

        controller.request_move.assert_awaited_once_with("opp-1-0", "s1", "s0", 2)

    async def test_edges_are_noops(self) -> None:
        dispatcher, controller, _ = _make_dispatcher()

        first = await dispatcher.move_to_adjacent_stage("opp-0-0", "s0", "previous")
        last = await dispatcher.move_to_adjacent_stage("opp-2-0", "s2", "next")

        assert first.kind == DragDispositionKind.IGNORED
        assert last.kind == DragDispositionKind.IGNORED
        controller.request_move.assert_not_awaited()

    async def test_unknown_stage_or_opportunity(self) -> None:
        dispatcher, _, _ = _make_dispatcher()

        with pytest.raises(DragValidationError):
            await dispatcher.move_to_adjacent_stage("opp-1-0", "missing", "next")
        with pytest.raises(DragValidationError):
            await dispatcher.move_to_adjacent_stage("opp-0-0", "s1", "next")

    async def test_unknown_direction(self) -> None:
        dispatcher, _, _ = _make_dispatcher()

        with pytest.raises(DragValidationError):
            await dispatcher.move_to_adjacent_stage("opp-1-0", "s1", "sideways")

    async def test_navigation_respects_guard(self) -> None:
        dispatcher, _, _ = _make_dispatcher(idle=False)

        with pytest.raises(MoveInProgressError):
            await dispatcher.move_to_adjacent_stage("opp-1-0", "s1", "next")
