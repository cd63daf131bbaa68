"""Tests for the transition state machine and the pending move holder."""

from __future__ import annotations

import pytest

from src.stageflow.funnels.schemas import Opportunity
from src.stageflow.moves.errors import InvalidTransitionError
from src.stageflow.moves.pending import (
    VALID_STATE_TRANSITIONS,
    MoveExtraData,
    PendingMoveHolder,
    PendingMoveOperation,
    TransitionState,
    TransitionTracker,
    validate_state_transition,
)


def _make_operation(opportunity_id: str = "opp-1", **overrides) -> PendingMoveOperation:
    defaults = {
        "opportunity": Opportunity(
            id=opportunity_id, funnel_id="funnel-1", stage_id="stage-t"
        ),
        "source_stage_id": "stage-t",
        "destination_stage_id": "stage-s",
        "destination_index": 0,
    }
    defaults.update(overrides)
    return PendingMoveOperation(**defaults)


class TestStateTransitions:
    """Tests for VALID_STATE_TRANSITIONS and validate_state_transition."""

    def test_every_state_has_an_entry(self) -> None:
        assert set(VALID_STATE_TRANSITIONS) == set(TransitionState)

    def test_every_non_idle_state_can_abort(self) -> None:
        """ABORTED is reachable from every state except IDLE and itself."""
        for state in TransitionState:
            if state in (TransitionState.IDLE, TransitionState.ABORTED):
                continue
            assert TransitionState.ABORTED in VALID_STATE_TRANSITIONS[state]

    def test_idle_cannot_skip_gate_evaluation(self) -> None:
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_state_transition(TransitionState.IDLE, TransitionState.EXECUTING)

        assert exc_info.value.from_state == "idle"
        assert exc_info.value.to_state == "executing"

    def test_awaiting_reasons_cannot_go_back_to_fields(self) -> None:
        with pytest.raises(InvalidTransitionError):
            validate_state_transition(
                TransitionState.AWAITING_REASONS, TransitionState.AWAITING_FIELDS
            )

    def test_fields_can_hand_over_to_reasons(self) -> None:
        validate_state_transition(
            TransitionState.AWAITING_FIELDS, TransitionState.AWAITING_REASONS
        )


class TestTransitionTracker:
    """Tests for the tracker's advance/abort behaviour."""

    def test_starts_idle(self) -> None:
        tracker = TransitionTracker()

        assert tracker.state == TransitionState.IDLE
        assert tracker.is_idle

    def test_full_direct_path(self) -> None:
        tracker = TransitionTracker()

        for state in (
            TransitionState.GATE_EVALUATING,
            TransitionState.DIRECT_MOVE,
            TransitionState.EXECUTING,
            TransitionState.IDLE,
        ):
            tracker.advance(state)

        assert tracker.is_idle

    def test_entering_gate_twice_is_rejected(self) -> None:
        """A second move cannot start while one is being evaluated."""
        tracker = TransitionTracker()
        tracker.advance(TransitionState.GATE_EVALUATING)

        with pytest.raises(InvalidTransitionError):
            tracker.advance(TransitionState.GATE_EVALUATING)

    def test_abort_settles_back_to_idle(self) -> None:
        tracker = TransitionTracker()
        tracker.advance(TransitionState.GATE_EVALUATING)
        tracker.advance(TransitionState.AWAITING_FIELDS)

        tracker.abort()

        assert tracker.state == TransitionState.IDLE

    def test_abort_when_idle_is_noop(self) -> None:
        tracker = TransitionTracker()

        tracker.abort()

        assert tracker.is_idle


class TestPendingMoveHolder:
    """Tests for the single-slot holder."""

    def test_empty_by_default(self) -> None:
        holder = PendingMoveHolder()

        assert holder.get() is None
        assert not holder.has_pending

    def test_set_get_clear(self) -> None:
        holder = PendingMoveHolder()
        operation = _make_operation()

        holder.set(operation)
        assert holder.get() is operation
        assert holder.has_pending

        holder.clear()
        assert holder.get() is None

    def test_set_overwrites_instead_of_queuing(self) -> None:
        """Only the last operation is held."""
        holder = PendingMoveHolder()
        holder.set(_make_operation("opp-1"))

        holder.set(_make_operation("opp-2"))

        assert holder.get().opportunity.id == "opp-2"

    def test_operation_needs_reason(self) -> None:
        assert _make_operation(needs_loss_reason=True).needs_reason
        assert not _make_operation().needs_reason

    def test_negative_destination_index_rejected(self) -> None:
        with pytest.raises(ValueError):
            _make_operation(destination_index=-1)


class TestMoveExtraData:
    def test_is_empty(self) -> None:
        assert MoveExtraData().is_empty()
        assert not MoveExtraData(win_reason="price").is_empty()
        assert not MoveExtraData(custom_fields={"cpf": "1"}).is_empty()
