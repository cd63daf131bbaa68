"""Pending move holder and the stage-transition state machine.

A gated move is suspended in a single-slot PendingMoveHolder while the
caller collects fields and reasons through sequential dialogs. The slot is
cleared on cancel, on completion, and on any unrecoverable error, so a stale
operation can never be replayed.

TransitionState tracks where the one in-flight move is:

    IDLE -> GATE_EVALUATING -> (DIRECT_MOVE | AWAITING_FIELDS | AWAITING_REASONS)
         -> EXECUTING -> IDLE

AWAITING_FIELDS moves on to AWAITING_REASONS when a reason is still needed
after the fields are supplied. ABORTED is reachable from every non-IDLE
state and always settles back to IDLE. Steps outside
VALID_STATE_TRANSITIONS raise InvalidTransitionError.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, Field

from src.stageflow.funnels.schemas import Opportunity, RequiredField
from src.stageflow.moves.errors import InvalidTransitionError

logger = structlog.get_logger(__name__)


# ── Transition State Machine ────────────────────────────────────────────────


class TransitionState(str, Enum):
    """Lifecycle of one stage-transition attempt."""

    IDLE = "idle"
    GATE_EVALUATING = "gate_evaluating"
    DIRECT_MOVE = "direct_move"
    AWAITING_FIELDS = "awaiting_fields"
    AWAITING_REASONS = "awaiting_reasons"
    EXECUTING = "executing"
    ABORTED = "aborted"


# Maps each state to the set of states it can move TO.
VALID_STATE_TRANSITIONS: dict[TransitionState, set[TransitionState]] = {
    TransitionState.IDLE: {TransitionState.GATE_EVALUATING},
    TransitionState.GATE_EVALUATING: {
        TransitionState.DIRECT_MOVE,
        TransitionState.AWAITING_FIELDS,
        TransitionState.AWAITING_REASONS,
        TransitionState.ABORTED,
    },
    TransitionState.DIRECT_MOVE: {TransitionState.EXECUTING, TransitionState.ABORTED},
    TransitionState.AWAITING_FIELDS: {
        TransitionState.AWAITING_REASONS,
        TransitionState.EXECUTING,
        TransitionState.ABORTED,
    },
    TransitionState.AWAITING_REASONS: {
        TransitionState.EXECUTING,
        TransitionState.ABORTED,
    },
    TransitionState.EXECUTING: {TransitionState.IDLE, TransitionState.ABORTED},
    TransitionState.ABORTED: {TransitionState.IDLE},
}


def validate_state_transition(
    from_state: TransitionState, to_state: TransitionState
) -> None:
    """Raise InvalidTransitionError unless from_state may step to to_state."""
    if to_state not in VALID_STATE_TRANSITIONS.get(from_state, set()):
        raise InvalidTransitionError(from_state.value, to_state.value)


class TransitionTracker:
    """Current TransitionState with validated steps."""

    def __init__(self) -> None:
        self._state = TransitionState.IDLE

    @property
    def state(self) -> TransitionState:
        return self._state

    @property
    def is_idle(self) -> bool:
        return self._state == TransitionState.IDLE

    def advance(self, to_state: TransitionState) -> None:
        validate_state_transition(self._state, to_state)
        logger.debug(
            "transition.state_changed",
            from_state=self._state.value,
            to_state=to_state.value,
        )
        self._state = to_state

    def abort(self) -> None:
        """Step to ABORTED and settle back to IDLE. No-op when already IDLE."""
        if self._state == TransitionState.IDLE:
            return
        if self._state != TransitionState.ABORTED:
            self.advance(TransitionState.ABORTED)
        self.advance(TransitionState.IDLE)


# ── Pending Move ────────────────────────────────────────────────────────────


class MoveExtraData(BaseModel):
    """Values collected by the gating dialogs for one move."""

    custom_fields: dict[str, Any] = Field(default_factory=dict)
    win_reason: str | None = None
    loss_reason: str | None = None

    def is_empty(self) -> bool:
        return not self.custom_fields and not self.win_reason and not self.loss_reason


class PendingMoveOperation(BaseModel):
    """A gated move waiting for user-supplied data. Never persisted."""

    opportunity: Opportunity
    source_stage_id: str
    destination_stage_id: str
    destination_index: int = Field(ge=0)
    required_fields: list[RequiredField] = Field(default_factory=list)
    needs_win_reason: bool = False
    needs_loss_reason: bool = False
    available_win_reasons: list[str] = Field(default_factory=list)
    available_loss_reasons: list[str] = Field(default_factory=list)
    collected: MoveExtraData = Field(default_factory=MoveExtraData)

    @property
    def needs_reason(self) -> bool:
        return self.needs_win_reason or self.needs_loss_reason


class PendingMoveHolder:
    """Single slot holding at most one PendingMoveOperation.

    ``set`` overwrites without queuing; the dispatcher guard is what keeps
    a second move from arriving while one is pending. Replacing the slot
    with an updated copy of the same move (collected data added) is the
    normal dialog flow; replacing a different move is logged.
    """

    def __init__(self) -> None:
        self._operation: PendingMoveOperation | None = None

    def set(self, operation: PendingMoveOperation) -> None:
        if (
            self._operation is not None
            and self._operation.opportunity.id != operation.opportunity.id
        ):
            logger.warning(
                "pending_move.overwritten",
                previous_opportunity_id=self._operation.opportunity.id,
                opportunity_id=operation.opportunity.id,
            )
        self._operation = operation

    def get(self) -> PendingMoveOperation | None:
        return self._operation

    def clear(self) -> None:
        self._operation = None

    @property
    def has_pending(self) -> bool:
        return self._operation is not None
