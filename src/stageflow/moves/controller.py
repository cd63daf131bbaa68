"""Transition controller -- drives one opportunity move through its gates.

The controller owns the TransitionTracker and the PendingMoveHolder and is
the only entry point for opportunity moves:

- request_move: evaluate the gate; execute DIRECT moves immediately,
  otherwise park the move in the holder and wait for dialog input.
- submit_fields: check that the missing required fields are now present
  and well-typed, then re-evaluate. A remaining reason requirement moves
  to AWAITING_REASONS, otherwise the move executes.
- submit_reason: check the win/loss reason, then execute.
- cancel: drop the pending move. Nothing was mutated yet because gating
  happens strictly before the optimistic board update.

Gating failures are terminal: one failure notification, pending slot
cleared, state back to IDLE. Invalid dialog submissions raise
MissingRequirementError and leave the pending move in place.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog
from pydantic import BaseModel

from src.stageflow.moves.board import BoardState
from src.stageflow.moves.errors import (
    DragValidationError,
    GatingError,
    InvalidTransitionError,
    MissingRequirementError,
    MoveInProgressError,
)
from src.stageflow.moves.executor import MoveOutcome, OpportunityMoveExecutor
from src.stageflow.moves.gate import (
    MoveClassification,
    MoveGateEvaluator,
    classify_move,
    invalid_field_values,
)
from src.stageflow.moves.notifier import UserNotifier
from src.stageflow.moves.pending import (
    PendingMoveHolder,
    PendingMoveOperation,
    TransitionState,
    TransitionTracker,
)

logger = structlog.get_logger(__name__)


class TransitionResult(BaseModel):
    """Where a controller call left the move."""

    state: TransitionState
    classification: MoveClassification | None = None
    pending: PendingMoveOperation | None = None
    outcome: MoveOutcome | None = None
    completed: bool = False
    aborted: bool = False
    error: str | None = None


class TransitionController:
    """Run opportunity moves through gate, dialogs and execution.

    Args:
        board: Board state the moves apply to.
        evaluator: MoveGateEvaluator for destination requirements.
        executor: OpportunityMoveExecutor that applies and persists moves.
        notifier: UserNotifier for terminal gating failures.
        holder: Pending move slot (a fresh one by default).
        user_id: Acting user recorded in stage history.
    """

    def __init__(
        self,
        board: BoardState,
        evaluator: MoveGateEvaluator,
        executor: OpportunityMoveExecutor,
        notifier: UserNotifier,
        holder: PendingMoveHolder | None = None,
        user_id: str | None = None,
    ) -> None:
        self._board = board
        self._evaluator = evaluator
        self._executor = executor
        self._notifier = notifier
        self._holder = holder or PendingMoveHolder()
        self._tracker = TransitionTracker()
        self._user_id = user_id

    @property
    def state(self) -> TransitionState:
        return self._tracker.state

    @property
    def is_idle(self) -> bool:
        return self._tracker.is_idle

    @property
    def pending(self) -> PendingMoveOperation | None:
        return self._holder.get()

    # ── Entry point ──────────────────────────────────────────────────────────

    async def request_move(
        self,
        opportunity_id: str,
        source_stage_id: str,
        destination_stage_id: str,
        destination_index: int,
    ) -> TransitionResult:
        """Start a move of an opportunity to another stage (or position).

        Args:
            opportunity_id: Opportunity being dragged.
            source_stage_id: Stage whose column currently holds it.
            destination_stage_id: Stage it was dropped on.
            destination_index: Drop position inside the destination column.

        Returns:
            TransitionResult. ``completed``/``aborted`` for direct moves and
            gating failures, otherwise the AWAITING_* state with the pending
            operation.

        Raises:
            MoveInProgressError: Another move is gated or executing.
            DragValidationError: Unknown opportunity or stage.
        """
        if not self._tracker.is_idle:
            raise MoveInProgressError(
                f"Cannot start a move while in state {self._tracker.state.value}"
            )

        opportunity = self._board.find_opportunity(source_stage_id, opportunity_id)
        if opportunity is None:
            raise DragValidationError(
                f"Opportunity {opportunity_id} not found in stage {source_stage_id}"
            )
        destination = self._board.find_stage(destination_stage_id)
        if destination is None:
            raise DragValidationError(f"Unknown destination stage {destination_stage_id}")
        if destination_index < 0:
            raise DragValidationError(f"Invalid destination index {destination_index}")

        self._tracker.advance(TransitionState.GATE_EVALUATING)
        try:
            gate = await self._evaluator.evaluate(
                opportunity, source_stage_id, destination
            )
        except GatingError as exc:
            return self._abort_with_failure(exc)
        except (Exception, asyncio.CancelledError):
            self._tracker.abort()
            raise

        if gate.is_direct:
            self._tracker.advance(TransitionState.DIRECT_MOVE)
            self._tracker.advance(TransitionState.EXECUTING)
            return await self._execute(
                PendingMoveOperation(
                    opportunity=opportunity,
                    source_stage_id=source_stage_id,
                    destination_stage_id=destination_stage_id,
                    destination_index=destination_index,
                ),
                gate.classification,
            )

        operation = PendingMoveOperation(
            opportunity=opportunity,
            source_stage_id=source_stage_id,
            destination_stage_id=destination_stage_id,
            destination_index=destination_index,
            required_fields=gate.missing_fields,
            needs_win_reason=gate.needs_win_reason,
            needs_loss_reason=gate.needs_loss_reason,
            available_win_reasons=gate.available_win_reasons,
            available_loss_reasons=gate.available_loss_reasons,
        )
        self._holder.set(operation)

        if gate.classification == MoveClassification.NEEDS_FIELDS:
            self._tracker.advance(TransitionState.AWAITING_FIELDS)
        else:
            self._tracker.advance(TransitionState.AWAITING_REASONS)

        logger.info(
            "transition.gated",
            opportunity_id=opportunity_id,
            to_stage=destination_stage_id,
            classification=gate.classification.value,
            missing=[f.name for f in gate.missing_fields],
        )
        return TransitionResult(
            state=self._tracker.state,
            classification=gate.classification,
            pending=operation,
        )

    # ── Dialog submissions ───────────────────────────────────────────────────

    async def submit_fields(self, values: dict[str, Any]) -> TransitionResult:
        """Supply the missing required custom fields of the pending move.

        Raises:
            InvalidTransitionError: No move is waiting for fields.
            MissingRequirementError: A required field is still empty or a
                value does not fit its field type. The move stays pending.
        """
        operation = self._require_pending(TransitionState.AWAITING_FIELDS)

        collected_fields = {**operation.collected.custom_fields, **values}
        merged = {**operation.opportunity.custom_fields, **collected_fields}
        problems = [
            f.name
            for f in operation.required_fields
            if f.is_required and not f.is_satisfied_by(merged)
        ]
        problems += [
            name
            for name in invalid_field_values(operation.required_fields, values)
            if name not in problems
        ]
        if problems:
            logger.info(
                "transition.fields_rejected",
                opportunity_id=operation.opportunity.id,
                fields=problems,
            )
            raise MissingRequirementError(problems)

        operation = operation.model_copy(
            update={
                "collected": operation.collected.model_copy(
                    update={"custom_fields": collected_fields}
                )
            }
        )

        destination = self._board.find_stage(operation.destination_stage_id)
        if destination is None:
            return self._abort_with_failure(
                GatingError(f"Stage {operation.destination_stage_id} no longer exists")
            )
        try:
            gate = classify_move(
                operation.opportunity.model_copy(update={"custom_fields": merged}),
                operation.source_stage_id,
                destination,
                operation.required_fields,
            )
        except GatingError as exc:
            return self._abort_with_failure(exc)

        if gate.needs_reason:
            operation = operation.model_copy(
                update={
                    "needs_win_reason": gate.needs_win_reason,
                    "needs_loss_reason": gate.needs_loss_reason,
                    "available_win_reasons": gate.available_win_reasons,
                    "available_loss_reasons": gate.available_loss_reasons,
                }
            )
            self._holder.set(operation)
            self._tracker.advance(TransitionState.AWAITING_REASONS)
            return TransitionResult(
                state=self._tracker.state,
                classification=gate.classification,
                pending=operation,
            )

        self._holder.set(operation)
        self._tracker.advance(TransitionState.EXECUTING)
        return await self._execute(operation, MoveClassification.NEEDS_FIELDS)

    async def submit_reason(
        self, win_reason: str | None = None, loss_reason: str | None = None
    ) -> TransitionResult:
        """Supply the win/loss reason of the pending move and execute it.

        A required reason must be non-empty and, when the stage defines an
        allowed list, one of its entries.

        Raises:
            InvalidTransitionError: No move is waiting for a reason.
            MissingRequirementError: The reason is missing or not allowed.
        """
        operation = self._require_pending(TransitionState.AWAITING_REASONS)

        problems: list[str] = []
        win = _check_reason(
            "win_reason",
            win_reason,
            operation.needs_win_reason,
            operation.available_win_reasons,
            problems,
        )
        loss = _check_reason(
            "loss_reason",
            loss_reason,
            operation.needs_loss_reason,
            operation.available_loss_reasons,
            problems,
        )
        if problems:
            logger.info(
                "transition.reason_rejected",
                opportunity_id=operation.opportunity.id,
                fields=problems,
            )
            raise MissingRequirementError(problems)

        operation = operation.model_copy(
            update={
                "collected": operation.collected.model_copy(
                    update={"win_reason": win, "loss_reason": loss}
                )
            }
        )
        self._holder.set(operation)
        self._tracker.advance(TransitionState.EXECUTING)
        classification = (
            MoveClassification.NEEDS_FIELDS
            if operation.collected.custom_fields
            else MoveClassification.NEEDS_REASONS_ONLY
        )
        return await self._execute(operation, classification)

    def cancel(self) -> TransitionResult:
        """Discard the pending move. No-op when idle.

        Raises:
            InvalidTransitionError: A move is being evaluated or executed
                and can no longer be cancelled.
        """
        state = self._tracker.state
        if state == TransitionState.IDLE:
            return TransitionResult(state=state)
        if state not in (TransitionState.AWAITING_FIELDS, TransitionState.AWAITING_REASONS):
            raise InvalidTransitionError(state.value, TransitionState.ABORTED.value)

        operation = self._holder.get()
        self._holder.clear()
        self._tracker.abort()
        logger.info(
            "transition.cancelled",
            opportunity_id=operation.opportunity.id if operation else None,
            from_state=state.value,
        )
        return TransitionResult(state=self._tracker.state, aborted=True)

    # ── Internals ────────────────────────────────────────────────────────────

    def _require_pending(self, expected: TransitionState) -> PendingMoveOperation:
        state = self._tracker.state
        operation = self._holder.get()
        if state != expected or operation is None:
            target = (
                TransitionState.EXECUTING
                if expected == TransitionState.AWAITING_REASONS
                else TransitionState.AWAITING_REASONS
            )
            raise InvalidTransitionError(state.value, target.value)
        return operation

    async def _execute(
        self, operation: PendingMoveOperation, classification: MoveClassification
    ) -> TransitionResult:
        extra = operation.collected if not operation.collected.is_empty() else None
        try:
            outcome = await self._executor.complete(
                operation.opportunity,
                operation.source_stage_id,
                operation.destination_stage_id,
                operation.destination_index,
                extra_data=extra,
                user_id=self._user_id,
            )
        except asyncio.CancelledError:
            logger.warning(
                "transition.execute_cancelled",
                opportunity_id=operation.opportunity.id,
            )
            self._tracker.abort()
            raise
        except Exception:
            logger.error(
                "transition.execute_failed",
                opportunity_id=operation.opportunity.id,
                exc_info=True,
            )
            self._notifier.failure("Could not move the opportunity. Please try again.")
            self._tracker.abort()
            raise
        finally:
            self._holder.clear()

        if outcome.success:
            self._tracker.advance(TransitionState.IDLE)
        else:
            self._tracker.abort()
        return TransitionResult(
            state=self._tracker.state,
            classification=classification,
            outcome=outcome,
            completed=outcome.success,
            aborted=not outcome.success,
            error=outcome.error,
        )

    def _abort_with_failure(self, exc: Exception) -> TransitionResult:
        logger.warning("transition.gating_failed", error=str(exc))
        self._notifier.failure(str(exc))
        self._holder.clear()
        self._tracker.abort()
        return TransitionResult(state=self._tracker.state, aborted=True, error=str(exc))


def _check_reason(
    name: str,
    value: str | None,
    required: bool,
    allowed: list[str],
    problems: list[str],
) -> str | None:
    """Normalize one reason and record a problem if it fails its requirement.

    A reason the destination does not ask for is dropped, so a loss-stage
    move never records a win reason and vice versa.
    """
    if not required:
        return None
    reason = value.strip() if value else None
    if not reason:
        problems.append(name)
    elif allowed and reason not in allowed:
        problems.append(name)
    return reason
