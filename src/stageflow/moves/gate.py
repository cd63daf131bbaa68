"""Move gate evaluator -- decides what a stage move needs before it can run.

Given the destination stage's configuration, computes the unmet required
custom fields and the win/loss reason requirements, and classifies the move:

- DIRECT: nothing to collect, execute immediately
- NEEDS_FIELDS: required custom fields are missing (any reason requirement
  is deferred until the fields are supplied)
- NEEDS_REASONS_ONLY: fields are satisfied but a win/loss reason is required

There is no separate "needs both" class: it is NEEDS_FIELDS with the reason
flags set, because gating is sequential (fields first, then reasons).

The evaluator has no side effects. The only I/O is an optional lookup of
the destination's required-field definitions from the store; if that lookup
fails the move is aborted with GatingError rather than treated as DIRECT.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, Field

from src.stageflow.funnels.schemas import FieldType, Opportunity, RequiredField, Stage
from src.stageflow.funnels.store import StageStore
from src.stageflow.moves.errors import GatingError, InconsistentStageError

logger = structlog.get_logger(__name__)


class MoveClassification(str, Enum):
    """What a move needs before it can execute."""

    DIRECT = "direct"
    NEEDS_FIELDS = "needs_fields"
    NEEDS_REASONS_ONLY = "needs_reasons_only"


class GateResult(BaseModel):
    """Outcome of evaluating a move against its destination stage."""

    classification: MoveClassification
    missing_fields: list[RequiredField] = Field(default_factory=list)
    needs_win_reason: bool = False
    needs_loss_reason: bool = False
    available_win_reasons: list[str] = Field(default_factory=list)
    available_loss_reasons: list[str] = Field(default_factory=list)

    @property
    def needs_reason(self) -> bool:
        return self.needs_win_reason or self.needs_loss_reason

    @property
    def is_direct(self) -> bool:
        return self.classification == MoveClassification.DIRECT


def missing_required_fields(
    opportunity: Opportunity, required_fields: list[RequiredField]
) -> list[RequiredField]:
    """Required fields (is_required=True) the opportunity has not filled."""
    custom_fields = opportunity.custom_fields or {}
    return [
        field
        for field in required_fields
        if field.is_required and not field.is_satisfied_by(custom_fields)
    ]


def invalid_field_values(
    required_fields: list[RequiredField], values: dict[str, Any]
) -> list[str]:
    """Names of supplied values that do not fit their field's type.

    Only fields present in ``values`` are checked; absence is handled by
    missing_required_fields.
    """
    invalid: list[str] = []
    for field in required_fields:
        if field.name not in values:
            continue
        value = values[field.name]
        if value is None or value == "":
            continue

        if field.type == FieldType.NUMBER:
            if isinstance(value, bool):
                invalid.append(field.name)
                continue
            try:
                float(value)
            except (TypeError, ValueError):
                invalid.append(field.name)
        elif field.type == FieldType.DATE:
            if isinstance(value, (date, datetime)):
                continue
            try:
                date.fromisoformat(str(value)[:10])
            except ValueError:
                invalid.append(field.name)
        elif field.type == FieldType.SELECT:
            if field.options and value not in field.options:
                invalid.append(field.name)
        elif field.type == FieldType.CHECKBOX:
            if not isinstance(value, bool):
                invalid.append(field.name)
    return invalid


def classify_move(
    opportunity: Opportunity,
    source_stage_id: str,
    destination_stage: Stage,
    required_fields: list[RequiredField] | None = None,
) -> GateResult:
    """Classify a move using the given field definitions. Pure.

    Args:
        opportunity: Opportunity being moved (with its current custom_fields).
        source_stage_id: Stage the opportunity is leaving.
        destination_stage: Stage it is entering.
        required_fields: Field definitions to check; defaults to the
            destination stage's own ``required_fields``.

    Returns:
        GateResult describing what the move still needs.

    Raises:
        InconsistentStageError: Destination is flagged both win and loss.
    """
    if source_stage_id == destination_stage.id:
        # Repositioning inside a column never hits backend requirements
        return GateResult(classification=MoveClassification.DIRECT)

    if destination_stage.is_win_stage and destination_stage.is_loss_stage:
        raise InconsistentStageError(destination_stage.id)

    fields = (
        required_fields if required_fields is not None else destination_stage.required_fields
    )
    missing = missing_required_fields(opportunity, fields)
    needs_win = destination_stage.is_win_stage and destination_stage.win_reason_required
    needs_loss = destination_stage.is_loss_stage and destination_stage.loss_reason_required

    if missing:
        classification = MoveClassification.NEEDS_FIELDS
    elif needs_win or needs_loss:
        classification = MoveClassification.NEEDS_REASONS_ONLY
    else:
        classification = MoveClassification.DIRECT

    return GateResult(
        classification=classification,
        missing_fields=missing,
        needs_win_reason=needs_win,
        needs_loss_reason=needs_loss,
        available_win_reasons=list(destination_stage.win_reasons) if needs_win else [],
        available_loss_reasons=list(destination_stage.loss_reasons) if needs_loss else [],
    )


class MoveGateEvaluator:
    """Evaluate drag moves against destination stage requirements.

    When a store is configured and the destination stage object carries no
    field definitions (board stages are often loaded without them), the
    definitions are fetched with ``get_stage_requirements``.

    Args:
        store: Optional StageStore used for the required-field lookup.
    """

    def __init__(self, store: StageStore | None = None) -> None:
        self._store = store

    async def evaluate(
        self,
        opportunity: Opportunity,
        source_stage_id: str,
        destination_stage: Stage,
    ) -> GateResult:
        """Classify a move, looking up field definitions when needed.

        Args:
            opportunity: Opportunity being moved.
            source_stage_id: Stage the opportunity is leaving.
            destination_stage: Stage it is entering.

        Returns:
            GateResult for the move.

        Raises:
            GatingError: The required-field lookup failed, or the destination
                stage configuration is inconsistent.
        """
        if source_stage_id == destination_stage.id:
            return GateResult(classification=MoveClassification.DIRECT)

        required_fields = destination_stage.required_fields
        if not required_fields and self._store is not None:
            try:
                requirements = await self._store.get_stage_requirements(
                    destination_stage.id
                )
            except Exception as exc:
                logger.warning(
                    "gate.requirements_lookup_failed",
                    stage_id=destination_stage.id,
                    error=str(exc),
                )
                raise GatingError(
                    f"Could not load requirements for stage {destination_stage.id}"
                ) from exc
            required_fields = requirements.required_fields

        result = classify_move(
            opportunity, source_stage_id, destination_stage, required_fields
        )
        logger.debug(
            "gate.evaluated",
            opportunity_id=opportunity.id,
            from_stage=source_stage_id,
            to_stage=destination_stage.id,
            classification=result.classification.value,
            missing=[f.name for f in result.missing_fields],
            needs_win_reason=result.needs_win_reason,
            needs_loss_reason=result.needs_loss_reason,
        )
        return result
