"""Exception hierarchy for the stage-transition engine.

Gating and persistence errors end the current move attempt. Side-effect
failures (history, webhooks, task creation) never surface as exceptions;
they are logged by the side-effect queue.
"""

from __future__ import annotations


class MoveError(Exception):
    """Base class for stage-transition errors."""


class GatingError(MoveError):
    """Destination requirements could not be evaluated or are unmet."""


class InconsistentStageError(GatingError):
    """Stage configuration is self-contradictory (flagged both win and loss)."""

    def __init__(self, stage_id: str) -> None:
        self.stage_id = stage_id
        super().__init__(f"Stage {stage_id} is flagged as both a win and a loss stage")


class MissingRequirementError(MoveError):
    """Data submitted to a gating dialog leaves requirements unmet or invalid.

    Not terminal: the pending move stays in place so the caller can correct
    the values or cancel.
    """

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Missing required values: {', '.join(missing)}")


class PersistenceError(MoveError):
    """The store rejected or failed to apply an update."""


class DragValidationError(MoveError, ValueError):
    """A drag payload is malformed or references unknown stages/opportunities."""


class MoveInProgressError(MoveError):
    """A new move was requested while another one is gated or executing."""


class InvalidTransitionError(MoveError):
    """The transition state machine was asked to take an illegal step."""

    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition state change: {from_state} -> {to_state}")
