"""In-memory board state for one funnel.

The board holds the funnel's stage list (each stage carrying its column of
opportunities). It is the single shared mutable resource of the engine and
is only ever replaced wholesale: the helpers below build new Stage and
Opportunity objects via ``model_copy`` instead of mutating existing ones,
so subscribers can detect changes by identity.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

import structlog

from src.stageflow.funnels.schemas import Opportunity, Stage

logger = structlog.get_logger(__name__)

BoardListener = Callable[[list[Stage]], None]


def sort_stages(stages: Sequence[Stage]) -> list[Stage]:
    """Return stages in column order."""
    return sorted(stages, key=lambda s: s.order)


def reorder_stages(
    stages: Sequence[Stage], source_index: int, destination_index: int
) -> list[Stage]:
    """Move the stage at source_index to destination_index.

    Every stage gets ``order = position`` in the result, so the funnel's
    orders stay a contiguous permutation of 0..n-1 however many reorders
    are applied. Stages whose order is unchanged keep their identity.
    """
    reordered = list(stages)
    moved = reordered.pop(source_index)
    reordered.insert(destination_index, moved)
    return [
        stage if stage.order == position else stage.model_copy(update={"order": position})
        for position, stage in enumerate(reordered)
    ]


def move_opportunity(
    stages: Sequence[Stage],
    opportunity: Opportunity,
    source_stage_id: str,
    destination_stage_id: str,
    destination_index: int,
) -> list[Stage]:
    """Return a new stage list with opportunity moved between columns.

    The opportunity is removed from every column (not just the source) so
    that it can never be owned by two stages, then inserted into the
    destination column at destination_index (clamped to the column length).
    """
    result: list[Stage] = []
    for stage in stages:
        kept = [o for o in stage.opportunities if o.id != opportunity.id]
        if stage.id == destination_stage_id:
            index = max(0, min(destination_index, len(kept)))
            kept.insert(index, opportunity)
            result.append(stage.model_copy(update={"opportunities": kept}))
        elif len(kept) != len(stage.opportunities) or stage.id == source_stage_id:
            result.append(stage.model_copy(update={"opportunities": kept}))
        else:
            result.append(stage)
    return result


class BoardState:
    """Holder of the current stage list for one funnel.

    Args:
        funnel_id: Funnel the board displays.
        stages: Initial stages (sorted by order on entry).
    """

    def __init__(self, funnel_id: str, stages: Sequence[Stage] = ()) -> None:
        self.funnel_id = funnel_id
        self._stages: list[Stage] = sort_stages(stages)
        self._listeners: list[BoardListener] = []

    @property
    def stages(self) -> list[Stage]:
        """Current stage list. Treat as read-only; use replace() to change it."""
        return self._stages

    def replace(self, stages: Sequence[Stage]) -> None:
        """Swap in a new stage list and notify listeners."""
        self._stages = sort_stages(stages)
        for listener in list(self._listeners):
            try:
                listener(self._stages)
            except Exception:
                logger.warning("board.listener_failed", funnel_id=self.funnel_id, exc_info=True)

    def subscribe(self, listener: BoardListener) -> Callable[[], None]:
        """Register a change listener, return a function that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def find_stage(self, stage_id: str) -> Stage | None:
        for stage in self._stages:
            if stage.id == stage_id:
                return stage
        return None

    def index_of_stage(self, stage_id: str) -> int | None:
        for index, stage in enumerate(self._stages):
            if stage.id == stage_id:
                return index
        return None

    def find_opportunity(self, stage_id: str, opportunity_id: str) -> Opportunity | None:
        """Find an opportunity in a specific stage's column."""
        stage = self.find_stage(stage_id)
        if stage is None:
            return None
        for opp in stage.opportunities:
            if opp.id == opportunity_id:
                return opp
        return None

    def owners_of(self, opportunity_id: str) -> list[str]:
        """IDs of every stage whose column holds the opportunity."""
        return [
            stage.id
            for stage in self._stages
            if any(o.id == opportunity_id for o in stage.opportunities)
        ]
