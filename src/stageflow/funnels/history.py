"""Stage history repository -- append-only audit trail of stage transitions.

Every completed move appends exactly one row. Rows are never updated or
deleted; pass-through and velocity analytics read them elsewhere.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.stageflow.funnels.models import StageHistoryModel
from src.stageflow.funnels.schemas import StageHistoryEntry
from src.stageflow.funnels.store import HistorySink

logger = structlog.get_logger(__name__)


def _model_to_entry(model: StageHistoryModel) -> StageHistoryEntry:
    """Convert StageHistoryModel to StageHistoryEntry schema."""
    return StageHistoryEntry(
        id=model.id,
        opportunity_id=model.opportunity_id,
        from_stage_id=model.from_stage_id,
        to_stage_id=model.to_stage_id,
        moved_at=model.moved_at,
        user_id=model.user_id,
    )


class StageHistoryRepository(HistorySink):
    """Async persistence for StageHistoryEntry rows.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def record_move(
        self,
        opportunity_id: str,
        from_stage_id: str | None,
        to_stage_id: str,
        user_id: str | None = None,
    ) -> StageHistoryEntry:
        """Append one stage transition.

        Args:
            opportunity_id: Opportunity that moved.
            from_stage_id: Stage it left, None for its first entry into the funnel.
            to_stage_id: Stage it entered.
            user_id: User who performed the move, if known.

        Returns:
            The persisted StageHistoryEntry.
        """
        async for session in self._session_factory():
            model = StageHistoryModel(
                opportunity_id=opportunity_id,
                from_stage_id=from_stage_id,
                to_stage_id=to_stage_id,
                moved_at=datetime.now(timezone.utc),
                user_id=user_id,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            logger.info(
                "stage_history.recorded",
                opportunity_id=opportunity_id,
                from_stage_id=from_stage_id,
                to_stage_id=to_stage_id,
            )
            return _model_to_entry(model)

    async def get_opportunity_history(
        self, opportunity_id: str
    ) -> list[StageHistoryEntry]:
        """All transitions of an opportunity, oldest first."""
        async for session in self._session_factory():
            result = await session.execute(
                select(StageHistoryModel)
                .where(StageHistoryModel.opportunity_id == opportunity_id)
                .order_by(StageHistoryModel.moved_at)
            )
            return [_model_to_entry(m) for m in result.scalars().all()]
