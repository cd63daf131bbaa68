"""Board engine factory.

Wires one funnel board: loads its stages, then builds the gate evaluator,
move executor, transition controller, reorder coordinator and drag
dispatcher around a shared BoardState and SideEffectQueue. structlog is
configured from the same Settings before the board loads. Settings supply
the webhook timeout/retries, the side-effect queue bound and the default
required-task offset.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.stageflow.config import Settings, get_settings
from src.stageflow.core.database import get_session
from src.stageflow.core.logging import configure_structlog
from src.stageflow.funnels.history import StageHistoryRepository
from src.stageflow.funnels.repository import FunnelRepository
from src.stageflow.moves.board import BoardState
from src.stageflow.moves.controller import TransitionController
from src.stageflow.moves.dispatcher import DragEventDispatcher
from src.stageflow.moves.executor import OpportunityMoveExecutor
from src.stageflow.moves.gate import MoveGateEvaluator
from src.stageflow.moves.notifier import LoggingNotifier, UserNotifier
from src.stageflow.moves.reorder import StageReorderCoordinator
from src.stageflow.moves.side_effects import SideEffectQueue
from src.stageflow.webhooks.dispatcher import WebhookDispatcher

logger = structlog.get_logger(__name__)


@dataclass
class BoardEngine:
    """Everything one board needs to handle drags and dialogs."""

    board: BoardState
    dispatcher: DragEventDispatcher
    controller: TransitionController
    reorder: StageReorderCoordinator
    executor: OpportunityMoveExecutor
    side_effects: SideEffectQueue

    async def close(self) -> None:
        """Let queued side effects finish, then stop the worker."""
        await self.side_effects.close()


async def create_board_engine(
    funnel_id: str,
    session_factory: Callable[..., AsyncGenerator[AsyncSession, None]] = get_session,
    notifier: UserNotifier | None = None,
    settings: Settings | None = None,
    user_id: str | None = None,
    webhook_transport: httpx.AsyncBaseTransport | None = None,
) -> BoardEngine:
    """Build a BoardEngine for a funnel backed by the SQL repositories.

    Args:
        funnel_id: Funnel to load onto the board.
        session_factory: Async generator of sessions (defaults to get_session).
        notifier: User notifier (defaults to LoggingNotifier).
        settings: Settings override (defaults to get_settings()).
        user_id: Acting user recorded in stage history.
        webhook_transport: Optional httpx transport for webhook delivery.

    Returns:
        A ready BoardEngine. Call ``close()`` when done with it.
    """
    settings = settings or get_settings()
    notifier = notifier or LoggingNotifier()
    configure_structlog(settings)

    repository = FunnelRepository(session_factory)
    history = StageHistoryRepository(session_factory)
    webhooks = WebhookDispatcher(
        repository,
        timeout=settings.WEBHOOK_TIMEOUT,
        max_attempts=settings.WEBHOOK_MAX_RETRIES,
        transport=webhook_transport,
    )

    board = BoardState(funnel_id, await repository.list_stages_by_funnel(funnel_id))
    side_effects = SideEffectQueue(maxsize=settings.SIDE_EFFECT_QUEUE_SIZE)

    executor = OpportunityMoveExecutor(
        board,
        repository,
        history,
        notifier,
        side_effects,
        events=webhooks,
        default_task_hours=settings.REQUIRED_TASK_DEFAULT_HOURS,
    )
    controller = TransitionController(
        board,
        MoveGateEvaluator(repository),
        executor,
        notifier,
        user_id=user_id,
    )
    reorder = StageReorderCoordinator(board, repository, notifier)
    dispatcher = DragEventDispatcher(controller, reorder, board)

    logger.info(
        "engine.board_loaded",
        funnel_id=funnel_id,
        stages=len(board.stages),
        opportunities=sum(len(s.opportunities) for s in board.stages),
    )
    return BoardEngine(
        board=board,
        dispatcher=dispatcher,
        controller=controller,
        reorder=reorder,
        executor=executor,
        side_effects=side_effects,
    )
