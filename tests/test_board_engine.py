"""End-to-end tests for create_board_engine over SQLite.

Drags run through the dispatcher, controller, executor and side-effect
queue against the real repositories; webhook HTTP goes to an
httpx.MockTransport.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import httpx
import structlog

from src.stageflow import engine as engine_module
from src.stageflow.config import Settings
from src.stageflow.engine import create_board_engine
from src.stageflow.funnels.history import StageHistoryRepository
from src.stageflow.funnels.repository import FunnelRepository
from src.stageflow.moves.dispatcher import DragDispositionKind
from src.stageflow.moves.notifier import UserNotifier
from src.stageflow.moves.pending import TransitionState


FUNNEL_ID = "funnel-1"


def _make_settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        WEBHOOK_MAX_RETRIES=1,
        SIDE_EFFECT_QUEUE_SIZE=10,
        REQUIRED_TASK_DEFAULT_HOURS=2,
    )


def _opportunity_drag(opp_id: str, source: str, destination: str, index: int = 0) -> dict:
    return {
        "draggableId": opp_id,
        "type": "opportunity",
        "source": {"droppableId": source, "index": 0},
        "destination": {"droppableId": destination, "index": index},
    }


class TestBoardEngine:
    """Full drag flows through a wired engine."""

    def teardown_method(self) -> None:
        structlog.reset_defaults()

    async def test_structlog_configured_from_settings(
        self, seeded_funnel, monkeypatch
    ) -> None:
        configured: list[Settings] = []
        monkeypatch.setattr(engine_module, "configure_structlog", configured.append)
        settings = _make_settings()

        engine = await create_board_engine(FUNNEL_ID, seeded_funnel, settings=settings)
        await engine.close()

        assert configured == [settings]

    async def test_board_is_loaded_sorted(self, seeded_funnel) -> None:
        engine = await create_board_engine(
            FUNNEL_ID, seeded_funnel, settings=_make_settings()
        )

        assert [s.id for s in engine.board.stages] == ["lead", "proposal", "won"]
        assert engine.controller.is_idle
        await engine.close()

    async def test_gated_move_persists_history_tasks_and_webhooks(
        self, seeded_funnel
    ) -> None:
        delivered: list[tuple[str, dict]] = []

        def _handler(request: httpx.Request) -> httpx.Response:
            delivered.append((str(request.url), json.loads(request.content)))
            return httpx.Response(200)

        notifier = MagicMock(spec=UserNotifier)
        engine = await create_board_engine(
            FUNNEL_ID,
            seeded_funnel,
            notifier=notifier,
            settings=_make_settings(),
            user_id="user-1",
            webhook_transport=httpx.MockTransport(_handler),
        )

        disposition = await engine.dispatcher.handle_drag_end(
            _opportunity_drag("opp-1", "lead", "proposal")
        )
        assert disposition.kind == DragDispositionKind.OPPORTUNITY_MOVE
        assert disposition.transition.state == TransitionState.AWAITING_FIELDS

        result = await engine.controller.submit_fields({"cpf": "123.456.789-00"})
        await engine.close()

        assert result.completed is True
        assert engine.board.owners_of("opp-1") == ["proposal"]
        notifier.success.assert_called_once()

        repo = FunnelRepository(seeded_funnel)
        stored = await repo.get_opportunity("opp-1")
        assert stored.stage_id == "proposal"
        assert stored.custom_fields == {"segment": "smb", "cpf": "123.456.789-00"}
        assert await repo.list_task_titles("opp-1") == ["Send proposal"]

        history = await StageHistoryRepository(seeded_funnel).get_opportunity_history(
            "opp-1"
        )
        assert [(e.from_stage_id, e.to_stage_id, e.user_id) for e in history] == [
            ("lead", "proposal", "user-1")
        ]

        assert sorted(url for url, _ in delivered) == [
            "https://hooks.example.com/all",
            "https://hooks.example.com/opp-1",
        ]
        assert delivered[0][1]["event"] == "opportunity.move"
        assert delivered[0][1]["data"]["new_stage_id"] == "proposal"

    async def test_stage_reorder_persists_orders(self, seeded_funnel) -> None:
        engine = await create_board_engine(
            FUNNEL_ID, seeded_funnel, settings=_make_settings()
        )

        disposition = await engine.dispatcher.handle_drag_end(
            {
                "draggableId": "won",
                "type": "stage",
                "source": {"droppableId": "board", "index": 2},
                "destination": {"droppableId": "board", "index": 0},
            }
        )
        await engine.close()

        assert disposition.reordered is True
        stages = await FunnelRepository(seeded_funnel).list_stages_by_funnel(FUNNEL_ID)
        orders = {s.id: s.order for s in stages}
        assert orders == {"won": 0, "lead": 1, "proposal": 2}

    async def test_quick_navigation_to_next_stage(self, seeded_funnel) -> None:
        engine = await create_board_engine(
            FUNNEL_ID, seeded_funnel, settings=_make_settings()
        )

        disposition = await engine.dispatcher.move_to_adjacent_stage(
            "opp-2", "lead", "next"
        )

        # Proposal requires cpf, so the move waits for the field dialog
        assert disposition.transition.state == TransitionState.AWAITING_FIELDS
        engine.controller.cancel()
        await engine.close()

        assert engine.controller.is_idle
        assert engine.board.owners_of("opp-2") == ["lead"]
