"""Shared fixtures for repository and engine tests.

Provides:
- session_factory: async generator of sessions over a throwaway SQLite
  database (aiosqlite) with all stageflow tables created
- seeded_funnel: a three-stage funnel (Lead, Proposal, Won) with two
  opportunities, required fields/tasks and webhook subscriptions
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

import src.stageflow.funnels.models  # noqa: F401  (registers tables on Base)
from src.stageflow.core.database import Base
from src.stageflow.funnels.models import (
    FunnelModel,
    OpportunityModel,
    RequiredFieldModel,
    RequiredTaskModel,
    StageModel,
    WebhookModel,
)

FUNNEL_ID = "funnel-1"


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite database file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'stageflow.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def _factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    yield _factory

    await engine.dispose()


@pytest_asyncio.fixture
async def seeded_funnel(session_factory):
    """Seed a Lead -> Proposal -> Won funnel and return the session factory.

    Stages are inserted out of order to exercise callers that sort.
    - lead: holds opp-1 (custom_fields {"segment": "smb"}) and opp-2
    - proposal: requires a "cpf" text field and creates "Send proposal"
    - won: win stage requiring a reason from ["price", "timing"]
    """
    async for session in session_factory():
        session.add(FunnelModel(id=FUNNEL_ID, name="Sales"))
        session.add_all(
            [
                StageModel(
                    id="won",
                    funnel_id=FUNNEL_ID,
                    name="Won",
                    order=2,
                    is_win_stage=True,
                    win_reason_required=True,
                    win_reasons=["price", "timing"],
                ),
                StageModel(id="lead", funnel_id=FUNNEL_ID, name="Lead", order=0),
                StageModel(id="proposal", funnel_id=FUNNEL_ID, name="Proposal", order=1),
                StageModel(id="other", funnel_id="funnel-2", name="Elsewhere", order=0),
            ]
        )
        session.add_all(
            [
                OpportunityModel(
                    id="opp-1",
                    funnel_id=FUNNEL_ID,
                    stage_id="lead",
                    title="Enterprise Deal",
                    value=5000.0,
                    client="Acme Corp",
                    custom_fields={"segment": "smb"},
                ),
                OpportunityModel(
                    id="opp-2",
                    funnel_id=FUNNEL_ID,
                    stage_id="lead",
                    title="Renewal",
                    value=1200.0,
                    client="Globex",
                ),
            ]
        )
        session.add(RequiredFieldModel(stage_id="proposal", name="cpf", type="text"))
        session.add(
            RequiredTaskModel(
                stage_id="proposal", name="Send proposal", default_duration_hours=24
            )
        )
        session.add_all(
            [
                _webhook("opportunity", "*", "https://hooks.example.com/all", "move"),
                _webhook("opportunity", "opp-1", "https://hooks.example.com/opp-1", "move"),
                _webhook("opportunity", "opp-2", "https://hooks.example.com/opp-2", "move"),
                _webhook("stage", "*", "https://hooks.example.com/stages", "update"),
            ]
        )
        await session.commit()
    return session_factory


def _webhook(target_type: str, target_id: str, url: str, event: str) -> WebhookModel:
    return WebhookModel(target_type=target_type, target_id=target_id, url=url, event=event)
