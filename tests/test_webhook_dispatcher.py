"""Tests for WebhookDispatcher.

HTTP is served by httpx.MockTransport, so deliveries never leave the
process. Retry is disabled (max_attempts=1) except where retry itself is
under test.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
from tenacity import wait_none

from src.stageflow.funnels.schemas import EntityEvent, EntityType, WebhookSubscription
from src.stageflow.webhooks import dispatcher as dispatcher_module
from src.stageflow.webhooks.dispatcher import WebhookDispatcher


def _make_subscription(url: str, target_id: str = "*") -> WebhookSubscription:
    return WebhookSubscription(
        id=url,
        target_type=EntityType.OPPORTUNITY,
        target_id=target_id,
        url=url,
        event=EntityEvent.MOVE,
    )


def _make_repo(subscriptions: list[WebhookSubscription]) -> MagicMock:
    repo = MagicMock()
    repo.list_webhooks = AsyncMock(return_value=subscriptions)
    return repo


class TestNotifyEntityEvent:
    """Tests for notify_entity_event delivery and counting."""

    async def test_posts_event_envelope_to_every_subscriber(self) -> None:
        received: list[tuple[str, dict]] = []

        def _handler(request: httpx.Request) -> httpx.Response:
            received.append((str(request.url), json.loads(request.content)))
            return httpx.Response(200)

        repo = _make_repo(
            [
                _make_subscription("https://hooks.example.com/a"),
                _make_subscription("https://hooks.example.com/b", target_id="opp-1"),
            ]
        )
        dispatcher = WebhookDispatcher(
            repo, max_attempts=1, transport=httpx.MockTransport(_handler)
        )

        result = await dispatcher.notify_entity_event(
            EntityType.OPPORTUNITY, "opp-1", EntityEvent.MOVE, {"id": "opp-1"}
        )

        assert result.dispatched == 2
        assert result.success == 2
        assert result.failed == 0
        repo.list_webhooks.assert_awaited_once_with(
            EntityType.OPPORTUNITY, EntityEvent.MOVE, "opp-1"
        )
        assert sorted(url for url, _ in received) == [
            "https://hooks.example.com/a",
            "https://hooks.example.com/b",
        ]
        for _, body in received:
            assert body == {"event": "opportunity.move", "data": {"id": "opp-1"}}

    async def test_failed_subscriber_is_counted_not_raised(self) -> None:
        def _handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/broken":
                return httpx.Response(500)
            return httpx.Response(204)

        repo = _make_repo(
            [
                _make_subscription("https://hooks.example.com/ok"),
                _make_subscription("https://hooks.example.com/broken"),
            ]
        )
        dispatcher = WebhookDispatcher(
            repo, max_attempts=1, transport=httpx.MockTransport(_handler)
        )

        result = await dispatcher.notify_entity_event(
            EntityType.OPPORTUNITY, "opp-1", EntityEvent.MOVE, {}
        )

        assert result.dispatched == 2
        assert result.success == 1
        assert result.failed == 1

    async def test_connection_error_is_counted(self) -> None:
        def _handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        dispatcher = WebhookDispatcher(
            _make_repo([_make_subscription("https://hooks.example.com/a")]),
            max_attempts=1,
            transport=httpx.MockTransport(_handler),
        )

        result = await dispatcher.notify_entity_event(
            EntityType.OPPORTUNITY, "opp-1", EntityEvent.MOVE, {}
        )

        assert result.failed == 1

    async def test_no_subscriptions_sends_nothing(self) -> None:
        handler = MagicMock(return_value=httpx.Response(200))
        dispatcher = WebhookDispatcher(
            _make_repo([]), transport=httpx.MockTransport(handler)
        )

        result = await dispatcher.notify_entity_event(
            EntityType.STAGE, "stage-1", EntityEvent.UPDATE, {}
        )

        assert result.dispatched == 0
        handler.assert_not_called()

    async def test_lookup_failure_returns_empty_result(self) -> None:
        repo = MagicMock()
        repo.list_webhooks = AsyncMock(side_effect=ConnectionError("db down"))
        dispatcher = WebhookDispatcher(repo)

        result = await dispatcher.notify_entity_event(
            EntityType.OPPORTUNITY, "opp-1", EntityEvent.MOVE, {}
        )

        assert result.dispatched == 0
        assert result.failed == 0

    async def test_retries_until_success(self, monkeypatch) -> None:
        """A transient 503 is retried within max_attempts."""
        calls = 0

        def _handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503 if calls == 1 else 200)

        monkeypatch.setattr(
            dispatcher_module, "wait_exponential", lambda **kwargs: wait_none()
        )
        dispatcher = WebhookDispatcher(
            _make_repo([_make_subscription("https://hooks.example.com/a")]),
            max_attempts=3,
            transport=httpx.MockTransport(_handler),
        )

        result = await dispatcher.notify_entity_event(
            EntityType.OPPORTUNITY, "opp-1", EntityEvent.MOVE, {}
        )

        assert calls == 2
        assert result.success == 1
