"""Outbound webhook dispatcher for entity lifecycle events.

Looks up subscriptions matching (target_type, event, entity_id or "*") and
POSTs ``{"event": "<entity>.<event>", "data": payload}`` to each URL
concurrently. Each delivery is retried with tenacity (exponential backoff
1-10s) on HTTP status errors, connection errors and timeouts.

Delivery is best-effort: a failed subscriber is counted in the returned
DispatchResult and logged, and notify_entity_event never raises.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.stageflow.funnels.repository import FunnelRepository
from src.stageflow.funnels.schemas import (
    DispatchResult,
    EntityEvent,
    EntityType,
    WebhookPayload,
)
from src.stageflow.funnels.store import EntityEventNotifier

logger = structlog.get_logger(__name__)

_RETRYABLE = (httpx.HTTPStatusError, httpx.ConnectError, httpx.TimeoutException)


class WebhookDispatcher(EntityEventNotifier):
    """Deliver entity events to registered webhook subscribers.

    Args:
        repository: Source of webhook subscriptions.
        timeout: Per-request timeout in seconds.
        max_attempts: Delivery attempts per subscriber (1 disables retry).
        transport: Optional httpx transport (tests inject httpx.MockTransport).
    """

    def __init__(
        self,
        repository: FunnelRepository,
        timeout: float = 10.0,
        max_attempts: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._repo = repository
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client with the configured timeout."""
        return httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            headers={"Content-Type": "application/json"},
        )

    async def notify_entity_event(
        self,
        entity_type: EntityType,
        entity_id: str,
        event: EntityEvent,
        payload: dict[str, Any],
    ) -> DispatchResult:
        """Announce an entity event to every matching subscriber.

        Args:
            entity_type: Entity kind (stage, opportunity, ...).
            entity_id: ID of the entity; wildcard subscriptions also match.
            event: Lifecycle event (create, update, move).
            payload: Event data placed under ``data`` in the request body.

        Returns:
            DispatchResult with dispatched/success/failed counts.
        """
        try:
            webhooks = await self._repo.list_webhooks(entity_type, event, entity_id)
        except Exception:
            logger.warning(
                "webhooks.lookup_failed",
                entity_type=entity_type.value,
                entity_id=entity_id,
                event_type=event.value,
                exc_info=True,
            )
            return DispatchResult()

        if not webhooks:
            return DispatchResult()

        body = WebhookPayload(
            event=f"{entity_type.value}.{event.value}", data=payload
        ).model_dump(mode="json")

        async with self._client() as client:
            outcomes = await asyncio.gather(
                *(self._deliver(client, hook.url, body) for hook in webhooks)
            )

        succeeded = sum(1 for ok in outcomes if ok)
        result = DispatchResult(
            dispatched=len(outcomes),
            success=succeeded,
            failed=len(outcomes) - succeeded,
        )
        logger.info(
            "webhooks.dispatched",
            event_name=body["event"],
            entity_id=entity_id,
            dispatched=result.dispatched,
            success=result.success,
            failed=result.failed,
        )
        return result

    async def _deliver(
        self, client: httpx.AsyncClient, url: str, body: dict[str, Any]
    ) -> bool:
        """POST one payload with retry. Returns True on a 2xx response."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                retry=retry_if_exception_type(_RETRYABLE),
                reraise=True,
            ):
                with attempt:
                    response = await client.post(url, json=body)
                    response.raise_for_status()
            return True
        except Exception as exc:
            logger.warning("webhooks.delivery_failed", url=url, error=str(exc))
            return False
