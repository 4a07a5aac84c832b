"""Webhook processing: event log, dispatch and failure bookkeeping."""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

import structlog

from craftmeter.billing.events import BillingEvent
from craftmeter.billing.providers import polar, razorpay
from craftmeter.exceptions import NotFoundError, UnknownMappingError, ValidationError
from craftmeter.storage.repositories.webhook_events import FINAL_STATUSES, WebhookEventLog
from craftmeter.types import PaymentProvider, WebhookStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from craftmeter.billing.sync import BillingEventSync
    from craftmeter.models.database import WebhookEvent

logger = structlog.get_logger(__name__)

_PARSERS: dict[str, Callable[[str, Mapping[str, Any]], BillingEvent | None]] = {
    PaymentProvider.POLAR: polar.parse,
    PaymentProvider.RAZORPAY: razorpay.parse,
}

# Errors that will not go away on retry: the event is acknowledged and skipped
_UNRESOLVABLE = (NotFoundError, UnknownMappingError, ValidationError)


class WebhookProcessor:
    """Logs each verified delivery once and applies it through BillingEventSync.

    Outcomes are recorded on the event row rather than raised, so the HTTP
    endpoint can always acknowledge the delivery.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        sync: BillingEventSync,
        event_log: WebhookEventLog | None = None,
    ) -> None:
        self._sync = sync
        self._log = event_log or WebhookEventLog(engine)

    async def process(
        self, provider: str, event_id: str, event_type: str, body: Mapping[str, Any]
    ) -> WebhookStatus:
        event, created = await self._log.record(
            provider, event_id, event_type, json.dumps(body, separators=(",", ":"))
        )
        if not created and event.status in FINAL_STATUSES:
            logger.info(
                "webhook_duplicate",
                provider=provider,
                event_id=event_id,
                status=event.status,
            )
            return WebhookStatus(event.status)
        return await self._dispatch(event, body)

    async def retry_failed(self, max_retries: int = 3, limit: int = 10) -> dict[str, int]:
        """Re-dispatch failed events below the retry ceiling, oldest first."""
        outcomes: Counter[str] = Counter()
        for event in await self._log.list_failed(max_retries=max_retries, limit=limit):
            status = await self._dispatch(event, json.loads(event.payload_json))
            outcomes[status] += 1
        if outcomes:
            logger.info("webhook_retry_finished", **outcomes)
        return dict(outcomes)

    async def _dispatch(self, event: WebhookEvent, body: Mapping[str, Any]) -> WebhookStatus:
        bound = logger.bind(
            provider=event.provider, event_id=event.event_id, event_type=event.event_type
        )
        await self._log.mark(event.id, WebhookStatus.PROCESSING)

        try:
            billing_event = _PARSERS[event.provider](event.event_type, body)
            if billing_event is None:
                bound.debug("webhook_unhandled_event")
                await self._log.mark(event.id, WebhookStatus.SKIPPED, "Unsupported event type")
                return WebhookStatus.SKIPPED
            await self._sync.apply(billing_event)
        except _UNRESOLVABLE as exc:
            bound.warning("webhook_event_skipped", error=str(exc))
            await self._log.mark(event.id, WebhookStatus.SKIPPED, str(exc))
            return WebhookStatus.SKIPPED
        except Exception as exc:
            bound.exception("webhook_event_failed")
            await self._log.mark(event.id, WebhookStatus.FAILED, str(exc) or type(exc).__name__)
            return WebhookStatus.FAILED

        await self._log.mark(event.id, WebhookStatus.COMPLETED)
        bound.info("webhook_processed")
        return WebhookStatus.COMPLETED
