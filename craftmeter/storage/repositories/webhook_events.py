"""Webhook event log keyed by (provider, event id)."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from craftmeter.billing.periods import utc_now
from craftmeter.models.database import WebhookEvent
from craftmeter.types import WebhookStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

# Events in these states are never dispatched again
FINAL_STATUSES = frozenset({WebhookStatus.COMPLETED, WebhookStatus.SKIPPED})


class WebhookEventLog:
    """Stores every delivery so redeliveries can be recognized and failures retried."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def record(
        self, provider: str, event_id: str, event_type: str, payload_json: str
    ) -> tuple[WebhookEvent, bool]:
        """Insert the event, or return the stored one.

        Returns ``(event, created)``; ``created`` is False for a redelivery.
        """
        existing = await self.get(provider, event_id)
        if existing is not None:
            return existing, False

        event = WebhookEvent(
            provider=provider,
            event_id=event_id,
            event_type=event_type,
            payload_json=payload_json,
            status=WebhookStatus.PENDING,
        )
        async with AsyncSession(self._engine) as session:
            session.add(event)
            try:
                await session.commit()
            except IntegrityError:
                # A concurrent delivery of the same event inserted it first
                await session.rollback()
                stored = await self.get(provider, event_id)
                if stored is None:
                    raise
                return stored, False
            await session.refresh(event)
        return event, True

    async def get(self, provider: str, event_id: str) -> WebhookEvent | None:
        async with AsyncSession(self._engine) as session:
            stmt = select(WebhookEvent).where(
                col(WebhookEvent.provider) == provider,
                col(WebhookEvent.event_id) == event_id,
            )
            return (await session.execute(stmt)).scalars().first()

    async def mark(
        self, event_pk: int | None, status: WebhookStatus, error: str | None = None
    ) -> WebhookEvent | None:
        """Move an event to ``status``. A failure also bumps ``retry_count``."""
        async with AsyncSession(self._engine) as session:
            event = await session.get(WebhookEvent, event_pk) if event_pk is not None else None
            if event is None:
                logger.warning("webhook_event_missing", event_pk=event_pk)
                return None
            event.status = status
            event.error_message = error
            if status == WebhookStatus.FAILED:
                event.retry_count += 1
            if status in FINAL_STATUSES:
                event.processed_at = utc_now()
            session.add(event)
            await session.commit()
            await session.refresh(event)
            return event

    async def list_failed(self, max_retries: int = 3, limit: int = 10) -> list[WebhookEvent]:
        """Failed events still under the retry ceiling, oldest first."""
        stmt = (
            select(WebhookEvent)
            .where(
                col(WebhookEvent.status) == WebhookStatus.FAILED,
                col(WebhookEvent.retry_count) < max_retries,
            )
            .order_by(col(WebhookEvent.created_at).asc(), col(WebhookEvent.id).asc())
            .limit(limit)
        )
        async with AsyncSession(self._engine) as session:
            return list((await session.execute(stmt)).scalars().all())
