"""Unit tests for WebhookProcessor and the webhook event log (SQLite)."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from craftmeter.billing.sync import BillingEventSync
from craftmeter.billing.webhooks import WebhookProcessor
from craftmeter.storage.repositories.credits import CreditPool
from craftmeter.storage.repositories.users import DatabaseUserRepository
from craftmeter.storage.repositories.webhook_events import WebhookEventLog
from craftmeter.types import PaymentProvider, WebhookStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from craftmeter.billing.events import BillingEvent
    from craftmeter.models.database import User

POLAR = PaymentProvider.POLAR


class FlakySync:
    """Fails the first ``failures`` calls, then delegates."""

    def __init__(self, inner: BillingEventSync, failures: int) -> None:
        self.inner = inner
        self.failures = failures
        self.calls = 0

    async def apply(self, event: BillingEvent) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("database unavailable")
        await self.inner.apply(event)


def _token_order(user: User, order_id: str = "ord_1") -> dict:
    return {
        "type": "order.paid",
        "data": {
            "id": order_id,
            "checkout_id": f"chk_{order_id}",
            "billing_reason": "purchase",
            "product_id": "prod_tokens",
            "metadata": {"user_id": user.id},
            "total_amount": 2000,
        },
    }


def _subscription_order(user: User, order_id: str) -> dict:
    return {
        "type": "order.paid",
        "data": {
            "id": order_id,
            "billing_reason": "subscription_create",
            "customer": {"external_id": user.id},
            "total_amount": 2000,
            "subscription_id": "sub_shared",
        },
    }


@pytest.fixture()
def sync(async_engine: AsyncEngine) -> BillingEventSync:
    return BillingEventSync(async_engine, token_products={"prod_tokens": 1_000})


@pytest.mark.unit
class TestProcess:
    async def test_completed(
        self, async_engine: AsyncEngine, sync: BillingEventSync, user: User
    ) -> None:
        processor = WebhookProcessor(async_engine, sync)
        status = await processor.process(POLAR, "msg_1", "order.paid", _token_order(user))

        assert status == WebhookStatus.COMPLETED
        event = await WebhookEventLog(async_engine).get(POLAR, "msg_1")
        assert event is not None
        assert event.status == WebhookStatus.COMPLETED
        assert event.processed_at is not None
        assert (await CreditPool(async_engine).balance(user.id)).remaining == 1_000

    async def test_redelivery_not_dispatched_again(
        self, async_engine: AsyncEngine, sync: BillingEventSync, user: User
    ) -> None:
        flaky = FlakySync(sync, failures=0)
        processor = WebhookProcessor(async_engine, flaky)  # type: ignore[arg-type]
        await processor.process(POLAR, "msg_1", "order.paid", _token_order(user))
        status = await processor.process(POLAR, "msg_1", "order.paid", _token_order(user))

        assert status == WebhookStatus.COMPLETED
        assert flaky.calls == 1

    async def test_same_event_id_other_provider_is_distinct(
        self, async_engine: AsyncEngine, sync: BillingEventSync, user: User
    ) -> None:
        processor = WebhookProcessor(async_engine, sync)
        await processor.process(POLAR, "evt_1", "order.refunded", {"data": {"id": "x"}})
        await processor.process(PaymentProvider.RAZORPAY, "evt_1", "invoice.paid", {})

        log = WebhookEventLog(async_engine)
        assert await log.get(POLAR, "evt_1") is not None
        assert await log.get(PaymentProvider.RAZORPAY, "evt_1") is not None

    async def test_unsupported_event_skipped(
        self, async_engine: AsyncEngine, sync: BillingEventSync
    ) -> None:
        processor = WebhookProcessor(async_engine, sync)
        status = await processor.process(POLAR, "msg_2", "checkout.created", {"data": {}})

        assert status == WebhookStatus.SKIPPED
        event = await WebhookEventLog(async_engine).get(POLAR, "msg_2")
        assert event is not None
        assert event.error_message == "Unsupported event type"

    async def test_unknown_user_skipped(
        self, async_engine: AsyncEngine, sync: BillingEventSync, user: User
    ) -> None:
        body = _token_order(user)
        body["data"]["metadata"] = {"user_id": "ghost"}
        processor = WebhookProcessor(async_engine, sync)

        assert await processor.process(POLAR, "msg_3", "order.paid", body) == WebhookStatus.SKIPPED

    async def test_malformed_payload_skipped(
        self, async_engine: AsyncEngine, sync: BillingEventSync
    ) -> None:
        processor = WebhookProcessor(async_engine, sync)
        status = await processor.process(POLAR, "msg_4", "order.paid", {"data": {}})
        assert status == WebhookStatus.SKIPPED

    async def test_unexpected_error_marks_failed(
        self, async_engine: AsyncEngine, sync: BillingEventSync, user: User
    ) -> None:
        processor = WebhookProcessor(async_engine, FlakySync(sync, failures=1))  # type: ignore[arg-type]
        status = await processor.process(POLAR, "msg_5", "order.paid", _token_order(user))

        assert status == WebhookStatus.FAILED
        event = await WebhookEventLog(async_engine).get(POLAR, "msg_5")
        assert event is not None
        assert event.retry_count == 1
        assert event.error_message == "database unavailable"

    async def test_conflicting_subscription_order_marks_failed(
        self, async_engine: AsyncEngine, sync: BillingEventSync, user: User
    ) -> None:
        other = await DatabaseUserRepository(async_engine).create("other@example.com", "Other")
        processor = WebhookProcessor(async_engine, sync)

        first = await processor.process(
            POLAR, "msg_sub_a", "order.paid", _subscription_order(user, "ord_a")
        )
        second = await processor.process(
            POLAR, "msg_sub_b", "order.paid", _subscription_order(other, "ord_b")
        )

        assert first == WebhookStatus.COMPLETED
        assert second == WebhookStatus.FAILED
        event = await WebhookEventLog(async_engine).get(POLAR, "msg_sub_b")
        assert event is not None
        assert event.retry_count == 1

    async def test_failed_event_redelivery_is_retried(
        self, async_engine: AsyncEngine, sync: BillingEventSync, user: User
    ) -> None:
        processor = WebhookProcessor(async_engine, FlakySync(sync, failures=1))  # type: ignore[arg-type]
        await processor.process(POLAR, "msg_6", "order.paid", _token_order(user))
        status = await processor.process(POLAR, "msg_6", "order.paid", _token_order(user))
        assert status == WebhookStatus.COMPLETED


@pytest.mark.unit
class TestRetryFailed:
    async def test_failed_events_recovered(
        self, async_engine: AsyncEngine, sync: BillingEventSync, user: User
    ) -> None:
        processor = WebhookProcessor(async_engine, FlakySync(sync, failures=1))  # type: ignore[arg-type]
        await processor.process(POLAR, "msg_7", "order.paid", _token_order(user))

        outcomes = await processor.retry_failed()

        assert outcomes == {WebhookStatus.COMPLETED: 1}
        assert (await CreditPool(async_engine).balance(user.id)).remaining == 1_000

    async def test_retry_ceiling_respected(
        self, async_engine: AsyncEngine, sync: BillingEventSync, user: User
    ) -> None:
        processor = WebhookProcessor(async_engine, FlakySync(sync, failures=10))  # type: ignore[arg-type]
        await processor.process(POLAR, "msg_8", "order.paid", _token_order(user))
        await processor.retry_failed(max_retries=2)

        assert await processor.retry_failed(max_retries=2) == {}
        event = await WebhookEventLog(async_engine).get(POLAR, "msg_8")
        assert event is not None
        assert event.retry_count == 2

    async def test_nothing_to_retry(
        self, async_engine: AsyncEngine, sync: BillingEventSync
    ) -> None:
        assert await WebhookProcessor(async_engine, sync).retry_failed() == {}


@pytest.mark.unit
class TestEventLog:
    async def test_mark_without_primary_key_is_ignored(self, async_engine: AsyncEngine) -> None:
        assert await WebhookEventLog(async_engine).mark(None, WebhookStatus.COMPLETED) is None
