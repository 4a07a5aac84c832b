"""Integration tests for /api/billing and /api/models."""

import pytest

from craftmeter.storage.repositories.credits import CreditPool
from craftmeter.storage.repositories.usage import UsageLedger


@pytest.mark.integration
class TestAvailabilityRoute:
    async def test_fresh_user(self, client, user_headers) -> None:
        resp = await client.get("/api/billing/availability", headers=user_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["allowed"] is True
        assert data["plan"] == "HOBBY"
        assert data["subscription_limit"] == 100_000
        assert data["total_available"] == 100_000

    async def test_exhausted(self, client, user, user_headers, async_engine) -> None:
        await UsageLedger(async_engine).record_ai_usage(user.id, "p1", "gpt-5-mini", 100_000, 0)
        data = (await client.get("/api/billing/availability", headers=user_headers)).json()
        assert data["allowed"] is False
        assert "Purchase additional tokens" in data["reason"]


@pytest.mark.integration
class TestUsageRoute:
    async def test_current_period(self, client, user, user_headers, async_engine) -> None:
        await UsageLedger(async_engine).record_ai_usage(user.id, "p1", "gpt-5", 300, 200)
        resp = await client.get("/api/billing/usage", headers=user_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["total_tokens"] == 500
        assert data["by_model"]["gpt-5"]["tokens"] == 500

    async def test_explicit_range(self, client, user_headers) -> None:
        resp = await client.get(
            "/api/billing/usage",
            params={"start": "2026-01-01T00:00:00", "end": "2026-02-01T00:00:00"},
            headers=user_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["total_tokens"] == 0

    async def test_half_range_rejected(self, client, user_headers) -> None:
        resp = await client.get(
            "/api/billing/usage", params={"start": "2026-01-01T00:00:00"}, headers=user_headers
        )
        assert resp.status_code == 400

    async def test_inverted_range_rejected(self, client, user_headers) -> None:
        resp = await client.get(
            "/api/billing/usage",
            params={"start": "2026-02-01T00:00:00", "end": "2026-01-01T00:00:00"},
            headers=user_headers,
        )
        assert resp.status_code == 400


@pytest.mark.integration
class TestSubscriptionRoute:
    async def test_default_hobby(self, client, user_headers) -> None:
        data = (await client.get("/api/billing/subscription", headers=user_headers)).json()
        assert data["plan"] == "HOBBY"
        assert data["can_purchase_tokens"] is False

    async def test_unknown_user_gets_hobby_defaults(self, client) -> None:
        resp = await client.get("/api/billing/subscription", headers={"X-User-ID": "ghost"})
        assert resp.status_code == 200
        assert resp.json()["plan"] == "HOBBY"

    async def test_pro(self, client, user, user_headers, set_plan) -> None:
        await set_plan(user.id, "PRO")
        data = (await client.get("/api/billing/subscription", headers=user_headers)).json()
        assert data["plan"] == "PRO"
        assert data["monthly_tokens"] == 10_000_000


@pytest.mark.integration
class TestPurchasedTokens:
    async def test_balance_and_purchases(self, client, user, user_headers, async_engine) -> None:
        pool = CreditPool(async_engine)
        await pool.record_purchase(user.id, 1_000_000, 20.0, provider="polar")
        await pool.deduct(user.id, 250_000)

        balance = (await client.get("/api/billing/token-balance", headers=user_headers)).json()
        assert balance == {"total_purchased": 1_000_000, "total_used": 250_000, "remaining": 750_000}

        purchases = (await client.get("/api/billing/purchases", headers=user_headers)).json()
        assert len(purchases) == 1
        assert purchases[0]["tokens_remaining"] == 750_000
        assert purchases[0]["provider"] == "polar"

    async def test_quote_for_pro(self, client, user, user_headers, set_plan) -> None:
        await set_plan(user.id, "PRO")
        resp = await client.post(
            "/api/billing/token-quote", json={"millions": 3}, headers=user_headers
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "tokens": 3_000_000,
            "price_per_million_usd": 20,
            "total_price_usd": 60.0,
            "total_price_minor": 6000,
        }

    async def test_quote_denied_on_hobby(self, client, user_headers) -> None:
        resp = await client.post(
            "/api/billing/token-quote", json={"millions": 1}, headers=user_headers
        )
        assert resp.status_code == 403

    async def test_quote_rejects_zero(self, client, user, user_headers, set_plan) -> None:
        await set_plan(user.id, "PRO")
        resp = await client.post(
            "/api/billing/token-quote", json={"millions": 0}, headers=user_headers
        )
        assert resp.status_code == 400


@pytest.mark.integration
class TestModelsRoute:
    async def test_hobby_models(self, client, user_headers) -> None:
        data = (await client.get("/api/models", headers=user_headers)).json()
        assert data["plan"] == "HOBBY"
        assert data["default_model"] == "claude-haiku-4.5"
        assert {m["tier"] for m in data["models"]} == {"lite"}

    async def test_pro_models(self, client, user, user_headers, set_plan) -> None:
        await set_plan(user.id, "PRO")
        data = (await client.get("/api/models", headers=user_headers)).json()
        assert len(data["models"]) == 6
