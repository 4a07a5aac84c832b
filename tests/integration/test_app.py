import pytest

from craftmeter.config.settings import get_settings


@pytest.mark.integration
class TestAppFactory:
    async def test_app_creates_successfully(self, app) -> None:
        assert app is not None
        assert app.title == "CraftMeter"

    async def test_health_endpoint(self, client) -> None:
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"

    async def test_request_id_header(self, client) -> None:
        resp = await client.get("/api/health")
        assert "x-request-id" in resp.headers

    async def test_request_id_echoed(self, client) -> None:
        resp = await client.get("/api/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["x-request-id"] == "req-123"

    async def test_cors_headers(self, client) -> None:
        resp = await client.options(
            "/api/health",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "GET",
            },
        )
        assert resp.status_code in (200, 204, 405)

    async def test_404_for_unknown_route(self, client) -> None:
        resp = await client.get("/api/nonexistent")
        assert resp.status_code == 404


@pytest.mark.integration
class TestCallerIdentity:
    async def test_missing_user_header(self, client) -> None:
        resp = await client.get("/api/billing/availability")
        assert resp.status_code == 401

    async def test_internal_token_required_when_configured(
        self, client, user_headers, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("INTERNAL_API_TOKEN", "gateway-secret")
        get_settings.cache_clear()

        missing = await client.get("/api/billing/availability", headers=user_headers)
        wrong = await client.get(
            "/api/billing/availability",
            headers={**user_headers, "Authorization": "Bearer nope"},
        )
        ok = await client.get(
            "/api/billing/availability",
            headers={**user_headers, "Authorization": "Bearer gateway-secret"},
        )

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert ok.status_code == 200

    async def test_health_skips_internal_token(
        self, client, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("INTERNAL_API_TOKEN", "gateway-secret")
        get_settings.cache_clear()
        assert (await client.get("/api/health")).status_code == 200
