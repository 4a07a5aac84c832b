"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from craftmeter.config.settings import get_settings
from craftmeter.models.database import Subscription, User
from craftmeter.storage.database import init_db
from craftmeter.storage.repositories.users import DatabaseUserRepository
from craftmeter.web.app import create_app
from craftmeter.web.dependencies import get_db_engine

SetPlan = Callable[..., Awaitable[Subscription]]


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch: pytest.MonkeyPatch):
    """Fresh settings per test: SQLite URL, debug on, no secrets unless a test sets them."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("DEBUG", "true")
    for name in (
        "INTERNAL_API_TOKEN",
        "POLAR_WEBHOOK_SECRET",
        "RAZORPAY_WEBHOOK_SECRET",
        "TOKEN_PRODUCTS",
        "PURCHASED_TOKEN_EXPIRY_DAYS",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
async def async_engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def user(async_engine: AsyncEngine) -> User:
    """A freshly signed-up user on the default HOBBY subscription."""
    return await DatabaseUserRepository(async_engine).create("dev@example.com", "Dev")


@pytest.fixture()
def set_plan(async_engine: AsyncEngine) -> SetPlan:
    """Rewrite a user's subscription row in place."""

    async def _set_plan(
        user_id: str,
        plan: str,
        status: str = "active",
        period_start: datetime | None = None,
        period_end: datetime | None = None,
    ) -> Subscription:
        async with AsyncSession(async_engine) as session:
            stmt = select(Subscription).where(col(Subscription.user_id) == user_id)
            subscription = (await session.execute(stmt)).scalars().first()
            if subscription is None:
                subscription = Subscription(user_id=user_id)
            subscription.plan = plan
            subscription.status = status
            subscription.current_period_start = period_start
            subscription.current_period_end = period_end
            session.add(subscription)
            await session.commit()
            await session.refresh(subscription)
            return subscription

    return _set_plan


@pytest.fixture()
def app(async_engine: AsyncEngine):
    """A fresh app instance wired to the in-memory engine."""
    application = create_app()
    application.dependency_overrides[get_db_engine] = lambda: async_engine
    return application


@pytest.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


@pytest.fixture()
def user_headers(user: User) -> dict[str, str]:
    return {"X-User-ID": user.id}
