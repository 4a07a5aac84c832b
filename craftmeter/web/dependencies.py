"""FastAPI dependency injection: engine, caller identity and billing services."""

from __future__ import annotations

import hmac

import structlog
from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncEngine

from craftmeter.billing.availability import AvailabilityChecker
from craftmeter.billing.sync import BillingEventSync
from craftmeter.billing.webhooks import WebhookProcessor
from craftmeter.config.settings import get_settings
from craftmeter.storage.database import get_engine
from craftmeter.storage.repositories.credits import CreditPool
from craftmeter.storage.repositories.usage import UsageLedger
from craftmeter.storage.repositories.users import SubscriptionRepository

logger = structlog.get_logger(__name__)


def get_db_engine() -> AsyncEngine:
    """Engine used by request handlers; tests override this dependency."""
    return get_engine()


async def require_internal_token(request: Request) -> None:
    """Reject calls that did not come through the gateway when a token is configured."""
    expected = get_settings().internal_api_token
    if not expected:
        return

    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    if not hmac.compare_digest(auth_header[7:], expected):
        logger.warning("internal_token_invalid", path=request.url.path)
        raise HTTPException(status_code=401, detail="Invalid token")


async def get_current_user_id(request: Request) -> str:
    user_id = request.headers.get("x-user-id", "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-ID header")
    structlog.contextvars.bind_contextvars(user_id=user_id)
    return user_id


def get_credit_pool(engine: AsyncEngine = Depends(get_db_engine)) -> CreditPool:
    return CreditPool(engine, expiry_days=get_settings().purchased_token_expiry_days)


def get_usage_ledger(engine: AsyncEngine = Depends(get_db_engine)) -> UsageLedger:
    return UsageLedger(engine)


def get_subscriptions(engine: AsyncEngine = Depends(get_db_engine)) -> SubscriptionRepository:
    return SubscriptionRepository(engine)


def get_availability_checker(
    engine: AsyncEngine = Depends(get_db_engine),
    ledger: UsageLedger = Depends(get_usage_ledger),
    pool: CreditPool = Depends(get_credit_pool),
) -> AvailabilityChecker:
    return AvailabilityChecker(engine, ledger=ledger, pool=pool)


def get_webhook_processor(engine: AsyncEngine = Depends(get_db_engine)) -> WebhookProcessor:
    settings = get_settings()
    sync = BillingEventSync(
        engine,
        token_products=settings.token_products,
        expiry_days=settings.purchased_token_expiry_days,
    )
    return WebhookProcessor(engine, sync)
