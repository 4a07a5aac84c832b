"""Billing API routes: availability, usage, subscription and purchased tokens."""

from __future__ import annotations

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException

from craftmeter.billing.availability import AvailabilityChecker, TokenAvailability
from craftmeter.billing.plans import get_plan_limits, quote_token_purchase
from craftmeter.models.api import (
    AvailabilityResponse,
    ModelUsageResponse,
    PurchaseResponse,
    SubscriptionResponse,
    TokenBalanceResponse,
    TokenQuoteRequest,
    TokenQuoteResponse,
    UsageResponse,
)
from craftmeter.storage.repositories.credits import CreditPool
from craftmeter.storage.repositories.usage import PeriodUsage, UsageLedger
from craftmeter.storage.repositories.users import SubscriptionRepository
from craftmeter.types import PlanName, SubscriptionStatus
from craftmeter.web.dependencies import (
    get_availability_checker,
    get_credit_pool,
    get_current_user_id,
    get_subscriptions,
    get_usage_ledger,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])


def availability_response(availability: TokenAvailability) -> AvailabilityResponse:
    return AvailabilityResponse(
        allowed=availability.allowed,
        reason=availability.reason,
        plan=availability.plan,
        subscription_used=availability.subscription_used,
        subscription_limit=availability.subscription_limit,
        purchased_remaining=availability.purchased_remaining,
        total_available=availability.total_available,
    )


def _usage_response(usage: PeriodUsage) -> UsageResponse:
    return UsageResponse(
        start=usage.start,
        end=usage.end,
        total_tokens=usage.total_tokens,
        total_cost_usd=usage.total_cost_usd,
        by_model={
            model: ModelUsageResponse(tokens=entry.tokens, cost_usd=entry.cost_usd)
            for model, entry in usage.by_model.items()
        },
    )


@router.get("/availability")
async def get_availability(
    user_id: str = Depends(get_current_user_id),
    checker: AvailabilityChecker = Depends(get_availability_checker),
) -> AvailabilityResponse:
    return availability_response(await checker.check(user_id))


@router.get("/usage")
async def get_usage(
    start: datetime | None = None,
    end: datetime | None = None,
    user_id: str = Depends(get_current_user_id),
    ledger: UsageLedger = Depends(get_usage_ledger),
) -> UsageResponse:
    """Current period usage, or an explicit [start, end) range when both are given."""
    if (start is None) != (end is None):
        raise HTTPException(status_code=400, detail="Provide both start and end, or neither")
    if start is not None and end is not None:
        usage = await ledger.period_usage(user_id, start, end)
    else:
        usage = await ledger.current_period_usage(user_id)
    return _usage_response(usage)


@router.get("/subscription")
async def get_subscription(
    user_id: str = Depends(get_current_user_id),
    subscriptions: SubscriptionRepository = Depends(get_subscriptions),
) -> SubscriptionResponse:
    subscription = await subscriptions.get_for_user(user_id)
    if subscription is None:
        limits = get_plan_limits(PlanName.HOBBY)
        return SubscriptionResponse(
            plan=PlanName.HOBBY,
            status=SubscriptionStatus.ACTIVE,
            provider=None,
            current_period_start=None,
            current_period_end=None,
            cancel_at_period_end=False,
            monthly_tokens=limits.monthly_tokens,
            can_purchase_tokens=limits.can_purchase_tokens,
        )

    limits = get_plan_limits(subscription.plan)
    return SubscriptionResponse(
        plan=subscription.plan,
        status=subscription.status,
        provider=subscription.provider,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        cancel_at_period_end=subscription.cancel_at_period_end,
        monthly_tokens=limits.monthly_tokens,
        can_purchase_tokens=limits.can_purchase_tokens,
    )


@router.get("/token-balance")
async def get_token_balance(
    user_id: str = Depends(get_current_user_id),
    pool: CreditPool = Depends(get_credit_pool),
) -> TokenBalanceResponse:
    balance = await pool.balance(user_id)
    return TokenBalanceResponse(
        total_purchased=balance.total_purchased,
        total_used=balance.total_used,
        remaining=balance.remaining,
    )


@router.get("/purchases")
async def list_purchases(
    user_id: str = Depends(get_current_user_id),
    pool: CreditPool = Depends(get_credit_pool),
) -> list[PurchaseResponse]:
    return [
        PurchaseResponse(
            id=purchase.id,
            token_amount=purchase.token_amount,
            tokens_remaining=purchase.tokens_remaining,
            price_usd=purchase.price_usd,
            status=purchase.status,
            provider=purchase.provider,
            purchased_at=purchase.purchased_at,
            expires_at=purchase.expires_at,
            refunded_at=purchase.refunded_at,
        )
        for purchase in await pool.purchases(user_id)
    ]


@router.post("/token-quote")
async def token_quote(
    body: TokenQuoteRequest,
    user_id: str = Depends(get_current_user_id),
    subscriptions: SubscriptionRepository = Depends(get_subscriptions),
) -> TokenQuoteResponse:
    """Price a purchased-token top-up for the caller's plan."""
    subscription = await subscriptions.get_for_user(user_id)
    quote = quote_token_purchase(subscription.plan if subscription else None, body.millions)
    return TokenQuoteResponse(
        tokens=quote.tokens,
        price_per_million_usd=quote.price_per_million_usd,
        total_price_usd=quote.total_price_usd,
        total_price_minor=quote.total_price_minor,
    )
