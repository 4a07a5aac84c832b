"""Token availability: plan allotment plus the purchased-credit pool."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from craftmeter.billing.plans import UNLIMITED, get_plan_limits, normalize_plan
from craftmeter.exceptions import ValidationError
from craftmeter.storage.repositories.credits import CreditPool
from craftmeter.storage.repositories.usage import UsageLedger
from craftmeter.storage.repositories.users import SubscriptionRepository
from craftmeter.types import PlanName

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

LIMIT_REACHED_REASON = "Monthly token limit reached. Purchase additional tokens to continue."


@dataclass(frozen=True, slots=True)
class TokenAvailability:
    allowed: bool
    reason: str | None
    plan: PlanName
    subscription_used: int
    subscription_limit: int
    purchased_remaining: int
    total_available: int


@dataclass(frozen=True, slots=True)
class ConsumptionResult:
    usage_id: str
    cost_usd: float
    total_tokens: int
    deducted_from_purchased: int
    purchase_shortfall: int


def overage_tokens(limit: int, prior_used: int, tokens: int) -> int:
    """Portion of ``tokens`` that falls beyond the plan allotment."""
    if limit == UNLIMITED:
        return 0
    return max(0, min(tokens, prior_used + tokens - limit))


class AvailabilityChecker:
    """Answers "may this user spend tokens now?" and settles consumption afterwards.

    The check is read-then-act: two requests checked at the same moment can
    both pass and overshoot the allotment by their in-flight usage. Only the
    per-block deduction from the pool is atomic.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        ledger: UsageLedger | None = None,
        pool: CreditPool | None = None,
    ) -> None:
        self._subscriptions = SubscriptionRepository(engine)
        self._ledger = ledger or UsageLedger(engine)
        self._pool = pool or CreditPool(engine)

    async def check(self, user_id: str) -> TokenAvailability:
        subscription = await self._subscriptions.get_for_user(user_id)
        plan = normalize_plan(subscription.plan if subscription else None)
        limit = get_plan_limits(plan).monthly_tokens

        usage = await self._ledger.current_period_usage(user_id)
        balance = await self._pool.balance(user_id)
        used = usage.total_tokens

        if limit == UNLIMITED:
            return TokenAvailability(
                allowed=True,
                reason=None,
                plan=plan,
                subscription_used=used,
                subscription_limit=UNLIMITED,
                purchased_remaining=balance.remaining,
                total_available=UNLIMITED,
            )

        from_subscription = max(0, limit - used)
        allowed = not (used >= limit and balance.remaining <= 0)
        if not allowed:
            logger.info("token_limit_reached", user_id=user_id, plan=plan, used=used, limit=limit)

        return TokenAvailability(
            allowed=allowed,
            reason=None if allowed else LIMIT_REACHED_REASON,
            plan=plan,
            subscription_used=used,
            subscription_limit=limit,
            purchased_remaining=balance.remaining,
            total_available=from_subscription + balance.remaining,
        )

    async def consume(
        self,
        user_id: str,
        project_id: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        endpoint: str | None = None,
    ) -> ConsumptionResult:
        """Record an AI call and draw anything past the allotment from the pool."""
        if input_tokens < 0 or output_tokens < 0:
            msg = "Token counts must be non-negative"
            raise ValidationError(msg)

        subscription = await self._subscriptions.get_for_user(user_id)
        limit = get_plan_limits(subscription.plan if subscription else None).monthly_tokens

        # Usage before this call decides how much of it the plan still covers
        prior = await self._ledger.current_period_usage(user_id)
        recorded = await self._ledger.record_ai_usage(
            user_id, project_id, model, input_tokens, output_tokens, endpoint
        )

        overage = overage_tokens(limit, prior.total_tokens, recorded.total_tokens)
        deducted = shortfall = 0
        if overage:
            result = await self._pool.deduct(user_id, overage)
            deducted, shortfall = result.deducted, overage - result.deducted

        return ConsumptionResult(
            usage_id=recorded.id,
            cost_usd=recorded.cost_usd,
            total_tokens=recorded.total_tokens,
            deducted_from_purchased=deducted,
            purchase_shortfall=shortfall,
        )
