"""Usage enforcement for billing plan limits."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from fastapi import HTTPException

from craftmeter.billing.catalog import can_access_model

if TYPE_CHECKING:
    from craftmeter.billing.availability import AvailabilityChecker, TokenAvailability

logger = structlog.get_logger(__name__)


class UsageEnforcer:
    """Turns plan and token checks into HTTP errors before an AI call is made."""

    def __init__(self, checker: AvailabilityChecker) -> None:
        self._checker = checker

    def require_model_access(self, plan: str, model: str) -> None:
        """Raise HTTPException(403) when the plan does not include ``model``."""
        if can_access_model(plan, model):
            return
        logger.warning("model_access_denied", plan=plan, model=model)
        raise HTTPException(
            status_code=403,
            detail=f"Model {model} is not available on the {plan} plan. "
            "Upgrade your plan to use it.",
        )

    async def require_tokens(self, user_id: str) -> TokenAvailability:
        """Raise HTTPException(402) when neither the plan nor purchased tokens remain."""
        availability = await self._checker.check(user_id)
        if not availability.allowed:
            logger.warning(
                "usage_limit_exceeded",
                user_id=user_id,
                plan=availability.plan,
                used=availability.subscription_used,
                limit=availability.subscription_limit,
            )
            raise HTTPException(status_code=402, detail=availability.reason)
        return availability
