"""Plan tier definitions with concrete limits."""

from __future__ import annotations

from dataclasses import dataclass

from craftmeter.exceptions import PlanNotAllowedError, ValidationError
from craftmeter.types import PlanName

UNLIMITED = -1

TOKEN_TOPUP_PRICE_PER_MILLION_USD = 20


@dataclass(frozen=True, slots=True)
class PlanLimits:
    """Allotments for a billing plan."""

    monthly_tokens: int
    can_purchase_tokens: bool
    max_projects: int
    database_storage_gb: float


@dataclass(frozen=True, slots=True)
class TokenQuote:
    """Price of a purchased-token top-up."""

    tokens: int
    price_per_million_usd: int
    total_price_usd: float
    total_price_minor: int


PLAN_LIMITS: dict[PlanName, PlanLimits] = {
    PlanName.HOBBY: PlanLimits(
        monthly_tokens=100_000,
        can_purchase_tokens=False,
        max_projects=3,
        database_storage_gb=0.5,
    ),
    PlanName.PRO: PlanLimits(
        monthly_tokens=10_000_000,
        can_purchase_tokens=True,
        max_projects=UNLIMITED,
        database_storage_gb=5,
    ),
    PlanName.ENTERPRISE: PlanLimits(
        monthly_tokens=UNLIMITED,
        can_purchase_tokens=True,
        max_projects=UNLIMITED,
        database_storage_gb=UNLIMITED,
    ),
}

_PLAN_RANK: dict[PlanName, int] = {
    PlanName.HOBBY: 0,
    PlanName.PRO: 1,
    PlanName.ENTERPRISE: 2,
}


def normalize_plan(plan: str | None) -> PlanName:
    """Map a stored plan name onto a known tier, defaulting to HOBBY."""
    if not plan:
        return PlanName.HOBBY
    try:
        return PlanName(plan.upper())
    except ValueError:
        return PlanName.HOBBY


def get_plan_limits(plan: str | None) -> PlanLimits:
    """Get limits for a plan, defaulting to the hobby tier."""
    return PLAN_LIMITS[normalize_plan(plan)]


def plan_rank(plan: str | None) -> int:
    return _PLAN_RANK[normalize_plan(plan)]


def quote_token_purchase(plan: str | None, millions: int) -> TokenQuote:
    """Price a top-up of ``millions`` x 1M tokens for a user on ``plan``."""
    if millions <= 0:
        msg = "Invalid token amount. Must be greater than 0."
        raise ValidationError(msg)
    if not get_plan_limits(plan).can_purchase_tokens:
        msg = "Your plan does not allow purchasing additional tokens"
        raise PlanNotAllowedError(msg)

    total_usd = millions * TOKEN_TOPUP_PRICE_PER_MILLION_USD
    return TokenQuote(
        tokens=millions * 1_000_000,
        price_per_million_usd=TOKEN_TOPUP_PRICE_PER_MILLION_USD,
        total_price_usd=float(total_usd),
        total_price_minor=round(total_usd * 100),
    )
