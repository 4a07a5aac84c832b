"""AI model catalog: per-plan availability and per-token pricing."""

from __future__ import annotations

from dataclasses import dataclass

from craftmeter.billing.plans import normalize_plan, plan_rank
from craftmeter.exceptions import ValidationError
from craftmeter.types import PlanName

_TOKENS_PER_PRICE_UNIT = 1_000_000


@dataclass(frozen=True, slots=True)
class ModelInfo:
    """A user-selectable model and its USD price per 1M tokens."""

    key: str
    id: str
    name: str
    provider: str
    tier: str  # lite | premium
    min_plan: PlanName
    input_per_million: float
    output_per_million: float


@dataclass(frozen=True, slots=True)
class ModelPricing:
    input_per_million: float
    output_per_million: float


# Charged for models that are not (or no longer) in the catalog
FALLBACK_PRICING = ModelPricing(input_per_million=1.0, output_per_million=3.0)

AI_MODELS: dict[str, ModelInfo] = {
    # Lite models (Hobby+)
    "claude-haiku-4.5": ModelInfo(
        key="claude-haiku-4.5",
        id="anthropic/claude-haiku-4.5",
        name="Claude Haiku 4.5",
        provider="Anthropic",
        tier="lite",
        min_plan=PlanName.HOBBY,
        input_per_million=1.0,
        output_per_million=5.0,
    ),
    "gpt-5-mini": ModelInfo(
        key="gpt-5-mini",
        id="openai/gpt-5-mini",
        name="GPT-5 mini",
        provider="OpenAI",
        tier="lite",
        min_plan=PlanName.HOBBY,
        input_per_million=0.25,
        output_per_million=2.0,
    ),
    "gemini-2.5-flash": ModelInfo(
        key="gemini-2.5-flash",
        id="google/gemini-2.5-flash",
        name="Gemini 2.5 Flash",
        provider="Google",
        tier="lite",
        min_plan=PlanName.HOBBY,
        input_per_million=0.3,
        output_per_million=2.5,
    ),
    # Premium models (Pro+)
    "claude-sonnet-4.5": ModelInfo(
        key="claude-sonnet-4.5",
        id="anthropic/claude-sonnet-4.5",
        name="Claude Sonnet 4.5",
        provider="Anthropic",
        tier="premium",
        min_plan=PlanName.PRO,
        input_per_million=3.0,
        output_per_million=15.0,
    ),
    "gpt-5": ModelInfo(
        key="gpt-5",
        id="openai/gpt-5",
        name="GPT-5",
        provider="OpenAI",
        tier="premium",
        min_plan=PlanName.PRO,
        input_per_million=1.25,
        output_per_million=10.0,
    ),
    "gemini-2.5-pro": ModelInfo(
        key="gemini-2.5-pro",
        id="google/gemini-2.5-pro",
        name="Gemini 2.5 Pro",
        provider="Google",
        tier="premium",
        min_plan=PlanName.PRO,
        input_per_million=1.25,
        output_per_million=10.0,
    ),
}

_MODELS_BY_ID: dict[str, ModelInfo] = {m.id: m for m in AI_MODELS.values()}

_DEFAULT_MODELS: dict[PlanName, str] = {
    PlanName.HOBBY: "claude-haiku-4.5",
    PlanName.PRO: "claude-sonnet-4.5",
    PlanName.ENTERPRISE: "claude-sonnet-4.5",
}


def get_model_info(model: str) -> ModelInfo | None:
    """Look up a model by catalog key or full provider path."""
    return AI_MODELS.get(model) or _MODELS_BY_ID.get(model)


def models_for_plan(plan: str | None) -> list[ModelInfo]:
    """Return the models a plan may use, in catalog order."""
    rank = plan_rank(plan)
    return [m for m in AI_MODELS.values() if plan_rank(m.min_plan) <= rank]


def can_access_model(plan: str | None, model: str) -> bool:
    info = get_model_info(model)
    if info is None:
        return False
    return plan_rank(plan) >= plan_rank(info.min_plan)


def default_model(plan: str | None) -> str:
    return _DEFAULT_MODELS[normalize_plan(plan)]


def pricing_for(model: str) -> ModelPricing:
    info = get_model_info(model)
    if info is None:
        return FALLBACK_PRICING
    return ModelPricing(info.input_per_million, info.output_per_million)


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Return the USD cost of a call; the ledger records exactly this value."""
    if input_tokens < 0 or output_tokens < 0:
        msg = "Token counts must not be negative"
        raise ValidationError(msg)
    pricing = pricing_for(model)
    input_cost = (input_tokens / _TOKENS_PER_PRICE_UNIT) * pricing.input_per_million
    output_cost = (output_tokens / _TOKENS_PER_PRICE_UNIT) * pricing.output_per_million
    return input_cost + output_cost
