"""Model catalog route: which AI models the caller's plan may use."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from craftmeter.billing.catalog import default_model, models_for_plan
from craftmeter.billing.plans import normalize_plan
from craftmeter.models.api import ModelResponse, ModelsResponse
from craftmeter.storage.repositories.users import SubscriptionRepository
from craftmeter.web.dependencies import get_current_user_id, get_subscriptions

router = APIRouter(prefix="/api/models", tags=["models"])


@router.get("")
async def list_models(
    user_id: str = Depends(get_current_user_id),
    subscriptions: SubscriptionRepository = Depends(get_subscriptions),
) -> ModelsResponse:
    subscription = await subscriptions.get_for_user(user_id)
    plan = normalize_plan(subscription.plan if subscription else None)
    return ModelsResponse(
        plan=plan,
        default_model=default_model(plan),
        models=[
            ModelResponse(
                key=model.key,
                id=model.id,
                name=model.name,
                provider=model.provider,
                tier=model.tier,
                input_per_million=model.input_per_million,
                output_per_million=model.output_per_million,
            )
            for model in models_for_plan(plan)
        ],
    )
