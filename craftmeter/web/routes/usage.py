"""Usage API routes: pre-call authorization and post-call recording."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from craftmeter.billing.availability import AvailabilityChecker
from craftmeter.billing.catalog import estimate_cost, get_model_info
from craftmeter.billing.infrastructure import InfrastructureUsage
from craftmeter.billing.plans import normalize_plan
from craftmeter.models.api import (
    AIUsageRequest,
    AuthorizeRequest,
    AuthorizeResponse,
    ConsumptionResponse,
    InfrastructureUsageRequest,
    UsageRecordResponse,
)
from craftmeter.storage.repositories.usage import UsageLedger
from craftmeter.storage.repositories.users import SubscriptionRepository
from craftmeter.web.dependencies import (
    get_availability_checker,
    get_current_user_id,
    get_subscriptions,
    get_usage_ledger,
)
from craftmeter.web.routes.billing import availability_response
from craftmeter.web.usage import UsageEnforcer

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/usage", tags=["usage"])


@router.post("/authorize")
async def authorize(
    body: AuthorizeRequest,
    user_id: str = Depends(get_current_user_id),
    checker: AvailabilityChecker = Depends(get_availability_checker),
    subscriptions: SubscriptionRepository = Depends(get_subscriptions),
) -> AuthorizeResponse:
    """Gate an AI call: 403 when the model is off-plan, 402 when tokens ran out."""
    subscription = await subscriptions.get_for_user(user_id)
    plan = normalize_plan(subscription.plan if subscription else None)

    enforcer = UsageEnforcer(checker)
    enforcer.require_model_access(plan, body.model)
    availability = await enforcer.require_tokens(user_id)

    info = get_model_info(body.model)
    return AuthorizeResponse(
        allowed=True,
        model=info.key if info else body.model,
        estimated_cost_usd=estimate_cost(
            body.model, body.estimated_input_tokens, body.estimated_output_tokens
        ),
        availability=availability_response(availability),
    )


@router.post("/ai")
async def record_ai_usage(
    body: AIUsageRequest,
    user_id: str = Depends(get_current_user_id),
    checker: AvailabilityChecker = Depends(get_availability_checker),
) -> ConsumptionResponse:
    result = await checker.consume(
        user_id,
        body.project_id,
        body.model,
        body.input_tokens,
        body.output_tokens,
        endpoint=body.endpoint,
    )
    return ConsumptionResponse(
        usage_id=result.usage_id,
        cost_usd=result.cost_usd,
        total_tokens=result.total_tokens,
        deducted_from_purchased=result.deducted_from_purchased,
        purchase_shortfall=result.purchase_shortfall,
    )


@router.post("/infrastructure")
async def record_infrastructure_usage(
    body: InfrastructureUsageRequest,
    user_id: str = Depends(get_current_user_id),
    ledger: UsageLedger = Depends(get_usage_ledger),
) -> UsageRecordResponse:
    record = await ledger.record_infrastructure_usage(
        user_id,
        InfrastructureUsage(
            database_size_gb=body.database_size_gb,
            storage_size_gb=body.storage_size_gb,
            bandwidth_gb=body.bandwidth_gb,
            auth_mau=body.auth_mau,
            edge_function_invocations=body.edge_function_invocations,
        ),
    )
    return UsageRecordResponse(
        billing_period_start=record.billing_period_start,
        billing_period_end=record.billing_period_end,
        ai_tokens_used=record.ai_tokens_used,
        ai_cost_usd=record.ai_cost_usd,
        database_cost_usd=record.database_cost_usd,
        storage_cost_usd=record.storage_cost_usd,
        bandwidth_cost_usd=record.bandwidth_cost_usd,
        auth_cost_usd=record.auth_cost_usd,
        edge_function_cost_usd=record.edge_function_cost_usd,
        total_cost_usd=record.total_cost_usd,
    )
