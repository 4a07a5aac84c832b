"""API request/response schemas for FastAPI endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field


class AvailabilityResponse(BaseModel):
    allowed: bool
    reason: str | None
    plan: str
    subscription_used: int
    subscription_limit: int
    purchased_remaining: int
    total_available: int


class ModelUsageResponse(BaseModel):
    tokens: int
    cost_usd: float


class UsageResponse(BaseModel):
    start: datetime
    end: datetime
    total_tokens: int
    total_cost_usd: float
    by_model: dict[str, ModelUsageResponse]


class SubscriptionResponse(BaseModel):
    plan: str
    status: str
    provider: str | None
    current_period_start: datetime | None
    current_period_end: datetime | None
    cancel_at_period_end: bool
    monthly_tokens: int
    can_purchase_tokens: bool


class TokenBalanceResponse(BaseModel):
    total_purchased: int
    total_used: int
    remaining: int


class PurchaseResponse(BaseModel):
    id: str
    token_amount: int
    tokens_remaining: int
    price_usd: float
    status: str
    provider: str | None
    purchased_at: datetime
    expires_at: datetime | None
    refunded_at: datetime | None


class TokenQuoteRequest(BaseModel):
    millions: int


class TokenQuoteResponse(BaseModel):
    tokens: int
    price_per_million_usd: int
    total_price_usd: float
    total_price_minor: int


class ModelResponse(BaseModel):
    key: str
    id: str
    name: str
    provider: str
    tier: str
    input_per_million: float
    output_per_million: float


class ModelsResponse(BaseModel):
    plan: str
    default_model: str
    models: list[ModelResponse]


class AuthorizeRequest(BaseModel):
    model: str
    estimated_input_tokens: int = Field(default=0, ge=0)
    estimated_output_tokens: int = Field(default=0, ge=0)


class AuthorizeResponse(BaseModel):
    allowed: bool
    model: str
    estimated_cost_usd: float
    availability: AvailabilityResponse


class AIUsageRequest(BaseModel):
    project_id: str = Field(min_length=1)
    model: str = Field(min_length=1)
    input_tokens: int = Field(ge=0)
    output_tokens: int = Field(ge=0)
    endpoint: str | None = None


class ConsumptionResponse(BaseModel):
    usage_id: str
    cost_usd: float
    total_tokens: int
    deducted_from_purchased: int
    purchase_shortfall: int


class InfrastructureUsageRequest(BaseModel):
    database_size_gb: float = Field(default=0.0, ge=0)
    storage_size_gb: float = Field(default=0.0, ge=0)
    bandwidth_gb: float = Field(default=0.0, ge=0)
    auth_mau: int = Field(default=0, ge=0)
    edge_function_invocations: int = Field(default=0, ge=0)


class UsageRecordResponse(BaseModel):
    billing_period_start: datetime
    billing_period_end: datetime
    ai_tokens_used: int
    ai_cost_usd: float
    database_cost_usd: float
    storage_cost_usd: float
    bandwidth_cost_usd: float
    auth_cost_usd: float
    edge_function_cost_usd: float
    total_cost_usd: float


class WebhookAck(BaseModel):
    received: bool = True
    status: str
