"""FastAPI application factory."""

from __future__ import annotations

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from craftmeter.config.logging import setup_logging
from craftmeter.config.settings import get_settings
from craftmeter.exceptions import PlanNotAllowedError, ValidationError
from craftmeter.web.dependencies import get_db_engine, require_internal_token
from craftmeter.web.health import check_health
from craftmeter.web.middleware import RateLimitMiddleware, RequestIDMiddleware
from craftmeter.web.routes.billing import router as billing_router
from craftmeter.web.routes.models import router as models_router
from craftmeter.web.routes.usage import router as usage_router
from craftmeter.web.routes.webhooks import router as webhooks_router

logger = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_output=not settings.debug)

    app = FastAPI(
        title="CraftMeter",
        description="Token metering and plan enforcement for Craft",
        version="0.1.0",
    )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(PlanNotAllowedError)
    async def plan_error_handler(request: Request, exc: PlanNotAllowedError) -> JSONResponse:
        return JSONResponse(status_code=403, content={"detail": str(exc)})

    # Middleware (last added runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID", "X-User-ID"],
    )
    app.add_middleware(RateLimitMiddleware, max_requests=120, window_seconds=60)
    app.add_middleware(RequestIDMiddleware)

    # Provider webhooks (public, signature-verified internally)
    app.include_router(webhooks_router)

    # Health check (public)
    @app.get("/api/health")
    async def health_check(engine: AsyncEngine = Depends(get_db_engine)) -> dict[str, object]:
        return await check_health(engine)

    # User-facing routes (gateway token when configured, X-User-ID per endpoint)
    for router in (billing_router, models_router, usage_router):
        app.include_router(router, dependencies=[Depends(require_internal_token)])

    logger.info("app_created")
    return app
