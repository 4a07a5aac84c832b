"""Payment provider webhook receivers (Polar, Razorpay)."""

from __future__ import annotations

import json
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from craftmeter.billing.providers import polar, razorpay
from craftmeter.billing.webhooks import WebhookProcessor
from craftmeter.config.settings import get_settings
from craftmeter.exceptions import ValidationError
from craftmeter.models.api import WebhookAck
from craftmeter.types import PaymentProvider
from craftmeter.web.dependencies import get_webhook_processor

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def _require_secret(secret: str | None, provider: str) -> str:
    if not secret or not secret.strip():
        logger.error("webhook_secret_missing", provider=provider)
        raise HTTPException(status_code=500, detail="Webhook secret not configured")
    return secret.strip()


def _parse_body(payload: bytes, provider: str) -> dict[str, Any]:
    try:
        body = json.loads(payload)
    except ValueError as exc:
        logger.warning("webhook_body_invalid", provider=provider)
        raise HTTPException(status_code=400, detail="Invalid JSON body") from exc
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Webhook body must be a JSON object")
    return body


@router.post("/polar")
async def polar_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
) -> WebhookAck:
    """Handle Polar subscription and order events."""
    secret = _require_secret(get_settings().polar_webhook_secret, PaymentProvider.POLAR)
    payload = await request.body()
    headers = {
        "webhook-id": request.headers.get("webhook-id", ""),
        "webhook-timestamp": request.headers.get("webhook-timestamp", ""),
        "webhook-signature": request.headers.get("webhook-signature", ""),
    }
    if not polar.verify_signature(payload, headers, secret):
        logger.warning("webhook_signature_invalid", provider=PaymentProvider.POLAR)
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    body = _parse_body(payload, PaymentProvider.POLAR)
    try:
        event_id, event_type = polar.event_identity(headers, body)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    logger.info("webhook_received", provider=PaymentProvider.POLAR, event_type=event_type)
    status = await processor.process(PaymentProvider.POLAR, event_id, event_type, body)
    return WebhookAck(status=status)


@router.post("/razorpay")
async def razorpay_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
) -> WebhookAck:
    """Handle Razorpay payment, subscription and refund events."""
    secret = _require_secret(get_settings().razorpay_webhook_secret, PaymentProvider.RAZORPAY)
    payload = await request.body()
    signature = request.headers.get("x-razorpay-signature", "")
    if not razorpay.verify_signature(payload, signature, secret):
        logger.warning("webhook_signature_invalid", provider=PaymentProvider.RAZORPAY)
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    body = _parse_body(payload, PaymentProvider.RAZORPAY)
    event_id, event_type = razorpay.event_identity(request.headers, body, payload)

    logger.info("webhook_received", provider=PaymentProvider.RAZORPAY, event_type=event_type)
    status = await processor.process(PaymentProvider.RAZORPAY, event_id, event_type, body)
    return WebhookAck(status=status)
