"""
CardSync Pro Backend — Billing Routes
======================================

What:  Stripe checkout for plan upgrades, and the Stripe webhook.

Webhook notes:
    - Reads the raw body: the signature covers the exact bytes sent
    - Not rate limited and not authenticated; the signature is the auth
    - Replies 200 {"received": true} for every verified event, including
      ones that are ignored or dropped
"""

import logging

from fastapi import APIRouter, Depends, Request

from cardsync.container import ServiceContainer
from cardsync.dependencies import get_identity, get_services
from cardsync.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    ConfirmCheckoutRequest,
    ConfirmCheckoutResponse,
    WebhookAck,
)
from cardsync.schemas.common import ErrorResponse
from cardsync.services.auth_service import Identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Billing"])


@router.post(
    "/billing/checkout",
    response_model=CheckoutResponse,
    responses={
        400: {"description": "Unknown plan", "model": ErrorResponse},
        404: {"description": "Plan has no configured price", "model": ErrorResponse},
        503: {"description": "Billing provider unavailable", "model": ErrorResponse},
    },
    summary="Start a Stripe checkout for a paid plan",
)
async def create_checkout(
    body: CheckoutRequest,
    identity: Identity = Depends(get_identity),
    services: ServiceContainer = Depends(get_services),
) -> CheckoutResponse:
    session = await services.billing.create_checkout_session(identity, body.plan)
    return CheckoutResponse(url=session["url"], session_id=session["session_id"])


@router.post(
    "/billing/confirm",
    response_model=ConfirmCheckoutResponse,
    summary="Apply the plan of a completed checkout",
)
async def confirm_checkout(
    body: ConfirmCheckoutRequest,
    identity: Identity = Depends(get_identity),
    services: ServiceContainer = Depends(get_services),
) -> ConfirmCheckoutResponse:
    plan = await services.billing.confirm_checkout_session(identity, body.session_id)
    return ConfirmCheckoutResponse(subscription_plan=plan)


@router.post(
    "/webhooks/stripe",
    response_model=WebhookAck,
    responses={400: {"description": "Invalid signature or payload", "model": ErrorResponse}},
    summary="Stripe webhook endpoint",
    include_in_schema=False,
)
async def stripe_webhook(
    request: Request,
    services: ServiceContainer = Depends(get_services),
) -> WebhookAck:
    payload = await request.body()
    event_type = await services.billing.handle_webhook(payload, request.headers.get("stripe-signature"))
    logger.info("Stripe webhook %s processed", event_type)
    return WebhookAck()
