"""
CardSync Pro Backend — Billing Schemas
=======================================
"""

from typing import Literal

from pydantic import BaseModel, Field


class CheckoutRequest(BaseModel):
    # Validated against the paid plans in BillingService so that an unknown
    # plan gets the 400 error body instead of FastAPI's 422
    plan: str = Field(description="'pro' or 'business'")


class CheckoutResponse(BaseModel):
    url: str = Field(description="Stripe-hosted checkout page to redirect to")
    session_id: str


class ConfirmCheckoutRequest(BaseModel):
    session_id: str = Field(min_length=1)


class ConfirmCheckoutResponse(BaseModel):
    subscription_plan: str
    message: str = "Subscription updated"


class WebhookAck(BaseModel):
    received: Literal[True] = True
