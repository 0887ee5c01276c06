"""
CardSync Pro Backend — Billing Service (Stripe)
================================================

What:  Subscription checkout, checkout confirmation, and Stripe webhooks.
Why:   The subscription plan sets the contact limit; Stripe is the source of
       truth for which plan an account has paid for.
How:   An explicitly constructed `stripe.StripeClient` (no module-level API
       key; None when STRIPE_SECRET_KEY is unset). The SDK is synchronous,
       so calls run in the threadpool and are guarded by the billing circuit
       breaker. Webhook signatures are checked with the webhook secret alone.
Who:   Billing routes and the webhook route.

Webhook events handled:
    checkout.session.completed      → retrieve subscription → apply plan
    customer.subscription.updated   → map price → plan → apply (by customer)
    customer.subscription.deleted   → back to the free plan (by subscription)

Events carrying an unknown price id, or a customer/subscription no profile
references, are logged as errors and dropped; the webhook still answers 200
and relies on Stripe's own redelivery for anything that was transient.
"""

import logging
from typing import Any, Callable, Dict, Optional

import stripe
from fastapi.concurrency import run_in_threadpool

from cardsync.config import Settings
from cardsync.exceptions import (
    BillingServiceError,
    NotFoundError,
    ValidationError,
)
from cardsync.models.user_profile import SubscriptionPlan
from cardsync.services.auth_service import Identity
from cardsync.services.profile_service import ProfileService
from cardsync.services.resilience import CircuitBreaker

logger = logging.getLogger(__name__)

PAID_PLANS = (SubscriptionPlan.PRO.value, SubscriptionPlan.BUSINESS.value)


def _get(obj, key: str) -> Any:
    """Field of a Stripe object or webhook payload; None when absent."""
    try:
        return obj[key]
    except (KeyError, TypeError):
        return None


def build_stripe_client(settings: Settings) -> stripe.StripeClient:
    return stripe.StripeClient(
        settings.stripe_secret_key,
        max_network_retries=settings.stripe_max_network_retries,
    )


class BillingService:

    def __init__(
        self,
        settings: Settings,
        client: Optional[stripe.StripeClient],
        profiles: ProfileService,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.settings = settings
        self.client = client
        self.profiles = profiles
        self.price_ids: Dict[str, Optional[str]] = settings.stripe_price_ids
        self.circuit_breaker = breaker or CircuitBreaker(
            service="billing",
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

    def plan_for_price(self, price_id: Optional[str]) -> Optional[str]:
        for plan, configured in self.price_ids.items():
            if configured and configured == price_id:
                return plan
        return None

    def _require_client(self) -> stripe.StripeClient:
        if self.client is None:
            logger.error("Billing call attempted but STRIPE_SECRET_KEY is not set")
            raise BillingServiceError(message="Billing is not configured on this server.")
        return self.client

    async def _call(self, operation: str, fn: Callable, *args, **kwargs) -> Any:
        """Run one synchronous SDK call in the threadpool behind the breaker."""
        self.circuit_breaker.can_execute()
        try:
            result = await run_in_threadpool(fn, *args, **kwargs)
        except stripe.StripeError as e:
            self.circuit_breaker.record_failure()
            logger.error("Stripe %s failed: %s", operation, getattr(e, "user_message", None) or str(e))
            raise BillingServiceError(
                context={"operation": operation, "error_type": type(e).__name__},
            ) from e
        self.circuit_breaker.record_success()
        return result

    # ── Checkout ──────────────────────────────────────────────────────────

    async def create_checkout_session(self, identity: Identity, plan: str) -> Dict[str, str]:
        """
        Start a subscription checkout for a paid plan.

        Returns:
            {"url": <Stripe-hosted page>, "session_id": <checkout session id>}

        Raises:
            ValidationError: plan is not a paid plan
            NotFoundError: no price id configured for the plan
            BillingServiceError: Stripe call failed
        """
        if plan not in PAID_PLANS:
            raise ValidationError(
                message=f"Invalid plan '{plan}'. Choose one of: {', '.join(PAID_PLANS)}",
                field="plan",
            )
        price_id = self.price_ids.get(plan)
        if not price_id:
            raise NotFoundError(resource="price for plan", resource_id=plan)

        profile = await self.profiles.get_or_create_profile(identity)
        customer_id = profile.billing_customer_id
        if not customer_id:
            customer = await self._call(
                "customers.create",
                self._require_client().customers.create,
                params={
                    "email": identity.email or profile.email,
                    "metadata": {"user_id": identity.subject_id},
                },
            )
            customer_id = customer["id"]
            await self.profiles.set_billing_customer(identity.subject_id, customer_id)

        app_url = self.settings.app_url.rstrip("/")
        session = await self._call(
            "checkout.sessions.create",
            self._require_client().checkout.sessions.create,
            params={
                "customer": customer_id,
                "mode": "subscription",
                "line_items": [{"price": price_id, "quantity": 1}],
                "success_url": f"{app_url}/dashboard/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
                "cancel_url": f"{app_url}/dashboard/billing",
                "metadata": {"user_id": identity.subject_id, "plan": plan},
            },
        )
        logger.info("Checkout session %s created for %s (plan=%s)", session["id"], identity.subject_id, plan)
        return {"url": session["url"], "session_id": session["id"]}

    async def confirm_checkout_session(self, identity: Identity, session_id: str) -> str:
        """
        Apply the plan of a completed checkout the caller started.

        Called from the billing success page so the plan change shows up
        without waiting for the webhook.

        Returns:
            The plan now on the profile.
        """
        session = await self._call(
            "checkout.sessions.retrieve",
            self._require_client().checkout.sessions.retrieve,
            session_id,
        )
        metadata = _get(session, "metadata") or {}
        if _get(metadata, "user_id") != identity.subject_id:
            raise NotFoundError(resource="checkout session", resource_id=session_id)
        if _get(session, "payment_status") != "paid":
            raise ValidationError(
                message="This checkout has not been paid yet.",
                field="session_id",
                context={"payment_status": _get(session, "payment_status")},
            )

        subscription_id = _get(session, "subscription")
        if subscription_id:
            subscription = await self._retrieve_subscription(subscription_id)
            plan = await self._sync_subscription(subscription, user_id=identity.subject_id)
            if plan:
                return plan

        plan = _get(metadata, "plan")
        if plan not in PAID_PLANS:
            raise ValidationError(message="Checkout session does not name a paid plan.", field="session_id")
        await self.profiles.apply_subscription(
            identity.subject_id,
            plan,
            subscription_id=subscription_id if isinstance(subscription_id, str) else None,
            status="active",
            customer_id=_get(session, "customer"),
        )
        return plan

    # ── Webhooks ──────────────────────────────────────────────────────────

    async def handle_webhook(self, payload: bytes, signature: Optional[str]) -> str:
        """
        Verify and dispatch one webhook delivery.

        Returns:
            The event type (for logging by the route).

        Raises:
            ValidationError: missing/invalid signature or malformed payload
        """
        if not self.settings.stripe_webhook_secret or not signature:
            logger.error("Webhook rejected: secret or signature missing")
            raise ValidationError(message="Webhook signature missing", field="Stripe-Signature")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.settings.stripe_webhook_secret)
        except ValueError as e:
            logger.error("Invalid webhook payload")
            raise ValidationError(message="Invalid webhook payload") from e
        except stripe.SignatureVerificationError as e:
            logger.error("Webhook signature verification failed")
            raise ValidationError(message="Invalid webhook signature", field="Stripe-Signature") from e

        event_type = event["type"]
        data = event["data"]["object"]
        logger.info("Received Stripe webhook: %s", event_type)

        if event_type == "checkout.session.completed":
            if _get(data, "mode") == "subscription" and _get(data, "subscription"):
                subscription = await self._retrieve_subscription(data["subscription"])
                user_id = _get(_get(data, "metadata") or {}, "user_id")
                await self._sync_subscription(subscription, user_id=user_id)
        elif event_type == "customer.subscription.updated":
            await self._sync_subscription(data)
        elif event_type == "customer.subscription.deleted":
            await self._cancel_subscription(data)
        else:
            logger.debug("Ignoring webhook event type %s", event_type)
        return event_type

    async def _retrieve_subscription(self, subscription):
        # Expanded sessions already carry the object
        if not isinstance(subscription, str):
            return subscription
        return await self._call("subscriptions.retrieve", self._require_client().subscriptions.retrieve, subscription)

    async def _sync_subscription(self, subscription, user_id: Optional[str] = None) -> Optional[str]:
        """
        Map the subscription's price to a plan and store it on the profile.

        The profile is the one named by user_id when given, otherwise the one
        whose billing customer matches. Returns the plan, or None when the
        event was dropped.
        """
        items = subscription["items"]["data"]
        price_id = items[0]["price"]["id"] if items else None
        plan = self.plan_for_price(price_id)
        if plan is None:
            logger.error("Webhook Error: Unrecognized price ID: %s", price_id)
            return None

        customer_id = _get(subscription, "customer")
        if not user_id:
            profile = await self.profiles.find_by_billing_customer(customer_id) if customer_id else None
            if profile is None:
                logger.error("Webhook Error: No profile found for Stripe customer ID: %s", customer_id)
                return None
            user_id = profile.id

        try:
            await self.profiles.apply_subscription(
                user_id,
                plan,
                subscription_id=subscription["id"],
                status=_get(subscription, "status"),
                customer_id=customer_id,
            )
        except NotFoundError:
            logger.error("Webhook Error: No profile found for user %s", user_id)
            return None
        return plan

    async def _cancel_subscription(self, subscription) -> None:
        profile = await self.profiles.find_by_subscription(subscription["id"])
        if profile is None:
            logger.error("Webhook Error: No profile found for Stripe subscription ID: %s", subscription["id"])
            return
        await self.profiles.apply_subscription(
            profile.id,
            SubscriptionPlan.FREE.value,
            subscription_id=None,
            status=_get(subscription, "status"),
        )
        logger.info("Canceled subscription for %s; plan set to free", profile.id)
