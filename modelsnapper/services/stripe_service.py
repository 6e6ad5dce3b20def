"""
Stripe integration - customers, checkout sessions, subscription reads and
cancellation, webhook signature verification
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from modelsnapper.core.config import settings
from modelsnapper.core.exceptions import UpstreamProviderError, ValidationError
from modelsnapper.core.pricing import find_plan_by_provider_ref
from modelsnapper.database.models import User
from modelsnapper.models.billing import SubscriptionState

logger = logging.getLogger(__name__)


class StripeService:

    def _configure(self):
        if not settings.STRIPE_SECRET_KEY:
            raise UpstreamProviderError("Stripe", "STRIPE_SECRET_KEY is not configured")
        stripe.api_key = settings.STRIPE_SECRET_KEY

    async def ensure_customer(self, db: AsyncSession, user: User) -> str:
        """Return the user's Stripe customer id, creating the customer on first use"""
        if user.stripe_customer_id:
            return user.stripe_customer_id

        self._configure()
        try:
            customer = stripe.Customer.create(
                email=user.primary_email,
                name=" ".join(p for p in (user.first_name, user.last_name) if p) or None,
                metadata={"user_id": str(user.id), "auth_user_id": user.auth_user_id},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe customer creation failed for user {user.id}: {e}")
            raise UpstreamProviderError("Stripe", str(e))

        user.stripe_customer_id = customer.id
        await db.commit()
        logger.info(f"Created Stripe customer {customer.id} for user {user.id}")
        return customer.id

    async def create_checkout_session(self, db: AsyncSession, user: User, plan: Dict[str, Any]) -> Dict[str, str]:
        """Hosted checkout for a subscription plan or a one-time credit pack"""
        price_id = plan.get("stripe_price_id")
        if not price_id:
            raise ValidationError(f"Plan {plan['id']} is not available through Stripe", code="PLAN_UNAVAILABLE")

        customer_id = await self.ensure_customer(db, user)
        metadata = {"user_id": str(user.id), "plan_id": plan["id"]}

        params: Dict[str, Any] = {
            "customer": customer_id,
            "mode": "subscription" if plan["mode"] == "subscription" else "payment",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": f"{settings.APP_URL}/dashboard/business/billing/success-payment?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{settings.APP_URL}/dashboard/business/billing/cancel-payment",
            "client_reference_id": str(user.id),
            "metadata": metadata,
        }
        if plan["mode"] == "subscription":
            params["subscription_data"] = {"metadata": metadata}

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout failed for user {user.id}: {e}")
            raise UpstreamProviderError("Stripe", str(e))

        logger.info(f"Created Stripe checkout {session.id} for user {user.id}, plan {plan['id']}")
        return {"checkout_url": session.url, "session_id": session.id}

    async def current_subscription(self, customer_id: str) -> Optional[SubscriptionState]:
        """Most recent subscription for a customer mapped onto our plan catalogue"""
        self._configure()
        try:
            subscriptions = stripe.Subscription.list(customer=customer_id, status="all", limit=1)
        except stripe.StripeError as e:
            logger.error(f"Stripe subscription lookup failed for {customer_id}: {e}")
            raise UpstreamProviderError("Stripe", str(e))

        if not subscriptions.data:
            return None
        subscription = subscriptions.data[0]
        price_id = subscription["items"]["data"][0]["price"]["id"]
        plan = find_plan_by_provider_ref(price_id)
        if plan is None:
            logger.warning(f"Stripe price {price_id} does not match any plan")
            return None
        return SubscriptionState(plan_id=plan["id"], status=subscription["status"], customer_id=customer_id)

    async def cancel_subscription(self, customer_id: str, immediately: bool = False) -> Optional[Dict[str, Any]]:
        """
        Cancel the customer's active subscription now or at period end.

        Returns None when the customer has no active subscription.
        """
        self._configure()
        try:
            subscriptions = stripe.Subscription.list(customer=customer_id, status="active", limit=1)
            if not subscriptions.data:
                return None
            subscription_id = subscriptions.data[0]["id"]
            if immediately:
                subscription = stripe.Subscription.cancel(subscription_id)
            else:
                subscription = stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)
        except stripe.StripeError as e:
            logger.error(f"Stripe cancellation failed for {customer_id}: {e}")
            raise UpstreamProviderError("Stripe", str(e))

        cancel_at = subscription.get("cancel_at") or subscription.get("canceled_at")
        logger.info(f"Cancelled Stripe subscription {subscription_id} (immediate={immediately})")
        return {
            "subscription_id": subscription["id"],
            "cancel_at": datetime.fromtimestamp(cancel_at, tz=timezone.utc) if cancel_at else None,
        }

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> None:
        """
        Raises:
            ValidationError: missing or invalid signature, or malformed payload
        """
        if not settings.STRIPE_WEBHOOK_SECRET:
            raise ValidationError("Stripe webhook secret is not configured", code="WEBHOOK_NOT_CONFIGURED")
        if not signature:
            raise ValidationError("Missing Stripe-Signature header", code="INVALID_SIGNATURE")
        try:
            stripe.Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
        except stripe.SignatureVerificationError:
            raise ValidationError("Invalid Stripe signature", code="INVALID_SIGNATURE")
        except ValueError:
            raise ValidationError("Invalid webhook payload", code="INVALID_PAYLOAD")


stripe_service = StripeService()
