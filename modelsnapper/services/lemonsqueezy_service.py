"""
LemonSqueezy integration over its JSON:API REST interface
"""
import hashlib
import hmac
import json
import logging
from datetime import datetime
from typing import Optional, Dict, Any

import httpx

from modelsnapper.core.config import settings
from modelsnapper.core.exceptions import UpstreamProviderError, ValidationError
from modelsnapper.core.pricing import find_plan_by_provider_ref
from modelsnapper.database.models import User
from modelsnapper.models.billing import SubscriptionState

logger = logging.getLogger(__name__)


class LemonSqueezyAPIError(Exception):
    pass


def compute_signature(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


class LemonSqueezyService:

    async def _make_request(self, method: str, endpoint: str, payload: Optional[Dict[str, Any]] = None,
                            params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not settings.LEMONSQUEEZY_API_KEY:
            raise LemonSqueezyAPIError("LEMONSQUEEZY_API_KEY is not configured")

        headers = {
            "Authorization": f"Bearer {settings.LEMONSQUEEZY_API_KEY}",
            "Accept": "application/vnd.api+json",
            "Content-Type": "application/vnd.api+json",
        }
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(20.0)) as client:
                response = await client.request(
                    method, f"{settings.LEMONSQUEEZY_API_URL}{endpoint}",
                    json=payload, params=params, headers=headers,
                )
        except httpx.TimeoutException:
            raise LemonSqueezyAPIError("Request timeout")
        except httpx.RequestError as e:
            logger.error(f"LemonSqueezy request error: {str(e)}")
            raise LemonSqueezyAPIError(f"Request error: {str(e)}")

        if response.status_code >= 400:
            logger.error(f"LemonSqueezy {endpoint} failed with status {response.status_code}: {response.text}")
            raise LemonSqueezyAPIError(f"API request failed: {response.status_code}")

        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise LemonSqueezyAPIError(f"Invalid JSON response: {str(e)}")

    async def create_checkout(self, user: User, plan: Dict[str, Any]) -> Dict[str, str]:
        variant_id = plan.get("lemonsqueezy_variant_id")
        if not variant_id or not settings.LEMONSQUEEZY_STORE_ID:
            raise ValidationError(f"Plan {plan['id']} is not available through LemonSqueezy", code="PLAN_UNAVAILABLE")

        payload = {
            "data": {
                "type": "checkouts",
                "attributes": {
                    "checkout_data": {
                        "email": user.primary_email,
                        "custom": {"user_id": str(user.id), "plan_id": plan["id"]},
                    },
                    "product_options": {
                        "redirect_url": f"{settings.APP_URL}/dashboard/business/billing/success-payment",
                    },
                },
                "relationships": {
                    "store": {"data": {"type": "stores", "id": str(settings.LEMONSQUEEZY_STORE_ID)}},
                    "variant": {"data": {"type": "variants", "id": str(variant_id)}},
                },
            }
        }
        try:
            data = await self._make_request("POST", "/checkouts", payload)
        except LemonSqueezyAPIError as e:
            raise UpstreamProviderError("LemonSqueezy", str(e))

        checkout = data.get("data") or {}
        url = (checkout.get("attributes") or {}).get("url")
        if not url:
            raise UpstreamProviderError("LemonSqueezy", "Checkout URL missing from response")
        logger.info(f"Created LemonSqueezy checkout {checkout.get('id')} for user {user.id}, plan {plan['id']}")
        return {"checkout_url": url, "session_id": checkout.get("id")}

    async def current_subscription(self, customer_id: str) -> Optional[SubscriptionState]:
        try:
            data = await self._make_request(
                "GET", "/subscriptions",
                params={"filter[customer_id]": str(customer_id), "page[size]": 1},
            )
        except LemonSqueezyAPIError as e:
            raise UpstreamProviderError("LemonSqueezy", str(e))

        subscriptions = data.get("data") or []
        if not subscriptions:
            return None
        attributes = subscriptions[0].get("attributes") or {}
        plan = find_plan_by_provider_ref(attributes.get("variant_id"))
        if plan is None:
            logger.warning(f"LemonSqueezy variant {attributes.get('variant_id')} does not match any plan")
            return None
        return SubscriptionState(plan_id=plan["id"], status=attributes.get("status", ""), customer_id=str(customer_id))

    async def cancel_subscription(self, customer_id: str) -> Optional[Dict[str, Any]]:
        """
        Cancel the customer's active subscription at the end of its billing period.

        Returns None when the customer has no active subscription.
        """
        try:
            data = await self._make_request(
                "GET", "/subscriptions",
                params={"filter[customer_id]": str(customer_id), "filter[status]": "active", "page[size]": 1},
            )
            subscriptions = data.get("data") or []
            if not subscriptions:
                return None
            subscription_id = subscriptions[0].get("id")
            cancelled = await self._make_request("DELETE", f"/subscriptions/{subscription_id}")
        except LemonSqueezyAPIError as e:
            raise UpstreamProviderError("LemonSqueezy", str(e))

        ends_at = ((cancelled.get("data") or {}).get("attributes") or {}).get("ends_at")
        logger.info(f"Cancelled LemonSqueezy subscription {subscription_id}")
        return {
            "subscription_id": str(subscription_id),
            "cancel_at": datetime.fromisoformat(ends_at.replace("Z", "+00:00")) if ends_at else None,
        }

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> None:
        """
        HMAC-SHA256 of the raw body, hex encoded, in the X-Signature header.

        Raises:
            ValidationError: missing secret or signature mismatch
        """
        if not settings.LEMONSQUEEZY_WEBHOOK_SECRET:
            raise ValidationError("LemonSqueezy webhook secret is not configured", code="WEBHOOK_NOT_CONFIGURED")
        if not signature:
            raise ValidationError("Missing X-Signature header", code="INVALID_SIGNATURE")

        expected = compute_signature(payload, settings.LEMONSQUEEZY_WEBHOOK_SECRET)
        if not hmac.compare_digest(expected, signature.strip()):
            raise ValidationError("Invalid LemonSqueezy signature", code="INVALID_SIGNATURE")


lemonsqueezy_service = LemonSqueezyService()
