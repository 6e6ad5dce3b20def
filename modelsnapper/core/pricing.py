"""
Plan catalogue shared by billing, checkout and webhook handling.

Subscriptions reset the user's credits to `monthly_credits` on every paid
renewal. One-time packs add `credits` on top of the current balance.
"""
import os
from typing import Any, Dict, Optional

DEFAULT_CURRENCY = "usd"

PRICING_PLANS: Dict[str, Dict[str, Any]] = {
    "free": {
        "name": "Free",
        "type": "free",
        "mode": "free",
        "price": 0.0,
        "monthly_credits": int(os.getenv("FREE_CREDITS_RESET_AMOUNT", "3")),
        "credits": 0,
        "is_premium": False,
    },
    "starter": {
        "name": "Starter",
        "type": "starter",
        "mode": "subscription",
        "price": 4.99,
        "monthly_credits": 50,
        "credits": 0,
        "is_premium": True,
        "stripe_price_id": os.getenv("STRIPE_STARTER_PRICE_ID", ""),
        "lemonsqueezy_variant_id": os.getenv("LEMONSQUEEZY_STARTER_VARIANT_ID", ""),
    },
    "growth": {
        "name": "Growth",
        "type": "growth",
        "mode": "subscription",
        "price": 19.99,
        "monthly_credits": 250,
        "credits": 0,
        "is_premium": True,
        "stripe_price_id": os.getenv("STRIPE_GROWTH_PRICE_ID", ""),
        "lemonsqueezy_variant_id": os.getenv("LEMONSQUEEZY_GROWTH_VARIANT_ID", ""),
    },
    "credits_50": {
        "name": "50 Credits",
        "type": "payment",
        "mode": "payment",
        "price": 9.99,
        "monthly_credits": 0,
        "credits": 50,
        "is_premium": False,
        "stripe_price_id": os.getenv("STRIPE_CREDITS_50_PRICE_ID", ""),
        "lemonsqueezy_variant_id": os.getenv("LEMONSQUEEZY_CREDITS_50_VARIANT_ID", ""),
    },
    "credits_100": {
        "name": "100 Credits",
        "type": "payment",
        "mode": "payment",
        "price": 17.99,
        "monthly_credits": 0,
        "credits": 100,
        "is_premium": False,
        "stripe_price_id": os.getenv("STRIPE_CREDITS_100_PRICE_ID", ""),
        "lemonsqueezy_variant_id": os.getenv("LEMONSQUEEZY_CREDITS_100_VARIANT_ID", ""),
    },
}


def get_plan(plan_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not plan_id:
        return None
    plan = PRICING_PLANS.get(plan_id)
    if plan is None:
        return None
    return {"id": plan_id, **plan}


def find_plan_by_provider_ref(ref: Optional[str]) -> Optional[Dict[str, Any]]:
    """Map a Stripe price id or LemonSqueezy variant id back to a plan"""
    if not ref:
        return None
    ref = str(ref)
    for plan_id, plan in PRICING_PLANS.items():
        if ref in (plan.get("stripe_price_id"), plan.get("lemonsqueezy_variant_id")):
            return {"id": plan_id, **plan}
    return None
