"""
Payment Webhook Handlers - Stripe and LemonSqueezy
Verifies signatures on the raw body, then persists the provider's outcome:
plan state, credit grants and payment records
"""
import json
import logging
from decimal import Decimal
from typing import Dict, Any, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from modelsnapper.core.exceptions import APIException, ValidationError
from modelsnapper.core.pricing import get_plan
from modelsnapper.database.connection import get_db
from modelsnapper.database.models import User
from modelsnapper.models.billing import PaymentProvider, SubscriptionState
from modelsnapper.services.billing_service import billing_service
from modelsnapper.services.lemonsqueezy_service import lemonsqueezy_service
from modelsnapper.services.stripe_service import stripe_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhook", tags=["Payment Webhooks"])


def _parse(body: bytes) -> Dict[str, Any]:
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.error("Invalid JSON in webhook payload")
        raise ValidationError("Invalid JSON", code="INVALID_PAYLOAD")


def _cents(value: Any) -> Decimal:
    return (Decimal(str(value or 0)) / Decimal(100)).quantize(Decimal("0.01"))


# =============================================================================
# STRIPE
# =============================================================================

@router.post("/stripe")
async def stripe_webhook_handler(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
    db: AsyncSession = Depends(get_db),
):
    body = await request.body()
    stripe_service.verify_webhook(body, stripe_signature)
    event = _parse(body)

    event_type = event.get("type")
    event_data = (event.get("data") or {}).get("object") or {}
    logger.info(f"Processing Stripe webhook: {event_type}")

    try:
        if event_type == "checkout.session.completed":
            await handle_stripe_checkout_completed(db, event_data)
        elif event_type in ("customer.subscription.created", "customer.subscription.updated"):
            await handle_stripe_subscription_changed(db, event_data)
        elif event_type == "customer.subscription.deleted":
            await handle_stripe_subscription_deleted(db, event_data)
        elif event_type in ("invoice.paid", "invoice.payment_succeeded"):
            await handle_stripe_invoice(db, event_data, status="paid")
        elif event_type == "invoice.payment_failed":
            await handle_stripe_invoice(db, event_data, status="failed")
        else:
            logger.info(f"Unhandled Stripe webhook event type: {event_type}")
    except APIException:
        raise
    except Exception as e:
        logger.error(f"Error processing Stripe webhook {event_type}: {e}")
        raise APIException(status_code=500, detail="Webhook processing failed", code="SERVER_ERR")

    return JSONResponse(content={"status": "success"}, status_code=200)


async def _stripe_user(db: AsyncSession, obj: Dict[str, Any]) -> Optional[User]:
    metadata = obj.get("metadata") or {}
    email = obj.get("customer_email") or (obj.get("customer_details") or {}).get("email")
    user = await billing_service.find_user_for_event(
        db,
        PaymentProvider.STRIPE,
        customer_id=obj.get("customer"),
        user_id=metadata.get("user_id") or obj.get("client_reference_id"),
        email=email,
    )
    if user is None:
        logger.warning(f"Stripe event for unknown customer {obj.get('customer')}")
        return None
    await billing_service.link_customer(db, user, PaymentProvider.STRIPE, obj.get("customer"))
    return user


async def handle_stripe_checkout_completed(db: AsyncSession, session: Dict[str, Any]):
    user = await _stripe_user(db, session)
    if user is None:
        return

    plan_id = (session.get("metadata") or {}).get("plan_id")
    if session.get("mode") == "payment":
        recorded = await billing_service.record_payment(
            db, user, PaymentProvider.STRIPE, session["id"],
            _cents(session.get("amount_total")), session.get("currency"),
            status=session.get("payment_status") or "paid",
            description=f"Checkout {plan_id}",
        )
        if recorded and session.get("payment_status", "paid") == "paid":
            await billing_service.grant_purchased_credits(db, user, plan_id, reference_id=session["id"])
    elif plan_id:
        await billing_service.apply_subscription_state(
            db, user, SubscriptionState(plan_id=plan_id, status="active", customer_id=session.get("customer"))
        )
    logger.info(f"Processed Stripe checkout {session.get('id')} for user {user.id}")


async def handle_stripe_subscription_changed(db: AsyncSession, subscription: Dict[str, Any]):
    user = await _stripe_user(db, subscription)
    if user is None:
        return

    plan_id = (subscription.get("metadata") or {}).get("plan_id")
    if not plan_id:
        items = (subscription.get("items") or {}).get("data") or []
        price_id = ((items[0].get("price") or {}).get("id")) if items else None
        plan = billing_service.plan_for_provider_ref(price_id)
        plan_id = plan["id"] if plan else None
    if not plan_id:
        logger.warning(f"Stripe subscription {subscription.get('id')} does not map to a plan")
        return

    await billing_service.apply_subscription_state(
        db, user,
        SubscriptionState(plan_id=plan_id, status=subscription.get("status", ""), customer_id=subscription.get("customer")),
    )


async def handle_stripe_subscription_deleted(db: AsyncSession, subscription: Dict[str, Any]):
    user = await _stripe_user(db, subscription)
    if user is None:
        return
    await billing_service.downgrade_to_free(db, user, status="cancelled")


async def handle_stripe_invoice(db: AsyncSession, invoice: Dict[str, Any], status: str):
    user = await _stripe_user(db, invoice)
    if user is None:
        return

    amount = invoice.get("amount_paid") if status == "paid" else invoice.get("amount_due")
    recorded = await billing_service.record_payment(
        db, user, PaymentProvider.STRIPE, invoice["id"],
        _cents(amount), invoice.get("currency"), status=status,
        description=invoice.get("billing_reason"),
    )
    if status != "paid" or not recorded:
        if status == "failed":
            logger.warning(f"Stripe invoice {invoice.get('id')} payment failed for user {user.id}")
        return

    plan_id = ((invoice.get("subscription_details") or {}).get("metadata") or {}).get("plan_id")
    if not plan_id:
        lines = (invoice.get("lines") or {}).get("data") or []
        price_id = ((lines[0].get("price") or {}).get("id")) if lines else None
        plan = billing_service.plan_for_provider_ref(price_id)
        plan_id = plan["id"] if plan else user.plan_id
    await billing_service.grant_plan_credits(db, user, plan_id, reference_id=invoice["id"])


# =============================================================================
# LEMONSQUEEZY
# =============================================================================

@router.post("/lemonsqueezy")
async def lemonsqueezy_webhook_handler(
    request: Request,
    x_signature: Optional[str] = Header(None, alias="X-Signature"),
    db: AsyncSession = Depends(get_db),
):
    body = await request.body()
    lemonsqueezy_service.verify_webhook(body, x_signature)
    payload = _parse(body)

    meta = payload.get("meta") or {}
    event_name = meta.get("event_name")
    data = payload.get("data") or {}
    logger.info(f"Processing LemonSqueezy webhook: {event_name}")

    try:
        if event_name == "order_created":
            await handle_lemonsqueezy_order(db, meta, data)
        elif event_name in ("subscription_created", "subscription_updated", "subscription_plan_changed",
                            "subscription_resumed"):
            await handle_lemonsqueezy_subscription(db, meta, data)
        elif event_name in ("subscription_cancelled", "subscription_expired"):
            await handle_lemonsqueezy_subscription_cancelled(db, meta, data)
        elif event_name == "subscription_payment_success":
            await handle_lemonsqueezy_payment_success(db, meta, data)
        else:
            logger.info(f"Unhandled LemonSqueezy webhook event: {event_name}")
    except APIException:
        raise
    except Exception as e:
        logger.error(f"Error processing LemonSqueezy webhook {event_name}: {e}")
        raise APIException(status_code=500, detail="Webhook processing failed", code="SERVER_ERR")

    return JSONResponse(content={"status": "success"}, status_code=200)


async def _lemonsqueezy_user(db: AsyncSession, meta: Dict[str, Any], attributes: Dict[str, Any]) -> Optional[User]:
    custom = meta.get("custom_data") or {}
    customer_id = attributes.get("customer_id")
    user = await billing_service.find_user_for_event(
        db,
        PaymentProvider.LEMONSQUEEZY,
        customer_id=str(customer_id) if customer_id else None,
        user_id=custom.get("user_id"),
        email=attributes.get("user_email"),
    )
    if user is None:
        logger.warning(f"LemonSqueezy event for unknown customer {customer_id}")
        return None
    await billing_service.link_customer(db, user, PaymentProvider.LEMONSQUEEZY, customer_id)
    return user


def _lemonsqueezy_plan_id(meta: Dict[str, Any], variant_id: Any) -> Optional[str]:
    plan = billing_service.plan_for_provider_ref(variant_id)
    if plan:
        return plan["id"]
    return (meta.get("custom_data") or {}).get("plan_id")


async def handle_lemonsqueezy_order(db: AsyncSession, meta: Dict[str, Any], data: Dict[str, Any]):
    attributes = data.get("attributes") or {}
    user = await _lemonsqueezy_user(db, meta, attributes)
    if user is None:
        return

    variant_id = (attributes.get("first_order_item") or {}).get("variant_id")
    plan_id = _lemonsqueezy_plan_id(meta, variant_id)
    status = attributes.get("status", "paid")
    recorded = await billing_service.record_payment(
        db, user, PaymentProvider.LEMONSQUEEZY, str(data.get("id")),
        _cents(attributes.get("total")), attributes.get("currency"), status=status,
        description=f"Order {attributes.get('identifier') or data.get('id')}",
    )

    plan = get_plan(plan_id)
    if recorded and status == "paid" and plan and plan["mode"] == "payment":
        await billing_service.grant_purchased_credits(db, user, plan_id, reference_id=str(data.get("id")))


async def handle_lemonsqueezy_subscription(db: AsyncSession, meta: Dict[str, Any], data: Dict[str, Any]):
    attributes = data.get("attributes") or {}
    user = await _lemonsqueezy_user(db, meta, attributes)
    if user is None:
        return

    plan_id = _lemonsqueezy_plan_id(meta, attributes.get("variant_id"))
    if not plan_id:
        logger.warning(f"LemonSqueezy subscription {data.get('id')} does not map to a plan")
        return
    await billing_service.apply_subscription_state(
        db, user,
        SubscriptionState(plan_id=plan_id, status=attributes.get("status", ""), customer_id=str(attributes.get("customer_id") or "")),
    )


async def handle_lemonsqueezy_subscription_cancelled(db: AsyncSession, meta: Dict[str, Any], data: Dict[str, Any]):
    attributes = data.get("attributes") or {}
    user = await _lemonsqueezy_user(db, meta, attributes)
    if user is None:
        return
    await billing_service.downgrade_to_free(db, user, status=attributes.get("status") or "cancelled")


async def handle_lemonsqueezy_payment_success(db: AsyncSession, meta: Dict[str, Any], data: Dict[str, Any]):
    attributes = data.get("attributes") or {}
    user = await _lemonsqueezy_user(db, meta, attributes)
    if user is None:
        return

    recorded = await billing_service.record_payment(
        db, user, PaymentProvider.LEMONSQUEEZY, str(data.get("id")),
        _cents(attributes.get("total")), attributes.get("currency"), status="paid",
        description=f"Subscription {attributes.get('billing_reason') or 'payment'}",
    )
    if not recorded:
        return

    plan_id = (meta.get("custom_data") or {}).get("plan_id") or user.plan_id
    await billing_service.grant_plan_credits(db, user, plan_id, reference_id=str(data.get("id")))
