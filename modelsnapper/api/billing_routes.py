"""
Billing API Routes - plans, checkout and subscription management
"""
import logging
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from modelsnapper.core.exceptions import APIException, NotFound, ValidationError
from modelsnapper.core.pricing import PRICING_PLANS, get_plan
from modelsnapper.database.connection import get_db
from modelsnapper.middleware.auth_middleware import AuthContext, get_auth_context
from modelsnapper.models.billing import (
    BillingResponse, CheckoutRequest, CheckoutResponse, PaymentHistoryResponse,
    PaymentProvider, PlanInfo, SubscriptionCancelRequest, SubscriptionCancelResponse
)
from modelsnapper.services.billing_service import billing_service
from modelsnapper.services.lemonsqueezy_service import lemonsqueezy_service
from modelsnapper.services.stripe_service import stripe_service
from modelsnapper.services.user_service import user_service

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Billing"])


@router.get("/api/app/billing", response_model=BillingResponse)
async def get_billing(
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Current plan, plan details and credit balance"""
    try:
        user = await user_service.get_by_id(db, ctx.user.id)
        await db.refresh(user)
        return billing_service.get_billing(user)
    except NotFound:
        raise NotFound("User not found", code="USER_NOT_FOUND")
    except APIException:
        raise
    except Exception as e:
        logger.error(f"Error getting billing for user {ctx.user.id}: {e}")
        raise APIException(status_code=500, detail="Error retrieving billing information", code="SERVER_ERR")


@router.post("/api/app/billing/refresh", response_model=BillingResponse)
async def refresh_billing(
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Re-read the subscription from the payment provider and persist it"""
    user = await billing_service.refresh_from_provider(db, ctx.user)
    await db.refresh(user)
    return billing_service.get_billing(user)


@router.get("/api/payments/plans", response_model=List[PlanInfo])
async def list_plans():
    return [PlanInfo(**get_plan(plan_id)) for plan_id in PRICING_PLANS]


@router.post("/api/payments/{provider}/checkout", response_model=CheckoutResponse)
async def create_checkout(
    provider: PaymentProvider,
    body: CheckoutRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    plan = get_plan(body.plan_id)
    if plan is None or plan["mode"] == "free":
        raise ValidationError(f"Unknown plan: {body.plan_id}", code="UNKNOWN_PLAN")

    if provider == PaymentProvider.STRIPE:
        session = await stripe_service.create_checkout_session(db, ctx.user, plan)
    else:
        session = await lemonsqueezy_service.create_checkout(ctx.user, plan)

    return CheckoutResponse(provider=provider, checkout_url=session["checkout_url"], session_id=session.get("session_id"))


@router.get("/api/payments/history", response_model=PaymentHistoryResponse)
async def get_payment_history(
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    payments = await billing_service.payment_history(db, ctx.user.id)
    return PaymentHistoryResponse(payments=payments, total=len(payments))


@router.post("/api/subscription/cancel", response_model=SubscriptionCancelResponse)
async def cancel_subscription(
    body: SubscriptionCancelRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Cancel now, or at the end of the billing period (the default)"""
    result = await billing_service.cancel_subscription(
        db, ctx.user, immediately=body.cancel_immediately, reason=body.reason
    )
    message = (
        "Subscription canceled immediately" if result["canceled_immediately"]
        else "Subscription will be canceled at the end of the billing period"
    )
    return SubscriptionCancelResponse(message=message, **result)
