"""
Billing Service - plan state, purchased credits and payment records

Plan changes and credit allotments are driven by payment provider webhooks;
this service only persists what the provider reports.
"""
import logging
from decimal import Decimal
from typing import Optional, Dict, Any, List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from modelsnapper.core.exceptions import ValidationError
from modelsnapper.core.pricing import get_plan, find_plan_by_provider_ref
from modelsnapper.database.models import User, PaymentHistory
from modelsnapper.models.billing import CreditTransactionType, PaymentProvider, SubscriptionState
from modelsnapper.services.credit_service import credit_service
from modelsnapper.services.lemonsqueezy_service import lemonsqueezy_service
from modelsnapper.services.stripe_service import stripe_service
from modelsnapper.services.user_service import user_service

logger = logging.getLogger(__name__)

ACTIVE_SUBSCRIPTION_STATUSES = {"active", "trialing", "on_trial", "past_due"}


class BillingService:

    # =========================================================================
    # READ
    # =========================================================================

    def get_billing(self, user: User) -> Dict[str, Any]:
        """{plan, details, credits} for the billing page"""
        return {
            "plan": user.plan_type or "free",
            "details": user.plan,
            "credits": user.credits,
        }

    async def payment_history(self, db: AsyncSession, user_id: UUID, limit: int = 50) -> List[PaymentHistory]:
        result = await db.execute(
            select(PaymentHistory)
            .where(PaymentHistory.user_id == user_id)
            .order_by(PaymentHistory.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars())

    # =========================================================================
    # USER LOOKUP FOR PROVIDER EVENTS
    # =========================================================================

    async def find_user_for_event(
        self,
        db: AsyncSession,
        provider: PaymentProvider,
        customer_id: Optional[str] = None,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Optional[User]:
        """Provider customer id first, then our user id from event metadata, then email"""
        if customer_id:
            column = User.stripe_customer_id if provider == PaymentProvider.STRIPE else User.lemonsqueezy_customer_id
            result = await db.execute(select(User).where(column == str(customer_id)))
            user = result.scalar_one_or_none()
            if user:
                return user

        if user_id:
            try:
                user = await db.get(User, UUID(str(user_id)))
            except ValueError:
                user = await user_service.get_by_auth_id(db, str(user_id))
            if user:
                return user

        if email:
            return await user_service.find_by_email(db, email)
        return None

    async def link_customer(
        self, db: AsyncSession, user: User, provider: PaymentProvider, customer_id: Optional[str]
    ) -> None:
        if not customer_id:
            return
        customer_id = str(customer_id)
        if provider == PaymentProvider.STRIPE and user.stripe_customer_id != customer_id:
            user.stripe_customer_id = customer_id
        elif provider == PaymentProvider.LEMONSQUEEZY and user.lemonsqueezy_customer_id != customer_id:
            user.lemonsqueezy_customer_id = customer_id
        else:
            return
        await db.commit()
        logger.info(f"Linked {provider.value} customer {customer_id} to user {user.id}")

    # =========================================================================
    # PLAN STATE
    # =========================================================================

    async def apply_subscription_state(self, db: AsyncSession, user: User, state: SubscriptionState) -> User:
        """Persist the provider's view of the user's subscription (plan fields only)"""
        plan = get_plan(state.plan_id)
        if plan is None:
            raise ValidationError(f"Unknown plan: {state.plan_id}", code="UNKNOWN_PLAN")

        if state.status not in ACTIVE_SUBSCRIPTION_STATUSES:
            return await self.downgrade_to_free(db, user, status=state.status)

        user.plan_id = plan["id"]
        user.plan_type = plan["type"]
        user.plan_name = plan["name"]
        user.plan_price = Decimal(str(plan["price"]))
        user.plan_is_premium = plan["is_premium"]
        user.subscription_status = state.status
        await db.commit()
        await db.refresh(user)
        logger.info(f"User {user.id} now on plan {plan['id']} ({state.status})")
        return user

    async def downgrade_to_free(self, db: AsyncSession, user: User, status: str = "cancelled") -> User:
        plan = get_plan("free")
        user.plan_id = plan["id"]
        user.plan_type = plan["type"]
        user.plan_name = plan["name"]
        user.plan_price = Decimal("0")
        user.plan_is_premium = False
        user.subscription_status = status
        await db.commit()
        await db.refresh(user)
        logger.info(f"User {user.id} moved to free plan ({status})")
        return user

    async def refresh_from_provider(self, db: AsyncSession, user: User) -> User:
        """
        Re-read the user's subscription from the linked provider and persist it.

        Raises:
            UpstreamProviderError: provider unreachable or rejected the call
        """
        if user.stripe_customer_id:
            state = await stripe_service.current_subscription(user.stripe_customer_id)
        elif user.lemonsqueezy_customer_id:
            state = await lemonsqueezy_service.current_subscription(user.lemonsqueezy_customer_id)
        else:
            logger.info(f"User {user.id} has no payment provider customer; nothing to refresh")
            return user

        if state is None:
            if user.plan_type != "free":
                return await self.downgrade_to_free(db, user, status="none")
            return user
        return await self.apply_subscription_state(db, user, state)

    async def cancel_subscription(
        self, db: AsyncSession, user: User, immediately: bool = False, reason: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Cancel the user's subscription with the provider it was bought through.

        An immediate cancellation moves the user to the free plan now; otherwise
        the provider's cancellation webhook does it at period end. LemonSqueezy
        only cancels at period end.

        Raises:
            ValidationError: no linked customer or no active subscription (NO_SUBSCRIPTION)
            UpstreamProviderError: provider rejected the call
        """
        if user.stripe_customer_id:
            result = await stripe_service.cancel_subscription(user.stripe_customer_id, immediately=immediately)
        elif user.lemonsqueezy_customer_id:
            immediately = False
            result = await lemonsqueezy_service.cancel_subscription(user.lemonsqueezy_customer_id)
        else:
            result = None

        if result is None:
            raise ValidationError("No active subscription found", code="NO_SUBSCRIPTION")

        logger.info(
            f"User {user.id} cancelled subscription {result['subscription_id']} "
            f"(immediate={immediately}, reason={reason!r})"
        )
        if immediately:
            await self.downgrade_to_free(db, user, status="canceled")
        return {**result, "canceled_immediately": immediately}

    # =========================================================================
    # CREDITS FROM PAYMENTS
    # =========================================================================

    async def record_payment(
        self,
        db: AsyncSession,
        user: User,
        provider: PaymentProvider,
        provider_payment_id: str,
        amount: Decimal,
        currency: str,
        status: str,
        description: Optional[str] = None,
    ) -> bool:
        """Store a payment once; returns False if this provider payment was already recorded"""
        existing = await db.execute(
            select(PaymentHistory).where(
                PaymentHistory.provider == provider.value,
                PaymentHistory.provider_payment_id == str(provider_payment_id),
            )
        )
        payment = existing.scalar_one_or_none()
        if payment is not None:
            if payment.status != status:
                payment.status = status
                await db.commit()
            return False

        db.add(PaymentHistory(
            user_id=user.id,
            provider=provider.value,
            provider_payment_id=str(provider_payment_id),
            amount=amount,
            currency=(currency or "usd").lower(),
            status=status,
            description=description,
        ))
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.info(f"Payment {provider.value}:{provider_payment_id} recorded concurrently")
            return False
        logger.info(f"Recorded {provider.value} payment {provider_payment_id} ({status}) for user {user.id}")
        return True

    async def grant_plan_credits(self, db: AsyncSession, user: User, plan_id: Optional[str], reference_id: str) -> Optional[int]:
        """Reset the balance to the plan's monthly allotment on a paid renewal"""
        plan = get_plan(plan_id)
        if plan is None or plan["mode"] != "subscription":
            logger.warning(f"No subscription plan {plan_id} to grant credits for user {user.id}")
            return None
        return await credit_service.set_balance(
            db,
            user.id,
            plan["monthly_credits"],
            reason=f"{plan['name']} renewal",
            transaction_type=CreditTransactionType.SUBSCRIPTION_RESET,
            reference_id=reference_id,
        )

    async def grant_purchased_credits(self, db: AsyncSession, user: User, plan_id: Optional[str], reference_id: str) -> Optional[int]:
        plan = get_plan(plan_id)
        if plan is None or not plan["credits"]:
            logger.warning(f"No credit pack {plan_id} to grant for user {user.id}")
            return None
        return await credit_service.adjust_credits(
            db,
            user.id,
            plan["credits"],
            reason=f"Purchased {plan['name']}",
            transaction_type=CreditTransactionType.PURCHASE,
            reference_id=reference_id,
        )

    @staticmethod
    def plan_for_provider_ref(ref: Optional[str]) -> Optional[Dict[str, Any]]:
        return find_plan_by_provider_ref(ref)


billing_service = BillingService()
