"""
Credit Service - balance changes and the credit ledger
Every change is a single conditional UPDATE so concurrent debits can never
drive a balance below zero
"""
import logging
from datetime import timedelta
from typing import Optional, Dict, Any, List, Tuple
from uuid import UUID

from sqlalchemy import select, update, func, case, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from modelsnapper.core.config import settings
from modelsnapper.core.exceptions import InsufficientCredits, NotFound
from modelsnapper.database.models import User, CreditTransaction, utcnow
from modelsnapper.models.billing import CreditTransactionType

logger = logging.getLogger(__name__)


class CreditService:

    async def get_balance(self, db: AsyncSession, user_id: UUID) -> int:
        result = await db.execute(select(User.credits).where(User.id == user_id))
        balance = result.scalar_one_or_none()
        if balance is None:
            raise NotFound(f"User {user_id} not found", code="USER_NOT_FOUND")
        return balance

    async def adjust_credits(
        self,
        db: AsyncSession,
        user_id: UUID,
        delta: int,
        reason: str,
        transaction_type: CreditTransactionType = CreditTransactionType.ADJUSTMENT,
        enforce_floor: bool = True,
        admin_user_id: Optional[UUID] = None,
        reference_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> int:
        """
        Apply a signed delta to a user's balance atomically.

        Args:
            delta: credits to add (negative to debit)
            enforce_floor: reject changes that would go below zero. When False
                the balance is clamped at zero instead (administrative use).

        Returns:
            The new balance

        Raises:
            InsufficientCredits: floor enforced and the balance is too low;
                the balance is left untouched
            NotFound: unknown user
        """
        if enforce_floor:
            new_value = User.credits + delta
            condition = and_(User.id == user_id, User.credits + delta >= 0)
        else:
            new_value = case((User.credits + delta < 0, 0), else_=User.credits + delta)
            condition = User.id == user_id

        result = await db.execute(
            update(User)
            .where(condition)
            .values(credits=new_value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            available = await self.get_balance(db, user_id)
            logger.info(f"Credit change of {delta} refused for user {user_id}: balance {available}")
            raise InsufficientCredits(required=-delta, available=available)

        new_balance = await self.get_balance(db, user_id)
        db.add(CreditTransaction(
            user_id=user_id,
            type=transaction_type.value,
            amount=delta,
            balance_after=new_balance,
            reason=reason,
            admin_user_id=admin_user_id,
            reference_id=reference_id,
            details=details or {},
        ))
        if commit:
            await db.commit()

        logger.info(f"Credits {delta:+d} for user {user_id} ({transaction_type.value}): balance {new_balance}")
        return new_balance

    async def set_balance(
        self,
        db: AsyncSession,
        user_id: UUID,
        balance: int,
        reason: str,
        transaction_type: CreditTransactionType = CreditTransactionType.SUBSCRIPTION_RESET,
        reference_id: Optional[str] = None,
        commit: bool = True,
    ) -> int:
        """Overwrite the balance (plan renewals, free-tier reset)"""
        balance = max(balance, 0)
        previous = await self.get_balance(db, user_id)
        await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(credits=balance, last_credit_reset=utcnow(), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.add(CreditTransaction(
            user_id=user_id,
            type=transaction_type.value,
            amount=balance - previous,
            balance_after=balance,
            reason=reason,
            reference_id=reference_id,
            details={"previous_balance": previous},
        ))
        if commit:
            await db.commit()
        logger.info(f"Credits reset for user {user_id}: {previous} -> {balance} ({reason})")
        return balance

    async def list_transactions(
        self,
        db: AsyncSession,
        user_id: Optional[UUID] = None,
        transaction_type: Optional[str] = None,
        limit: int = 50,
        skip: int = 0,
    ) -> Tuple[List[CreditTransaction], int]:
        filters = []
        if user_id:
            filters.append(CreditTransaction.user_id == user_id)
        if transaction_type:
            filters.append(CreditTransaction.type == transaction_type)

        total = (await db.execute(
            select(func.count()).select_from(CreditTransaction).where(*filters)
        )).scalar_one()
        result = await db.execute(
            select(CreditTransaction)
            .where(*filters)
            .order_by(CreditTransaction.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars()), total

    async def reset_free_credits(self, db: AsyncSession) -> int:
        """Top free-plan users back up once their last reset is old enough"""
        cutoff = utcnow() - timedelta(days=settings.FREE_CREDITS_RESET_DAYS)
        result = await db.execute(
            select(User.id).where(
                User.plan_type == "free",
                or_(User.last_credit_reset.is_(None), User.last_credit_reset <= cutoff),
            )
        )
        user_ids = list(result.scalars())

        for user_id in user_ids:
            await self.set_balance(
                db,
                user_id,
                settings.FREE_CREDITS_RESET_AMOUNT,
                reason="Monthly free credit reset",
                transaction_type=CreditTransactionType.SUBSCRIPTION_RESET,
                commit=False,
            )
        await db.commit()

        logger.info(f"Free credit reset applied to {len(user_ids)} users")
        return len(user_ids)


credit_service = CreditService()
