"""
Admin & Scheduled Job API Routes
"""
import logging
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from modelsnapper.database.connection import get_db
from modelsnapper.database.models import Avatar
from modelsnapper.middleware.auth_middleware import AuthContext, require_admin, verify_cron_secret
from modelsnapper.models.auth import AdminUserListResponse, UserRole
from modelsnapper.models.billing import (
    CreditAdjustRequest, CreditAdjustResponse, CreditTransactionList,
    CreditTransactionType, CreditResetResponse
)
from modelsnapper.models.consent import ConsentStatus, ConsentListResponse, ConsentSweepResponse
from modelsnapper.models.public import AvatarCreate, AvatarResponse
from modelsnapper.models.render import RenderSweepResponse
from modelsnapper.services.consent_service import consent_service
from modelsnapper.services.credit_service import credit_service
from modelsnapper.services.render_service import render_service
from modelsnapper.services.user_service import user_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["Admin"])
cron_router = APIRouter(prefix="/api/cron", tags=["Scheduled Jobs"])


# =============================================================================
# USERS
# =============================================================================

@router.get("/users", response_model=AdminUserListResponse)
async def list_users(
    role: Optional[UserRole] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    ctx: AuthContext = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    users, total = await user_service.list_users(db, role=role.value if role else None, limit=limit, skip=skip)
    return AdminUserListResponse(
        users=users,
        total=total,
        has_more=skip + len(users) < total,
        filters={"role": role.value if role else None},
    )


# =============================================================================
# CREDITS
# =============================================================================

@router.post("/credits/adjust", response_model=CreditAdjustResponse)
async def adjust_credits(
    body: CreditAdjustRequest,
    ctx: AuthContext = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    """Signed manual adjustment; a debit larger than the balance stops at zero"""
    previous = await credit_service.get_balance(db, body.target_user_id)
    new_balance = await credit_service.adjust_credits(
        db,
        body.target_user_id,
        body.amount,
        reason=body.reason,
        transaction_type=CreditTransactionType.ADMIN_ADJUSTMENT,
        enforce_floor=False,
        admin_user_id=ctx.user.id,
    )
    logger.info(f"Admin {ctx.user.id} adjusted credits of {body.target_user_id} by {body.amount}: {body.reason}")
    return CreditAdjustResponse(
        user_id=body.target_user_id,
        previous_balance=previous,
        new_balance=new_balance,
        amount=body.amount,
    )


@router.get("/credits/transactions", response_model=CreditTransactionList)
async def list_credit_transactions(
    user_id: Optional[UUID] = Query(None),
    type: Optional[CreditTransactionType] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    ctx: AuthContext = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    transactions, total = await credit_service.list_transactions(
        db, user_id=user_id, transaction_type=type.value if type else None, limit=limit, skip=skip
    )
    return CreditTransactionList(transactions=transactions, total=total, has_more=skip + len(transactions) < total)


# =============================================================================
# CONSENT
# =============================================================================

@router.get("/consent", response_model=ConsentListResponse)
async def list_all_consent_requests(
    status: Optional[ConsentStatus] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    ctx: AuthContext = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    requests, total = await consent_service.list_requests(db, status=status, limit=limit, skip=skip)
    return ConsentListResponse(
        requests=requests, total=total, has_more=skip + len(requests) < total, limit=limit, skip=skip
    )


# =============================================================================
# AVATARS
# =============================================================================

@router.post("/avatars", response_model=AvatarResponse, status_code=201)
async def create_avatar(
    body: AvatarCreate,
    ctx: AuthContext = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    data = body.model_dump()
    data["image_url"] = str(body.image_url)
    avatar = Avatar(**data)
    db.add(avatar)
    await db.commit()
    await db.refresh(avatar)
    logger.info(f"Admin {ctx.user.id} created avatar {avatar.id}")
    return avatar


# =============================================================================
# SCHEDULED JOBS
# =============================================================================

@cron_router.get("/reset-free-credits", response_model=CreditResetResponse, dependencies=[Depends(verify_cron_secret)])
async def reset_free_credits(db: AsyncSession = Depends(get_db)):
    reset_count = await credit_service.reset_free_credits(db)
    return CreditResetResponse(reset_count=reset_count)


@cron_router.get("/expire-consent-requests", response_model=ConsentSweepResponse, dependencies=[Depends(verify_cron_secret)])
async def expire_consent_requests(db: AsyncSession = Depends(get_db)):
    expired = await consent_service.expire_due(db)
    return ConsentSweepResponse(expired=expired)


@cron_router.get("/fail-stale-renders", response_model=RenderSweepResponse, dependencies=[Depends(verify_cron_secret)])
async def fail_stale_renders(db: AsyncSession = Depends(get_db)):
    failed = await render_service.fail_stale_submissions(db)
    return RenderSweepResponse(failed=failed)
