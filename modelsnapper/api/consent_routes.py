"""
Consent Request API Routes
Businesses request consent to use a model's likeness; models approve or reject
"""
import logging
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from modelsnapper.core.exceptions import NotAuthorized
from modelsnapper.database.connection import get_db
from modelsnapper.database.models import User, BusinessProfile, ModelProfile
from modelsnapper.middleware.auth_middleware import AuthContext, get_auth_context, require_roles
from modelsnapper.models.auth import UserRole
from modelsnapper.models.consent import (
    ConsentStatus, ConsentDecisionStatus, ConsentRequestCreate, ConsentDecision,
    ConsentRequestResponse, ConsentListResponse, ConsentStatusResponse
)
from modelsnapper.services.consent_service import consent_service
from modelsnapper.services.notification_service import notification_service
from modelsnapper.services.user_service import user_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/consent", tags=["Consent"])


def _display_name(profile, user: Optional[User], fallback: str) -> str:
    for value in (getattr(profile, "display_name", None), getattr(profile, "business_name", None),
                  getattr(profile, "name", None)):
        if value:
            return value
    if user:
        name = " ".join(p for p in (user.first_name, user.last_name) if p)
        if name:
            return name
    return fallback


@router.get("", response_model=ConsentListResponse)
async def list_consent_requests(
    status: Optional[ConsentStatus] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    skip: int = Query(0, ge=0),
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Models see requests they received, businesses see requests they sent"""
    if ctx.role == UserRole.MODEL:
        model = await user_service.get_or_create_model_profile(db, ctx.user)
        requests, total = await consent_service.list_requests(db, model_id=model.id, status=status, limit=limit, skip=skip)
    elif ctx.role == UserRole.BUSINESS:
        business = await user_service.get_or_create_business_profile(db, ctx.user)
        requests, total = await consent_service.list_requests(db, business_id=business.id, status=status, limit=limit, skip=skip)
    else:
        raise NotAuthorized("Only businesses and models have consent requests")

    return ConsentListResponse(
        requests=requests,
        total=total,
        has_more=skip + len(requests) < total,
        limit=limit,
        skip=skip,
    )


@router.post("", response_model=ConsentRequestResponse, status_code=201)
async def create_consent_request(
    body: ConsentRequestCreate,
    background_tasks: BackgroundTasks,
    ctx: AuthContext = Depends(require_roles([UserRole.BUSINESS])),
    db: AsyncSession = Depends(get_db),
):
    business = await user_service.get_or_create_business_profile(db, ctx.user)
    request = await consent_service.create_request(db, business.id, body.model_id, body.message)

    model = await db.get(ModelProfile, request.model_id)
    model_user = await db.get(User, model.user_id)
    background_tasks.add_task(
        notification_service.send_consent_request_email,
        model_user.primary_email if model_user else None,
        _display_name(business, ctx.user, "A business"),
        body.message,
    )
    return request


@router.get("/status/{model_id}", response_model=ConsentStatusResponse)
async def get_consent_status(
    model_id: UUID,
    ctx: AuthContext = Depends(require_roles([UserRole.BUSINESS])),
    db: AsyncSession = Depends(get_db),
):
    business = await user_service.get_or_create_business_profile(db, ctx.user)
    status, request = await consent_service.consent_status(db, business.id, model_id)
    return ConsentStatusResponse(
        business_id=business.id,
        model_id=model_id,
        has_consent=status == ConsentStatus.APPROVED,
        status=status,
        request_id=request.id if request else None,
    )


@router.get("/{request_id}", response_model=ConsentRequestResponse)
async def get_consent_request(
    request_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    business = await user_service.get_business_profile(db, ctx.user)
    model = await user_service.get_model_profile(db, ctx.user)
    return await consent_service.get_for_viewer(
        db,
        request_id,
        business_id=business.id if business else None,
        model_id=model.id if model else None,
        is_admin=ctx.is_admin,
    )


@router.put("/{request_id}", response_model=ConsentRequestResponse)
async def decide_consent_request(
    request_id: UUID,
    body: ConsentDecision,
    background_tasks: BackgroundTasks,
    ctx: AuthContext = Depends(require_roles([UserRole.MODEL])),
    db: AsyncSession = Depends(get_db),
):
    """Approve or reject a pending request addressed to the calling model"""
    model = await user_service.get_or_create_model_profile(db, ctx.user)
    if body.status == ConsentDecisionStatus.APPROVED:
        request = await consent_service.approve(db, request_id, model.id)
    else:
        request = await consent_service.reject(db, request_id, model.id)

    business = await db.get(BusinessProfile, request.business_id)
    business_user = await db.get(User, business.user_id) if business else None
    recipient = business_user.primary_email if business_user else None
    model_name = _display_name(model, ctx.user, "The model")
    if request.status == ConsentStatus.APPROVED.value:
        background_tasks.add_task(notification_service.send_consent_approved_email, recipient, model_name)
    else:
        background_tasks.add_task(notification_service.send_consent_rejected_email, recipient, model_name)
    return request
