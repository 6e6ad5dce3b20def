"""
Public & Misc API Routes - domain check, newsletter leads, feedback, avatars
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from modelsnapper.database.connection import get_db
from modelsnapper.database.models import Avatar, Feedback, Lead
from modelsnapper.middleware.auth_middleware import AuthContext, get_auth_context
from modelsnapper.models.public import (
    AvatarListResponse, DomainCheckResponse, FeedbackCreate, LeadCreate
)
from modelsnapper.services import domain_service

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Public"])


@router.get("/api/public/check-domain", response_model=DomainCheckResponse)
async def check_domain(domain: Optional[str] = Query(None)):
    """Whether a domain (or the domain of an email address) can receive mail"""
    normalized = domain_service.normalize_domain(domain or "")
    if not normalized:
        return JSONResponse(status_code=400, content={"valid": False, "message": "Domain is required"})
    if not domain_service.is_valid_domain_syntax(normalized):
        return JSONResponse(status_code=400, content={"valid": False, "message": "Invalid domain"})

    if not await domain_service.has_mx_records(normalized):
        return JSONResponse(status_code=400, content={"valid": False, "message": "Invalid domain"})
    return DomainCheckResponse(valid=True)


@router.post("/api/public/lead")
async def create_lead(body: LeadCreate, db: AsyncSession = Depends(get_db)):
    email = body.email.lower()
    existing = await db.execute(select(Lead).where(Lead.email == email))
    if existing.scalar_one_or_none():
        return {"status": "success", "message": "Already subscribed"}

    db.add(Lead(email=email))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return {"status": "success", "message": "Already subscribed"}

    logger.info("New newsletter lead captured")
    return {"status": "success", "message": "Subscribed"}


@router.post("/api/app/feedback", status_code=201)
async def submit_feedback(
    body: FeedbackCreate,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    db.add(Feedback(user_id=ctx.user.id, star=body.star, comment=body.comment))
    await db.commit()
    return {"status": "success"}


@router.get("/api/avatars", response_model=AvatarListResponse)
async def list_avatars(
    gender: Optional[str] = Query(None, pattern="^(male|female)$"),
    body_type: Optional[str] = Query(None),
    skin_tone: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    criteria = [Avatar.visible.is_(True)]
    if gender:
        criteria.append(Avatar.gender == gender)
    if body_type:
        criteria.append(Avatar.body_type == body_type)
    if skin_tone:
        criteria.append(Avatar.skin_tone == skin_tone)

    total = (await db.execute(select(func.count()).select_from(Avatar).where(*criteria))).scalar_one()
    result = await db.execute(
        select(Avatar).where(*criteria).order_by(Avatar.created_at.desc(), Avatar.id).offset(skip).limit(limit)
    )
    avatars = list(result.scalars())
    return AvatarListResponse(avatars=avatars, total=total, has_more=skip + len(avatars) < total)
