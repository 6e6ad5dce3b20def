"""
Profile & Marketplace API Routes
Business and model self-service profiles, the model dashboard and the model marketplace
"""
import logging
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from modelsnapper.core.exceptions import NotFound
from modelsnapper.database.connection import get_db
from modelsnapper.middleware.auth_middleware import AuthContext, get_auth_context, require_roles
from modelsnapper.models.auth import (
    UserRole, BusinessProfileResponse, BusinessProfileUpdate,
    ModelProfileResponse, ModelProfileUpdate, ModelProfileStatus,
    MarketplaceModel, MarketplaceListResponse
)
from modelsnapper.models.render import ModelDashboardStats, ModelGenerationList
from modelsnapper.services.consent_service import consent_service
from modelsnapper.services.render_service import render_service
from modelsnapper.services.user_service import user_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["Profiles"])


# =============================================================================
# OWN PROFILES
# =============================================================================

@router.get("/business/profile", response_model=BusinessProfileResponse)
async def get_business_profile(
    ctx: AuthContext = Depends(require_roles([UserRole.BUSINESS])),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.get_or_create_business_profile(db, ctx.user)


@router.put("/business/profile", response_model=BusinessProfileResponse)
async def update_business_profile(
    body: BusinessProfileUpdate,
    ctx: AuthContext = Depends(require_roles([UserRole.BUSINESS])),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.update_business_profile(db, ctx.user, body)


@router.get("/model/profile", response_model=ModelProfileResponse)
async def get_model_profile(
    ctx: AuthContext = Depends(require_roles([UserRole.MODEL])),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.get_or_create_model_profile(db, ctx.user)


@router.put("/model/profile", response_model=ModelProfileResponse)
async def update_model_profile(
    body: ModelProfileUpdate,
    ctx: AuthContext = Depends(require_roles([UserRole.MODEL])),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.update_model_profile(db, ctx.user, body, actor_role=ctx.role)


# =============================================================================
# MARKETPLACE
# =============================================================================

@router.get("/models", response_model=MarketplaceListResponse)
async def list_models(
    limit: int = Query(20, ge=1, le=100),
    skip: int = Query(0, ge=0),
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Active, visible models; businesses also see their consent status per model"""
    models, total = await user_service.list_marketplace_models(db, limit=limit, skip=skip)

    statuses = {}
    if ctx.role == UserRole.BUSINESS and models:
        business = await user_service.get_or_create_business_profile(db, ctx.user)
        statuses = await consent_service.consent_statuses(db, business.id, [m.id for m in models])

    items = []
    for model in models:
        item = MarketplaceModel.model_validate(model)
        status = statuses.get(model.id)
        item.consent_status = status.value if status else None
        items.append(item)

    return MarketplaceListResponse(models=items, total=total, has_more=skip + len(items) < total)


@router.get("/models/{model_id}", response_model=MarketplaceModel)
async def get_model(
    model_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    model = await user_service.get_model_by_id(db, model_id)
    is_owner = model.user_id == ctx.user.id
    if not is_owner and not ctx.is_admin and (
        model.status != ModelProfileStatus.ACTIVE.value or not model.is_visible
    ):
        raise NotFound(f"Model {model_id} not found", code="MODEL_NOT_FOUND")

    item = MarketplaceModel.model_validate(model)
    if ctx.role == UserRole.BUSINESS:
        business = await user_service.get_or_create_business_profile(db, ctx.user)
        status, _ = await consent_service.consent_status(db, business.id, model.id)
        item.consent_status = status.value if status else None
    return item


# =============================================================================
# MODEL DASHBOARD
# =============================================================================

@router.get("/model/dashboard/stats", response_model=ModelDashboardStats)
async def get_model_dashboard_stats(
    ctx: AuthContext = Depends(require_roles([UserRole.MODEL])),
    db: AsyncSession = Depends(get_db),
):
    """Royalty earnings and completed generations for the calling model"""
    model = await user_service.get_or_create_model_profile(db, ctx.user)
    return await render_service.model_stats(db, model)


@router.get("/model/dashboard/generations", response_model=ModelGenerationList)
async def get_model_dashboard_generations(
    limit: int = Query(20, ge=1, le=100),
    skip: int = Query(0, ge=0),
    ctx: AuthContext = Depends(require_roles([UserRole.MODEL])),
    db: AsyncSession = Depends(get_db),
):
    model = await user_service.get_or_create_model_profile(db, ctx.user)
    generations, total = await render_service.model_generations(db, model, limit=limit, skip=skip)
    return ModelGenerationList(generations=generations, total=total, has_more=skip + len(generations) < total)
