"""
Render API Routes - submit try-on jobs, poll their status, browse history
"""
import logging
from uuid import UUID
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from modelsnapper.database.connection import get_db
from modelsnapper.middleware.auth_middleware import AuthContext, get_auth_context, require_roles
from modelsnapper.models.auth import UserRole
from modelsnapper.models.render import RenderRequest, RenderJobResponse, RenderHistoryResponse, RenderStatus
from modelsnapper.services.fashn_client import FashnClient, get_generation_client
from modelsnapper.services.notification_service import notification_service
from modelsnapper.services.render_service import render_service
from modelsnapper.services.user_service import user_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/render", tags=["Render"])

LOW_CREDIT_THRESHOLD = 2


@router.post("", response_model=RenderJobResponse, status_code=202)
async def submit_render(
    body: RenderRequest,
    background_tasks: BackgroundTasks,
    ctx: AuthContext = Depends(require_roles([UserRole.BUSINESS, UserRole.ADMIN])),
    client: FashnClient = Depends(get_generation_client),
    db: AsyncSession = Depends(get_db),
):
    """Debits credits and starts a render; poll /{id}/status for the result"""
    business = await user_service.get_business_profile(db, ctx.user)
    render = await render_service.submit_render(
        db, ctx.user, body, client, business_id=business.id if business else None
    )

    await db.refresh(ctx.user)
    if ctx.user.credits <= LOW_CREDIT_THRESHOLD:
        background_tasks.add_task(
            notification_service.send_low_credit_warning_email, ctx.user.primary_email, ctx.user.credits
        )
    return render


@router.get("/history", response_model=RenderHistoryResponse)
async def render_history(
    limit: int = Query(20, ge=1, le=100),
    skip: int = Query(0, ge=0),
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    renders, total = await render_service.history(db, ctx.user.id, limit=limit, skip=skip)
    return RenderHistoryResponse(renders=renders, total=total, has_more=skip + len(renders) < total)


@router.get("/{render_id}", response_model=RenderJobResponse)
async def get_render(
    render_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await render_service.get_render(db, render_id, ctx.user, is_admin=ctx.is_admin)


@router.get("/{render_id}/status", response_model=RenderJobResponse)
async def get_render_status(
    render_id: UUID,
    background_tasks: BackgroundTasks,
    ctx: AuthContext = Depends(get_auth_context),
    client: FashnClient = Depends(get_generation_client),
    db: AsyncSession = Depends(get_db),
):
    """Polls the provider once and persists the outcome when the job has finished"""
    previous = (await render_service.get_render(db, render_id, ctx.user, is_admin=ctx.is_admin)).status
    render = await render_service.refresh_status(db, render_id, ctx.user, client, is_admin=ctx.is_admin)
    if previous != render.status and render.status == RenderStatus.COMPLETED.value and render.output_url:
        background_tasks.add_task(
            notification_service.send_render_completion_email, ctx.user.primary_email, render.output_url
        )
    return render


@router.post("/{render_id}/retry", response_model=RenderJobResponse, status_code=202)
async def retry_render(
    render_id: UUID,
    ctx: AuthContext = Depends(require_roles([UserRole.BUSINESS, UserRole.ADMIN])),
    client: FashnClient = Depends(get_generation_client),
    db: AsyncSession = Depends(get_db),
):
    """Resubmits one of the caller's failed renders; debits credits again"""
    business = await user_service.get_business_profile(db, ctx.user)
    return await render_service.retry_render(
        db, render_id, ctx.user, client, business_id=business.id if business else None
    )
