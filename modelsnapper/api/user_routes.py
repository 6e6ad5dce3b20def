"""
User API Routes - account, role onboarding and role-driven navigation
"""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from modelsnapper.database.connection import get_db
from modelsnapper.middleware.auth_middleware import AuthContext, get_auth_context
from modelsnapper.models.auth import (
    NavigationDescriptor, RoleResponse, RoleUpdateRequest, UserResponse
)
from modelsnapper.services.identity_service import navigation_for_role, role_for_identity
from modelsnapper.services.user_service import user_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/user", tags=["User"])


@router.get("/me", response_model=UserResponse)
async def get_me(ctx: AuthContext = Depends(get_auth_context)):
    """The caller's account record (created on first visit)"""
    return ctx.user


@router.get("/role", response_model=RoleResponse)
async def get_role(ctx: AuthContext = Depends(get_auth_context)):
    return RoleResponse(role=ctx.role, needs_onboarding=ctx.role is None)


@router.post("/role", response_model=RoleResponse)
async def set_role(
    body: RoleUpdateRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Onboarding: pick BUSINESS or MODEL. ADMIN can only be granted by an admin."""
    await user_service.set_role(db, ctx.user, body.role, actor_role=ctx.role)
    role = await role_for_identity(db, ctx.identity)
    return RoleResponse(role=role, needs_onboarding=role is None)


@router.get("/navigation", response_model=NavigationDescriptor)
async def get_navigation(ctx: AuthContext = Depends(get_auth_context)):
    return navigation_for_role(ctx.role)
