"""
Authentication dependencies for FastAPI
Every request resolves its own identity and role; nothing is cached between requests
"""
import hmac
import logging
from dataclasses import dataclass
from typing import List, Optional

from fastapi import Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from modelsnapper.core.config import settings
from modelsnapper.core.exceptions import NotAuthenticated, NotAuthorized
from modelsnapper.database.connection import get_db
from modelsnapper.database.models import User
from modelsnapper.models.auth import Identity, UserRole
from modelsnapper.services.clerk_auth_service import clerk_auth_service
from modelsnapper.services.identity_service import role_for_identity
from modelsnapper.services.user_service import user_service

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    """The caller's account record and resolved role for one request"""
    user: User
    role: Optional[UserRole]
    identity: Identity

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Identity:
    """
    Dependency to verify the bearer session token with the identity provider
    """
    if credentials is None or not credentials.credentials:
        raise NotAuthenticated()
    try:
        return await clerk_auth_service.authenticate(credentials.credentials)
    except Exception as e:
        logger.warning(f"Authentication failed: {e}")
        raise NotAuthenticated("Invalid or expired session")


async def get_current_user(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency to load the caller's record, creating it on first visit
    """
    return await user_service.get_or_create_user(db, identity)


async def get_auth_context(
    identity: Identity = Depends(get_current_identity),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    try:
        role = await role_for_identity(db, identity)
    except Exception as e:
        # Fail closed: an unresolvable role grants nothing
        logger.error(f"Role lookup failed for {identity.auth_user_id}: {e}")
        role = None
    return AuthContext(user=user, role=role, identity=identity)


def require_roles(allowed_roles: List[UserRole]):
    """
    Dependency factory to require specific user roles
    Usage: Depends(require_roles([UserRole.BUSINESS, UserRole.ADMIN]))
    """
    async def role_checker(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if ctx.role not in allowed_roles:
            raise NotAuthorized(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return ctx

    return role_checker


def require_admin():
    """Dependency to require admin access"""
    return require_roles([UserRole.ADMIN])


async def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Scheduled jobs authenticate with `Authorization: Bearer <CRON_SECRET>`"""
    if not settings.CRON_SECRET:
        raise NotAuthorized("Scheduled jobs are disabled")
    expected = f"Bearer {settings.CRON_SECRET}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise NotAuthenticated("Invalid cron secret")
