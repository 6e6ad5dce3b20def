"""
Role resolution and role-driven navigation
"""
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from modelsnapper.core.config import settings
from modelsnapper.database.models import User
from modelsnapper.models.auth import Identity, NavigationDescriptor, NavigationItem, UserRole
from modelsnapper.services.clerk_auth_service import clerk_auth_service

logger = logging.getLogger(__name__)


# =============================================================================
# ROLE RESOLUTION
# =============================================================================

def is_admin_email(email: Optional[str]) -> bool:
    return bool(email) and email.strip().lower() in settings.admin_emails


async def role_for_identity(db: AsyncSession, identity: Identity) -> Optional[UserRole]:
    """
    Allow-listed admin emails win, then the stored role. Raises on store errors;
    use resolve_role for the fail-closed variant.
    """
    if is_admin_email(identity.primary_email):
        return UserRole.ADMIN

    result = await db.execute(select(User.role).where(User.auth_user_id == identity.auth_user_id))
    stored = result.scalar_one_or_none()
    if not stored:
        return None
    return UserRole(stored)


async def resolve_role(db: AsyncSession, session_token: Optional[str]) -> Optional[UserRole]:
    """
    Resolve the caller's role from a session token.

    Returns None for any failure (missing or invalid token, provider outage,
    store error) so callers never grant access on error.
    """
    if not session_token:
        return None
    try:
        identity = await clerk_auth_service.authenticate(session_token)
        return await role_for_identity(db, identity)
    except Exception as e:
        logger.warning(f"Role resolution failed, treating caller as unauthenticated: {e}")
        return None


# =============================================================================
# NAVIGATION
# =============================================================================

_NAVIGATION: Dict[Optional[UserRole], Tuple[str, List[Tuple[str, str, str]], List[str]]] = {
    UserRole.BUSINESS: (
        "/dashboard/business/models",
        [
            ("models", "Models", "/dashboard/business/models"),
            ("generate", "Generate", "/dashboard/business/generate"),
            ("history", "History", "/dashboard/business/history"),
            ("billing", "Billing", "/dashboard/business/billing"),
            ("profile", "Profile", "/dashboard/business/profile"),
        ],
        ["browse_models", "request_consent", "render", "purchase_credits"],
    ),
    UserRole.MODEL: (
        "/dashboard/model/requests",
        [
            ("requests", "Consent Requests", "/dashboard/model/requests"),
            ("portfolio", "Portfolio", "/dashboard/model/portfolio"),
            ("earnings", "Earnings", "/dashboard/model/earnings"),
            ("profile", "Profile", "/dashboard/model/profile"),
        ],
        ["review_consent", "manage_profile"],
    ),
    UserRole.ADMIN: (
        "/dashboard/admin/users",
        [
            ("users", "Users", "/dashboard/admin/users"),
            ("consent", "Consent", "/dashboard/admin/consent"),
            ("credits", "Credits", "/dashboard/admin/credits"),
            ("subscriptions", "Subscriptions", "/dashboard/admin/subscriptions"),
            ("analytics", "Analytics", "/dashboard/admin/analytics"),
        ],
        ["manage_users", "view_all_consent", "adjust_credits", "view_subscriptions"],
    ),
    None: (
        "/onboarding",
        [("onboarding", "Get Started", "/onboarding")],
        ["choose_role"],
    ),
}


def navigation_for_role(role: Optional[UserRole]) -> NavigationDescriptor:
    """Pure mapping from role to the dashboard the UI should render"""
    home, items, capabilities = _NAVIGATION[role]
    return NavigationDescriptor(
        role=role,
        home=home,
        items=[NavigationItem(key=k, label=label, path=path) for k, label, path in items],
        capabilities=list(capabilities),
    )
