"""
User Service - account records and role profiles
"""
import logging
from typing import Optional, List, Tuple
from uuid import UUID

from sqlalchemy import delete, select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from modelsnapper.core.config import settings
from modelsnapper.core.exceptions import NotAuthorized, NotFound, ValidationError
from modelsnapper.database.models import User, UserEmail, BusinessProfile, ModelProfile, utcnow
from modelsnapper.models.auth import (
    Identity, UserRole, BusinessProfileUpdate, ModelProfileUpdate, ModelProfileStatus
)

logger = logging.getLogger(__name__)


class UserService:
    """Create-on-first-visit user records, onboarding and profile management"""

    # =========================================================================
    # USERS
    # =========================================================================

    async def get_by_auth_id(self, db: AsyncSession, auth_user_id: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.auth_user_id == auth_user_id))
        return result.scalar_one_or_none()

    async def get_by_id(self, db: AsyncSession, user_id: UUID) -> User:
        user = await db.get(User, user_id)
        if not user:
            raise NotFound(f"User {user_id} not found", code="USER_NOT_FOUND")
        return user

    async def get_or_create_user(self, db: AsyncSession, identity: Identity) -> User:
        """
        Load the caller's record, creating it on the first authenticated visit.

        Profile fields are refreshed from the identity provider on every call.
        """
        user = await self.get_by_auth_id(db, identity.auth_user_id)
        if user is None:
            user = User(
                auth_user_id=identity.auth_user_id,
                email_addresses=list(identity.email_addresses),
                first_name=identity.first_name,
                last_name=identity.last_name,
                picture=identity.picture,
                plan_type="free",
                credits=settings.FREE_CREDITS,
                last_credit_reset=utcnow(),
            )
            db.add(user)
            try:
                await db.flush()
                await self.sync_email_index(db, user, commit=False)
                await db.commit()
            except IntegrityError:
                # Concurrent first visit created it already
                await db.rollback()
                user = await self.get_by_auth_id(db, identity.auth_user_id)
                if user is None:
                    raise
            else:
                await db.refresh(user)
                logger.info(f"Created user record for {identity.auth_user_id}")
                return user

        changed = False
        for field in ("first_name", "last_name", "picture"):
            value = getattr(identity, field)
            if value is not None and getattr(user, field) != value:
                setattr(user, field, value)
                changed = True
        if identity.email_addresses and user.email_addresses != identity.email_addresses:
            user.email_addresses = list(identity.email_addresses)
            await self.sync_email_index(db, user, commit=False)
            changed = True
        if changed:
            await db.commit()
            await db.refresh(user)
        return user

    async def sync_email_index(self, db: AsyncSession, user: User, commit: bool = True) -> None:
        """Rewrite the user's lookup rows from email_addresses"""
        await db.execute(
            delete(UserEmail)
            .where(UserEmail.user_id == user.id)
            .execution_options(synchronize_session=False)
        )
        addresses = []
        for address in user.email_addresses or []:
            normalized = (address or "").strip().lower()
            if normalized and normalized not in addresses:
                addresses.append(normalized)
        db.add_all([
            UserEmail(user_id=user.id, email=address, position=position)
            for position, address in enumerate(addresses)
        ])
        if commit:
            await db.commit()

    async def find_by_email(self, db: AsyncSession, email: str) -> Optional[User]:
        """Match against any stored address, case-insensitively"""
        if not email:
            return None
        result = await db.execute(
            select(User)
            .join(UserEmail, UserEmail.user_id == User.id)
            .where(UserEmail.email == email.strip().lower())
            .order_by(UserEmail.position, User.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_users(
        self,
        db: AsyncSession,
        role: Optional[str] = None,
        limit: int = 50,
        skip: int = 0,
    ) -> Tuple[List[User], int]:
        query = select(User)
        count_query = select(func.count()).select_from(User)
        if role:
            query = query.where(User.role == role)
            count_query = count_query.where(User.role == role)
        total = (await db.execute(count_query)).scalar_one()
        result = await db.execute(query.order_by(User.created_at.desc()).offset(skip).limit(limit))
        return list(result.scalars()), total

    # =========================================================================
    # ONBOARDING
    # =========================================================================

    async def set_role(
        self,
        db: AsyncSession,
        user: User,
        role: UserRole,
        actor_role: Optional[UserRole] = None,
    ) -> User:
        """
        Assign a marketplace role and create the matching profile.

        Raises:
            NotAuthorized: ADMIN requested by a non-admin
        """
        if role == UserRole.ADMIN and actor_role != UserRole.ADMIN:
            raise NotAuthorized("Only administrators can grant the ADMIN role")

        user.role = role.value
        if role == UserRole.BUSINESS:
            await self.get_or_create_business_profile(db, user, commit=False)
        elif role == UserRole.MODEL:
            await self.get_or_create_model_profile(db, user, commit=False)

        await db.commit()
        await db.refresh(user)
        logger.info(f"User {user.id} role set to {role.value}")
        return user

    # =========================================================================
    # PROFILES
    # =========================================================================

    async def get_business_profile(self, db: AsyncSession, user: User) -> Optional[BusinessProfile]:
        result = await db.execute(select(BusinessProfile).where(BusinessProfile.user_id == user.id))
        return result.scalar_one_or_none()

    async def get_or_create_business_profile(
        self, db: AsyncSession, user: User, commit: bool = True
    ) -> BusinessProfile:
        profile = await self.get_business_profile(db, user)
        if profile is None:
            profile = BusinessProfile(
                user_id=user.id,
                business_name=" ".join(p for p in (user.first_name, user.last_name) if p) or None,
            )
            db.add(profile)
            if commit:
                await db.commit()
                await db.refresh(profile)
            else:
                await db.flush()
            logger.info(f"Created business profile for user {user.id}")
        return profile

    async def get_model_profile(self, db: AsyncSession, user: User) -> Optional[ModelProfile]:
        result = await db.execute(select(ModelProfile).where(ModelProfile.user_id == user.id))
        return result.scalar_one_or_none()

    async def get_or_create_model_profile(
        self, db: AsyncSession, user: User, commit: bool = True
    ) -> ModelProfile:
        profile = await self.get_model_profile(db, user)
        if profile is None:
            profile = ModelProfile(
                user_id=user.id,
                name=" ".join(p for p in (user.first_name, user.last_name) if p) or None,
                primary_photo=user.picture,
                reference_photos=[],
            )
            db.add(profile)
            if commit:
                await db.commit()
                await db.refresh(profile)
            else:
                await db.flush()
            logger.info(f"Created model profile for user {user.id}")
        return profile

    async def update_business_profile(
        self, db: AsyncSession, user: User, data: BusinessProfileUpdate
    ) -> BusinessProfile:
        profile = await self.get_or_create_business_profile(db, user, commit=False)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(profile, field, value)
        await db.commit()
        await db.refresh(profile)
        return profile

    async def update_model_profile(
        self,
        db: AsyncSession,
        user: User,
        data: ModelProfileUpdate,
        actor_role: Optional[UserRole] = None,
    ) -> ModelProfile:
        updates = data.model_dump(exclude_unset=True)
        if updates.get("status") == ModelProfileStatus.SUSPENDED and actor_role != UserRole.ADMIN:
            raise ValidationError("Only administrators can suspend a model profile")

        profile = await self.get_or_create_model_profile(db, user, commit=False)
        if profile.status == ModelProfileStatus.SUSPENDED.value and actor_role != UserRole.ADMIN:
            raise NotAuthorized("Suspended profiles cannot be edited", code="PROFILE_SUSPENDED")

        for field, value in updates.items():
            if isinstance(value, ModelProfileStatus):
                value = value.value
            setattr(profile, field, value)
        await db.commit()
        await db.refresh(profile)
        logger.info(f"Model profile {profile.id} updated: {sorted(updates)}")
        return profile

    async def list_marketplace_models(
        self, db: AsyncSession, limit: int = 20, skip: int = 0
    ) -> Tuple[List[ModelProfile], int]:
        filters = (ModelProfile.status == ModelProfileStatus.ACTIVE.value, ModelProfile.is_visible.is_(True))
        total = (await db.execute(select(func.count()).select_from(ModelProfile).where(*filters))).scalar_one()
        result = await db.execute(
            select(ModelProfile).where(*filters).order_by(ModelProfile.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars()), total

    async def get_model_by_id(self, db: AsyncSession, model_id: UUID) -> ModelProfile:
        profile = await db.get(ModelProfile, model_id)
        if not profile:
            raise NotFound(f"Model {model_id} not found", code="MODEL_NOT_FOUND")
        return profile


user_service = UserService()
