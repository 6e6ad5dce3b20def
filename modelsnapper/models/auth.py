"""
Identity, role and user models
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum
import uuid


class UserRole(str, Enum):
    """Marketplace roles. A user without a role still needs onboarding."""
    BUSINESS = "BUSINESS"
    MODEL = "MODEL"
    ADMIN = "ADMIN"


class Identity(BaseModel):
    """Authenticated caller as reported by the identity provider"""
    auth_user_id: str
    email_addresses: List[str] = []
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    picture: Optional[str] = None

    @property
    def primary_email(self) -> Optional[str]:
        return self.email_addresses[0] if self.email_addresses else None


class PlanDetails(BaseModel):
    id: Optional[str] = None
    type: str = "free"
    name: Optional[str] = None
    price: Optional[float] = None
    is_premium: bool = False


class UserResponse(BaseModel):
    id: uuid.UUID
    auth_user_id: str
    email_addresses: List[str] = []
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    picture: Optional[str] = None
    role: Optional[UserRole] = None
    plan: PlanDetails
    credits: int
    created_at: datetime

    class Config:
        from_attributes = True


class RoleResponse(BaseModel):
    role: Optional[UserRole] = None
    needs_onboarding: bool


class RoleUpdateRequest(BaseModel):
    role: UserRole


class NavigationItem(BaseModel):
    key: str
    label: str
    path: str


class NavigationDescriptor(BaseModel):
    """Dashboard layout derived purely from the caller's role"""
    role: Optional[UserRole] = None
    home: str
    items: List[NavigationItem] = []
    capabilities: List[str] = []


class BusinessProfileUpdate(BaseModel):
    business_name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)


class BusinessProfileResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    business_name: Optional[str] = None
    description: Optional[str] = None

    class Config:
        from_attributes = True


class ModelProfileStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class ModelProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=200)
    display_name: Optional[str] = Field(None, max_length=200)
    bio: Optional[str] = Field(None, max_length=2000)
    primary_photo: Optional[str] = None
    reference_photos: Optional[List[str]] = None
    requires_consent: Optional[bool] = None
    price_per_access: Optional[int] = Field(None, ge=0)
    # Suspension is an admin decision
    status: Optional[ModelProfileStatus] = None
    is_visible: Optional[bool] = None


class ModelProfileResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    name: Optional[str] = None
    display_name: Optional[str] = None
    bio: Optional[str] = None
    primary_photo: Optional[str] = None
    reference_photos: List[str] = []
    requires_consent: bool
    price_per_access: int
    status: ModelProfileStatus
    is_visible: bool
    consent_requests_received: int
    consent_requests_approved: int
    total_generations: int

    class Config:
        from_attributes = True


class MarketplaceModel(ModelProfileResponse):
    consent_status: Optional[str] = None


class MarketplaceListResponse(BaseModel):
    models: List[MarketplaceModel]
    total: int
    has_more: bool


class AdminUserListResponse(BaseModel):
    users: List[UserResponse]
    total: int
    has_more: bool
    filters: Dict[str, Any] = {}
