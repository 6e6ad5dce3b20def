from pydantic import BaseModel, EmailStr, Field, HttpUrl
from typing import Optional, List
import uuid


class DomainCheckResponse(BaseModel):
    valid: bool
    message: Optional[str] = None


class LeadCreate(BaseModel):
    email: EmailStr


class FeedbackCreate(BaseModel):
    star: int = Field(..., ge=0, le=5)
    comment: Optional[str] = Field(None, max_length=5000)


class AvatarResponse(BaseModel):
    id: uuid.UUID
    gender: str
    body_type: str
    skin_tone: str
    image_url: str
    photo_framing: Optional[str] = None
    aspect_ratio: Optional[str] = None

    class Config:
        from_attributes = True


class AvatarListResponse(BaseModel):
    avatars: List[AvatarResponse]
    total: int
    has_more: bool = False


class AvatarCreate(BaseModel):
    gender: str = Field(..., pattern="^(male|female)$")
    body_type: str = Field(..., min_length=1, max_length=50)
    skin_tone: str = Field(..., min_length=1, max_length=50)
    image_url: HttpUrl
    provider_model_id: Optional[str] = None
    photo_framing: Optional[str] = None
    aspect_ratio: Optional[str] = None
    visible: bool = True
