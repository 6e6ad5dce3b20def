from pydantic import BaseModel, Field, HttpUrl, model_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from enum import Enum
import uuid


class RenderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RenderModelType(str, Enum):
    AI_AVATAR = "AI_AVATAR"
    HUMAN_MODEL = "HUMAN_MODEL"


class RenderRequest(BaseModel):
    garment_image_url: HttpUrl
    avatar_id: Optional[uuid.UUID] = None
    model_id: Optional[uuid.UUID] = None
    category: str = Field("auto", pattern="^(auto|tops|bottoms|one-pieces)$")

    class Config:
        protected_namespaces = ()

    @model_validator(mode="after")
    def exactly_one_subject(self):
        if (self.avatar_id is None) == (self.model_id is None):
            raise ValueError("Provide exactly one of avatar_id or model_id")
        return self


class RenderJobResponse(BaseModel):
    id: uuid.UUID
    status: RenderStatus
    model_type: RenderModelType
    avatar_id: Optional[uuid.UUID] = None
    model_id: Optional[uuid.UUID] = None
    garment_image_url: str
    credits_used: int
    category: str = "auto"
    provider_request_id: Optional[str] = None
    output_url: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 0
    created_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        protected_namespaces = ()


class RenderHistoryResponse(BaseModel):
    renders: List[RenderJobResponse]
    total: int
    has_more: bool


class RenderSweepResponse(BaseModel):
    failed: int


# =============================================================================
# MODEL DASHBOARD
# =============================================================================

class ModelDashboardStats(BaseModel):
    total_earnings: Decimal
    this_month_earnings: Decimal
    total_generations: int
    pending_earnings: Decimal


class ModelGeneration(BaseModel):
    id: uuid.UUID
    status: RenderStatus
    garment_image_url: str
    output_url: Optional[str] = None
    royalty_paid: Decimal
    requested_by: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class ModelGenerationList(BaseModel):
    generations: List[ModelGeneration]
    total: int
    has_more: bool
