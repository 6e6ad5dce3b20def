"""
Consent request models
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime
from enum import Enum
import uuid


class ConsentStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class ConsentDecisionStatus(str, Enum):
    """The only states a model may move a request into"""
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ConsentRequestCreate(BaseModel):
    model_id: uuid.UUID
    message: Optional[str] = Field(None, max_length=1000)

    class Config:
        protected_namespaces = ()


class ConsentDecision(BaseModel):
    status: ConsentDecisionStatus


class ConsentRequestResponse(BaseModel):
    id: uuid.UUID
    business_id: uuid.UUID
    model_id: uuid.UUID
    status: ConsentStatus
    message: Optional[str] = None
    requested_at: datetime
    expires_at: Optional[datetime] = None
    granted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        protected_namespaces = ()


class ConsentListResponse(BaseModel):
    requests: List[ConsentRequestResponse]
    total: int
    has_more: bool
    limit: int
    skip: int


class ConsentStatusResponse(BaseModel):
    business_id: uuid.UUID
    model_id: uuid.UUID
    has_consent: bool
    status: Optional[ConsentStatus] = None
    request_id: Optional[uuid.UUID] = None

    class Config:
        protected_namespaces = ()


class ConsentStatusBatch(BaseModel):
    statuses: Dict[str, Optional[ConsentStatus]]


class ConsentSweepResponse(BaseModel):
    expired: int
