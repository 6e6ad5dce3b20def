"""
Billing, credits and payment models
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal
from enum import Enum
import uuid

from .auth import PlanDetails


# =============================================================================
# CREDITS
# =============================================================================

class CreditTransactionType(str, Enum):
    ADJUSTMENT = "ADJUSTMENT"
    PURCHASE = "PURCHASE"
    GENERATION = "GENERATION"
    REFUND = "REFUND"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"
    SUBSCRIPTION_RESET = "SUBSCRIPTION_RESET"


class BillingResponse(BaseModel):
    plan: str = Field(..., description="Plan type, e.g. free or starter")
    details: PlanDetails
    credits: int = Field(..., ge=0)


class CreditAdjustRequest(BaseModel):
    target_user_id: uuid.UUID
    amount: int = Field(..., description="Signed credit delta")
    reason: str = Field(..., min_length=1, max_length=500)


class CreditAdjustResponse(BaseModel):
    user_id: uuid.UUID
    previous_balance: int
    new_balance: int
    amount: int


class CreditTransactionResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    type: CreditTransactionType
    amount: int
    balance_after: int
    reason: Optional[str] = None
    admin_user_id: Optional[uuid.UUID] = None
    reference_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CreditTransactionList(BaseModel):
    transactions: List[CreditTransactionResponse]
    total: int
    has_more: bool


class CreditResetResponse(BaseModel):
    reset_count: int


# =============================================================================
# PAYMENTS
# =============================================================================

class PaymentProvider(str, Enum):
    STRIPE = "stripe"
    LEMONSQUEEZY = "lemonsqueezy"


class CheckoutRequest(BaseModel):
    plan_id: str = Field(..., min_length=1)


class CheckoutResponse(BaseModel):
    provider: PaymentProvider
    checkout_url: str
    session_id: Optional[str] = None


class PaymentHistoryItem(BaseModel):
    id: uuid.UUID
    provider: PaymentProvider
    provider_payment_id: str
    amount: Decimal
    currency: str
    status: str
    description: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentHistoryResponse(BaseModel):
    payments: List[PaymentHistoryItem]
    total: int


class SubscriptionState(BaseModel):
    """Provider-reported subscription outcome to persist on a user"""
    plan_id: str
    status: str
    customer_id: Optional[str] = None
    metadata: Dict[str, Any] = {}


class PlanInfo(BaseModel):
    id: str
    type: str
    name: str
    price: float
    mode: str
    monthly_credits: int
    credits: int = 0
    is_premium: bool = False


class SubscriptionCancelRequest(BaseModel):
    cancel_immediately: bool = False
    reason: Optional[str] = Field(None, max_length=500)


class SubscriptionCancelResponse(BaseModel):
    subscription_id: str
    cancel_at: Optional[datetime] = None
    canceled_immediately: bool
    message: str
