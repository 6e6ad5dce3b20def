"""
ModelSnapper database models
Users and their role profiles, consent requests, credits ledger, avatars,
renders, payments, feedback and leads
"""
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Text, Numeric, ForeignKey,
    Index, CheckConstraint, UniqueConstraint, JSON, Uuid
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship
import uuid as uuid_lib

Base = declarative_base()

# JSONB on Postgres, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores naive UTC"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# USERS AND ROLE PROFILES
# =============================================================================

class User(Base):
    """Account record keyed by the identity provider's user id"""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid_lib.uuid4)
    auth_user_id = Column(String(255), unique=True, nullable=False, index=True)

    # Profile mirrored from the identity provider
    email_addresses = Column(JSONType, nullable=False, default=list)
    first_name = Column(Text)
    last_name = Column(Text)
    picture = Column(Text)

    # BUSINESS, MODEL, ADMIN or NULL (needs onboarding)
    role = Column(String(20), nullable=True, index=True)

    # Current plan
    plan_id = Column(String(100))
    plan_type = Column(String(50), nullable=False, default="free")
    plan_name = Column(String(150))
    plan_price = Column(Numeric(10, 2))
    plan_is_premium = Column(Boolean, nullable=False, default=False)
    subscription_status = Column(String(50))

    # Credits
    credits = Column(Integer, nullable=False, default=10)
    last_credit_reset = Column(DateTime, default=utcnow)

    # Payment provider customer ids
    stripe_customer_id = Column(String(255), unique=True, nullable=True, index=True)
    lemonsqueezy_customer_id = Column(String(255), unique=True, nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    business_profile = relationship("BusinessProfile", back_populates="user", uselist=False)
    model_profile = relationship("ModelProfile", back_populates="user", uselist=False)

    __table_args__ = (
        CheckConstraint('credits >= 0', name='check_user_credits_non_negative'),
        Index('idx_users_plan_type', 'plan_type'),
    )

    @property
    def primary_email(self):
        return self.email_addresses[0] if self.email_addresses else None

    @property
    def plan(self):
        return {
            "id": self.plan_id,
            "type": self.plan_type,
            "name": self.plan_name,
            "price": float(self.plan_price) if self.plan_price is not None else None,
            "is_premium": bool(self.plan_is_premium),
        }


class UserEmail(Base):
    """Lower-cased copy of each address in User.email_addresses, for lookups by email"""
    __tablename__ = "user_emails"

    id = Column(Uuid, primary_key=True, default=uuid_lib.uuid4)
    user_id = Column(Uuid, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    email = Column(String(320), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint('user_id', 'email', name='uq_user_emails_user_email'),
        Index('idx_user_emails_email', 'email'),
    )


class BusinessProfile(Base):
    __tablename__ = "business_profiles"

    id = Column(Uuid, primary_key=True, default=uuid_lib.uuid4)
    user_id = Column(Uuid, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True)
    business_name = Column(Text)
    description = Column(Text)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="business_profile")


class ModelProfile(Base):
    __tablename__ = "model_profiles"

    id = Column(Uuid, primary_key=True, default=uuid_lib.uuid4)
    user_id = Column(Uuid, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True)

    name = Column(Text)
    display_name = Column(Text)
    bio = Column(Text)
    primary_photo = Column(Text)
    reference_photos = Column(JSONType, nullable=False, default=list)

    requires_consent = Column(Boolean, nullable=False, default=True)
    price_per_access = Column(Integer, nullable=False, default=0)
    # draft, active, paused, inactive, suspended
    status = Column(String(20), nullable=False, default="draft")
    is_visible = Column(Boolean, nullable=False, default=True)

    consent_requests_received = Column(Integer, nullable=False, default=0)
    consent_requests_approved = Column(Integer, nullable=False, default=0)
    total_generations = Column(Integer, nullable=False, default=0)
    royalty_balance = Column(Numeric(10, 2), nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="model_profile")

    __table_args__ = (
        Index('idx_model_profiles_status_visible', 'status', 'is_visible'),
    )


# =============================================================================
# CONSENT WORKFLOW
# =============================================================================

class ConsentRequest(Base):
    """A business asking a model for permission to use their likeness"""
    __tablename__ = "consent_requests"

    id = Column(Uuid, primary_key=True, default=uuid_lib.uuid4)
    business_id = Column(Uuid, ForeignKey('business_profiles.id', ondelete='CASCADE'), nullable=False)
    model_id = Column(Uuid, ForeignKey('model_profiles.id', ondelete='CASCADE'), nullable=False)

    # PENDING, APPROVED, REJECTED, EXPIRED
    status = Column(String(20), nullable=False, default="PENDING")
    message = Column(Text)

    requested_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=True)
    granted_at = Column(DateTime, nullable=True)
    rejected_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    business = relationship("BusinessProfile")
    model = relationship("ModelProfile")

    __table_args__ = (
        UniqueConstraint('business_id', 'model_id', name='uq_consent_business_model'),
        Index('idx_consent_status_requested', 'status', 'requested_at'),
        Index('idx_consent_model', 'model_id', 'requested_at'),
    )


# =============================================================================
# CREDITS AND PAYMENTS
# =============================================================================

class CreditTransaction(Base):
    """Append-only ledger of every credit balance change"""
    __tablename__ = "credit_transactions"

    id = Column(Uuid, primary_key=True, default=uuid_lib.uuid4)
    user_id = Column(Uuid, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)

    # ADJUSTMENT, PURCHASE, GENERATION, REFUND, ADMIN_ADJUSTMENT, SUBSCRIPTION_RESET
    type = Column(String(30), nullable=False)
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    reason = Column(Text)
    admin_user_id = Column(Uuid, nullable=True)
    reference_id = Column(String(255))
    details = Column("metadata", JSONType, nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint('balance_after >= 0', name='check_txn_balance_non_negative'),
        Index('idx_credit_txn_user_created', 'user_id', 'created_at'),
        Index('idx_credit_txn_type', 'type'),
    )


class PaymentHistory(Base):
    __tablename__ = "payment_history"

    id = Column(Uuid, primary_key=True, default=uuid_lib.uuid4)
    user_id = Column(Uuid, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    provider = Column(String(30), nullable=False)
    provider_payment_id = Column(String(255), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(10), nullable=False, default="usd")
    status = Column(String(30), nullable=False)
    description = Column(Text)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint('provider', 'provider_payment_id', name='uq_payment_provider_id'),
        Index('idx_payment_history_user', 'user_id', 'created_at'),
    )


# =============================================================================
# RENDERING
# =============================================================================

class Avatar(Base):
    """Catalogue of AI avatars usable as render subjects"""
    __tablename__ = "avatars"

    id = Column(Uuid, primary_key=True, default=uuid_lib.uuid4)
    gender = Column(String(10), nullable=False)
    body_type = Column(String(50), nullable=False)
    skin_tone = Column(String(50), nullable=False)
    image_url = Column(Text, nullable=False)
    provider_model_id = Column(String(255))
    photo_framing = Column(String(50))
    aspect_ratio = Column(String(20))
    visible = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("gender IN ('male', 'female')", name='check_avatar_gender'),
        Index('idx_avatars_filters', 'gender', 'body_type', 'skin_tone'),
    )


class Render(Base):
    __tablename__ = "renders"

    id = Column(Uuid, primary_key=True, default=uuid_lib.uuid4)
    user_id = Column(Uuid, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    garment_image_url = Column(Text, nullable=False)

    # AI_AVATAR or HUMAN_MODEL
    model_type = Column(String(20), nullable=False, default="AI_AVATAR")
    avatar_id = Column(Uuid, ForeignKey('avatars.id'), nullable=True)
    model_id = Column(Uuid, ForeignKey('model_profiles.id'), nullable=True)

    category = Column(String(20), nullable=False, default="auto")
    # pending, processing, completed, failed
    status = Column(String(20), nullable=False, default="pending")
    credits_used = Column(Integer, nullable=False, default=1)
    provider_request_id = Column(String(255), index=True)
    output_url = Column(Text)
    error_message = Column(Text)
    royalty_paid = Column(Numeric(10, 2), nullable=False, default=0)

    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    last_retry_at = Column(DateTime)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime)

    __table_args__ = (
        Index('idx_renders_user_created', 'user_id', 'created_at'),
        Index('idx_renders_model_created', 'model_id', 'created_at'),
    )


# =============================================================================
# FEEDBACK AND LEADS
# =============================================================================

class Feedback(Base):
    __tablename__ = "feedback"

    id = Column(Uuid, primary_key=True, default=uuid_lib.uuid4)
    user_id = Column(Uuid, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    star = Column(Integer, nullable=False)
    comment = Column(Text)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint('star >= 0 AND star <= 5', name='check_feedback_star_range'),
    )


class Lead(Base):
    __tablename__ = "leads"

    id = Column(Uuid, primary_key=True, default=uuid_lib.uuid4)
    email = Column(String(320), nullable=False, unique=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
