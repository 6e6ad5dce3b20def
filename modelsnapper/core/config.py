from pydantic_settings import BaseSettings
from typing import List, Optional
import os
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    # API Configuration
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("PORT", os.getenv("API_PORT", "8080")))
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    APP_URL: str = os.getenv("APP_URL", "http://localhost:3000")
    ALLOWED_ORIGINS: str = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000")

    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    AUTO_CREATE_TABLES: bool = os.getenv("AUTO_CREATE_TABLES", "true").lower() == "true"

    # Identity provider (Clerk)
    CLERK_SECRET_KEY: str = os.getenv("CLERK_SECRET_KEY", "")
    CLERK_JWKS_URL: str = os.getenv("CLERK_JWKS_URL", "")
    CLERK_API_URL: str = os.getenv("CLERK_API_URL", "https://api.clerk.com/v1")
    CLERK_AUTHORIZED_PARTIES: str = os.getenv("CLERK_AUTHORIZED_PARTIES", "")

    # Comma separated list of emails that always resolve to ADMIN
    ADMIN_EMAILS: str = os.getenv("ADMIN_EMAILS", "")

    # Stripe
    STRIPE_SECRET_KEY: str = os.getenv("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET: str = os.getenv("STRIPE_WEBHOOK_SECRET", "")

    # LemonSqueezy
    LEMONSQUEEZY_API_KEY: str = os.getenv("LEMONSQUEEZY_API_KEY", "")
    LEMONSQUEEZY_STORE_ID: str = os.getenv("LEMONSQUEEZY_STORE_ID", "")
    LEMONSQUEEZY_WEBHOOK_SECRET: str = os.getenv("LEMONSQUEEZY_WEBHOOK_SECRET", "")
    LEMONSQUEEZY_API_URL: str = os.getenv("LEMONSQUEEZY_API_URL", "https://api.lemonsqueezy.com/v1")

    # Generation provider (FASHN)
    FASHN_API_KEY: str = os.getenv("FASHN_API_KEY", "")
    FASHN_BASE_URL: str = os.getenv("FASHN_BASE_URL", "https://api.fashn.ai")
    FASHN_MODEL_NAME: str = os.getenv("FASHN_MODEL_NAME", "tryon-v1.6")
    FASHN_TIMEOUT_SECONDS: float = float(os.getenv("FASHN_TIMEOUT_SECONDS", "30"))

    # Email (Resend)
    RESEND_API_KEY: Optional[str] = os.getenv("RESEND_API_KEY", None)
    EMAIL_FROM: str = os.getenv("EMAIL_FROM", "ModelSnapper <noreply@modelsnapper.ai>")

    # Scheduled jobs
    CRON_SECRET: str = os.getenv("CRON_SECRET", "")

    # Credits and workflow policy
    FREE_CREDITS: int = int(os.getenv("FREE_CREDITS", "10"))
    FREE_CREDITS_RESET_AMOUNT: int = int(os.getenv("FREE_CREDITS_RESET_AMOUNT", "3"))
    FREE_CREDITS_RESET_DAYS: int = int(os.getenv("FREE_CREDITS_RESET_DAYS", "30"))
    RENDER_CREDIT_COST: int = int(os.getenv("RENDER_CREDIT_COST", "1"))
    RENDER_MAX_RETRIES: int = int(os.getenv("RENDER_MAX_RETRIES", "3"))
    # Open renders without a provider id are failed and refunded after this long
    RENDER_SUBMIT_TIMEOUT_SECONDS: int = int(os.getenv("RENDER_SUBMIT_TIMEOUT_SECONDS", "300"))
    MODEL_ROYALTY_PER_RENDER: float = float(os.getenv("MODEL_ROYALTY_PER_RENDER", "2.0"))
    CONSENT_REQUEST_TTL_DAYS: int = int(os.getenv("CONSENT_REQUEST_TTL_DAYS", "30"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    # Rotating file output; empty disables it
    LOG_FILE: str = os.getenv("LOG_FILE", "")

    class Config:
        case_sensitive = True

    @property
    def admin_emails(self) -> List[str]:
        return [e.strip().lower() for e in self.ADMIN_EMAILS.split(",") if e.strip()]

    @property
    def allowed_origins(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]


settings = Settings()
