from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool
from typing import Optional
import logging

from modelsnapper.core.config import settings
from .models import Base

logger = logging.getLogger(__name__)

# Database instances
async_engine = None
SessionLocal = None


def _async_url(url: str) -> str:
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


async def init_database(database_url: Optional[str] = None):
    """Initialize the async engine and session factory (idempotent)"""
    global async_engine, SessionLocal

    if async_engine is not None and SessionLocal is not None:
        logger.info("Database already initialized - reusing existing connection pool")
        return

    url = _async_url(database_url or settings.DATABASE_URL)
    if not url:
        raise Exception("DATABASE_URL is not configured. Application cannot start without database.")

    logger.info("Initializing database connections...")
    if url.startswith("sqlite"):
        # aiosqlite connections are bound to the loop that opened them
        async_engine = create_async_engine(url, poolclass=NullPool, echo=False)
    else:
        async_engine = create_async_engine(
            url,
            pool_pre_ping=True,
            pool_recycle=1800,
            pool_size=5,
            max_overflow=3,
            pool_timeout=30,
            echo=False,
            connect_args={
                "command_timeout": 60,
                "server_settings": {
                    "application_name": "modelsnapper_backend",
                    "statement_timeout": "60s",
                },
            },
        )

    SessionLocal = sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("SUCCESS: Database connection test passed")


async def close_database():
    """Close database connections and reset global state"""
    global async_engine, SessionLocal

    if async_engine:
        await async_engine.dispose()
        logger.info("Database connection pool closed")

    async_engine = None
    SessionLocal = None


async def create_tables():
    """Create all tables that do not exist yet"""
    if not async_engine:
        logger.warning("WARNING: Database not initialized. Skipping table creation.")
        return

    try:
        async with async_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("SUCCESS: Database tables created")
    except Exception as e:
        logger.error(f"ERROR: Failed to create tables: {str(e)}")
        raise


def get_session() -> AsyncSession:
    """Get database session context manager"""
    if not SessionLocal:
        raise Exception("Database not initialized")
    return SessionLocal()


# Database dependency for FastAPI
async def get_db():
    """Request-scoped session; rolled back if the handler raises"""
    async with get_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
