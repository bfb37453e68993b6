"""
Course Quiz Attempt Service
Database connection and session management
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
import asyncio

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine
)
from sqlalchemy.pool import StaticPool

from .models import Base
from ...config import get_settings

# Configure logging
logger = logging.getLogger(__name__)

# Global variables
async_engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker] = None


def get_async_database_url(database_url: str) -> str:
    """Convert sync database URL to async version"""
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://")
    elif database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://")
    return database_url


def create_async_engine_instance(database_url: Optional[str] = None) -> AsyncEngine:
    """Create asynchronous SQLAlchemy engine"""
    settings = get_settings()
    database_url = get_async_database_url(database_url or settings.database_url)

    engine_kwargs = {
        "echo": settings.DB_ECHO,
    }

    if database_url.startswith("sqlite"):
        # SQLite specific configuration
        engine_kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": 20
        }
        # An in-memory database only lives as long as its single connection
        if ":memory:" in database_url:
            engine_kwargs["poolclass"] = StaticPool
    else:
        # PostgreSQL specific configuration
        engine_kwargs.update({
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_timeout": 30,
            "pool_recycle": 3600,
            "pool_pre_ping": True
        })

    engine = create_async_engine(database_url, **engine_kwargs)

    if database_url.startswith("sqlite"):
        setup_sqlite_pragmas(engine)

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory shared by the app and the tests"""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=True
    )


def setup_sqlite_pragmas(engine: AsyncEngine) -> None:
    """Enable foreign keys on every SQLite connection"""

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


async def init_database(database_url: Optional[str] = None):
    """Initialize database engine and create tables"""
    global async_engine, AsyncSessionLocal

    logger.info("Initializing database connections...")

    try:
        async_engine = create_async_engine_instance(database_url)
        AsyncSessionLocal = create_session_factory(async_engine)

        await test_async_connection()
        await create_tables()

        logger.info("Database initialized successfully")

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


async def test_async_connection():
    """Test async database connection"""
    async with async_engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("Async database connection successful")


async def create_tables(engine: Optional[AsyncEngine] = None):
    """Create database tables"""
    engine = engine or async_engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables created successfully")


# Session management functions
@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Get async database session with automatic cleanup"""
    if not AsyncSessionLocal:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


# Dependency for FastAPI
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions"""
    async with get_async_session() as session:
        yield session


# Health check functions
async def check_database_health() -> dict:
    """Check database connection health"""
    try:
        async with get_async_session() as session:
            result = await session.execute(text("SELECT 1 as health_check"))
            row = result.fetchone()

            if row and row[0] == 1:
                return {
                    "status": "healthy",
                    "database": "connected",
                    "timestamp": asyncio.get_running_loop().time()
                }
            else:
                return {
                    "status": "unhealthy",
                    "database": "query_failed",
                    "timestamp": asyncio.get_running_loop().time()
                }

    except Exception as e:
        return {
            "status": "unhealthy",
            "database": "connection_failed",
            "error": str(e),
            "timestamp": asyncio.get_running_loop().time()
        }


# Cleanup functions
async def close_database_connections():
    """Close all database connections"""
    global async_engine, AsyncSessionLocal

    if async_engine:
        await async_engine.dispose()
        async_engine = None
        AsyncSessionLocal = None
        logger.info("Async database engine disposed")


# Export main functions
__all__ = [
    "init_database",
    "create_async_engine_instance",
    "create_session_factory",
    "create_tables",
    "get_async_session",
    "get_db",
    "check_database_health",
    "close_database_connections",
]
