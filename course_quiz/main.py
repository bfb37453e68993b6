#!/usr/bin/env python3
"""
Course Quiz Attempt Service
Main application entry point and configuration
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from typing import Optional

import uvicorn
from fastapi import FastAPI

from .config import get_settings
from .backend.app import create_app
from .backend.database.connection import (
    close_database_connections,
    get_async_session,
    init_database
)
from .backend.dependencies import cleanup_dependencies, get_attempt_lock
from .backend.services.attempts import AttemptService
from .backend.utils.helpers import setup_logging

logger = logging.getLogger(__name__)


async def sweep_expired_attempts_forever(interval_seconds: int) -> None:
    """Periodically abandon attempts that ran past their time limit"""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            async with get_async_session() as session:
                service = AttemptService(session, lock=await get_attempt_lock())
                await service.sweep_expired_attempts()
        except Exception as e:
            logger.error(f"Expired attempt sweep failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events"""
    settings = get_settings()

    # Startup
    logger.info(f"🚀 Starting {settings.APP_NAME}...")

    await init_database()
    await get_attempt_lock()

    sweeper: Optional[asyncio.Task] = None
    if settings.ATTEMPT_SWEEP_INTERVAL_SECONDS > 0:
        sweeper = asyncio.create_task(
            sweep_expired_attempts_forever(settings.ATTEMPT_SWEEP_INTERVAL_SECONDS)
        )
        logger.info(f"Expired attempt sweep every {settings.ATTEMPT_SWEEP_INTERVAL_SECONDS}s")

    logger.info("🎉 Application startup complete!")

    yield

    # Shutdown
    logger.info("🛑 Shutting down application...")
    if sweeper:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
    await cleanup_dependencies()
    await close_database_connections()
    logger.info("✅ Application shutdown complete")


def create_main_app() -> FastAPI:
    """Create the main application with the backend API mounted under /api"""

    settings = get_settings()

    main_app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan
    )

    # Mount the backend API
    main_app.mount("/api", create_app())

    return main_app


def main():
    """Main entry point"""
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    logger.info(f"Starting application in {settings.ENVIRONMENT} mode")

    try:
        uvicorn.run(
            "course_quiz.main:app",
            host=settings.HOST,
            port=settings.PORT,
            reload=settings.DEBUG,
            log_level="info" if settings.DEBUG else "warning",
            access_log=settings.DEBUG
        )
    except KeyboardInterrupt:
        logger.info("Application stopped by user")
    except Exception as e:
        logger.error(f"Application failed to start: {e}")
        sys.exit(1)


# Create app instance for uvicorn
app = create_main_app()

if __name__ == "__main__":
    main()
