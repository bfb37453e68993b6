"""
Course Quiz Attempt Service
FastAPI application factory and configuration
"""

import logging
import time
import uuid

from fastapi import FastAPI, Request, status, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder

# Import API routers
from .api import attempts, quizzes

from .database.connection import check_database_health
from .dependencies import get_attempt_lock
from .exceptions import AppException
from ..config import get_settings

# Configure logging
logger = logging.getLogger(__name__)


class RequestContextMiddleware:
    """Middleware to add request id and timing headers"""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            start_time = time.time()
            headers = dict(scope.get("headers") or [])
            request_id = headers.get(b"x-request-id", uuid.uuid4().hex.encode())

            async def send_wrapper(message):
                if message["type"] == "http.response.start":
                    process_time = time.time() - start_time
                    message["headers"] = list(message.get("headers", []))
                    message["headers"].append(
                        (b"x-process-time", f"{process_time:.6f}".encode())
                    )
                    message["headers"].append((b"x-request-id", request_id))
                await send(message)

            await self.app(scope, receive, send_wrapper)
        else:
            await self.app(scope, receive, send)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""

    settings = get_settings()

    # Create FastAPI instance
    app = FastAPI(
        title="Course Quiz Attempt API",
        description="Quiz catalog, attempt lifecycle and scoring for course quizzes",
        version=settings.VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        default_response_class=JSONResponse
    )

    # Add custom middleware
    app.add_middleware(RequestContextMiddleware)

    # Add security middleware
    if not settings.DEBUG and settings.allowed_hosts != ["*"]:
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=settings.allowed_hosts
        )

    # Add compression middleware
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_hosts,
        allow_credentials=settings.allowed_hosts != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["x-process-time", "x-request-id"]
    )

    # Exception handlers
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        """Handle custom application exceptions"""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.error_code,
                "message": exc.message,
                "details": jsonable_encoder(exc.details),
                "timestamp": time.time()
            }
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors"""
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": jsonable_encoder(exc.errors()),
                "timestamp": time.time()
            }
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions"""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": "HTTP_ERROR",
                "message": exc.detail,
                "timestamp": time.time()
            }
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions"""
        logger.exception(f"Unexpected error: {exc}")

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "INTERNAL_ERROR",
                "message": str(exc) if settings.DEBUG else "An internal server error occurred",
                "timestamp": time.time()
            }
        )

    # Health check endpoint
    @app.get("/health", tags=["System"])
    async def health_check():
        """API health check endpoint"""
        database = await check_database_health()
        lock = await get_attempt_lock()
        return {
            "status": "healthy" if database["status"] == "healthy" else "degraded",
            "api_version": settings.VERSION,
            "environment": settings.ENVIRONMENT,
            "database": database["database"],
            "attempt_lock": "redis" if lock.is_distributed else "in-process",
            "timestamp": time.time()
        }

    # Include API routers
    app.include_router(
        quizzes.router,
        prefix="/quizzes",
        tags=["Quizzes"]
    )

    app.include_router(
        attempts.router,
        tags=["Attempts"]
    )

    logger.info("✅ Backend API configured successfully")
    return app


# Export the app factory
__all__ = ["create_app", "RequestContextMiddleware"]
