"""
Course Quiz Attempt Service
Dependency injection components: request identity, role guards, shared clients
"""

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt
import redis.asyncio as redis
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .database.connection import get_db
from .database.models import Enrollment, EnrollmentStatus, Quiz, UserRole
from .exceptions import (
    AuthenticationException,
    AuthorizationException,
    EnrollmentRequiredException
)
from .services.attempts import AttemptService
from .services.catalog import QuizCatalog
from .services.events import get_event_dispatcher
from .services.locks import AttemptLock
from .services.reporting import ReportingService
from .services.scoring import ScoringService
from ..config import get_settings

# Configure logging
logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)

# Shared clients
_redis_client: Optional[redis.Redis] = None
_attempt_lock: Optional[AttemptLock] = None


async def get_redis_client() -> Optional[redis.Redis]:
    """Get Redis client instance, or None when Redis is disabled or unreachable"""
    global _redis_client

    settings = get_settings()
    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                health_check_interval=30
            )
            await client.ping()
            _redis_client = client
            logger.info("✅ Redis connection established")
        except Exception as e:
            logger.warning(f"⚠️ Redis connection failed, using in-process attempt locks: {e}")
            _redis_client = None

    return _redis_client


async def get_attempt_lock() -> AttemptLock:
    """Attempt-start lock shared by every request in this process"""
    global _attempt_lock

    if _attempt_lock is None:
        settings = get_settings()
        _attempt_lock = AttemptLock(
            redis_client=await get_redis_client(),
            timeout=settings.ATTEMPT_LOCK_TIMEOUT_SECONDS
        )
        logger.info(
            f"Attempt lock ready ({'redis' if _attempt_lock.is_distributed else 'in-process'})"
        )

    return _attempt_lock


# Identity

@dataclass(frozen=True)
class RequestContext:
    """Identity of the caller for one request"""
    user_id: uuid.UUID
    role: UserRole
    request_id: str

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.INSTRUCTOR, UserRole.ADMIN)


def create_access_token(
    user_id: uuid.UUID,
    role: UserRole,
    expires_minutes: int = 60
) -> str:
    """Issue a bearer token accepted by this service"""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_jwt_token(token: str) -> Dict[str, Any]:
    """Verify and decode JWT token"""
    settings = get_settings()

    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationException("Token has expired")
    except jwt.InvalidTokenError:
        raise AuthenticationException("Invalid token")


def _request_id(request: Request) -> str:
    return request.headers.get("x-request-id") or f"req_{int(time.time() * 1000000)}"


async def require_authentication(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> RequestContext:
    """Require a valid bearer token and build the request context"""

    if not credentials:
        raise AuthenticationException("Authentication required")

    payload = verify_jwt_token(credentials.credentials)

    try:
        user_id = uuid.UUID(str(payload.get("sub")))
        role = UserRole(payload.get("role", UserRole.STUDENT.value))
    except ValueError:
        raise AuthenticationException("Invalid token payload")

    context = RequestContext(user_id=user_id, role=role, request_id=_request_id(request))
    request.state.user_id = str(user_id)
    return context


def require_role(allowed_roles: List[UserRole]):
    """Factory function to create role-based dependencies"""

    async def check_role(context: RequestContext = Depends(require_authentication)) -> RequestContext:
        if context.role not in allowed_roles:
            raise AuthorizationException(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}",
                required_role=",".join(role.value for role in allowed_roles)
            )
        return context

    return check_role


# Pre-built role dependencies
require_any_role = require_role([UserRole.STUDENT, UserRole.INSTRUCTOR, UserRole.ADMIN])
require_instructor_or_admin = require_role([UserRole.INSTRUCTOR, UserRole.ADMIN])
require_admin = require_role([UserRole.ADMIN])


class PermissionChecker:
    """Permission checking system"""

    @staticmethod
    async def is_enrolled(course_id: uuid.UUID, user_id: uuid.UUID, db: AsyncSession) -> bool:
        result = await db.execute(
            select(Enrollment.id).where(
                Enrollment.course_id == course_id,
                Enrollment.user_id == user_id,
                Enrollment.status == EnrollmentStatus.ACTIVE
            )
        )
        return result.first() is not None

    @staticmethod
    def can_modify_quiz(context: RequestContext, quiz: Quiz) -> bool:
        """Admins can modify any quiz, instructors their own"""
        if context.role == UserRole.ADMIN:
            return True
        return context.role == UserRole.INSTRUCTOR and quiz.created_by_id == context.user_id


async def require_enrollment(quiz: Quiz, context: RequestContext, db: AsyncSession) -> None:
    """Learners must hold an active enrollment in the quiz's course"""
    if context.is_staff:
        return
    if not await PermissionChecker.is_enrolled(quiz.course_id, context.user_id, db):
        raise EnrollmentRequiredException(str(quiz.course_id))


def require_quiz_owner(quiz: Quiz, context: RequestContext) -> None:
    if not PermissionChecker.can_modify_quiz(context, quiz):
        raise AuthorizationException("Access denied to this quiz")


# Services

async def get_quiz_catalog(db: AsyncSession = Depends(get_db)) -> QuizCatalog:
    return QuizCatalog(db)


async def get_attempt_service(
    db: AsyncSession = Depends(get_db),
    lock: AttemptLock = Depends(get_attempt_lock)
) -> AttemptService:
    return AttemptService(db, lock=lock, dispatcher=get_event_dispatcher())


async def get_scoring_service(db: AsyncSession = Depends(get_db)) -> ScoringService:
    return ScoringService(db)


async def get_reporting_service(db: AsyncSession = Depends(get_db)) -> ReportingService:
    return ReportingService(db)


# Cleanup function
async def cleanup_dependencies():
    """Cleanup dependency resources"""
    global _redis_client, _attempt_lock

    _attempt_lock = None
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("✅ Redis connection closed")


# Export main dependencies
__all__ = [
    # Identity
    "RequestContext",
    "create_access_token",
    "verify_jwt_token",
    "require_authentication",
    "require_role",
    "require_any_role",
    "require_instructor_or_admin",
    "require_admin",

    # Authorization
    "PermissionChecker",
    "require_enrollment",
    "require_quiz_owner",

    # Services
    "get_quiz_catalog",
    "get_attempt_service",
    "get_scoring_service",
    "get_reporting_service",

    # Utilities
    "get_redis_client",
    "get_attempt_lock",
    "cleanup_dependencies"
]
