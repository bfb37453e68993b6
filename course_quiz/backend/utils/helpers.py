"""
Course Quiz Attempt Service
Shared helper functions
"""

import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional


def setup_logging(level: str = "INFO", log_format: Optional[str] = None) -> None:
    """Configure root logging for the service"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=log_format or "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True
    )

    # Keep third-party chatter down
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def parse_uuid(value: Any, not_found: Callable[[str], Exception]) -> uuid.UUID:
    """Parse an identifier, raising the given not-found exception when it is malformed"""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise not_found(str(value))


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware timestamp to the naive UTC form the database stores"""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def elapsed_seconds(start: datetime, end: datetime) -> int:
    """Whole seconds between two timestamps, never negative"""
    return max(0, int((end - start).total_seconds()))


def elapsed_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes elapsed, fractional minutes are dropped"""
    return elapsed_seconds(start, end) // 60


__all__ = [
    "setup_logging",
    "parse_uuid",
    "to_naive_utc",
    "elapsed_seconds",
    "elapsed_minutes",
]
