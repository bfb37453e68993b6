"""
Course Quiz Attempt Service
Application configuration and settings management
"""

import os
import secrets
from functools import lru_cache
from typing import List, Optional
from urllib.parse import quote_plus

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application Settings
    APP_NAME: str = "Course Quiz Attempt Service"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server Configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Security Settings
    JWT_SECRET_KEY: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    JWT_ALGORITHM: str = "HS256"

    # CORS Settings
    ALLOWED_HOSTS: str = Field(
        default="*",
        description="Comma-separated list of allowed hosts"
    )

    @property
    def allowed_hosts(self) -> List[str]:
        return [host.strip() for host in self.ALLOWED_HOSTS.split(',') if host.strip()]

    # Database Configuration
    DATABASE_URL: Optional[str] = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "course_quiz"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "password"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_ECHO: bool = False

    @property
    def database_url(self) -> str:
        """Generate database URL from components or use provided URL"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        # For development, use SQLite
        if self.ENVIRONMENT == "development":
            return "sqlite+aiosqlite:///./course_quiz.db"

        password = quote_plus(self.DB_PASSWORD)
        return f"postgresql+asyncpg://{self.DB_USER}:{password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # Redis Configuration (attempt locks)
    REDIS_ENABLED: bool = False
    REDIS_URL: str = "redis://localhost:6379/0"
    ATTEMPT_LOCK_TIMEOUT_SECONDS: int = 10

    # Quiz Configuration
    DEFAULT_MAX_ATTEMPTS: int = 1
    DEFAULT_PASSING_SCORE: float = 60.0
    ATTEMPT_START_MAX_RETRIES: int = 3
    UNKNOWN_ANSWER_POLICY: str = "ignore"  # ignore | reject
    ATTEMPT_SWEEP_INTERVAL_SECONDS: int = 0  # 0 disables the background sweep

    @field_validator('UNKNOWN_ANSWER_POLICY')
    @classmethod
    def validate_unknown_answer_policy(cls, v):
        if v not in ("ignore", "reject"):
            raise ValueError("UNKNOWN_ANSWER_POLICY must be 'ignore' or 'reject'")
        return v

    # Monitoring and Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class DevelopmentSettings(Settings):
    """Development environment specific settings"""
    DEBUG: bool = True
    ENVIRONMENT: str = "development"


class ProductionSettings(Settings):
    """Production environment specific settings"""
    DEBUG: bool = False
    ENVIRONMENT: str = "production"
    DB_ECHO: bool = False

    # Require these in production
    JWT_SECRET_KEY: str
    DATABASE_URL: str


class TestingSettings(Settings):
    """Testing environment specific settings"""
    DEBUG: bool = True
    ENVIRONMENT: str = "testing"
    DATABASE_URL: str = "sqlite+aiosqlite:///:memory:"
    JWT_SECRET_KEY: str = "testing-secret-key-with-enough-length-for-hs256"
    REDIS_ENABLED: bool = False


@lru_cache()
def get_settings() -> Settings:
    """Get application settings with caching"""
    environment = os.getenv("ENVIRONMENT", "development").lower()

    if environment == "production":
        return ProductionSettings()
    elif environment == "testing":
        return TestingSettings()
    else:
        return DevelopmentSettings()


__all__ = [
    "Settings",
    "DevelopmentSettings",
    "ProductionSettings",
    "TestingSettings",
    "get_settings",
]
