import logging
import secrets
import warnings
from enum import Enum
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings


logger = logging.getLogger(__name__)


class AppMode(str, Enum):
    DEV = "dev"
    PROD = "prod"


class Settings(BaseSettings):
    # Application mode - defaults to DEV
    # SECURITY: In production, explicitly set APP_MODE=prod
    APP_MODE: AppMode = AppMode.DEV

    # Debug mode - MUST be False in production
    DEBUG: bool = False

    # Database (SQLite default for dev, use PostgreSQL in production)
    DATABASE_URL: str = "sqlite+aiosqlite:///./iconstore.db"

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # JWT Configuration
    # SECURITY: no default secrets. Production refuses to start without both.
    # Generate with: python -c "import secrets; print(secrets.token_urlsafe(64))"
    JWT_ACCESS_SECRET: Optional[str] = None
    JWT_REFRESH_SECRET: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Password hashing cost factor
    BCRYPT_ROUNDS: int = 12

    # Rate Limiting (per client IP, all buckets share one window)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_WINDOW: int = 900  # 15 minutes
    RATE_LIMIT_AUTH: int = 10  # register + login
    RATE_LIMIT_REFRESH: int = 30
    RATE_LIMIT_API: int = 100

    # Redis URL for rate limiting persistence (optional, in-memory used if not set)
    # IMPORTANT: With multiple workers, set this so every worker shares the counters
    REDIS_URL: Optional[str] = None

    # Trusted proxy networks (comma-separated CIDR notation)
    # Example: "10.0.0.0/8,172.16.0.0/12,192.168.0.0/16"
    # SECURITY: Only IPs from these networks are trusted to set X-Forwarded-For headers
    TRUSTED_PROXIES: Optional[str] = None

    # Storefront origin allowed by CORS
    FRONTEND_URL: str = "http://localhost:5173"

    # Maintenance
    AUDIT_RETENTION_DAYS: int = 90
    TOKEN_CLEANUP_INTERVAL_SECONDS: int = 3600  # 0 disables the reaper

    LOG_LEVEL: str = "INFO"

    @property
    def access_token_expires_in(self) -> int:
        """Access token lifetime in seconds."""
        return self.ACCESS_TOKEN_EXPIRE_MINUTES * 60

    @property
    def CORS_ORIGINS(self) -> List[str]:
        origins = [o.strip() for o in self.FRONTEND_URL.split(",") if o.strip()]
        if not origins and self.APP_MODE == AppMode.PROD:
            logger.warning(
                "SECURITY WARNING: No FRONTEND_URL configured in production. "
                "Cross-origin requests will be blocked."
            )
        return origins

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env variables


class SecurityWarning(UserWarning):
    """Warning for security-related configuration issues."""
    pass


def _validate_settings(settings: Settings) -> Settings:
    """
    Validate settings and fail fast on security issues.

    SECURITY: production never runs with missing or shared signing secrets.
    Development gets random per-process secrets so nothing well-known is
    ever used to sign tokens.
    """
    if settings.APP_MODE == AppMode.PROD:
        missing = [
            name
            for name in ("JWT_ACCESS_SECRET", "JWT_REFRESH_SECRET")
            if not getattr(settings, name)
        ]
        if missing:
            error_msg = (
                "CRITICAL SECURITY ERROR: "
                f"{', '.join(missing)} not configured in production. "
                "Set strong, unique signing secrets via environment variables."
            )
            logger.critical(error_msg)
            raise ValueError(error_msg)

        if settings.JWT_ACCESS_SECRET == settings.JWT_REFRESH_SECRET:
            error_msg = (
                "CRITICAL SECURITY ERROR: JWT_ACCESS_SECRET and JWT_REFRESH_SECRET "
                "must differ, otherwise access and refresh tokens share a signing context."
            )
            logger.critical(error_msg)
            raise ValueError(error_msg)

        if settings.DEBUG:
            error_msg = (
                "CRITICAL SECURITY ERROR: DEBUG=True in production! "
                "Debug mode exposes sensitive information in error responses."
            )
            logger.critical(error_msg)
            raise ValueError(error_msg)

        for name in ("JWT_ACCESS_SECRET", "JWT_REFRESH_SECRET"):
            if len(getattr(settings, name)) < 32:
                warnings.warn(
                    f"{name} appears to be weak (less than 32 characters). "
                    "Consider using a longer, more random key for production.",
                    SecurityWarning,
                    stacklevel=2,
                )

        if not settings.REDIS_URL:
            logger.warning(
                "REDIS_URL not configured in production. "
                "In-memory rate limiting is NOT process-safe with multiple workers."
            )
    else:
        if not settings.JWT_ACCESS_SECRET:
            settings.JWT_ACCESS_SECRET = secrets.token_urlsafe(64)
            logger.warning(
                "JWT_ACCESS_SECRET not set; using a random per-process secret (dev mode)"
            )
        if not settings.JWT_REFRESH_SECRET:
            settings.JWT_REFRESH_SECRET = secrets.token_urlsafe(64)
            logger.warning(
                "JWT_REFRESH_SECRET not set; using a random per-process secret (dev mode)"
            )

    return settings


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Raises ValueError for critical security misconfigurations in production.
    """
    settings = Settings()
    return _validate_settings(settings)
