import logging
from enum import Enum
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


logger = logging.getLogger(__name__)


class AppMode(str, Enum):
    DEV = "dev"
    PROD = "prod"


class Settings(BaseSettings):
    # Application mode - defaults to DEV
    APP_MODE: AppMode = AppMode.DEV

    # Debug mode - MUST be False in production
    DEBUG: bool = False

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Google Gemini API
    GOOGLE_API_KEY: str = ""

    # Models per backend
    FAST_IMAGE_MODEL: str = "gemini-2.5-flash-image"
    PRO_IMAGE_MODEL: str = "gemini-3-pro-image-preview"
    GUIDE_IMAGE_MODEL: str = "gemini-3-pro-image-preview"

    # Slots per variant group in one batch
    BATCH_WIDTH: int = Field(default=3, ge=1, le=12)

    # Timeout for a single Gemini call (seconds); the core itself waits indefinitely
    API_TIMEOUT_SECONDS: float = Field(default=120.0, gt=0)

    # Upload limit for the dish photo
    MAX_UPLOAD_SIZE_MB: int = Field(default=10, ge=1, le=50)

    # Comma-separated list of allowed origins
    CORS_ALLOWED_ORIGINS: str = ""

    LOG_LEVEL: str = "INFO"

    @property
    def max_upload_size_bytes(self) -> int:
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """
        Get allowed CORS origins.

        Localhost dev servers are allowed in DEV mode. In production only the
        explicitly configured origins are returned, never ["*"].
        """
        origins = []

        if self.APP_MODE == AppMode.DEV:
            origins = [
                "http://localhost:3000",
                "http://localhost:5173",
                "http://127.0.0.1:3000",
                "http://127.0.0.1:5173",
            ]

        if self.CORS_ALLOWED_ORIGINS:
            custom_origins = [
                o.strip() for o in self.CORS_ALLOWED_ORIGINS.split(",") if o.strip()
            ]
            origins.extend(custom_origins)

        if not origins and self.APP_MODE == AppMode.PROD:
            logger.warning(
                "No CORS_ALLOWED_ORIGINS configured in production. "
                "Cross-origin requests will be blocked."
            )

        return origins

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env variables


def _validate_settings(settings: Settings) -> Settings:
    """
    Validate settings and warn/error on misconfiguration.

    Fails fast on DEBUG in production; a missing GOOGLE_API_KEY only warns so
    the API can still start and report every generation as failed.
    """
    if settings.APP_MODE == AppMode.PROD and settings.DEBUG:
        error_msg = (
            "DEBUG=True in production! "
            "Set DEBUG=False or remove the DEBUG environment variable."
        )
        logger.critical(error_msg)
        raise ValueError(error_msg)

    if settings.LOG_LEVEL.upper() not in logging.getLevelNamesMapping():
        raise ValueError(f"Unknown LOG_LEVEL: {settings.LOG_LEVEL}")

    if not settings.GOOGLE_API_KEY:
        logger.warning(
            "GOOGLE_API_KEY is not set. Every generation will fail until it is configured."
        )

    return settings


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Settings are validated on first access.
    """
    settings = Settings()
    return _validate_settings(settings)
