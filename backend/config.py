"""
Driver Reconciliation - Configuration Management

Centralized configuration for environment variables, the tracker service
connection and operator console defaults.
This module ensures:
- No hardcoded secrets
- Environment-specific settings (dev/staging/prod)
- Secure defaults
"""

from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== TRACKER SERVICE ====================
    TRACKER_API_BASE_URL: str = Field(
        default="http://localhost:8090/api",
        description="Base URL of the contractor tracker REST API"
    )
    TRACKER_API_TOKEN: str = Field(
        default="",
        description="Bearer token sent to the tracker API"
    )
    TRACKER_API_TIMEOUT: float = Field(
        default=30.0,
        description="Per-request timeout in seconds"
    )

    # ==================== RECONCILIATION ====================
    DEFAULT_PARK_ID: str = Field(
        default="08e20910d81d42658d4334d3f6d10ac0",
        description="Organisational scope used for every drivers-by-date fetch"
    )
    DRIVER_LOOKBACK_DAYS: int = Field(
        default=30,
        description="Initial driver range for the transactions console (days before today)"
    )

    # ==================== CORS ====================
    CORS_ORIGINS: str = Field(
        default="",
        description="Comma-separated list of allowed origins"
    )

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )

    # ==================== API ====================
    API_TITLE: str = Field(
        default="Driver Reconciliation Console API",
        description="API title for OpenAPI docs"
    )
    API_VERSION: str = Field(
        default="1.0.0",
        description="API version"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Parse CORS_ORIGINS into a list with environment-aware defaults.

        Production: Only specified origins
        Development/Staging: Include localhost origins
        """
        if self.CORS_ORIGINS and self.CORS_ORIGINS != "*":
            origins = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
        else:
            origins = []

        dev_origins = [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ]

        all_origins = set(origins)
        if not self.is_production:
            all_origins.update(dev_origins)

        return sorted(all_origins)

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if not self.TRACKER_API_BASE_URL:
            errors.append("TRACKER_API_BASE_URL is required")

        if not self.DEFAULT_PARK_ID:
            errors.append("DEFAULT_PARK_ID is required")

        if self.DRIVER_LOOKBACK_DAYS < 0:
            errors.append("DRIVER_LOOKBACK_DAYS cannot be negative")

        if self.is_production:
            if not self.TRACKER_API_TOKEN:
                errors.append("TRACKER_API_TOKEN is required in production")

            if self.CORS_ORIGINS == "*":
                errors.append("CORS_ORIGINS cannot be '*' in production")

            if "localhost" in self.TRACKER_API_BASE_URL.lower():
                errors.append("TRACKER_API_BASE_URL cannot point to localhost in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Tracker API: {settings.TRACKER_API_BASE_URL}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


# ==================== CORS CONFIGURATION ====================

def get_cors_config() -> dict:
    """
    Get CORS middleware configuration.

    Returns configuration dict for CORSMiddleware.
    """
    settings = get_settings()

    return {
        "allow_origins": settings.cors_origins_list,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "OPTIONS"],
        "allow_headers": [
            "Authorization",
            "Content-Type",
            "Accept",
            "Origin",
            "X-Request-ID",
        ],
        "expose_headers": ["X-Request-ID"],
        "max_age": 600,
    }


# ==================== ENVIRONMENT VALIDATION ====================

def validate_environment() -> dict:
    """
    Validate required environment variables.

    Returns a status dict with validation results.
    """
    settings = get_settings()

    status = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
        "variables": {}
    }

    required_vars = [
        ("TRACKER_API_BASE_URL", settings.TRACKER_API_BASE_URL),
        ("DEFAULT_PARK_ID", settings.DEFAULT_PARK_ID),
    ]

    for name, value in required_vars:
        if not value:
            status["errors"].append(f"{name} is not set")
            status["valid"] = False
        else:
            status["variables"][name] = "✓ Set"

    optional_vars = [
        ("TRACKER_API_TOKEN", settings.TRACKER_API_TOKEN, "Tracker requests are sent without a bearer token"),
        ("SENTRY_DSN", settings.SENTRY_DSN, "Error tracking disabled"),
    ]

    for name, value, warning in optional_vars:
        if not value:
            status["warnings"].append(warning)
            status["variables"][name] = "⚠ Not set"
        else:
            status["variables"][name] = "✓ Set"

    errors = settings.validate_production_config()
    for error in errors:
        if error not in status["errors"]:
            status["errors"].append(error)
            status["valid"] = False

    return status


# Export settings instance for convenience
settings = get_settings()
