"""Application settings using Pydantic Settings.

Centralized configuration for the referral platform.

SECURITY: Production requires the following environment variables:
- APP_SECRET_KEY: Main application secret (min 32 chars)
- JWT_SECRET: JWT signing key (min 32 chars)
- SQUARE_WEBHOOK_SIGNATURE_KEY: Payment webhook signing key

Generate secrets with: python -c "import secrets; print(secrets.token_hex(32))"
"""

import os
import sys
import logging
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class ReferralSettings(BaseSettings):
    """Referral attribution and commission configuration."""

    model_config = SettingsConfigDict(
        env_prefix="REFERRAL_",
        extra="ignore",
    )

    attribution_window_days: int = Field(
        default=14, ge=1, description="How far back link clicks count toward attribution"
    )
    default_commission_amount: Decimal = Field(
        default=Decimal("50.00"), description="Flat commission for non-bonded referrers"
    )
    auto_approve_days: int = Field(
        default=30, ge=0, description="Days a lead must stay converted before approval"
    )
    tracking_code_prefix: str = Field(default="TGP", description="Prefix for generated codes")
    max_generation_attempts: int = Field(
        default=20, ge=1, description="Attempts before giving up on a unique code"
    )
    cookie_name: str = Field(default="referrer_username", description="Attribution cookie")


class AISettings(BaseSettings):
    """LLM provider configuration for landing page content."""

    model_config = SettingsConfigDict(
        env_prefix="AI_",
        extra="ignore",
    )

    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    model: str = Field(default="gpt-4o-mini", description="Chat completion model")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, ge=1)
    timeout: int = Field(default=60, description="Request timeout in seconds")

    # Batch generation
    batch_size: int = Field(default=10, ge=1, description="Cities generated concurrently")
    batch_delay: float = Field(default=2.0, ge=0.0, description="Seconds between batches")
    max_cities: int = Field(default=200, ge=1, description="Cities per campaign")


class PaymentSettings(BaseSettings):
    """Payment provider webhook configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SQUARE_",
        extra="ignore",
    )

    webhook_signature_key: Optional[str] = Field(
        default=None, description="Key used to sign webhook notifications"
    )
    webhook_notification_url: str = Field(
        default="http://localhost:8000/api/webhooks/square",
        description="Exact URL registered with the provider (part of the signed payload)",
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application info
    name: str = Field(default="Referral Platform", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    environment: str = Field(default="development", description="Environment name")

    # API settings
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")

    # Public site URL used when building tracking and short links
    base_url: str = Field(default="http://localhost:3000", description="Public site URL")

    # Security
    # CRITICAL: Must be set via APP_SECRET_KEY environment variable in production
    secret_key: str = Field(
        default="change-me-in-production-INSECURE",
        description="Secret key for signing - MUST be set in production"
    )
    access_token_expire_minutes: int = Field(default=60, description="JWT lifetime")

    # CORS
    cors_origins: list = Field(
        default=["http://localhost:3000", "http://localhost:8000"],
        description="Allowed CORS origins"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=False, description="Emit JSON logs")

    # Nested settings (loaded separately)
    @property
    def referral(self) -> ReferralSettings:
        return ReferralSettings()

    @property
    def ai(self) -> AISettings:
        return AISettings()

    @property
    def payments(self) -> PaymentSettings:
        return PaymentSettings()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment in ("production", "prod", "staging")

    @property
    def public_base_url(self) -> str:
        return self.base_url.rstrip("/")

    def validate_production_security(self) -> List[str]:
        """
        Validate all security requirements for production.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.is_production:
            return errors

        if "INSECURE" in self.secret_key:
            errors.append(
                "APP_SECRET_KEY: Must be set in production. "
                "Generate with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )
        elif len(self.secret_key) < 32:
            errors.append("APP_SECRET_KEY: Must be at least 32 characters")

        jwt_secret = os.environ.get("JWT_SECRET")
        if not jwt_secret:
            errors.append("JWT_SECRET: Required in production")
        elif len(jwt_secret) < 32:
            errors.append("JWT_SECRET: Must be at least 32 characters")

        if not self.payments.webhook_signature_key:
            errors.append(
                "SQUARE_WEBHOOK_SIGNATURE_KEY: Required in production to verify payment webhooks"
            )

        if self.base_url.startswith("http://localhost"):
            errors.append("APP_BASE_URL: Must point at the public site in production")

        return errors


# =============================================================================
# STARTUP VALIDATION
# =============================================================================

class StartupSecurityError(Exception):
    """Raised when security validation fails at startup."""
    pass


def validate_startup_security(settings: Settings, exit_on_failure: bool = True) -> bool:
    """
    Validate security settings at application startup.

    In production this fails fast if critical security settings are missing.

    Raises:
        StartupSecurityError: If validation fails and exit_on_failure is False
    """
    errors = settings.validate_production_security()

    if not errors:
        if settings.is_production:
            logger.info("Production security validation PASSED")
        return True

    error_msg = (
        "\n" + "=" * 60 + "\n"
        "CRITICAL SECURITY CONFIGURATION ERROR\n"
        "=" * 60 + "\n\n"
        "The following security settings are missing or invalid:\n\n"
    )
    for i, err in enumerate(errors, 1):
        error_msg += f"  {i}. {err}\n\n"

    logger.critical(error_msg)

    if exit_on_failure:
        print(error_msg, file=sys.stderr)
        sys.exit(1)
    else:
        raise StartupSecurityError(error_msg)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings instance.

    Returns:
        Settings: Cached settings loaded from environment.
    """
    return Settings()
