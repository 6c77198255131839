"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Settings loaded from environment variables."""

    service_name: str = "reconciler"
    service_version: str = "0.1.0"

    # Remote account / subscription service
    auth_base_url: str = "http://localhost:8080/api/auth"
    subscriptions_base_url: str = "http://localhost:8080/api/subscriptions"
    http_timeout_seconds: float = 10.0

    # Store identity
    package_name: str = "com.example.browser"
    store_platform: str = "google"

    # Catalog
    basic_subscription_id: str = "basic-subscription"
    monthly_plan_id: str = "monthly-plan"
    yearly_plan_id: str = "yearly-plan"

    # Purchase confirmation retry
    confirm_retry_count: int = 2
    confirm_initial_delay_ms: int = 500
    confirm_max_delay_ms: int = 1500
    confirm_delay_increment_factor: float = 2.0

    # Credential import
    import_finished_job_retention: int = 100

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        A bad retry policy or service URL would only show up as a stuck
        purchase later, so refuse to start instead.
        """
        errors: list[str] = []

        for name in ("auth_base_url", "subscriptions_base_url"):
            value = getattr(self, name)
            if not value.startswith(("http://", "https://")):
                errors.append(f"{name.upper()} must be an http(s) URL, got: {value[:20]}...")

        if self.confirm_retry_count < 0:
            errors.append("CONFIRM_RETRY_COUNT cannot be negative")
        if self.confirm_initial_delay_ms < 0:
            errors.append("CONFIRM_INITIAL_DELAY_MS cannot be negative")
        if self.confirm_max_delay_ms < self.confirm_initial_delay_ms:
            errors.append("CONFIRM_MAX_DELAY_MS must be >= CONFIRM_INITIAL_DELAY_MS")
        if self.confirm_delay_increment_factor < 1.0:
            errors.append("CONFIRM_DELAY_INCREMENT_FACTOR must be >= 1.0")
        if self.import_finished_job_retention < 0:
            errors.append("IMPORT_FINISHED_JOB_RETENTION cannot be negative")
        if self.log_format not in ("json", "console"):
            errors.append(f"LOG_FORMAT must be 'json' or 'console', got: {self.log_format}")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - RECONCILER CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get settings instance."""
    return settings
