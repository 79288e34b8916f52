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
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Civic Rewards API"
    api_version: str = "0.1.0"
    api_description: str = "Issue lifecycle and points ledger for civic reports"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "civic-rewards-api"
    deployment_environment: str = "production"

    # Rewards
    submission_reward_points: int = 25

    # AI backend (classification + urgency detection)
    ai_provider: str = "gemini"  # gemini or openrouter
    ai_api_key: str = ""  # Empty key means every call uses the fallback result
    ai_model: str = "gemini-1.5-flash"
    ai_base_url: str = ""  # Override provider endpoint (tests, proxies)
    ai_http_referrer: str = "https://civic-rewards.local"
    ai_timeout_seconds: float = 30.0
    ai_max_retries: int = 3
    ai_retry_backoff_seconds: float = 1.0
    ai_urgency_confidence_threshold: float = 0.7

    # Concurrency - retries for serialization failures / deadlocks
    conflict_retry_attempts: int = 3
    conflict_retry_max_wait_seconds: float = 0.5

    # Bootstrap admin (seeded at startup, never from a request handler)
    admin_email: str = ""
    admin_display_name: str = "Administrator"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.submission_reward_points <= 0:
            errors.append("SUBMISSION_REWARD_POINTS must be positive")

        if self.ai_provider not in ("gemini", "openrouter"):
            errors.append(f"AI_PROVIDER must be gemini or openrouter, got: {self.ai_provider}")

        if self.ai_max_retries < 1:
            errors.append("AI_MAX_RETRIES must be at least 1")

        if self.conflict_retry_attempts < 1:
            errors.append("CONFLICT_RETRY_ATTEMPTS must be at least 1")

        if not 0.0 <= self.ai_urgency_confidence_threshold <= 1.0:
            errors.append("AI_URGENCY_CONFIDENCE_THRESHOLD must be between 0 and 1")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
