"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Stripe Configuration
    stripe_secret_key: str = Field(..., description="Stripe secret API key (sk_test_...)")
    stripe_publishable_key: str = Field(..., description="Stripe publishable key (pk_test_...)")
    stripe_webhook_secret: str = Field(..., description="Stripe webhook signing secret")
    stripe_api_version: str = Field(default="2023-10-16", description="Stripe API version")

    # Database Configuration
    database_url: str = Field(..., description="Database connection URL (async driver)")
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Redis Configuration
    redis_url: str = Field(..., description="Redis connection URL")
    webhook_dedup_ttl_seconds: int = Field(
        default=86400 * 7, description="How long processed webhook ids are remembered"
    )

    # Message Bus Configuration
    rabbitmq_url: str = Field(..., description="RabbitMQ connection URL")
    payment_events_exchange: str = Field(
        default="payment_events", description="Topic exchange for payment outcome events"
    )

    # Application Configuration
    app_name: str = Field(default="league-payments", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="CORS allowed origins (comma-separated)"
    )
    principal_header: str = Field(
        default="X-User-Id", description="Header carrying the gateway-authenticated user id"
    )

    # Payment Lifecycle
    minimum_charge_minor_units: int = Field(
        default=50, description="Smallest amount the processor accepts, in minor units"
    )
    idempotency_window_seconds: int = Field(
        default=900, description="Validity window of a derived idempotency key (seconds)"
    )
    processor_timeout_seconds: float = Field(
        default=10.0, description="Upper bound for a single processor API call (seconds)"
    )

    # Event Publishing
    publish_retry_attempts: int = Field(
        default=3, description="In-line publish attempts before leaving an event to the relay"
    )
    outbox_batch_size: int = Field(default=100, description="Outbox events per relay batch")
    outbox_poll_interval_seconds: float = Field(
        default=1.0, description="Outbox relay polling interval (seconds)"
    )

    # Stale intent polling
    stale_intent_after_minutes: int = Field(
        default=30, description="Age after which a CREATED payment is polled at the processor"
    )
    stale_intent_poll_interval_seconds: float = Field(
        default=300.0, description="Interval between stale intent sweeps (seconds)"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("stripe_secret_key")
    @classmethod
    def validate_stripe_key(cls, v: str) -> str:
        """Validate that Stripe secret key is a test or live key."""
        if not v.startswith("sk_test_") and not v.startswith("sk_live_"):
            raise ValueError(
                "Invalid Stripe secret key format. Must start with 'sk_test_' or 'sk_live_'"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("minimum_charge_minor_units")
    @classmethod
    def validate_minimum_charge(cls, v: int) -> int:
        """The processor minimum must be a positive amount."""
        if v <= 0:
            raise ValueError("minimum_charge_minor_units must be positive")
        return v

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def is_test_mode(self) -> bool:
        """Check if using Stripe test mode."""
        return self.stripe_secret_key.startswith("sk_test_")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
