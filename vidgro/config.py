"""
Application Configuration - Pydantic Settings for type-safe config.

FAIL FAST - Critical config is validated at startup.
Economy constants live here so every caller quotes the same numbers.
"""

import sys
from decimal import Decimal
from enum import Enum

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


# Promotion bounds enforced by CHECK constraints on the promotions table.
# The configurable bounds may narrow these but never widen them.
STORAGE_MIN_DURATION_SECONDS = 10
STORAGE_MAX_DURATION_SECONDS = 600
STORAGE_MIN_TARGET_VIEWS = 1
STORAGE_MAX_TARGET_VIEWS = 1000


class QueueOrdering(str, Enum):
    """Ordering policy applied to eligible promotions."""

    RECENT = "recent"
    FAIR = "fair"


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
    api_title: str = "VidGro Ledger API"
    api_version: str = "0.1.0"
    api_description: str = "Coin ledger and promotion queue for VidGro"

    # Authentication - tokens are issued by the auth provider (HS256, sub = account id)
    jwt_secret: str = ""
    jwt_audience: str = "authenticated"
    jwt_algorithm: str = "HS256"

    # Service-to-service key for payment/VIP provider and schedulers
    service_api_key: str = ""

    # CORS
    cors_origins: str = "*"  # Comma-separated

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "vidgro-ledger"
    trace_sample_rate: float = 1.0  # 1.0 = 100% sampling

    # Economy
    starting_balance: int = 100
    referrer_bonus: int = 50
    referee_bonus: int = 25
    hold_minutes: int = 10
    refund_after_hold_percent: int = 80
    vip_discount_percent: int = 10
    cost_rate_per_100_view_seconds: Decimal = Decimal("2.5")
    completion_percent: int = 80

    # Promotion bounds
    min_duration_seconds: int = STORAGE_MIN_DURATION_SECONDS
    max_duration_seconds: int = STORAGE_MAX_DURATION_SECONDS
    min_target_views: int = STORAGE_MIN_TARGET_VIEWS
    max_target_views: int = STORAGE_MAX_TARGET_VIEWS

    # Queue
    queue_ordering: QueueOrdering = QueueOrdering.RECENT
    queue_batch_size: int = 10

    # Realtime - committed row changes arrive via LISTEN/NOTIFY
    realtime_enabled: bool = True
    realtime_queue_size: int = 100
    realtime_reconnect_seconds: float = 5.0

    # Video metadata resolver
    oembed_url: str = "https://www.youtube.com/oembed"
    oembed_timeout_seconds: float = 10.0
    thumbnail_url_template: str = "https://img.youtube.com/vi/{video_id}/hqdefault.jpg"

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

        if not 0 <= self.refund_after_hold_percent <= 100:
            errors.append("REFUND_AFTER_HOLD_PERCENT must be between 0 and 100")
        if not 0 <= self.vip_discount_percent <= 100:
            errors.append("VIP_DISCOUNT_PERCENT must be between 0 and 100")
        if not 0 < self.completion_percent <= 100:
            errors.append("COMPLETION_PERCENT must be between 1 and 100")
        if self.min_duration_seconds > self.max_duration_seconds:
            errors.append("MIN_DURATION_SECONDS exceeds MAX_DURATION_SECONDS")
        if self.min_target_views < 1 or self.min_target_views > self.max_target_views:
            errors.append("Target view bounds are invalid")
        if not (
            STORAGE_MIN_DURATION_SECONDS
            <= self.min_duration_seconds
            <= self.max_duration_seconds
            <= STORAGE_MAX_DURATION_SECONDS
        ):
            errors.append(
                f"Duration bounds must lie within {STORAGE_MIN_DURATION_SECONDS}-"
                f"{STORAGE_MAX_DURATION_SECONDS} seconds (database constraint)"
            )
        if not (
            STORAGE_MIN_TARGET_VIEWS
            <= self.min_target_views
            <= self.max_target_views
            <= STORAGE_MAX_TARGET_VIEWS
        ):
            errors.append(
                f"Target view bounds must lie within {STORAGE_MIN_TARGET_VIEWS}-"
                f"{STORAGE_MAX_TARGET_VIEWS} (database constraint)"
            )
        if self.realtime_queue_size < 1:
            errors.append("REALTIME_QUEUE_SIZE must be at least 1")

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

    @property
    def allowed_origins(self) -> list[str]:
        """CORS origins as a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
