"""
Configuration system for the CDC metric stream.

This module provides configuration management with support for:
- Environment variables
- .env file
- Sensible defaults for a single-process deployment

Configuration priority (highest to lowest):
1. Environment variables (CLI or shell)
2. .env file
3. Defaults
"""

from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application configuration with environment variable support.

    All settings can be configured via environment variables with the same name.
    Example:
        HUB_SUBSCRIBER_QUEUE_SIZE=64 python run_api.py
        CDC_SOURCE_PATH=/var/lib/cdc/changes.ndjson uvicorn app.api.main:app
    """

    # ============================================================
    # Server Configuration
    # ============================================================

    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ============================================================
    # Logging Configuration
    # ============================================================

    # Enable structured JSON logging (useful for production log aggregators)
    # If False, uses standard formatted logs (better for development)
    LOG_JSON_FORMAT: bool = False

    # Logging level
    LOG_LEVEL: str = "INFO"

    # ============================================================
    # Dispatcher Configuration
    # ============================================================

    # Origin tables, matched exactly against the change record's table name
    AUTHENTICATOR_METRICS_TABLE: str = "user_metrics"
    ONLINE_SESSIONS_TABLE: str = "user_online"

    # ============================================================
    # Broadcast Hub Configuration
    # ============================================================

    # Per-subscriber delivery queue
    HUB_SUBSCRIBER_QUEUE_SIZE: int = 256

    # Events held on a lagging subscriber's behalf once its queue is full.
    # Beyond this, new events are dropped for that subscriber only.
    HUB_OVERFLOW_CAPACITY: int = 1024

    # ============================================================
    # Aggregation Configuration
    # ============================================================

    # Default processing-time window for authenticator metric summaries
    AGGREGATION_WINDOW_SECONDS: float = 10.0

    # Default interval between online user snapshots
    ONLINE_USER_INTERVAL_SECONDS: float = 10.0

    # Sessions that started longer ago than this count as stale
    ONLINE_USER_STALE_AFTER_DAYS: int = 7

    # ============================================================
    # Change Record Source
    # ============================================================

    # NDJSON file of Debezium change events. None = idle in-memory source.
    CDC_SOURCE_PATH: Optional[str] = None

    # Keep reading as the file grows instead of ending at EOF
    CDC_SOURCE_FOLLOW: bool = False

    # Poll interval while following the file
    CDC_SOURCE_POLL_SECONDS: float = 0.5

    # Upper bound for a clean source shutdown
    SOURCE_STOP_TIMEOUT_SECONDS: float = 5.0

    # ============================================================
    # Development/Debug
    # ============================================================

    DEBUG: bool = False

    # Enable API documentation endpoints (/docs, /redoc)
    ENABLE_DOCS: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Allow extra fields for forward compatibility
    )

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        """Reject sizes and durations that would stall the pipeline."""
        if self.HUB_SUBSCRIBER_QUEUE_SIZE < 1:
            raise ValueError("HUB_SUBSCRIBER_QUEUE_SIZE must be at least 1")
        if self.HUB_OVERFLOW_CAPACITY < 0:
            raise ValueError("HUB_OVERFLOW_CAPACITY cannot be negative")
        if self.AGGREGATION_WINDOW_SECONDS <= 0:
            raise ValueError("AGGREGATION_WINDOW_SECONDS must be positive")
        if self.ONLINE_USER_INTERVAL_SECONDS <= 0:
            raise ValueError("ONLINE_USER_INTERVAL_SECONDS must be positive")
        if self.ONLINE_USER_STALE_AFTER_DAYS < 1:
            raise ValueError("ONLINE_USER_STALE_AFTER_DAYS must be at least 1")
        if self.SOURCE_STOP_TIMEOUT_SECONDS <= 0:
            raise ValueError("SOURCE_STOP_TIMEOUT_SECONDS must be positive")
        if self.AUTHENTICATOR_METRICS_TABLE == self.ONLINE_SESSIONS_TABLE:
            raise ValueError(
                "AUTHENTICATOR_METRICS_TABLE and ONLINE_SESSIONS_TABLE must differ"
            )
        return self


# Global settings instance
# This is initialized once at startup and shared across the application
settings = Settings()


def get_settings() -> Settings:
    """
    Dependency injection function for FastAPI.

    Returns:
        Global settings instance.
    """
    return settings


def print_config_summary() -> None:
    """
    Print configuration summary for startup logging.

    This helps users verify their configuration is correct.
    """
    print("\n" + "="*60)
    print("CDC Metric Stream - Configuration Summary")
    print("="*60)

    print(f"\nServer:")
    print(f"   Host: {settings.HOST}")
    print(f"   Port: {settings.PORT}")
    print(f"   Debug Mode: {settings.DEBUG}")

    print(f"\nDispatcher:")
    print(f"   Authenticator metrics table: {settings.AUTHENTICATOR_METRICS_TABLE}")
    print(f"   Online sessions table: {settings.ONLINE_SESSIONS_TABLE}")

    print(f"\nBroadcast Hub:")
    print(f"   Subscriber queue size: {settings.HUB_SUBSCRIBER_QUEUE_SIZE}")
    print(f"   Overflow capacity: {settings.HUB_OVERFLOW_CAPACITY}")

    print(f"\nAggregation:")
    print(f"   Window: {settings.AGGREGATION_WINDOW_SECONDS}s")
    print(f"   Online user interval: {settings.ONLINE_USER_INTERVAL_SECONDS}s")
    print(f"   Stale session threshold: {settings.ONLINE_USER_STALE_AFTER_DAYS} days")

    print(f"\nSource:")
    if settings.CDC_SOURCE_PATH:
        print(f"   NDJSON file: {settings.CDC_SOURCE_PATH}")
        print(f"   Follow: {'ENABLED' if settings.CDC_SOURCE_FOLLOW else 'DISABLED'}")
    else:
        print(f"   In-memory (idle, set CDC_SOURCE_PATH to read a change log)")

    print(f"\nLogging:")
    print(f"   Level: {settings.LOG_LEVEL}")
    print(f"   Format: {'JSON' if settings.LOG_JSON_FORMAT else 'TEXT'}")

    print("\n" + "="*60 + "\n")


if __name__ == "__main__":
    # Allow running this file directly to view current configuration
    print_config_summary()
