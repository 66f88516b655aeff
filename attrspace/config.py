"""
Configuration system for the AttributeSpace notification service.

This module provides configuration management with support for:
- Environment variables
- .env file
- Code-level configuration (BusConfig passed straight to NotificationBus)

Configuration priority (highest to lowest):
1. Environment variables (CLI or shell)
2. .env file
3. Defaults
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BusConfig(BaseModel):
    """
    Construction options for a NotificationBus.

    Attributes:
        enable_batching: Coalesce events sharing a batch key inside a window
        batch_delay: Batch window length in milliseconds
        max_loop_detection: Nesting depth past which re-entrant events are dropped
        enable_logging: Emit the bus's informational log messages
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    enable_batching: bool = True
    batch_delay: float = Field(default=50, ge=0)
    max_loop_detection: int = Field(default=10, ge=1)
    enable_logging: bool = True

    @property
    def batch_delay_seconds(self) -> float:
        """Batch window in seconds, as asyncio expects it."""
        return self.batch_delay / 1000.0


class Settings(BaseSettings):
    """
    Application configuration with environment variable support.

    All settings can be configured via environment variables with the same name.
    Example:
        BUS_BATCH_DELAY_MS=30 uvicorn attrspace.api.main:app
        LOG_JSON_FORMAT=true python run_api.py
    """

    # ============================================================
    # Server Configuration
    # ============================================================

    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ============================================================
    # Notification Bus
    # ============================================================

    # Batching is on by default; UI-facing deployments usually shorten the window
    BUS_ENABLE_BATCHING: bool = True
    BUS_BATCH_DELAY_MS: float = 50
    BUS_MAX_LOOP_DETECTION: int = 10
    BUS_ENABLE_LOGGING: bool = True

    # ============================================================
    # Transport
    # ============================================================

    # Messages waiting for WebSocket delivery; overflow is dropped and counted
    BROADCAST_QUEUE_SIZE: int = 1000

    # ============================================================
    # Monitors
    # ============================================================

    # Attribute names matching this glob are written to the audit log
    AUDIT_ATTRIBUTE_PATTERN: str = "*password*"

    # Batches folding more events than this are reported as heavy
    HEAVY_BATCH_THRESHOLD: int = 5

    # ============================================================
    # Logging
    # ============================================================

    LOG_LEVEL: str = "INFO"

    # Use JSON structured logging (better for production)
    LOG_JSON_FORMAT: bool = False  # Disabled by default for readability

    # ============================================================
    # Development/Debug
    # ============================================================

    DEBUG: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    def bus_config(self) -> BusConfig:
        """Build the NotificationBus options from these settings."""
        return BusConfig(
            enable_batching=self.BUS_ENABLE_BATCHING,
            batch_delay=self.BUS_BATCH_DELAY_MS,
            max_loop_detection=self.BUS_MAX_LOOP_DETECTION,
            enable_logging=self.BUS_ENABLE_LOGGING,
        )


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """
    Dependency injection function for FastAPI.

    Returns:
        Global settings instance.
    """
    return settings
