"""Configuration loading for the fiscal registration engine.

This module provides centralized configuration management:
- Load settings from environment variables and .env files
- Validate configuration using pydantic
- Provide typed access to all settings
"""

from typing import Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment.

    Uses pydantic-settings for environment variable handling with
    .env file support via python-dotenv.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Authority transport configuration
    authority_url: str = Field(
        default="http://localhost:8080",
        description="Base URL of the tax authority registration API",
    )
    authority_api_key: str = Field(
        default="",
        description="API key sent as bearer token to the authority",
    )
    transport_timeout_seconds: float = Field(
        default=10.0,
        description="Upper bound for one online registration round trip",
    )

    # Offline store configuration
    store_sqlite_path: str = Field(
        default="./data/offline.db",
        description="SQLite database file path for deferred submissions",
    )

    # Resync configuration
    resync_poll_interval_seconds: float = Field(
        default=30.0,
        description="Interval between scans of the offline store",
    )
    backoff_base_seconds: float = Field(
        default=1.0,
        description="Retry delay after the first failed reconciliation",
    )
    backoff_max_seconds: float = Field(
        default=300.0,
        description="Upper bound for a single retry delay",
    )
    backoff_jitter_ratio: float = Field(
        default=0.2,
        description="Fraction of the raw delay added as jitter, in [0, 1)",
    )
    shutdown_grace_seconds: float = Field(
        default=5.0,
        description="Time in-flight reconciliations get to finish on shutdown",
    )

    # VAT percentages reported with each receipt line
    vat_standard_percent: float = Field(
        default=23.0,
        description="Standard VAT rate in percent",
    )
    vat_reduced_percent: float = Field(
        default=5.0,
        description="Reduced VAT rate in percent",
    )

    # Notification configuration
    notification_backend: Literal["stdout", "none"] = Field(
        default="stdout",
        description="Where reconciliation outcomes are reported",
    )

    # Logging configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Log level",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log format",
    )

    # Run mode
    run_mode: Literal["daemon", "cli"] = Field(
        default="daemon",
        description="Run mode",
    )

    # Development
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging",
    )

    @field_validator(
        "transport_timeout_seconds",
        "resync_poll_interval_seconds",
        "backoff_base_seconds",
        "shutdown_grace_seconds",
    )
    @classmethod
    def validate_positive(cls, v: float, info: ValidationInfo) -> float:
        """Ensure intervals and timeouts are positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return v

    @field_validator("backoff_max_seconds")
    @classmethod
    def validate_backoff_max(cls, v: float, info: ValidationInfo) -> float:
        """Ensure the delay cap is not below the base delay."""
        base = info.data.get("backoff_base_seconds")
        if base is not None and v < base:
            raise ValueError("backoff_max_seconds must be >= backoff_base_seconds")
        return v

    @field_validator("backoff_jitter_ratio")
    @classmethod
    def validate_jitter_ratio(cls, v: float) -> float:
        """Ensure jitter keeps delays strictly increasing."""
        if not 0 <= v < 1:
            raise ValueError("backoff_jitter_ratio must be in [0, 1)")
        return v

    @field_validator("vat_standard_percent", "vat_reduced_percent")
    @classmethod
    def validate_vat_percent(cls, v: float, info: ValidationInfo) -> float:
        """Ensure VAT percentages are within 0-100."""
        if not 0 <= v <= 100:
            raise ValueError(f"{info.field_name} must be between 0 and 100")
        return v


def load_settings(env_file: str | None = None) -> Settings:
    """Load application settings from environment.

    Args:
        env_file: Optional path to .env file. If not provided,
                 uses the default .env in the current directory.

    Returns:
        Validated Settings instance.

    Raises:
        ValidationError: If settings validation fails.
    """
    if env_file:
        return Settings(_env_file=env_file)  # type: ignore[call-arg]
    return Settings()


__all__ = ["Settings", "load_settings"]
