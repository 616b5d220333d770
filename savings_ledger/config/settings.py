"""
Configuration Management for the Savings Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Ledger policy (overfunding, compensation retries) and storage choice
are validated once at startup instead of being scattered as constants.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Behavioral policy of the contribution engine and lifecycle manager."""

    model_config = SettingsConfigDict(
        env_prefix="SAVINGS_LEDGER_",
        extra="ignore"
    )

    # What to do when a contribution would push a goal past its target.
    # "allow" keeps accumulating, "reject" refuses, "cap" trims the amount.
    overfunding_policy: Literal["allow", "reject", "cap"] = Field(
        default="allow",
        description="Handling of contributions beyond the goal target"
    )

    # Compensation (undo) retries after a mid-sequence write failure
    compensation_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per undo step before giving up"
    )
    compensation_wait_min_seconds: float = Field(
        default=0.5,
        ge=0.0,
        description="Minimum backoff between undo attempts"
    )
    compensation_wait_max_seconds: float = Field(
        default=4.0,
        ge=0.0,
        description="Maximum backoff between undo attempts"
    )

    # Statistics
    upcoming_goal_window_months: int = Field(
        default=3,
        ge=1,
        le=24,
        description="Goals due within this many months count as upcoming"
    )
    upcoming_goal_limit: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Maximum number of upcoming goals reported"
    )

    @model_validator(mode="after")
    def validate_wait_bounds(self) -> "LedgerSettings":
        """Backoff bounds must be ordered."""
        if self.compensation_wait_max_seconds < self.compensation_wait_min_seconds:
            raise ValueError("compensation_wait_max_seconds must be >= compensation_wait_min_seconds")
        return self


class StorageSettings(BaseSettings):
    """Record store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SAVINGS_STORAGE_",
        extra="ignore"
    )

    backend: Literal["memory", "sqlite"] = Field(
        default="sqlite",
        description="Record store backend"
    )
    sqlite_path: Path = Field(
        default=Path.home() / ".savings_ledger" / "ledger.db",
        description="Location of the SQLite database file"
    )
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for a locked SQLite database"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid} plus an
    "<name>_error" entry for each invalid section.
    """
    results = {}

    settings = get_settings()

    sections = {
        "ledger": lambda: settings.ledger,
        "storage": lambda: settings.storage,
        "app": lambda: settings.app,
    }
    for name, load in sections.items():
        try:
            load()
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
