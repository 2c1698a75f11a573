"""
Configuration Management for Cashboard

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Which ledger store backend to use."""

    model_config = SettingsConfigDict(
        env_prefix="CASHBOARD_LEDGER_",
        extra="ignore"
    )

    backend: Literal["memory", "google_sheets"] = Field(
        default="memory",
        description="Ledger store backend"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets ledger configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # One worksheet per ledger table
    accounts_sheet_name: str = Field(default="Accounts")
    goals_sheet_name: str = Field(default="Goals")
    transactions_sheet_name: str = Field(default="Transactions")
    categories_sheet_name: str = Field(default="Categories")
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class RuleStoreSettings(BaseSettings):
    """
    Local rule store configuration.

    Rules are user configuration, not financial fact, so they live in a
    local key-value slot rather than in the ledger.
    """

    model_config = SettingsConfigDict(
        env_prefix="CASHBOARD_RULES_",
        extra="ignore"
    )

    storage_dir: str = Field(
        default=".cashboard",
        description="Directory holding the per-user rule files"
    )
    storage_key: str = Field(
        default="cashboard_auto_rules",
        description="Key of the rule slot (suffixed with the user id)"
    )


class ExecutionSettings(BaseSettings):
    """Rule execution and persistence hardening."""

    model_config = SettingsConfigDict(
        env_prefix="CASHBOARD_EXECUTION_",
        extra="ignore"
    )

    # Retry policy around every ledger write
    persist_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per ledger call before giving up"
    )
    persist_backoff_multiplier: float = Field(default=1.0, ge=0.0)
    persist_backoff_min_seconds: float = Field(default=0.5, ge=0.0)
    persist_backoff_max_seconds: float = Field(default=5.0, ge=0.0)
    persist_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="Timeout for a single ledger call attempt"
    )

    historical_window_days: int = Field(
        default=30,
        ge=1,
        description="Trailing window scanned by a manual rule run"
    )
    currency_symbol: str = Field(
        default="€",
        description="Currency symbol used in generated descriptions"
    )

    @model_validator(mode='after')
    def validate_backoff(self) -> 'ExecutionSettings':
        if self.persist_backoff_max_seconds < self.persist_backoff_min_seconds:
            raise ValueError("Backoff max cannot be below backoff min")
        return self


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
    default_user_id: str = Field(
        default="local",
        description="User id used when the session does not provide one"
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

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def rule_store(self) -> RuleStoreSettings:
        return RuleStoreSettings()

    @property
    def execution(self) -> ExecutionSettings:
        return ExecutionSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    sections = {
        "ledger": lambda: settings.ledger,
        "google_sheets": lambda: settings.google_sheets,
        "rule_store": lambda: settings.rule_store,
        "execution": lambda: settings.execution,
        "app": lambda: settings.app,
    }

    for name, load in sections.items():
        try:
            load()
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
