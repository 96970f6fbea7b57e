"""
Configuration Management for the Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

All configuration is centralized here: ledger limits, the storage backend
and its credentials, and application-level switches.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Limits applied when expanding transaction intents."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    max_recurrence_occurrences: int = Field(
        default=12,
        ge=1,
        le=120,
        description="Occurrences generated for a recurring intent"
    )
    max_installments: int = Field(
        default=48,
        ge=2,
        le=480,
        description="Largest installment count accepted"
    )
    large_amount_warning: float = Field(
        default=1000000.0,
        gt=0,
        description="Amounts above this get a non-blocking warning"
    )
    currency: str = Field(
        default="BRL",
        min_length=3,
        max_length=3,
        description="ISO currency code used in messages"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

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

    # Sheet names within the spreadsheet
    entries_sheet_name: str = "Entries"
    accounts_sheet_name: str = "Accounts"
    categories_sheet_name: str = "Categories"
    credit_cards_sheet_name: str = "CreditCards"
    audit_sheet_name: str = "AuditLog"

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

    def sheet_name_for(self, table: str) -> str:
        """Map a logical table name ('entries', 'accounts', ...) to its sheet."""
        return getattr(self, f"{table}_sheet_name")


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

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = False
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$"
    )
    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|google_sheets)$",
        description="Which storage implementation to use"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access. Sub-settings are built on
    access so a missing Google Sheets configuration does not stop the
    in-memory backend from working.
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
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

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

    Returns a dict of {setting_name: is_valid}, plus `<name>_error`
    entries describing failures. Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("ledger", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
