"""
Configuration Management for Ledger Sync

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from datetime import date
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BudgetConfig(BaseModel):
    """One ledger (budget) known to the sync."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: str = Field(..., min_length=1, description="Budget id at the ledger service")
    name: str = Field(..., min_length=1, description="Display name")
    currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="ISO currency code of the budget"
    )

    @field_validator('currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()


class YnabSettings(BaseSettings):
    """YNAB API configuration."""

    model_config = SettingsConfigDict(
        env_prefix="YNAB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    token: str = Field(
        ...,
        description="YNAB personal access token"
    )
    base_url: str = Field(
        default="https://api.ynab.com/v1",
        description="YNAB API base URL"
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Per-request timeout"
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per request on transient failures"
    )
    retry_backoff_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Multiplier for exponential backoff between attempts"
    )


class DatabaseSettings(BaseSettings):
    """Mapping store database configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite+aiosqlite:///./ledgersync.db",
        description="SQLAlchemy async database URL"
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements (debugging)"
    )


class SyncSettings(BaseSettings):
    """Reconciliation behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    personal_budget: BudgetConfig = Field(
        ...,
        description="The personal ledger (JSON: {id, name, currency})"
    )
    company_budgets: list[BudgetConfig] = Field(
        default_factory=list,
        description="Organization ledgers (JSON list of {id, name, currency})"
    )
    start_date: date = Field(
        default=date(2026, 1, 1),
        description="Earliest transaction date fetched when a stream has no watermark"
    )
    interval_minutes: int = Field(
        default=5,
        ge=1,
        description="Polling interval for the loop runner"
    )

    # Mirror tagging
    loan_tag_prefix: str = Field(
        default="LOAN",
        min_length=1,
        max_length=8,
        description="Tag namespace for personal/organization mirrors"
    )
    company_tag_prefix: str = Field(
        default="LINK",
        min_length=1,
        max_length=8,
        description="Tag namespace for organization/organization mirrors"
    )
    tag_max_length: int = Field(
        default=36,
        ge=20,
        description="Identifier length limit of the target ledger"
    )
    mirror_memo: str = Field(
        default="Loan Sync",
        description="Memo for mirrors whose source has no memo"
    )
    memo_suffix: str = Field(
        default=" | Sync",
        description="Appended to the source memo on mirrors"
    )

    # Deduplication
    dedup_enabled: bool = Field(
        default=True,
        description="Match genuine transfers before creating mirrors"
    )
    dedup_max_days: int = Field(
        default=2,
        ge=0,
        le=31,
        description="Maximum date distance for a transfer match"
    )
    dedup_amount_tolerance: Decimal = Field(
        default=Decimal("0.02"),
        ge=0,
        le=Decimal("0.5"),
        description="Relative amount slack for a transfer match"
    )
    dedup_min_amount_tolerance: int = Field(
        default=10,
        ge=0,
        description="Absolute amount slack floor in milliunits"
    )

    @property
    def all_budgets(self) -> list[BudgetConfig]:
        return [self.personal_budget, *self.company_budgets]

    @property
    def mirror_tag_prefixes(self) -> tuple[str, ...]:
        return (self.loan_tag_prefix, self.company_tag_prefix)

    def budget(self, budget_id: str) -> Optional[BudgetConfig]:
        """Find a configured budget by id."""
        for budget in self.all_budgets:
            if budget.id == budget_id:
                return budget
        return None


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
    log_level: str = Field(
        default="INFO",
        description="Log level for the structured log"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def ynab(self) -> YnabSettings:
        return YnabSettings()

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

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

    for name in ("ynab", "database", "sync", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
