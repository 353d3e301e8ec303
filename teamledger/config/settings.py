"""
Configuration Management for Team Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All policy constants live here.
Matching thresholds, windows and tolerances are business policy, not code,
so they are exposed as configuration with conservative defaults.
"""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ReconciliationSettings(BaseSettings):
    """Inbox reconciliation policy."""

    model_config = SettingsConfigDict(
        env_prefix="RECONCILIATION_",
        extra="ignore"
    )

    auto_confirm_threshold: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="Score above which a match is confirmed without review (T_auto)"
    )
    review_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Score above which a match is surfaced for review (T_review)"
    )
    date_window_days: int = Field(
        default=3,
        ge=0,
        le=90,
        description="Candidate transactions must be within +/- this many days"
    )
    amount_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        ge=0,
        description="Absolute amount tolerance for same-currency candidates"
    )
    cross_currency_tolerance_pct: Decimal = Field(
        default=Decimal("0.02"),
        ge=0,
        le=1,
        description="Relative tolerance for candidates compared through base amounts"
    )
    fx_staleness_widening_per_day: Decimal = Field(
        default=Decimal("0.1"),
        ge=0,
        description="Tolerance multiplier added per day of exchange-rate staleness"
    )
    score_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Timeout for one similarity provider call"
    )
    max_concurrent_scoring: int = Field(
        default=8,
        ge=1,
        le=64,
        description="Maximum in-flight similarity calls per analysis"
    )
    max_suggestions: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Maximum suggestion rows kept per inbox item"
    )

    @model_validator(mode='after')
    def validate_thresholds(self) -> 'ReconciliationSettings':
        """Review threshold must sit below the auto-confirm threshold."""
        if self.review_threshold >= self.auto_confirm_threshold:
            raise ValueError("review_threshold must be lower than auto_confirm_threshold")
        return self


class LedgerSettings(BaseSettings):
    """Ledger ingestion configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    supported_currencies: str = Field(
        default="USD,EUR,GBP,JPY,AUD,CAD,CHF,CNY,SEK,NZD",
        description="Comma-separated ISO 4217 codes accepted at ingestion"
    )
    default_base_currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="Base currency for teams created without one"
    )

    @field_validator('default_base_currency')
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    @property
    def supported_currencies_set(self) -> frozenset[str]:
        """Get supported currencies as a set."""
        return frozenset(
            code.strip().upper()
            for code in self.supported_currencies.split(",")
            if code.strip()
        )


class InvoiceSettings(BaseSettings):
    """Invoice numbering configuration."""

    model_config = SettingsConfigDict(
        env_prefix="INVOICE_",
        extra="ignore"
    )

    number_prefix: str = Field(
        default="INV-",
        max_length=20,
        description="Prefix of rendered invoice numbers"
    )
    number_padding: int = Field(
        default=4,
        ge=1,
        le=12,
        description="Zero padding of the numeric part"
    )
    sequence_retry_attempts: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Attempts for sequence allocation (first try + retries)"
    )


class NotificationSettings(BaseSettings):
    """Notification fan-out configuration."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATION_",
        extra="ignore"
    )

    delivery_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Delivery attempts before parking an activity in the outbox"
    )
    delivery_backoff_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Initial exponential backoff between delivery attempts"
    )
    outbox_limit: int = Field(
        default=1000,
        ge=1,
        description="Most activities kept waiting for delivery; the oldest is dropped past it"
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
        description="Log level for structured logs"
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
    def reconciliation(self) -> ReconciliationSettings:
        return ReconciliationSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def invoice(self) -> InvoiceSettings:
        return InvoiceSettings()

    @property
    def notification(self) -> NotificationSettings:
        return NotificationSettings()

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

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("reconciliation", "ledger", "invoice", "notification", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
