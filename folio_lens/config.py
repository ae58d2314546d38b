"""
Configuration module using Pydantic Settings.

Provides validated, type-safe configuration from environment variables
(and an optional .env file). API keys are SecretStr so they never end up
in logs or reprs; read them through the get_*_api_key() accessors.

Only configuration lives at module level. Services (quota tracker, cache,
aggregator) are built explicitly from a Settings instance, see
folio_lens.services.build_services().
"""

import logging
import sys
from pathlib import Path

import structlog
from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Logging Setup (must happen before Settings to capture validation errors) ---
logging.basicConfig(
    format="%(asctime)s [%(levelname)-8s] %(message)s",
    stream=sys.stderr,
    level=logging.INFO,
    force=True,
)

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.KeyValueRenderer(
            key_order=["timestamp", "level", "event"]
        ),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

KNOWN_PROVIDERS = ("alphavantage", "tiingo", "yfinance")


class Settings(BaseSettings):
    """
    Configuration for the portfolio enrichment service.

    Quota limits of 0 mean "no limit for that window".
    """

    # --- Provider API Keys (SecretStr prevents accidental logging) ---
    alpha_vantage_api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="ALPHAVANTAGE_API_KEY",
        description="Alpha Vantage API key (primary fundamentals provider)",
    )
    tiingo_api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="TIINGO_API_KEY",
        description="Tiingo API key (secondary fundamentals provider)",
    )

    # --- Brokerage ---
    trading212_api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="TRADING212_API_KEY",
        description="Trading212 API key",
    )
    trading212_api_secret: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="TRADING212_API_SECRET",
        description="Trading212 API secret",
    )
    trading212_base_url: str = Field(
        default="https://live.trading212.com/api/v0",
        validation_alias="TRADING212_BASE_URL",
        description="Trading212 REST base URL (use the demo host for paper accounts)",
    )
    positions_cache_seconds: float = Field(
        default=5.0,
        ge=0.0,
        validation_alias="POSITIONS_CACHE_SECONDS",
        description="How long a positions response is reused",
    )
    account_cache_seconds: float = Field(
        default=2.0,
        ge=0.0,
        validation_alias="ACCOUNT_CACHE_SECONDS",
        description="How long an account summary response is reused",
    )

    # --- Provider Quotas ---
    # Alpha Vantage free tier: 5/min, 25/day
    alphavantage_rpm: int = Field(default=5, ge=0, validation_alias="ALPHAVANTAGE_RPM")
    alphavantage_rph: int = Field(default=0, ge=0, validation_alias="ALPHAVANTAGE_RPH")
    alphavantage_rpd: int = Field(default=25, ge=0, validation_alias="ALPHAVANTAGE_RPD")
    # Tiingo free tier: 50/hour, 1000/day
    tiingo_rpm: int = Field(default=0, ge=0, validation_alias="TIINGO_RPM")
    tiingo_rph: int = Field(default=50, ge=0, validation_alias="TIINGO_RPH")
    tiingo_rpd: int = Field(default=1000, ge=0, validation_alias="TIINGO_RPD")
    # Yahoo has no published quota; stay well below what gets an IP throttled
    yfinance_rpm: int = Field(default=30, ge=0, validation_alias="YFINANCE_RPM")
    yfinance_rph: int = Field(default=500, ge=0, validation_alias="YFINANCE_RPH")
    yfinance_rpd: int = Field(default=2000, ge=0, validation_alias="YFINANCE_RPD")

    provider_priority: str = Field(
        default=",".join(KNOWN_PROVIDERS),
        validation_alias="PROVIDER_PRIORITY",
        description="Provider ids in fixed priority order (comma-separated)",
    )
    enable_yfinance_provider: bool = Field(
        default=True,
        validation_alias="ENABLE_YFINANCE_PROVIDER",
        description="Use keyless yfinance as the last-resort provider",
    )

    # --- Cache ---
    fundamentals_cache_ttl_hours: float = Field(
        default=24.0,
        gt=0.0,
        validation_alias="FUNDAMENTALS_CACHE_TTL_HOURS",
    )
    fundamentals_cache_path: Path | None = Field(
        default=None,
        validation_alias="FUNDAMENTALS_CACHE_PATH",
        description="JSON file backing the fundamentals cache (unset = in-memory)",
    )
    stale_retention_days: float = Field(
        default=7.0,
        ge=0.0,
        validation_alias="STALE_RETENTION_DAYS",
        description="How long expired entries remain usable as stale fallback data",
    )

    # --- HTTP / Concurrency ---
    http_timeout_seconds: float = Field(
        default=15.0,
        gt=0.0,
        validation_alias="HTTP_TIMEOUT_SECONDS",
    )
    max_concurrent_lookups: int = Field(
        default=4,
        ge=1,
        validation_alias="MAX_CONCURRENT_LOOKUPS",
    )

    # --- Fallback ---
    fallback_max_attempts: int = Field(
        default=3,
        ge=1,
        validation_alias="FALLBACK_MAX_ATTEMPTS",
    )
    fallback_retry_base_seconds: float = Field(
        default=1.0,
        ge=0.0,
        validation_alias="FALLBACK_RETRY_BASE_SECONDS",
    )
    allow_demo_data: bool = Field(
        default=False,
        validation_alias="ALLOW_DEMO_DATA",
        description="Serve synthetic fundamentals when providers and cache are exhausted",
    )

    # --- Logging / Environment ---
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    environment: str = Field(
        default="dev",
        validation_alias="ENVIRONMENT",
        description="Environment (dev, prod, test)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        # CLI flags (--demo) flip settings after load
        frozen=False,
        populate_by_name=True,
    )

    @field_validator("fundamentals_cache_path", mode="before")
    @classmethod
    def empty_path_is_none(cls, value):
        if value in ("", None):
            return None
        return value

    @model_validator(mode="after")
    def setup_environment(self) -> "Settings":
        """Validate provider ids and apply the log level."""
        priority = self.priority_order()
        unknown = [p for p in priority if p not in KNOWN_PROVIDERS]
        if unknown:
            raise ValueError(
                f"Unknown provider(s) in PROVIDER_PRIORITY: {', '.join(unknown)}"
            )
        if len(set(priority)) != len(priority):
            raise ValueError("PROVIDER_PRIORITY lists a provider more than once")

        log_level_value = getattr(logging, self.log_level.upper(), logging.INFO)
        logging.getLogger().setLevel(log_level_value)
        return self

    def get_alpha_vantage_api_key(self) -> str:
        """Get Alpha Vantage API key securely from SecretStr field."""
        return self.alpha_vantage_api_key.get_secret_value()

    def get_tiingo_api_key(self) -> str:
        """Get Tiingo API key securely from SecretStr field."""
        return self.tiingo_api_key.get_secret_value()

    def get_trading212_api_key(self) -> str:
        return self.trading212_api_key.get_secret_value()

    def get_trading212_api_secret(self) -> str:
        return self.trading212_api_secret.get_secret_value()

    def priority_order(self) -> list[str]:
        """PROVIDER_PRIORITY as a list of lower-cased provider ids."""
        return [
            part.strip().lower()
            for part in self.provider_priority.split(",")
            if part.strip()
        ]

    def quota_limits(self, provider_id: str) -> dict[str, int]:
        """Per-window limits for a provider as {minute, hour, day}."""
        return {
            "minute": getattr(self, f"{provider_id}_rpm"),
            "hour": getattr(self, f"{provider_id}_rph"),
            "day": getattr(self, f"{provider_id}_rpd"),
        }

    def enabled_providers(self) -> list[str]:
        """Provider ids in priority order, honouring feature flags."""
        return [
            p
            for p in self.priority_order()
            if p != "yfinance" or self.enable_yfinance_provider
        ]


def validate_environment_variables(settings: Settings) -> list[str]:
    """
    Log which optional integrations are configured.

    Returns the list of missing keys. Nothing here is fatal: a missing
    provider key only removes that provider from the fallback chain.
    """
    checks = [
        ("ALPHAVANTAGE_API_KEY", settings.get_alpha_vantage_api_key),
        ("TIINGO_API_KEY", settings.get_tiingo_api_key),
        ("TRADING212_API_KEY", settings.get_trading212_api_key),
    ]
    missing = [name for name, getter in checks if not getter()]
    for name in missing:
        logger.warning("api_key_missing", variable=name)
    if not missing:
        logger.info("environment_validated")
    return missing


# --- Module-level Settings Instance ---
# Instantiated at import time, triggers validation
config = Settings()
