"""Configuration management for the portfolio allocation engine."""

import os
from decimal import Decimal, InvalidOperation
from typing import Optional

import pytz
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

# Load environment variables from .env file
load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "")
    return int(value) if value and value.strip() else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name, "")
    return float(value) if value and value.strip() else default


def _env_decimal(name: str, default: str) -> Decimal:
    value = os.getenv(name, "")
    try:
        return Decimal(value.strip()) if value and value.strip() else Decimal(default)
    except InvalidOperation:
        raise ValueError(f"{name} must be a number, got {value!r}")


class AllocationConfig(BaseModel):
    """Default allocation constraints."""

    max_allocation_per_stock: Decimal = Field(default=Decimal("20"), description="Max percent of total investment per stock")
    min_allocation_amount: Decimal = Field(default=Decimal("100"), description="Minimum currency amount per stock")

    @field_validator("max_allocation_per_stock")
    @classmethod
    def validate_max_allocation(cls, v: Decimal) -> Decimal:
        """Validate max allocation percentage."""
        if v <= 0 or v > 100:
            raise ValueError(f"Invalid max allocation per stock: {v}. Must be in (0, 100]")
        return v

    @field_validator("min_allocation_amount")
    @classmethod
    def validate_min_allocation(cls, v: Decimal) -> Decimal:
        """Validate minimum allocation amount."""
        if v < 0:
            raise ValueError(f"Invalid min allocation amount: {v}. Must be >= 0")
        return v


class MarketDataConfig(BaseModel):
    """Price source configuration."""

    provider: str = Field(default="mock", description="Price provider: 'mock', 'yahoo', or 'alpaca'")

    # Alpaca credentials
    alpaca_api_key: Optional[str] = None
    alpaca_api_secret: Optional[str] = None

    request_timeout: float = Field(default=10.0, description="Per-request provider timeout in seconds")
    cache_ttl_seconds: float = Field(default=60.0, description="Quote cache lifetime in seconds")
    price_timeout_seconds: float = Field(default=15.0, description="Upper bound for one batch price lookup")
    price_workers: int = Field(default=4, description="Threads for price lookups, including ones held by timed-out calls")

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        """Validate price provider."""
        v_lower = v.lower()
        valid_providers = ["mock", "yahoo", "alpaca"]
        if v_lower not in valid_providers:
            raise ValueError(f"Invalid price provider: {v}. Must be one of: {', '.join(valid_providers)}")
        return v_lower

    def validate_provider_credentials(self) -> None:
        """Validate that required provider credentials are present."""
        if self.provider == "alpaca":
            if not self.alpaca_api_key or not self.alpaca_api_secret:
                raise ValueError("Alpaca API key and secret are required when PRICE_PROVIDER=alpaca")

    @field_validator("price_workers")
    @classmethod
    def validate_price_workers(cls, v: int) -> int:
        """Validate price lookup thread count."""
        if v < 1:
            raise ValueError(f"Price workers must be at least 1, got {v}")
        return v


class SchedulerConfig(BaseModel):
    """NAV update scheduler configuration."""

    enabled: bool = Field(default=True, description="Run periodic NAV updates")
    cron_schedule: str = Field(default="*/15 * * * *", description="Cron expression for NAV updates (every 15 minutes)")
    timezone: str = Field(default="America/New_York", description="Timezone for the cron schedule")
    max_retries: int = Field(default=3, description="Attempts per portfolio update")
    retry_delay: float = Field(default=30.0, description="Seconds between attempts")
    batch_size: int = Field(default=10, description="Portfolios updated concurrently")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate timezone name."""
        if v not in pytz.all_timezones_set:
            raise ValueError(f"Invalid timezone: {v}")
        return v

    @field_validator("batch_size", "max_retries")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate positive counts."""
        if v < 1:
            raise ValueError(f"Value must be at least 1, got {v}")
        return v


class PersistenceConfig(BaseModel):
    """Firebase Firestore persistence configuration."""

    enabled: bool = Field(default=False, description="Enable Firestore persistence")
    project_id: Optional[str] = Field(default=None, description="Firebase project ID")
    credentials_path: Optional[str] = Field(default=None, description="Path to Firebase service account JSON file")
    credentials_json: Optional[str] = Field(default=None, description="Firebase service account JSON as string (alternative to credentials_path)")

    def is_configured(self) -> bool:
        """Check if Firebase credentials are configured."""
        return bool(self.project_id and (self.credentials_path or self.credentials_json))


class Config(BaseModel):
    """Main configuration class."""

    log_level: str = Field(default="INFO", description="Root log level")

    allocation: AllocationConfig = Field(default_factory=AllocationConfig)
    market_data: MarketDataConfig = Field(default_factory=MarketDataConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        v_upper = v.upper()
        if v_upper not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError(f"Invalid log level: {v}")
        return v_upper

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        allocation_config = AllocationConfig(
            max_allocation_per_stock=_env_decimal("MAX_ALLOCATION_PER_STOCK", "20"),
            min_allocation_amount=_env_decimal("MIN_ALLOCATION_AMOUNT", "100"),
        )

        market_data_config = MarketDataConfig(
            provider=os.getenv("PRICE_PROVIDER", "mock"),
            alpaca_api_key=os.getenv("ALPACA_API_KEY"),
            alpaca_api_secret=os.getenv("ALPACA_API_SECRET"),
            request_timeout=_env_float("PRICE_REQUEST_TIMEOUT", 10.0),
            cache_ttl_seconds=_env_float("PRICE_CACHE_TTL", 60.0),
            price_timeout_seconds=_env_float("PRICE_TIMEOUT_SECONDS", 15.0),
            price_workers=_env_int("PRICE_WORKERS", 4),
        )

        scheduler_config = SchedulerConfig(
            enabled=os.getenv("NAV_SCHEDULER_ENABLED", "true").lower() == "true",
            cron_schedule=os.getenv("NAV_CRON_SCHEDULE", "*/15 * * * *"),
            timezone=os.getenv("NAV_SCHEDULER_TIMEZONE", "America/New_York"),
            max_retries=_env_int("NAV_MAX_RETRIES", 3),
            retry_delay=_env_float("NAV_RETRY_DELAY", 30.0),
            batch_size=_env_int("NAV_BATCH_SIZE", 10),
        )

        # Persistence configuration - auto-enable if credentials are present
        persistence_enabled = os.getenv("PERSISTENCE_ENABLED", "").lower() == "true"
        persistence_project_id = os.getenv("FIREBASE_PROJECT_ID")
        persistence_credentials_path = os.getenv("FIREBASE_CREDENTIALS_PATH")
        persistence_credentials_json = os.getenv("FIREBASE_CREDENTIALS_JSON")

        if persistence_project_id and (persistence_credentials_path or persistence_credentials_json):
            persistence_enabled = True

        persistence_config = PersistenceConfig(
            enabled=persistence_enabled,
            project_id=persistence_project_id,
            credentials_path=persistence_credentials_path,
            credentials_json=persistence_credentials_json,
        )

        config = cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            allocation=allocation_config,
            market_data=market_data_config,
            scheduler=scheduler_config,
            persistence=persistence_config,
        )

        config.market_data.validate_provider_credentials()

        return config


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() re-reads the environment."""
    global _config
    _config = None
