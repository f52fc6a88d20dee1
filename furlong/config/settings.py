"""Application settings and configuration management."""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from furlong.services.errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Data store (REST row API)
    store_url: str = Field(default="", description="Base URL of the REST data store")
    store_service_key: str = Field(
        default="", description="Service credential for the data store"
    )
    store_timeout_seconds: float = Field(default=30.0, description="Store request timeout")

    # Result provider
    provider_url: str = Field(
        default="", description="URL of the function that fetches and saves one race result"
    )
    provider_api_key: str = Field(default="", description="Result provider credential")

    # Redis (Celery broker)
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )

    # Settlement pipeline
    settle_delay_minutes: int = Field(
        default=20, ge=0, description="Minutes after the off before a result is fetched"
    )
    batch_limit: int = Field(default=8, ge=1, description="Default races per run")
    batch_limit_max: int = Field(default=50, ge=1, description="Hard cap on races per run")
    rate_ms: int = Field(default=600, ge=0, description="Delay between provider calls")
    fetch_timeout_seconds: float = Field(
        default=15.0, gt=0, description="Per-call provider timeout"
    )
    run_deadline_seconds: float = Field(
        default=120.0, gt=0, description="Overall time budget of one run"
    )
    pending_lookback_days: int = Field(
        default=3, ge=0, description="Oldest race day still considered pending"
    )
    pm_hour_max: int = Field(
        default=11,
        ge=1,
        le=11,
        description="Stored hours 1..pm_hour_max are afternoon times",
    )
    race_timezone: str = Field(default="Europe/London", description="Race-day civil timezone")

    # Model accuracy ledger
    aggregation_recent_minutes: int = Field(
        default=10, ge=1, description="Window for the rolling accuracy recompute"
    )
    aggregation_force_days: int = Field(
        default=7, ge=1, description="Window for a forced accuracy recompute"
    )

    # Application
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    # Paths
    config_path: Path = Field(
        default=Path(__file__).parent / "defaults.yaml",
        description="Path to defaults.yaml configuration",
    )

    @property
    def store_configured(self) -> bool:
        """Check if data store credentials are configured."""
        return bool(self.store_url and self.store_service_key)

    @property
    def provider_configured(self) -> bool:
        """Check if result provider credentials are configured."""
        return bool(self.provider_url and self.provider_api_key)

    def require_credentials(self) -> None:
        """Raise ConfigurationError unless every pipeline credential is set."""
        missing = [
            name
            for name in ("store_url", "store_service_key", "provider_url", "provider_api_key")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )

    def load_defaults_config(self) -> dict[str, Any]:
        """Load the defaults.yaml configuration file."""
        if self.config_path.exists():
            with open(self.config_path) as f:
                return yaml.safe_load(f) or {}
        return {}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
