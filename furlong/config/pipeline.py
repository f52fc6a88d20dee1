"""Settlement pipeline configuration.

Components receive a PipelineConfig at construction instead of reading
settings or the environment themselves.
"""

from dataclasses import dataclass, field, replace
from typing import Any

from furlong.config.settings import Settings
from furlong.services.racetime import PM_HOUR_MAX


@dataclass(frozen=True)
class ModelSpec:
    """A prediction model and the race_entries column holding its probability."""

    name: str
    column: str


DEFAULT_MODELS: tuple[ModelSpec, ...] = (
    ModelSpec("mlp", "mlp_proba"),
    ModelSpec("rf", "rf_proba"),
    ModelSpec("xgboost", "xgboost_proba"),
    ModelSpec("benter", "benter_proba"),
    ModelSpec("ensemble", "ensemble_proba"),
)

ENSEMBLE_MODEL = "ensemble"


@dataclass(frozen=True)
class PipelineConfig:
    """Tuning for one settlement run."""

    settle_delay_minutes: int = 20
    batch_limit: int = 8
    batch_limit_max: int = 50
    rate_ms: int = 600
    fetch_timeout_seconds: float = 15.0
    run_deadline_seconds: float = 120.0
    pending_lookback_days: int = 3
    pm_hour_max: int = PM_HOUR_MAX
    race_timezone: str = "Europe/London"
    aggregation_recent_minutes: int = 10
    aggregation_force_days: int = 7
    models: tuple[ModelSpec, ...] = field(default=DEFAULT_MODELS)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelineConfig":
        """Build the pipeline config from application settings and defaults.yaml."""
        return cls(
            settle_delay_minutes=settings.settle_delay_minutes,
            batch_limit=settings.batch_limit,
            batch_limit_max=settings.batch_limit_max,
            rate_ms=settings.rate_ms,
            fetch_timeout_seconds=settings.fetch_timeout_seconds,
            run_deadline_seconds=settings.run_deadline_seconds,
            pending_lookback_days=settings.pending_lookback_days,
            pm_hour_max=settings.pm_hour_max,
            race_timezone=settings.race_timezone,
            aggregation_recent_minutes=settings.aggregation_recent_minutes,
            aggregation_force_days=settings.aggregation_force_days,
            models=load_models(settings.load_defaults_config()),
        )

    def clamp_limit(self, limit: int | None) -> int:
        """Clamp a requested batch size into 1..batch_limit_max."""
        if limit is None or limit <= 0:
            limit = self.batch_limit
        return min(limit, self.batch_limit_max)

    def with_rate(self, rate_ms: int | None) -> "PipelineConfig":
        """Return a copy using a caller-supplied inter-call delay."""
        if rate_ms is None or rate_ms < 0:
            return self
        return replace(self, rate_ms=rate_ms)


def load_models(config: dict[str, Any]) -> tuple[ModelSpec, ...]:
    """Read model definitions from the defaults config, falling back to the built-ins."""
    models = config.get("models") or []
    specs = tuple(
        ModelSpec(name=str(item["name"]), column=str(item["column"]))
        for item in models
        if isinstance(item, dict) and item.get("name") and item.get("column")
    )
    return specs or DEFAULT_MODELS
