"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr

from src.core.types import PerformanceTier, ReportDetailLevel

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class TierThreshold(BaseModel):
    """Minimum F1 and accuracy a run must reach to earn a tier."""

    min_f1: float
    min_accuracy: float


def _default_tier_thresholds() -> dict[PerformanceTier, TierThreshold]:
    return {
        PerformanceTier.EXCELLENT: TierThreshold(min_f1=0.9, min_accuracy=0.95),
        PerformanceTier.GOOD: TierThreshold(min_f1=0.75, min_accuracy=0.85),
        PerformanceTier.ACCEPTABLE: TierThreshold(min_f1=0.6, min_accuracy=0.7),
        PerformanceTier.POOR: TierThreshold(min_f1=0.4, min_accuracy=0.55),
        PerformanceTier.VERY_POOR: TierThreshold(min_f1=0.0, min_accuracy=0.0),
    }


class BacktestingConfig(BaseModel):
    """Run manager, dataset cache and report grading configuration."""

    cache_enabled: bool = True
    cache_ttl_secs: float = Field(default=3600.0, gt=0)
    cache_max_entries: int = Field(default=32, ge=1)
    max_concurrent: int = Field(default=3, ge=1)
    parallel_folds: bool = True
    max_parallel_folds: int = Field(default=4, ge=1)
    default_detail_level: ReportDetailLevel = ReportDetailLevel.STANDARD
    batch_size: int = Field(default=1000, ge=1)
    max_loo_folds: int = Field(default=31, ge=1)
    result_retention_secs: float = Field(default=600.0, ge=0)
    tier_thresholds: dict[PerformanceTier, TierThreshold] = Field(
        default_factory=_default_tier_thresholds,
    )
    score_weights: dict[str, float] = {
        "f1": 0.6,
        "mcc": 0.4,
    }


class DataSourceConfig(BaseModel):
    """HTTP historical data service configuration."""

    base_url: str = "http://localhost:8080/api/history"
    api_key: SecretStr = SecretStr("")
    timeout_secs: float = 30.0


class LabelingConfig(BaseModel):
    """Default ground-truth labeling policy flags."""

    use_known_insiders: bool = True
    use_alerts: bool = True
    match_alerts_by_market: bool = False
    use_resolutions: bool = True


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"


class Settings(BaseModel):
    """Root settings container."""

    backtesting: BacktestingConfig = BacktestingConfig()
    data_source: DataSourceConfig = DataSourceConfig()
    labeling: LabelingConfig = LabelingConfig()
    logging: LoggingConfig = LoggingConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
