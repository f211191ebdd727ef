"""Data types for the backtesting framework."""

from __future__ import annotations

import math
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.core.types import (
    BacktestStatus,
    DataSourceType,
    HistoricalMarket,
    HistoricalTrade,
    HistoricalWallet,
    PerformanceTier,
    ReportDetailLevel,
    StrategyType,
    ValidationMethod,
)

DAY_SECS = 86_400.0

# Calibration scores reported when nothing is labeled.
NEUTRAL_BRIER_SCORE = 0.5
NEUTRAL_LOG_LOSS = math.log(2)


# ── Strategy configuration ──────────────────────────────────────


class DetectionThresholds(BaseModel):
    """Threshold set handed to a strategy evaluator for every unit."""

    model_config = ConfigDict(frozen=True)

    suspicion_threshold: float = 60.0
    whale_trade_min_usd: float = 10_000.0
    fresh_wallet_max_age_days: float = 7.0
    volume_spike_multiplier: float = 3.0
    min_confidence: float = 0.5
    price_change_threshold: float = 10.0
    coordination_threshold: float = 0.7


class StrategyConfig(BaseModel):
    """Detection strategy under test.

    ``evaluator`` is only used by ``CUSTOM`` strategies (or to override the
    registry for one run) and is never serialized.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    type: StrategyType
    name: str = ""
    description: str = ""
    parameters: dict[str, float | str | bool] = Field(default_factory=dict)
    thresholds: DetectionThresholds = DetectionThresholds()
    feature_weights: dict[str, float] = Field(default_factory=dict)
    enabled_signals: tuple[str, ...] = ()
    evaluator: Any = Field(default=None, exclude=True, repr=False)


class LabelingPolicy(BaseModel):
    """Which historical signals count as ground truth for a simulated unit.

    Rules are applied in order; the first one that yields a label wins.
    Units no rule can label stay unlabeled and are left out of the
    confusion matrix.
    """

    model_config = ConfigDict(frozen=True)

    use_known_insiders: bool = True
    use_alerts: bool = True
    match_alerts_by_market: bool = False
    use_resolutions: bool = True


class BacktestConfig(BaseModel):
    """Immutable backtest request."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    strategy: StrategyConfig
    data_sources: tuple[DataSourceType, ...] = (DataSourceType.ALL,)
    start: float
    end: float
    validation_method: ValidationMethod = ValidationMethod.WALK_FORWARD
    train_test_split: float = Field(default=0.8, gt=0.0, lt=1.0)
    k_folds: int = Field(default=5, gt=0)
    walk_forward_window_days: float = Field(default=30.0, gt=0.0)
    report_detail_level: ReportDetailLevel | None = None
    labeling: LabelingPolicy | None = None
    bypass_cache: bool = False

    @model_validator(mode="after")
    def _check_invariants(self) -> BacktestConfig:
        problems = config_problems(self)
        if problems:
            raise ValueError("; ".join(problems))
        return self


def config_problems(config: BacktestConfig) -> list[str]:
    """Return every invariant the config violates (empty when valid).

    Used by the model validator and again by the run manager, which may be
    handed a config built with ``model_construct``.
    """
    problems: list[str] = []
    if not config.start < config.end:
        problems.append(f"start ({config.start}) must be before end ({config.end})")
    if not 0.0 < config.train_test_split < 1.0:
        problems.append(f"train_test_split must be in (0, 1), got {config.train_test_split}")
    if config.k_folds <= 0:
        problems.append(f"k_folds must be positive, got {config.k_folds}")
    if config.walk_forward_window_days <= 0:
        problems.append(
            f"walk_forward_window_days must be positive, got {config.walk_forward_window_days}"
        )
    if not config.data_sources:
        problems.append("at least one data source is required")
    try:
        ValidationMethod(config.validation_method)
    except ValueError:
        problems.append(f"unsupported validation method: {config.validation_method}")
    return problems


# ── Folds ───────────────────────────────────────────────────────


class TimeWindow(BaseModel):
    """Half-open window ``[start, end)``; ``closed`` windows also include ``end``."""

    model_config = ConfigDict(frozen=True)

    start: float
    end: float
    closed: bool = False

    @property
    def duration(self) -> float:
        return self.end - self.start

    def contains(self, ts: float) -> bool:
        if self.closed:
            return self.start <= ts <= self.end
        return self.start <= ts < self.end


class Fold(BaseModel):
    """One (train, test) pair produced by the validation splitter."""

    model_config = ConfigDict(frozen=True)

    index: int
    train: tuple[TimeWindow, ...] = ()
    test: TimeWindow

    @property
    def train_start(self) -> float | None:
        return self.train[0].start if self.train else None

    @property
    def train_end(self) -> float | None:
        return self.train[-1].end if self.train else None

    def in_train(self, ts: float) -> bool:
        return any(w.contains(ts) for w in self.train)


# ── Simulation ──────────────────────────────────────────────────


class EvaluationUnit(BaseModel):
    """One unit of test-window data handed to a strategy evaluator."""

    model_config = ConfigDict(frozen=True)

    trade: HistoricalTrade
    wallet: HistoricalWallet | None = None
    market: HistoricalMarket | None = None
    fold_index: int = 0
    window: TimeWindow


class Prediction(BaseModel):
    """Evaluator verdict for one unit."""

    label: bool
    confidence: float = 0.0
    suspicion_score: float = 0.0
    detection_type: str = ""
    triggering_features: tuple[str, ...] = ()
    score_breakdown: dict[str, float] = Field(default_factory=dict)


class DetectionResult(BaseModel):
    """One simulated detection with its ground truth (when known)."""

    model_config = ConfigDict(frozen=True)

    detection_id: str
    fold_index: int = 0
    timestamp: float
    strategy: StrategyType
    market_id: str | None = None
    wallet_address: str | None = None
    detection_type: str = ""
    predicted: bool
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    suspicion_score: float = Field(default=0.0, ge=0.0, le=100.0)
    actual: bool | None = None
    triggering_features: tuple[str, ...] = ()
    associated_trades: tuple[str, ...] = ()
    score_breakdown: dict[str, float] = Field(default_factory=dict)
    evaluator_error: bool = False


# ── Metrics ─────────────────────────────────────────────────────


class PerformanceMetrics(BaseModel):
    """Confusion-matrix counts and the rates derived from them."""

    model_config = ConfigDict(frozen=True)

    true_positives: int = 0
    false_positives: int = 0
    true_negatives: int = 0
    false_negatives: int = 0
    total_detections: int = 0
    accuracy: float = 0.0
    precision: float = 0.0
    recall: float = 0.0
    f1_score: float = 0.0
    f2_score: float = 0.0
    mcc: float = 0.0
    auc_roc: float = 0.5
    auc_pr: float = 0.0
    brier_score: float = NEUTRAL_BRIER_SCORE
    log_loss: float = NEUTRAL_LOG_LOSS
    false_positive_rate: float = 0.0
    false_negative_rate: float = 0.0
    avg_confidence: float = 0.0
    unlabeled_detections: int = 0
    flagged_detections: int = 0
    units_evaluated: int = 0
    detection_rate: float = 0.0

    @property
    def positives(self) -> int:
        return self.true_positives + self.false_negatives

    @property
    def negatives(self) -> int:
        return self.true_negatives + self.false_positives


class FoldMetrics(BaseModel):
    """Test metrics for one fold."""

    model_config = ConfigDict(frozen=True)

    fold_index: int
    train: tuple[TimeWindow, ...] = ()
    test: TimeWindow
    metrics: PerformanceMetrics
    units_evaluated: int = 0
    evaluator_failures: int = 0


class WalkForwardFold(BaseModel):
    """Walk-forward fold with in-sample and out-of-sample metrics."""

    model_config = ConfigDict(frozen=True)

    fold_number: int
    train_start: float | None = None
    train_end: float | None = None
    test_start: float
    test_end: float
    train_metrics: PerformanceMetrics
    test_metrics: PerformanceMetrics
    overfitting_score: float = 0.0


class PeriodMetrics(BaseModel):
    """Metrics for one calendar month of detections."""

    model_config = ConfigDict(frozen=True)

    period: str
    period_start: float
    period_end: float
    metrics: PerformanceMetrics
    sample_count: int = 0


# ── Report ──────────────────────────────────────────────────────


class InsightType(StrEnum):
    """Kind of generated insight."""

    STRENGTH = "STRENGTH"
    WEAKNESS = "WEAKNESS"
    RECOMMENDATION = "RECOMMENDATION"
    WARNING = "WARNING"


class BacktestInsight(BaseModel):
    """Human-readable, non-authoritative observation about a run."""

    model_config = ConfigDict(frozen=True)

    type: InsightType
    title: str
    description: str
    metric: str | None = None
    current_value: float | None = None
    recommended_value: float | None = None
    priority: int = 3


class DatasetInfo(BaseModel):
    """Provenance of the dataset a report was computed from."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    start: float
    end: float
    total_records: int = 0
    quality_score: float = 0.0
    sources: tuple[DataSourceType, ...] = ()


class BacktestDiagnostics(BaseModel):
    """Internal counters, included at DEBUG detail only."""

    model_config = ConfigDict(frozen=True)

    cache_hit: bool = False
    shared_load: bool = False
    source_counts: dict[str, int] = Field(default_factory=dict)
    failed_sources: tuple[DataSourceType, ...] = ()
    folds_evaluated: int = 0
    units_evaluated: int = 0
    evaluator_failures: int = 0
    unlabeled_detections: int = 0


class BacktestReport(BaseModel):
    """Terminal artifact of a completed run."""

    model_config = ConfigDict(frozen=True)

    report_id: str
    name: str
    description: str = ""
    strategy: StrategyConfig
    validation_method: ValidationMethod
    detail_level: ReportDetailLevel
    dataset_info: DatasetInfo
    overall_metrics: PerformanceMetrics
    fold_metrics: tuple[FoldMetrics, ...] = ()
    walk_forward_folds: tuple[WalkForwardFold, ...] | None = None
    period_metrics: tuple[PeriodMetrics, ...] = ()
    performance_tier: PerformanceTier
    performance_score: float = Field(ge=0.0, le=100.0)
    insights: tuple[BacktestInsight, ...] = ()
    detections: tuple[DetectionResult, ...] | None = None
    diagnostics: BacktestDiagnostics | None = None
    started_at: float
    completed_at: float
    runtime_secs: float = 0.0


# ── Run tracking ────────────────────────────────────────────────


class BacktestProgress(BaseModel):
    """Snapshot of a run's progress."""

    model_config = ConfigDict(frozen=True)

    backtest_id: str
    status: BacktestStatus
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    phase: str = ""
    current_fold: int | None = None
    total_folds: int | None = None
    detections_so_far: int = 0
    elapsed_secs: float = 0.0


class BacktestEventType(StrEnum):
    """Lifecycle events emitted by the run manager."""

    BACKTEST_STARTED = "BACKTEST_STARTED"
    DATA_LOADED = "DATA_LOADED"
    FOLD_COMPLETED = "FOLD_COMPLETED"
    BACKTEST_PROGRESS = "BACKTEST_PROGRESS"
    BACKTEST_COMPLETED = "BACKTEST_COMPLETED"
    BACKTEST_FAILED = "BACKTEST_FAILED"
    BACKTEST_CANCELLED = "BACKTEST_CANCELLED"


class BacktestEvent(BaseModel):
    """Event emitted to ``BacktestingFramework.on_event`` subscribers."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    event_type: BacktestEventType
    backtest_id: str
    status: BacktestStatus
    timestamp: float = 0.0
    config: BacktestConfig | None = None
    progress: BacktestProgress | None = None
    fold: FoldMetrics | None = None
    report: BacktestReport | None = None
    error: str = ""
