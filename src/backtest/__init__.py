"""Backtesting engine — split historical data, simulate strategies, grade the results."""

from src.backtest.evaluators import (
    CallableEvaluator,
    EvaluatorRegistry,
    StrategyEvaluator,
    as_evaluator,
    resolve_evaluator,
)
from src.backtest.exceptions import (
    BacktestCancelledError,
    BacktestConfigError,
    BacktestError,
    BacktestFailedError,
    ConcurrencyLimitError,
    UnknownBacktestError,
)
from src.backtest.framework import (
    BacktestingFramework,
    RunHandle,
    create_framework,
    default_backtest_config,
    default_strategy_config,
    get_shared,
    reset_shared,
    set_shared,
)
from src.backtest.labeling import LabelContext, label_unit
from src.backtest.metrics import combine_metrics, compute_metrics
from src.backtest.report import ReportAssembler
from src.backtest.simulator import CancellationToken, SimulationResult, StrategySimulator
from src.backtest.splitter import SplitParams, split
from src.backtest.types import (
    BacktestConfig,
    BacktestEvent,
    BacktestEventType,
    BacktestInsight,
    BacktestProgress,
    BacktestReport,
    DetectionResult,
    DetectionThresholds,
    EvaluationUnit,
    Fold,
    LabelingPolicy,
    PerformanceMetrics,
    Prediction,
    StrategyConfig,
    TimeWindow,
)

__all__ = [
    "BacktestCancelledError",
    "BacktestConfig",
    "BacktestConfigError",
    "BacktestError",
    "BacktestEvent",
    "BacktestEventType",
    "BacktestFailedError",
    "BacktestInsight",
    "BacktestProgress",
    "BacktestReport",
    "BacktestingFramework",
    "CallableEvaluator",
    "CancellationToken",
    "ConcurrencyLimitError",
    "DetectionResult",
    "DetectionThresholds",
    "EvaluationUnit",
    "EvaluatorRegistry",
    "Fold",
    "LabelContext",
    "LabelingPolicy",
    "PerformanceMetrics",
    "Prediction",
    "ReportAssembler",
    "RunHandle",
    "SimulationResult",
    "SplitParams",
    "StrategyConfig",
    "StrategyEvaluator",
    "StrategySimulator",
    "TimeWindow",
    "UnknownBacktestError",
    "as_evaluator",
    "combine_metrics",
    "compute_metrics",
    "create_framework",
    "default_backtest_config",
    "default_strategy_config",
    "get_shared",
    "label_unit",
    "reset_shared",
    "resolve_evaluator",
    "set_shared",
    "split",
]
