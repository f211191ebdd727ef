"""Display helpers for dashboards and logs."""

from __future__ import annotations

from src.backtest.types import BacktestReport, PerformanceMetrics
from src.core.types import BacktestStatus, PerformanceTier, StrategyType, ValidationMethod

_STRATEGY_DESCRIPTIONS: dict[StrategyType, str] = {
    StrategyType.INSIDER_DETECTION: "Insider Trading Detection",
    StrategyType.WHALE_DETECTION: "Whale Activity Detection",
    StrategyType.FRESH_WALLET_DETECTION: "Fresh Wallet Detection",
    StrategyType.COORDINATED_TRADING: "Coordinated Trading Detection",
    StrategyType.VOLUME_ANOMALY: "Volume Anomaly Detection",
    StrategyType.PRICE_MANIPULATION: "Price Manipulation Detection",
    StrategyType.COMPOSITE: "Composite Strategy",
    StrategyType.CUSTOM: "Custom Strategy",
}

_VALIDATION_DESCRIPTIONS: dict[ValidationMethod, str] = {
    ValidationMethod.TRAIN_TEST_SPLIT: "Train/Test Split",
    ValidationMethod.K_FOLD_CV: "K-Fold Cross Validation",
    ValidationMethod.WALK_FORWARD: "Walk-Forward Validation",
    ValidationMethod.LEAVE_ONE_OUT: "Leave-One-Out Validation",
    ValidationMethod.NONE: "No Validation",
}

_TIER_DESCRIPTIONS: dict[PerformanceTier, str] = {
    PerformanceTier.EXCELLENT: "Excellent - Production Ready",
    PerformanceTier.GOOD: "Good - Recommended for Use",
    PerformanceTier.ACCEPTABLE: "Acceptable - Monitor Performance",
    PerformanceTier.POOR: "Poor - Needs Improvement",
    PerformanceTier.VERY_POOR: "Very Poor - Not Recommended",
}

_TIER_COLORS: dict[PerformanceTier, str] = {
    PerformanceTier.EXCELLENT: "#22c55e",
    PerformanceTier.GOOD: "#3b82f6",
    PerformanceTier.ACCEPTABLE: "#eab308",
    PerformanceTier.POOR: "#f97316",
    PerformanceTier.VERY_POOR: "#ef4444",
}

_FALLBACK_COLOR = "#6b7280"

_STATUS_DESCRIPTIONS: dict[BacktestStatus, str] = {
    BacktestStatus.IDLE: "Idle",
    BacktestStatus.LOADING_DATA: "Loading Data",
    BacktestStatus.RUNNING: "Running",
    BacktestStatus.COMPLETED: "Completed",
    BacktestStatus.FAILED: "Failed",
    BacktestStatus.CANCELLED: "Cancelled",
}


def strategy_description(strategy_type: StrategyType | str) -> str:
    return _STRATEGY_DESCRIPTIONS.get(strategy_type, str(strategy_type))  # type: ignore[call-overload]


def validation_method_description(method: ValidationMethod | str) -> str:
    return _VALIDATION_DESCRIPTIONS.get(method, str(method))  # type: ignore[call-overload]


def tier_description(tier: PerformanceTier | str) -> str:
    return _TIER_DESCRIPTIONS.get(tier, str(tier))  # type: ignore[call-overload]


def tier_color(tier: PerformanceTier | str) -> str:
    """Hex colour for a tier badge; grey for unknown tiers."""
    return _TIER_COLORS.get(tier, _FALLBACK_COLOR)  # type: ignore[call-overload]


def status_description(status: BacktestStatus | str) -> str:
    return _STATUS_DESCRIPTIONS.get(status, str(status))  # type: ignore[call-overload]


def format_percent(value: float) -> str:
    """``0.8123`` -> ``"81.2%"``."""
    return f"{value * 100:.1f}%"


def format_metrics_for_display(metrics: PerformanceMetrics) -> dict[str, str]:
    """Render rates as percentages and correlation-type scores to three decimals."""
    return {
        "accuracy": format_percent(metrics.accuracy),
        "precision": format_percent(metrics.precision),
        "recall": format_percent(metrics.recall),
        "f1_score": format_percent(metrics.f1_score),
        "f2_score": format_percent(metrics.f2_score),
        "mcc": f"{metrics.mcc:.3f}",
        "auc_roc": f"{metrics.auc_roc:.3f}",
        "auc_pr": f"{metrics.auc_pr:.3f}",
        "brier_score": f"{metrics.brier_score:.3f}",
        "log_loss": f"{metrics.log_loss:.3f}",
        "detection_rate": format_percent(metrics.detection_rate),
        "false_positive_rate": format_percent(metrics.false_positive_rate),
        "false_negative_rate": format_percent(metrics.false_negative_rate),
    }


def summarize_report(report: BacktestReport) -> dict[str, object]:
    """Flat summary of a report, suitable for a log line or a table row."""
    m = report.overall_metrics
    return {
        "report_id": report.report_id,
        "name": report.name,
        "strategy": strategy_description(report.strategy.type),
        "validation": validation_method_description(report.validation_method),
        "tier": tier_description(report.performance_tier),
        "score": report.performance_score,
        "detections": m.total_detections,
        "f1_score": format_percent(m.f1_score),
        "accuracy": format_percent(m.accuracy),
        "insights": len(report.insights),
        "runtime_secs": round(report.runtime_secs, 3),
    }
