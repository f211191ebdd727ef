"""Tests for display helpers."""

from __future__ import annotations

from src.backtest.formatting import (
    format_metrics_for_display,
    format_percent,
    status_description,
    strategy_description,
    summarize_report,
    tier_color,
    tier_description,
    validation_method_description,
)
from src.backtest.types import (
    BacktestReport,
    DatasetInfo,
    PerformanceMetrics,
    StrategyConfig,
)
from src.core.types import (
    BacktestStatus,
    PerformanceTier,
    ReportDetailLevel,
    StrategyType,
    ValidationMethod,
)


class TestDescriptions:
    def test_every_strategy_described(self) -> None:
        for strategy_type in StrategyType:
            assert strategy_description(strategy_type) != strategy_type.value
        assert strategy_description(StrategyType.WHALE_DETECTION) == "Whale Activity Detection"

    def test_validation_methods(self) -> None:
        assert validation_method_description(ValidationMethod.K_FOLD_CV) == "K-Fold Cross Validation"
        assert validation_method_description(ValidationMethod.NONE) == "No Validation"

    def test_tiers(self) -> None:
        assert tier_description(PerformanceTier.EXCELLENT) == "Excellent - Production Ready"
        assert tier_description(PerformanceTier.VERY_POOR) == "Very Poor - Not Recommended"

    def test_statuses(self) -> None:
        assert status_description(BacktestStatus.LOADING_DATA) == "Loading Data"

    def test_unknown_values_pass_through(self) -> None:
        assert strategy_description("SOMETHING_ELSE") == "SOMETHING_ELSE"
        assert status_description("PAUSED") == "PAUSED"


class TestTierColor:
    def test_known_tiers(self) -> None:
        assert tier_color(PerformanceTier.EXCELLENT) == "#22c55e"
        assert tier_color(PerformanceTier.GOOD) == "#3b82f6"
        assert tier_color(PerformanceTier.VERY_POOR) == "#ef4444"

    def test_fallback(self) -> None:
        assert tier_color("UNRANKED") == "#6b7280"


class TestFormatting:
    def test_format_percent(self) -> None:
        assert format_percent(0.8123) == "81.2%"
        assert format_percent(0.0) == "0.0%"
        assert format_percent(1.0) == "100.0%"

    def test_metrics_for_display(self) -> None:
        display = format_metrics_for_display(PerformanceMetrics(accuracy=0.8, mcc=0.4583, auc_roc=0.5))
        assert display["accuracy"] == "80.0%"
        assert display["mcc"] == "0.458"
        assert display["auc_roc"] == "0.500"
        assert display["brier_score"] == "0.500"
        assert display["log_loss"] == "0.693"
        assert display["detection_rate"] == "0.0%"

    def test_summarize_report(self) -> None:
        report = BacktestReport(
            report_id="report-bt-1",
            name="nightly",
            strategy=StrategyConfig(type=StrategyType.INSIDER_DETECTION),
            validation_method=ValidationMethod.WALK_FORWARD,
            detail_level=ReportDetailLevel.SUMMARY,
            dataset_info=DatasetInfo(start=0.0, end=1.0),
            overall_metrics=PerformanceMetrics(total_detections=4, f1_score=0.5, accuracy=0.75),
            performance_tier=PerformanceTier.POOR,
            performance_score=42.0,
            started_at=0.0,
            completed_at=1.25,
            runtime_secs=1.25,
        )
        summary = summarize_report(report)
        assert summary["strategy"] == "Insider Trading Detection"
        assert summary["validation"] == "Walk-Forward Validation"
        assert summary["tier"] == "Poor - Needs Improvement"
        assert summary["f1_score"] == "50.0%"
        assert summary["detections"] == 4
