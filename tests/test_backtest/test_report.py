"""Tests for the report assembler — tiers, score, insights, detail levels."""

from __future__ import annotations

import pytest

from src.backtest.metrics import compute_metrics
from src.backtest.report import (
    InsightInputs,
    ReportAssembler,
    RunOutcome,
    classify_tier,
    generate_insights,
    performance_score,
)
from src.backtest.types import (
    DAY_SECS,
    BacktestConfig,
    BacktestInsight,
    DetectionResult,
    FoldMetrics,
    InsightType,
    PerformanceMetrics,
    StrategyConfig,
    TimeWindow,
    WalkForwardFold,
)
from src.core.config import BacktestingConfig, TierThreshold
from src.core.types import (
    DataSourceType,
    HistoricalDataset,
    PerformanceTier,
    ReportDetailLevel,
    StrategyType,
    ValidationMethod,
)

T0 = 1_700_000_000.0

# ── Helpers ─────────────────────────────────────────────────────


def _metrics(tp: int = 0, fp: int = 0, tn: int = 0, fn: int = 0) -> PerformanceMetrics:
    detections = (
        [(True, True)] * tp + [(True, False)] * fp + [(False, False)] * tn + [(False, True)] * fn
    )
    return compute_metrics([
        DetectionResult(
            detection_id=f"0-t{i}",
            timestamp=T0,
            strategy=StrategyType.INSIDER_DETECTION,
            predicted=p,
            actual=a,
        )
        for i, (p, a) in enumerate(detections)
    ])


def _config(method: ValidationMethod = ValidationMethod.NONE, level: ReportDetailLevel | None = None) -> BacktestConfig:
    return BacktestConfig(
        name="report-test",
        strategy=StrategyConfig(type=StrategyType.INSIDER_DETECTION),
        start=T0,
        end=T0 + 30 * DAY_SECS,
        validation_method=method,
        report_detail_level=level,
    )


def _dataset(quality: float = 100.0) -> HistoricalDataset:
    return HistoricalDataset(
        name="ds",
        start=T0,
        end=T0 + 30 * DAY_SECS,
        sources=(DataSourceType.TRADES,),
        quality_score=quality,
        source_counts={"TRADES": 10},
    )


def _outcome(metrics: PerformanceMetrics | None = None, **overrides: object) -> RunOutcome:
    metrics = metrics or _metrics(tp=6, fp=1, tn=2, fn=1)
    fold = FoldMetrics(fold_index=0, test=TimeWindow(start=T0, end=T0 + DAY_SECS, closed=True), metrics=metrics)
    detection = DetectionResult(
        detection_id="0-t1", timestamp=T0, strategy=StrategyType.INSIDER_DETECTION, predicted=True, actual=True,
    )
    fields: dict[str, object] = {
        "overall_metrics": metrics,
        "fold_metrics": [fold],
        "detections": [detection],
        "units_evaluated": 10,
    }
    fields.update(overrides)
    return RunOutcome(**fields)  # type: ignore[arg-type]


def _wf(overfit: float) -> WalkForwardFold:
    m = PerformanceMetrics()
    return WalkForwardFold(
        fold_number=1, test_start=T0, test_end=T0 + 1, train_metrics=m, test_metrics=m, overfitting_score=overfit,
    )


def _titles(insights: list[BacktestInsight]) -> list[str]:
    return [i.title for i in insights]


# ── Tier & score ────────────────────────────────────────────────


class TestClassifyTier:
    thresholds = BacktestingConfig().tier_thresholds

    def test_excellent(self) -> None:
        assert classify_tier(_metrics(tp=50, tn=50), self.thresholds) == PerformanceTier.EXCELLENT

    def test_both_minimums_required(self) -> None:
        # f1 0.8 qualifies for GOOD, accuracy 0.8 only for ACCEPTABLE
        assert classify_tier(_metrics(tp=6, fp=1, tn=2, fn=1), self.thresholds) == PerformanceTier.ACCEPTABLE

    def test_zero_detections_very_poor(self) -> None:
        assert classify_tier(_metrics(), self.thresholds) == PerformanceTier.VERY_POOR

    def test_poor(self) -> None:
        m = PerformanceMetrics(total_detections=10, true_positives=5, f1_score=0.45, accuracy=0.6)
        assert classify_tier(m, self.thresholds) == PerformanceTier.POOR

    def test_custom_thresholds(self) -> None:
        thresholds = {PerformanceTier.GOOD: TierThreshold(min_f1=0.5, min_accuracy=0.5)}
        m = PerformanceMetrics(total_detections=10, f1_score=0.55, accuracy=0.6)
        assert classify_tier(m, thresholds) == PerformanceTier.GOOD


class TestPerformanceScore:
    def test_bounds(self) -> None:
        weights = {"f1": 0.6, "mcc": 0.4}
        assert performance_score(PerformanceMetrics(f1_score=1.0, mcc=1.0), weights) == 100.0
        assert performance_score(PerformanceMetrics(f1_score=0.0, mcc=-1.0), weights) == 0.0

    def test_monotonic_in_f1(self) -> None:
        weights = {"f1": 0.6, "mcc": 0.4}
        low = performance_score(PerformanceMetrics(f1_score=0.3, mcc=0.2), weights)
        high = performance_score(PerformanceMetrics(f1_score=0.6, mcc=0.2), weights)
        assert high > low

    def test_zero_weights(self) -> None:
        assert performance_score(PerformanceMetrics(f1_score=1.0), {"f1": 0.0, "mcc": 0.0}) == 0.0


# ── Insights ────────────────────────────────────────────────────


class TestInsights:
    def test_strengths(self) -> None:
        insights = generate_insights(InsightInputs(metrics=_metrics(tp=9, tn=9, fp=1, fn=1)))
        assert {"High Precision", "High Recall"} <= set(_titles(insights))
        assert all(i.type == InsightType.STRENGTH for i in insights)

    def test_permissive_threshold_flagged(self) -> None:
        insights = generate_insights(InsightInputs(metrics=_metrics(tp=1, fn=4, fp=6, tn=4)))
        fpr = next(i for i in insights if i.title == "High False Positive Rate")
        assert "too permissive" in fpr.description
        assert fpr.recommended_value == 0.1

    def test_low_precision_recommends_raising(self) -> None:
        insights = generate_insights(InsightInputs(metrics=_metrics(tp=4, fp=10, tn=2, fn=1)))
        titles = _titles(insights)
        assert "Low Precision" in titles
        assert "Increase Detection Thresholds" in titles
        assert "Lower Detection Thresholds" not in titles

    def test_low_recall_recommends_lowering(self) -> None:
        insights = generate_insights(InsightInputs(metrics=_metrics(tp=2, fp=0, tn=10, fn=8)))
        titles = _titles(insights)
        assert "Low Recall" in titles
        assert "Lower Detection Thresholds" in titles

    def test_sorted_by_priority(self) -> None:
        insights = generate_insights(InsightInputs(metrics=_metrics(tp=1, fn=4, fp=6, tn=4), quality_score=20))
        priorities = [i.priority for i in insights]
        assert priorities == sorted(priorities)

    def test_overfitting_warning(self) -> None:
        inputs = InsightInputs(metrics=_metrics(tp=5, tn=5), walk_forward_folds=[_wf(0.3), _wf(0.1)])
        assert "Potential Overfitting Detected" in _titles(generate_insights(inputs))

    def test_no_overfitting_warning_below_threshold(self) -> None:
        inputs = InsightInputs(metrics=_metrics(tp=5, tn=5), walk_forward_folds=[_wf(0.1)])
        assert "Potential Overfitting Detected" not in _titles(generate_insights(inputs))

    def test_data_warnings(self) -> None:
        inputs = InsightInputs(metrics=_metrics(), quality_score=30.0, units_evaluated=10, evaluator_failures=2)
        titles = _titles(generate_insights(inputs))
        assert "Low Data Quality" in titles
        assert "Evaluator Failures" in titles
        assert "No Labeled Data" in titles
        assert "Low Precision" not in titles

    def test_failing_rule_skipped(self) -> None:
        def broken(inputs: InsightInputs) -> list[BacktestInsight]:
            raise RuntimeError("bad rule")

        def ok(inputs: InsightInputs) -> list[BacktestInsight]:
            return generate_insights(inputs)

        insights = generate_insights(InsightInputs(metrics=_metrics(tp=9, tn=9, fp=1, fn=1)), rules=[broken, ok])
        assert "High Precision" in _titles(insights)


# ── Assembly ────────────────────────────────────────────────────


class TestReportAssembler:
    def _assemble(self, level: ReportDetailLevel | None = None, **kwargs: object):
        assembler = ReportAssembler(BacktestingConfig())
        return assembler.assemble(
            report_id="report-bt-1",
            config=_config(**kwargs),  # type: ignore[arg-type]
            dataset=_dataset(),
            outcome=_outcome(),
            started_at=T0,
            completed_at=T0 + 2.5,
            detail_level=level,
        )

    def test_summary_omits_detail(self) -> None:
        report = self._assemble(ReportDetailLevel.SUMMARY)
        assert report.fold_metrics == ()
        assert report.detections is None
        assert report.diagnostics is None
        assert report.overall_metrics.total_detections == 10

    def test_standard_includes_folds(self) -> None:
        report = self._assemble(ReportDetailLevel.STANDARD)
        assert len(report.fold_metrics) == 1
        assert report.detections is None
        assert report.insights

    def test_detailed_includes_detections(self) -> None:
        report = self._assemble(ReportDetailLevel.DETAILED)
        assert report.detections is not None
        assert len(report.detections) == 1
        assert report.diagnostics is None

    def test_debug_includes_diagnostics(self) -> None:
        report = self._assemble(ReportDetailLevel.DEBUG)
        assert report.diagnostics is not None
        assert report.diagnostics.source_counts == {"TRADES": 10}
        assert report.diagnostics.units_evaluated == 10

    def test_default_level_from_settings(self) -> None:
        report = self._assemble()
        assert report.detail_level == ReportDetailLevel.STANDARD

    def test_config_level_used(self) -> None:
        report = ReportAssembler().assemble(
            "r", _config(level=ReportDetailLevel.SUMMARY), _dataset(), _outcome(), T0, T0 + 1,
        )
        assert report.detail_level == ReportDetailLevel.SUMMARY

    def test_runtime_and_provenance(self) -> None:
        report = self._assemble()
        assert report.runtime_secs == pytest.approx(2.5)
        assert report.dataset_info.quality_score == 100.0
        assert report.dataset_info.start == T0
        assert report.performance_tier == PerformanceTier.ACCEPTABLE
        assert 0.0 <= report.performance_score <= 100.0

    def test_walk_forward_only_for_walk_forward(self) -> None:
        assembler = ReportAssembler()
        outcome = _outcome(walk_forward_folds=[_wf(0.0)])
        wf = assembler.assemble("r", _config(ValidationMethod.WALK_FORWARD), _dataset(), outcome, T0, T0 + 1)
        kf = assembler.assemble("r", _config(ValidationMethod.K_FOLD_CV), _dataset(), outcome, T0, T0 + 1)
        assert wf.walk_forward_folds is not None
        assert kf.walk_forward_folds is None

    def test_zero_detection_report(self) -> None:
        report = ReportAssembler().assemble(
            "r", _config(ValidationMethod.TRAIN_TEST_SPLIT), _dataset(), _outcome(_metrics()), T0, T0 + 1,
        )
        assert report.performance_tier == PerformanceTier.VERY_POOR
        assert report.overall_metrics.auc_roc == 0.5
