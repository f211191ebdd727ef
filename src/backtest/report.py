"""Report assembler — grades a run and packages it at the requested detail level."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

import structlog

from src.backtest.types import (
    BacktestConfig,
    BacktestDiagnostics,
    BacktestInsight,
    BacktestReport,
    DatasetInfo,
    DetectionResult,
    FoldMetrics,
    InsightType,
    PerformanceMetrics,
    PeriodMetrics,
    WalkForwardFold,
)
from src.core.config import BacktestingConfig, TierThreshold
from src.core.types import HistoricalDataset, PerformanceTier, ReportDetailLevel, ValidationMethod

logger = structlog.stdlib.get_logger()

# Tiers are checked best first; VERY_POOR is the fallback.
TIER_ORDER: tuple[PerformanceTier, ...] = (
    PerformanceTier.EXCELLENT,
    PerformanceTier.GOOD,
    PerformanceTier.ACCEPTABLE,
    PerformanceTier.POOR,
)

HIGH_RATE = 0.8
LOW_RATE = 0.5
HIGH_FPR = 0.3
WEAK_F1 = 0.6
OVERFITTING_WARN = 0.15
LOW_QUALITY = 50.0


def classify_tier(
    metrics: PerformanceMetrics,
    thresholds: Mapping[PerformanceTier, TierThreshold],
) -> PerformanceTier:
    """First tier whose F1 and accuracy minimums are both met."""
    if metrics.total_detections == 0:
        return PerformanceTier.VERY_POOR
    for tier in TIER_ORDER:
        threshold = thresholds.get(tier)
        if threshold is None:
            continue
        if metrics.f1_score >= threshold.min_f1 and metrics.accuracy >= threshold.min_accuracy:
            return tier
    return PerformanceTier.VERY_POOR


def performance_score(metrics: PerformanceMetrics, weights: Mapping[str, float]) -> float:
    """Weighted blend of F1 and rescaled MCC, in ``[0, 100]``."""
    w_f1 = max(0.0, weights.get("f1", 0.6))
    w_mcc = max(0.0, weights.get("mcc", 0.4))
    total = w_f1 + w_mcc
    if total == 0:
        return 0.0
    blend = (w_f1 * metrics.f1_score + w_mcc * (metrics.mcc + 1.0) / 2.0) / total
    return round(min(100.0, max(0.0, 100.0 * blend)), 2)


# ── Insights ────────────────────────────────────────────────────


@dataclass
class InsightInputs:
    """Everything an insight rule may look at."""

    metrics: PerformanceMetrics
    walk_forward_folds: Sequence[WalkForwardFold] | None = None
    quality_score: float = 100.0
    units_evaluated: int = 0
    evaluator_failures: int = 0

    @property
    def labeled(self) -> bool:
        return self.metrics.total_detections > 0


InsightRule = Callable[[InsightInputs], list[BacktestInsight]]


def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"


def _strengths(inputs: InsightInputs) -> list[BacktestInsight]:
    m = inputs.metrics
    if not inputs.labeled:
        return []
    insights: list[BacktestInsight] = []
    if m.precision >= HIGH_RATE:
        insights.append(BacktestInsight(
            type=InsightType.STRENGTH,
            title="High Precision",
            description=f"Strategy has excellent precision ({_pct(m.precision)}), meaning most detections are accurate.",
            metric="precision",
            current_value=m.precision,
            priority=3,
        ))
    if m.recall >= HIGH_RATE:
        insights.append(BacktestInsight(
            type=InsightType.STRENGTH,
            title="High Recall",
            description=f"Strategy catches most suspicious activity ({_pct(m.recall)} recall).",
            metric="recall",
            current_value=m.recall,
            priority=3,
        ))
    return insights


def _weaknesses(inputs: InsightInputs) -> list[BacktestInsight]:
    m = inputs.metrics
    if not inputs.labeled:
        return []
    insights: list[BacktestInsight] = []
    if m.precision < LOW_RATE:
        insights.append(BacktestInsight(
            type=InsightType.WEAKNESS,
            title="Low Precision",
            description=(
                f"Strategy has many false positives (precision: {_pct(m.precision)}). "
                "Consider raising detection thresholds."
            ),
            metric="precision",
            current_value=m.precision,
            recommended_value=0.7,
            priority=1,
        ))
    if m.recall < LOW_RATE:
        insights.append(BacktestInsight(
            type=InsightType.WEAKNESS,
            title="Low Recall",
            description=(
                f"Strategy misses many suspicious activities (recall: {_pct(m.recall)}). "
                "Consider lowering thresholds."
            ),
            metric="recall",
            current_value=m.recall,
            recommended_value=0.7,
            priority=1,
        ))
    if m.false_positive_rate > HIGH_FPR:
        description = (
            f"{_pct(m.false_positive_rate)} of negative cases were flagged, which may cause alert fatigue."
        )
        if m.false_positive_rate > m.recall:
            description += " A false-positive rate above recall suggests the threshold is too permissive."
        insights.append(BacktestInsight(
            type=InsightType.WEAKNESS,
            title="High False Positive Rate",
            description=description,
            metric="false_positive_rate",
            current_value=m.false_positive_rate,
            recommended_value=0.1,
            priority=2,
        ))
    return insights


def _recommendations(inputs: InsightInputs) -> list[BacktestInsight]:
    m = inputs.metrics
    if not inputs.labeled or m.f1_score >= WEAK_F1:
        return []
    if m.precision < m.recall:
        return [BacktestInsight(
            type=InsightType.RECOMMENDATION,
            title="Increase Detection Thresholds",
            description=(
                "Consider raising suspicion thresholds to reduce false positives "
                "while maintaining acceptable recall."
            ),
            priority=2,
        )]
    if m.recall < m.precision:
        return [BacktestInsight(
            type=InsightType.RECOMMENDATION,
            title="Lower Detection Thresholds",
            description="Consider lowering suspicion thresholds to catch more suspicious activity.",
            priority=2,
        )]
    return []


def _overfitting(inputs: InsightInputs) -> list[BacktestInsight]:
    folds = inputs.walk_forward_folds
    if not folds:
        return []
    avg = sum(f.overfitting_score for f in folds) / len(folds)
    if avg <= OVERFITTING_WARN:
        return []
    return [BacktestInsight(
        type=InsightType.WARNING,
        title="Potential Overfitting Detected",
        description=f"Average overfitting score is {_pct(avg)}. Strategy may not generalize well to new data.",
        current_value=avg,
        recommended_value=0.05,
        priority=1,
    )]


def _data_warnings(inputs: InsightInputs) -> list[BacktestInsight]:
    insights: list[BacktestInsight] = []
    if inputs.quality_score < LOW_QUALITY:
        insights.append(BacktestInsight(
            type=InsightType.WARNING,
            title="Low Data Quality",
            description=(
                f"Dataset quality score is {inputs.quality_score:.1f}/100. "
                "Some sources failed or the window is sparsely covered."
            ),
            metric="quality_score",
            current_value=inputs.quality_score,
            priority=1,
        ))
    if inputs.evaluator_failures:
        rate = inputs.evaluator_failures / max(1, inputs.units_evaluated)
        insights.append(BacktestInsight(
            type=InsightType.WARNING,
            title="Evaluator Failures",
            description=(
                f"The evaluator failed on {inputs.evaluator_failures} of "
                f"{inputs.units_evaluated} units ({_pct(rate)}); those were scored as negatives."
            ),
            metric="evaluator_failures",
            current_value=float(inputs.evaluator_failures),
            priority=1,
        ))
    if not inputs.labeled:
        insights.append(BacktestInsight(
            type=InsightType.WARNING,
            title="No Labeled Data",
            description="No detection could be matched to ground truth, so metrics carry no signal.",
            priority=1,
        ))
    return insights


DEFAULT_RULES: tuple[InsightRule, ...] = (
    _strengths,
    _weaknesses,
    _recommendations,
    _overfitting,
    _data_warnings,
)


def generate_insights(
    inputs: InsightInputs,
    rules: Sequence[InsightRule] = DEFAULT_RULES,
) -> list[BacktestInsight]:
    """Run every rule and return insights sorted by priority.

    A rule that raises is logged and skipped.
    """
    insights: list[BacktestInsight] = []
    for rule in rules:
        try:
            insights.extend(rule(inputs))
        except Exception:
            logger.exception("insight_rule_failed", rule=getattr(rule, "__name__", repr(rule)))
    return sorted(insights, key=lambda i: i.priority)


# ── Assembly ────────────────────────────────────────────────────


@dataclass
class RunOutcome:
    """Raw results of a run, handed to the assembler."""

    overall_metrics: PerformanceMetrics
    fold_metrics: list[FoldMetrics] = field(default_factory=list)
    walk_forward_folds: list[WalkForwardFold] | None = None
    period_metrics: list[PeriodMetrics] = field(default_factory=list)
    detections: list[DetectionResult] = field(default_factory=list)
    units_evaluated: int = 0
    evaluator_failures: int = 0
    cache_hit: bool = False
    shared_load: bool = False


class ReportAssembler:
    """Builds the immutable :class:`BacktestReport` for a finished run.

    Usage::

        assembler = ReportAssembler(settings.backtesting)
        report = assembler.assemble(report_id, config, dataset, outcome, started_at, completed_at)
    """

    def __init__(
        self,
        config: BacktestingConfig | None = None,
        rules: Sequence[InsightRule] = DEFAULT_RULES,
    ) -> None:
        self._config = config or BacktestingConfig()
        self._rules = tuple(rules)

    def assemble(
        self,
        report_id: str,
        config: BacktestConfig,
        dataset: HistoricalDataset,
        outcome: RunOutcome,
        started_at: float,
        completed_at: float,
        detail_level: ReportDetailLevel | None = None,
    ) -> BacktestReport:
        level = detail_level or config.report_detail_level or self._config.default_detail_level
        metrics = outcome.overall_metrics

        walk_forward = outcome.walk_forward_folds
        if config.validation_method != ValidationMethod.WALK_FORWARD:
            walk_forward = None

        insights = generate_insights(
            InsightInputs(
                metrics=metrics,
                walk_forward_folds=walk_forward,
                quality_score=dataset.quality_score,
                units_evaluated=outcome.units_evaluated,
                evaluator_failures=outcome.evaluator_failures,
            ),
            self._rules,
        )

        include_folds = level != ReportDetailLevel.SUMMARY
        include_detections = level in (ReportDetailLevel.DETAILED, ReportDetailLevel.DEBUG)

        diagnostics = None
        if level == ReportDetailLevel.DEBUG:
            diagnostics = BacktestDiagnostics(
                cache_hit=outcome.cache_hit,
                shared_load=outcome.shared_load,
                source_counts=dict(dataset.source_counts),
                failed_sources=dataset.failed_sources,
                folds_evaluated=len(outcome.fold_metrics),
                units_evaluated=outcome.units_evaluated,
                evaluator_failures=outcome.evaluator_failures,
                unlabeled_detections=metrics.unlabeled_detections,
            )

        return BacktestReport(
            report_id=report_id,
            name=config.name,
            description=config.description,
            strategy=config.strategy,
            validation_method=config.validation_method,
            detail_level=level,
            dataset_info=DatasetInfo(
                name=dataset.name,
                start=dataset.start,
                end=dataset.end,
                total_records=dataset.total_records,
                quality_score=dataset.quality_score,
                sources=dataset.sources,
            ),
            overall_metrics=metrics,
            fold_metrics=tuple(outcome.fold_metrics) if include_folds else (),
            walk_forward_folds=tuple(walk_forward) if include_folds and walk_forward is not None else None,
            period_metrics=tuple(outcome.period_metrics) if include_folds else (),
            performance_tier=classify_tier(metrics, self._config.tier_thresholds),
            performance_score=performance_score(metrics, self._config.score_weights),
            insights=tuple(insights),
            detections=tuple(outcome.detections) if include_detections else None,
            diagnostics=diagnostics,
            started_at=started_at,
            completed_at=completed_at,
            runtime_secs=max(0.0, completed_at - started_at),
        )
