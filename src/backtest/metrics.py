"""Metrics calculator — confusion matrix, derived rates and calibration scores.

Every function here is pure. Empty denominators yield 0, and AUC-ROC is 0.5
when either class is absent. ``confidence`` is treated as the predicted
probability of the positive class for AUC, Brier score and log loss.
"""

from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from src.backtest.types import (
    NEUTRAL_BRIER_SCORE,
    NEUTRAL_LOG_LOSS,
    DetectionResult,
    PerformanceMetrics,
    PeriodMetrics,
)

# Probabilities are clipped to this margin before taking logs.
_LOG_LOSS_EPS = 0.01


@dataclass(frozen=True)
class ConfusionCounts:
    """Raw confusion-matrix counts over labeled detections."""

    tp: int = 0
    fp: int = 0
    tn: int = 0
    fn: int = 0

    @property
    def total(self) -> int:
        return self.tp + self.fp + self.tn + self.fn

    def __add__(self, other: ConfusionCounts) -> ConfusionCounts:
        return ConfusionCounts(
            tp=self.tp + other.tp,
            fp=self.fp + other.fp,
            tn=self.tn + other.tn,
            fn=self.fn + other.fn,
        )


def _ratio(num: float, den: float) -> float:
    return num / den if den > 0 else 0.0


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    if math.isnan(value):
        return low
    return min(high, max(low, value))


def counts_from(detections: Iterable[DetectionResult]) -> ConfusionCounts:
    """Tally labeled detections; unlabeled ones are skipped."""
    tp = fp = tn = fn = 0
    for d in detections:
        if d.actual is None:
            continue
        if d.predicted and d.actual:
            tp += 1
        elif d.predicted:
            fp += 1
        elif d.actual:
            fn += 1
        else:
            tn += 1
    return ConfusionCounts(tp=tp, fp=fp, tn=tn, fn=fn)


def auc_roc(detections: Iterable[DetectionResult]) -> float:
    """Area under the ROC curve of ``confidence`` against ground truth.

    Mann-Whitney U over labeled detections, with tied scores given their
    average rank.
    """
    scored = sorted(
        ((d.confidence, bool(d.actual)) for d in detections if d.actual is not None),
        key=lambda pair: pair[0],
    )
    n_pos = sum(1 for _, actual in scored if actual)
    n_neg = len(scored) - n_pos
    if n_pos == 0 or n_neg == 0:
        return 0.5

    rank_sum = 0.0
    i = 0
    while i < len(scored):
        j = i
        while j + 1 < len(scored) and scored[j + 1][0] == scored[i][0]:
            j += 1
        avg_rank = (i + j) / 2 + 1
        rank_sum += avg_rank * sum(1 for k in range(i, j + 1) if scored[k][1])
        i = j + 1

    u = rank_sum - n_pos * (n_pos + 1) / 2
    return _clamp(u / (n_pos * n_neg))


def auc_pr(detections: Iterable[DetectionResult]) -> float:
    """Area under the precision-recall curve as average precision.

    Detections are ranked by ``confidence``; tied scores enter the curve
    together. 0 when nothing labeled is positive.
    """
    scored = sorted(
        ((d.confidence, bool(d.actual)) for d in detections if d.actual is not None),
        key=lambda pair: pair[0],
        reverse=True,
    )
    n_pos = sum(1 for _, actual in scored if actual)
    if n_pos == 0:
        return 0.0

    area = 0.0
    true_pos = 0
    i = 0
    while i < len(scored):
        j = i
        group_pos = 0
        while j < len(scored) and scored[j][0] == scored[i][0]:
            group_pos += scored[j][1]
            j += 1
        true_pos += group_pos
        area += (group_pos / n_pos) * (true_pos / j)
        i = j
    return _clamp(area)


def brier_score(detections: Iterable[DetectionResult]) -> float:
    """Mean squared error of ``confidence`` against the labels."""
    errors = [(d.confidence - float(d.actual)) ** 2 for d in detections if d.actual is not None]
    if not errors:
        return NEUTRAL_BRIER_SCORE
    return _clamp(sum(errors) / len(errors))


def log_loss(detections: Iterable[DetectionResult]) -> float:
    """Mean binary cross-entropy of ``confidence`` against the labels."""
    losses = []
    for d in detections:
        if d.actual is None:
            continue
        p = min(1.0 - _LOG_LOSS_EPS, max(_LOG_LOSS_EPS, d.confidence))
        losses.append(-math.log(p if d.actual else 1.0 - p))
    if not losses:
        return NEUTRAL_LOG_LOSS
    return sum(losses) / len(losses)


def metrics_from_counts(
    counts: ConfusionCounts,
    auc: float = 0.5,
    avg_confidence: float = 0.0,
    unlabeled: int = 0,
    *,
    pr_auc: float = 0.0,
    brier: float | None = None,
    loss: float | None = None,
    flagged: int = 0,
    units: int = 0,
) -> PerformanceMetrics:
    """Derive every rate from *counts*.

    Calibration scores fall back to their neutral values when *counts* is
    empty or they are not given.
    """
    if counts.total == 0 or brier is None:
        brier = NEUTRAL_BRIER_SCORE
    if counts.total == 0 or loss is None:
        loss = NEUTRAL_LOG_LOSS
    tp, fp, tn, fn = counts.tp, counts.fp, counts.tn, counts.fn
    total = counts.total

    precision = _ratio(tp, tp + fp)
    recall = _ratio(tp, tp + fn)
    f1 = _ratio(2 * precision * recall, precision + recall)
    f2 = _ratio(5 * precision * recall, 4 * precision + recall)

    mcc_den = math.sqrt(float(tp + fp) * (tp + fn) * (tn + fp) * (tn + fn))
    mcc = _ratio(tp * tn - fp * fn, mcc_den)

    has_both = (tp + fn) > 0 and (tn + fp) > 0
    return PerformanceMetrics(
        true_positives=tp,
        false_positives=fp,
        true_negatives=tn,
        false_negatives=fn,
        total_detections=total,
        accuracy=_clamp(_ratio(tp + tn, total)),
        precision=_clamp(precision),
        recall=_clamp(recall),
        f1_score=_clamp(f1),
        f2_score=_clamp(f2),
        mcc=_clamp(mcc, -1.0, 1.0),
        auc_roc=_clamp(auc) if has_both else 0.5,
        auc_pr=_clamp(pr_auc) if (tp + fn) > 0 else 0.0,
        brier_score=_clamp(brier),
        log_loss=max(0.0, loss),
        false_positive_rate=_clamp(_ratio(fp, fp + tn)),
        false_negative_rate=_clamp(_ratio(fn, fn + tp)),
        avg_confidence=_clamp(avg_confidence),
        unlabeled_detections=unlabeled,
        flagged_detections=flagged,
        units_evaluated=units,
        detection_rate=_clamp(_ratio(flagged, units)),
    )


def compute_metrics(
    detections: Sequence[DetectionResult],
    units_evaluated: int | None = None,
) -> PerformanceMetrics:
    """Metrics over a set of detections (unlabeled ones only counted aside).

    ``detection_rate`` is the share of *units_evaluated* (default: one unit
    per detection) that the strategy flagged, labeled or not.
    """
    labeled = [d for d in detections if d.actual is not None]
    avg_conf = _ratio(sum(d.confidence for d in labeled), len(labeled))
    return metrics_from_counts(
        counts_from(labeled),
        auc=auc_roc(labeled),
        avg_confidence=avg_conf,
        unlabeled=len(detections) - len(labeled),
        pr_auc=auc_pr(labeled),
        brier=brier_score(labeled),
        loss=log_loss(labeled),
        flagged=sum(1 for d in detections if d.predicted),
        units=len(detections) if units_evaluated is None else units_evaluated,
    )


def combine_metrics(parts: Sequence[PerformanceMetrics]) -> PerformanceMetrics:
    """Aggregate per-fold metrics by summing counts and recomputing once.

    AUC is averaged weighted by each part's positive-negative pair count and
    PR-AUC by its positive count, an approximation used only when the raw
    detections are unavailable. Brier score and log loss are exact, being
    means over labeled detections.
    """
    counts = ConfusionCounts()
    pair_weight = 0.0
    auc_weighted = 0.0
    pr_weighted = 0.0
    conf_weighted = 0.0
    brier_weighted = 0.0
    loss_weighted = 0.0
    unlabeled = 0
    flagged = 0
    units = 0
    for m in parts:
        counts = counts + ConfusionCounts(
            tp=m.true_positives, fp=m.false_positives, tn=m.true_negatives, fn=m.false_negatives,
        )
        pairs = m.positives * m.negatives
        pair_weight += pairs
        auc_weighted += m.auc_roc * pairs
        conf_weighted += m.avg_confidence * m.total_detections
        unlabeled += m.unlabeled_detections
        pr_weighted += m.auc_pr * m.positives
        brier_weighted += m.brier_score * m.total_detections
        loss_weighted += m.log_loss * m.total_detections
        flagged += m.flagged_detections
        units += m.units_evaluated

    return metrics_from_counts(
        counts,
        auc=_ratio(auc_weighted, pair_weight) if pair_weight else 0.5,
        avg_confidence=_ratio(conf_weighted, counts.total),
        unlabeled=unlabeled,
        pr_auc=_ratio(pr_weighted, counts.tp + counts.fn),
        brier=_ratio(brier_weighted, counts.total),
        loss=_ratio(loss_weighted, counts.total),
        flagged=flagged,
        units=units,
    )


def overfitting_score(train: PerformanceMetrics, test: PerformanceMetrics) -> float:
    """Mean absolute gap between in-sample and out-of-sample rates."""
    gaps = (
        abs(train.accuracy - test.accuracy),
        abs(train.f1_score - test.f1_score),
        abs(train.precision - test.precision),
        abs(train.recall - test.recall),
    )
    return sum(gaps) / len(gaps)


def _month_bounds(ts: float) -> tuple[str, float, float]:
    dt = datetime.fromtimestamp(ts, tz=UTC)
    start = datetime(dt.year, dt.month, 1, tzinfo=UTC)
    if dt.month == 12:
        end = datetime(dt.year + 1, 1, 1, tzinfo=UTC)
    else:
        end = datetime(dt.year, dt.month + 1, 1, tzinfo=UTC)
    return start.strftime("%Y-%m"), start.timestamp(), end.timestamp()


def period_metrics(detections: Sequence[DetectionResult]) -> list[PeriodMetrics]:
    """Per UTC calendar month breakdown, in chronological order."""
    buckets: defaultdict[str, list[DetectionResult]] = defaultdict(list)
    bounds: dict[str, tuple[float, float]] = {}
    for d in detections:
        label, start, end = _month_bounds(d.timestamp)
        buckets[label].append(d)
        bounds[label] = (start, end)

    return [
        PeriodMetrics(
            period=label,
            period_start=bounds[label][0],
            period_end=bounds[label][1],
            metrics=compute_metrics(buckets[label]),
            sample_count=len(buckets[label]),
        )
        for label in sorted(buckets)
    ]
