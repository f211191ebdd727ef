"""Tests for the metrics calculator — confusion counts, rates, AUC, calibration, aggregation."""

from __future__ import annotations

import math
from datetime import UTC, datetime

import pytest

from src.backtest.metrics import (
    ConfusionCounts,
    auc_pr,
    auc_roc,
    brier_score,
    combine_metrics,
    compute_metrics,
    counts_from,
    log_loss,
    metrics_from_counts,
    overfitting_score,
    period_metrics,
)
from src.backtest.types import (
    NEUTRAL_BRIER_SCORE,
    NEUTRAL_LOG_LOSS,
    DetectionResult,
    PerformanceMetrics,
)
from src.core.types import StrategyType

T0 = 1_700_000_000.0

# ── Helpers ─────────────────────────────────────────────────────

_seq = 0


def _det(
    predicted: bool,
    actual: bool | None,
    confidence: float = 0.5,
    ts: float = T0,
) -> DetectionResult:
    global _seq
    _seq += 1
    return DetectionResult(
        detection_id=f"0-t{_seq}",
        timestamp=ts,
        strategy=StrategyType.INSIDER_DETECTION,
        predicted=predicted,
        actual=actual,
        confidence=confidence,
    )


def _batch(tp: int = 0, fp: int = 0, tn: int = 0, fn: int = 0) -> list[DetectionResult]:
    return (
        [_det(True, True) for _ in range(tp)]
        + [_det(True, False) for _ in range(fp)]
        + [_det(False, False) for _ in range(tn)]
        + [_det(False, True) for _ in range(fn)]
    )


# ── Counts & rates ──────────────────────────────────────────────


class TestComputeMetrics:
    def test_empty_detections(self) -> None:
        m = compute_metrics([])
        assert (m.true_positives, m.false_positives, m.true_negatives, m.false_negatives) == (0, 0, 0, 0)
        assert m.total_detections == 0
        assert m.accuracy == 0.0
        assert m.precision == 0.0
        assert m.recall == 0.0
        assert m.f1_score == 0.0
        assert m.mcc == 0.0
        assert m.auc_roc == 0.5

    def test_reference_counts(self) -> None:
        m = compute_metrics(_batch(tp=6, fp=1, tn=2, fn=1))
        assert m.total_detections == 10
        assert m.accuracy == pytest.approx(0.8)
        assert m.precision == pytest.approx(6 / 7)
        assert m.recall == pytest.approx(0.75)
        assert m.f1_score == pytest.approx(0.8)
        assert m.false_positive_rate == pytest.approx(1 / 3)
        assert m.false_negative_rate == pytest.approx(0.25)

    def test_mcc_value(self) -> None:
        m = compute_metrics(_batch(tp=6, fp=1, tn=2, fn=1))
        expected = (6 * 2 - 1 * 1) / ((7 * 7 * 3 * 3) ** 0.5)
        assert m.mcc == pytest.approx(expected)

    def test_counts_sum_to_total(self) -> None:
        m = compute_metrics(_batch(tp=3, fp=4, tn=5, fn=6))
        assert m.true_positives + m.false_positives + m.true_negatives + m.false_negatives == m.total_detections

    def test_perfect_classifier(self) -> None:
        m = compute_metrics(_batch(tp=5, tn=5))
        assert m.accuracy == 1.0
        assert m.f1_score == 1.0
        assert m.mcc == pytest.approx(1.0)

    def test_inverse_classifier(self) -> None:
        m = compute_metrics(_batch(fp=5, fn=5))
        assert m.mcc == pytest.approx(-1.0)
        assert m.accuracy == 0.0

    def test_unlabeled_excluded(self) -> None:
        detections = _batch(tp=2, tn=2) + [_det(True, None), _det(False, None)]
        m = compute_metrics(detections)
        assert m.total_detections == 4
        assert m.unlabeled_detections == 2

    def test_rates_bounded(self) -> None:
        for dets in (_batch(tp=1), _batch(fp=3), _batch(fn=2, tn=1), _batch(tp=1, fp=1, tn=1, fn=1)):
            m = compute_metrics(dets)
            for rate in (m.accuracy, m.precision, m.recall, m.f1_score, m.auc_roc):
                assert 0.0 <= rate <= 1.0
            assert -1.0 <= m.mcc <= 1.0

    def test_f2_weighs_recall(self) -> None:
        m = compute_metrics(_batch(tp=6, fp=1, tn=2, fn=1))
        p, r = 6 / 7, 0.75
        assert m.f2_score == pytest.approx(5 * p * r / (4 * p + r))

    def test_counts_from(self) -> None:
        counts = counts_from(_batch(tp=1, fp=2, tn=3, fn=4) + [_det(True, None)])
        assert counts == ConfusionCounts(tp=1, fp=2, tn=3, fn=4)
        assert counts.total == 10


# ── AUC ─────────────────────────────────────────────────────────


class TestAucRoc:
    def test_perfect_ranking(self) -> None:
        dets = [_det(True, True, 0.9), _det(True, True, 0.8), _det(False, False, 0.2), _det(False, False, 0.1)]
        assert auc_roc(dets) == 1.0

    def test_reversed_ranking(self) -> None:
        dets = [_det(True, True, 0.1), _det(False, False, 0.9)]
        assert auc_roc(dets) == 0.0

    def test_ties_count_half(self) -> None:
        dets = [_det(True, True, 0.5), _det(False, False, 0.5)]
        assert auc_roc(dets) == pytest.approx(0.5)

    def test_single_class_is_half(self) -> None:
        assert auc_roc([_det(True, True, 0.9), _det(True, True, 0.1)]) == 0.5
        assert auc_roc([_det(False, False, 0.9)]) == 0.5

    def test_mixed_ranking(self) -> None:
        # positives at 0.9, 0.4; negatives at 0.6, 0.1 -> 3 of 4 pairs ordered correctly
        dets = [_det(True, True, 0.9), _det(True, True, 0.4), _det(False, False, 0.6), _det(False, False, 0.1)]
        assert auc_roc(dets) == pytest.approx(0.75)


# ── Aggregation ─────────────────────────────────────────────────


# ── Calibration & ranking ───────────────────────────────────────


class TestCalibration:
    def test_empty_is_neutral(self) -> None:
        m = compute_metrics([])
        assert m.brier_score == NEUTRAL_BRIER_SCORE
        assert m.log_loss == pytest.approx(math.log(2))
        assert m.auc_pr == 0.0
        assert brier_score([]) == NEUTRAL_BRIER_SCORE
        assert log_loss([]) == NEUTRAL_LOG_LOSS

    def test_brier_is_mean_squared_error(self) -> None:
        dets = [_det(True, True, 0.8), _det(False, False, 0.4)]
        assert brier_score(dets) == pytest.approx((0.2**2 + 0.4**2) / 2)
        assert compute_metrics(dets).brier_score == pytest.approx(0.1)

    def test_log_loss_clips_certain_predictions(self) -> None:
        dets = [_det(True, True, 1.0), _det(False, True, 0.0)]
        expected = (-math.log(0.99) - math.log(0.01)) / 2
        assert log_loss(dets) == pytest.approx(expected)

    def test_unlabeled_ignored(self) -> None:
        dets = [_det(True, True, 0.9), _det(True, None, 0.1)]
        assert brier_score(dets) == pytest.approx(0.01)
        assert log_loss(dets) == pytest.approx(-math.log(0.9))

    def test_perfect_predictions_score_low(self) -> None:
        good = compute_metrics([_det(True, True, 0.99), _det(False, False, 0.01)])
        bad = compute_metrics([_det(True, False, 0.99), _det(False, True, 0.01)])
        assert good.brier_score < bad.brier_score
        assert good.log_loss < bad.log_loss


class TestAucPr:
    def test_perfect_ranking(self) -> None:
        dets = [_det(True, True, 0.9), _det(True, True, 0.8), _det(False, False, 0.2)]
        assert auc_pr(dets) == 1.0

    def test_mixed_ranking(self) -> None:
        dets = [
            _det(True, True, 0.9),
            _det(True, False, 0.6),
            _det(False, True, 0.4),
            _det(False, False, 0.1),
        ]
        assert auc_pr(dets) == pytest.approx(0.5 * 1.0 + 0.5 * (2 / 3))

    def test_ties_enter_together(self) -> None:
        dets = [_det(True, True, 0.5), _det(True, False, 0.5)]
        assert auc_pr(dets) == pytest.approx(0.5)

    def test_no_positives(self) -> None:
        assert auc_pr([_det(True, False, 0.9), _det(False, False, 0.1)]) == 0.0


class TestDetectionRate:
    def test_defaults_to_one_unit_per_detection(self) -> None:
        m = compute_metrics(_batch(tp=2, fp=1, tn=1))
        assert m.flagged_detections == 3
        assert m.units_evaluated == 4
        assert m.detection_rate == pytest.approx(0.75)

    def test_uses_units_evaluated(self) -> None:
        dets = [_det(True, True), _det(True, None), _det(False, False)]
        m = compute_metrics(dets, units_evaluated=20)
        assert m.flagged_detections == 2
        assert m.detection_rate == pytest.approx(0.1)

    def test_zero_units(self) -> None:
        assert compute_metrics([], units_evaluated=0).detection_rate == 0.0


class TestCombineMetrics:
    def test_sums_counts_and_recomputes(self) -> None:
        a = compute_metrics(_batch(tp=3, fp=1))
        b = compute_metrics(_batch(tp=3, tn=2, fn=1))
        combined = combine_metrics([a, b])
        pooled = compute_metrics(_batch(tp=6, fp=1, tn=2, fn=1))
        assert combined.true_positives == 6
        assert combined.total_detections == 10
        assert combined.precision == pytest.approx(pooled.precision)
        assert combined.f1_score == pytest.approx(pooled.f1_score)

    def test_calibration_from_sums(self) -> None:
        a_dets = [_det(True, True, 0.9), _det(False, False, 0.3)]
        b_dets = [_det(True, False, 0.7), _det(False, True, 0.2), _det(True, None, 0.6)]
        combined = combine_metrics([
            compute_metrics(a_dets, units_evaluated=10),
            compute_metrics(b_dets, units_evaluated=30),
        ])
        pooled = compute_metrics(a_dets + b_dets, units_evaluated=40)
        assert combined.brier_score == pytest.approx(pooled.brier_score)
        assert combined.log_loss == pytest.approx(pooled.log_loss)
        assert combined.flagged_detections == 3
        assert combined.units_evaluated == 40
        assert combined.detection_rate == pytest.approx(3 / 40)

    def test_empty_calibration_is_neutral(self) -> None:
        combined = combine_metrics([compute_metrics([]), compute_metrics([])])
        assert combined.brier_score == NEUTRAL_BRIER_SCORE
        assert combined.log_loss == NEUTRAL_LOG_LOSS

    def test_not_an_average_of_rates(self) -> None:
        a = compute_metrics(_batch(tp=1))
        b = compute_metrics(_batch(fp=9))
        combined = combine_metrics([a, b])
        assert combined.precision == pytest.approx(0.1)

    def test_empty(self) -> None:
        combined = combine_metrics([])
        assert combined.total_detections == 0
        assert combined.auc_roc == 0.5

    def test_metrics_from_counts_single_class_auc(self) -> None:
        m = metrics_from_counts(ConfusionCounts(tp=3), auc=0.9)
        assert m.auc_roc == 0.5


class TestOverfittingScore:
    def test_identical_is_zero(self) -> None:
        m = compute_metrics(_batch(tp=3, tn=3, fp=1))
        assert overfitting_score(m, m) == 0.0

    def test_mean_absolute_gap(self) -> None:
        train = PerformanceMetrics(accuracy=0.9, f1_score=0.8, precision=0.7, recall=0.6)
        test = PerformanceMetrics(accuracy=0.5, f1_score=0.6, precision=0.7, recall=0.8)
        assert overfitting_score(train, test) == pytest.approx((0.4 + 0.2 + 0.0 + 0.2) / 4)


class TestPeriodMetrics:
    def test_grouped_by_utc_month(self) -> None:
        jan = datetime(2024, 1, 15, tzinfo=UTC).timestamp()
        feb = datetime(2024, 2, 3, tzinfo=UTC).timestamp()
        dec = datetime(2023, 12, 31, 23, 59, tzinfo=UTC).timestamp()
        periods = period_metrics([
            _det(True, True, ts=feb),
            _det(True, False, ts=jan),
            _det(False, False, ts=jan),
            _det(True, True, ts=dec),
        ])

        assert [p.period for p in periods] == ["2023-12", "2024-01", "2024-02"]
        assert [p.sample_count for p in periods] == [1, 2, 1]
        assert periods[1].metrics.false_positives == 1
        assert periods[0].period_end == datetime(2024, 1, 1, tzinfo=UTC).timestamp()

    def test_empty(self) -> None:
        assert period_metrics([]) == []
