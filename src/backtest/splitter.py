"""Validation splitter — partitions a dataset window into (train, test) folds.

All functions here are pure. Windows are half-open ``[start, end)`` except
the one touching the dataset end, which is closed so no timestamp is lost.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from src.backtest.exceptions import BacktestConfigError
from src.backtest.types import DAY_SECS, BacktestConfig, Fold, TimeWindow
from src.core.types import HistoricalDataset, ValidationMethod

# Leave-one-out produces one fold per day; only the most recent days are kept.
DEFAULT_MAX_LOO_FOLDS = 31


@dataclass(frozen=True)
class SplitParams:
    """Method-specific splitting parameters."""

    train_test_split: float = 0.8
    k_folds: int = 5
    walk_forward_window_days: float = 30.0
    max_loo_folds: int = DEFAULT_MAX_LOO_FOLDS

    @classmethod
    def from_config(
        cls, config: BacktestConfig, max_loo_folds: int = DEFAULT_MAX_LOO_FOLDS,
    ) -> SplitParams:
        return cls(
            train_test_split=config.train_test_split,
            k_folds=config.k_folds,
            walk_forward_window_days=config.walk_forward_window_days,
            max_loo_folds=max_loo_folds,
        )


def day_units(start: float, end: float) -> int:
    """Number of day-length units needed to cover ``[start, end]`` (at least 1)."""
    return max(1, math.ceil((end - start) / DAY_SECS))


def split(
    dataset: HistoricalDataset,
    method: ValidationMethod,
    params: SplitParams | None = None,
) -> list[Fold]:
    """Produce the ordered folds for *dataset* under *method*."""
    return split_window(
        dataset.start,
        dataset.end,
        method,
        params,
        data_points=len(dataset.trades),
    )


def split_window(
    start: float,
    end: float,
    method: ValidationMethod,
    params: SplitParams | None = None,
    data_points: int = 0,
) -> list[Fold]:
    """Produce the ordered folds for the window ``[start, end]``.

    Args:
        data_points: Number of records in the window. When positive, the
            k-fold count is also capped by it.

    Raises:
        BacktestConfigError: On an empty window, invalid parameters, or an
            unsupported method.
    """
    params = params or SplitParams()
    if not start < end:
        raise BacktestConfigError(f"Cannot split empty window [{start}, {end}]")

    if method == ValidationMethod.NONE:
        return [_whole_window(start, end)]
    if method == ValidationMethod.TRAIN_TEST_SPLIT:
        return _train_test(start, end, params.train_test_split)
    if method == ValidationMethod.K_FOLD_CV:
        return _k_fold(start, end, params.k_folds, data_points)
    if method == ValidationMethod.WALK_FORWARD:
        return _walk_forward(start, end, params.walk_forward_window_days)
    if method == ValidationMethod.LEAVE_ONE_OUT:
        return _leave_one_out(start, end, params.max_loo_folds)
    raise BacktestConfigError(f"Unsupported validation method: {method}")


def _whole_window(start: float, end: float) -> Fold:
    return Fold(index=0, train=(), test=TimeWindow(start=start, end=end, closed=True))


def _train_test(start: float, end: float, ratio: float) -> list[Fold]:
    if not 0.0 < ratio < 1.0:
        raise BacktestConfigError(f"train_test_split must be in (0, 1), got {ratio}")
    split_at = start + ratio * (end - start)
    return [Fold(
        index=0,
        train=(TimeWindow(start=start, end=split_at),),
        test=TimeWindow(start=split_at, end=end, closed=True),
    )]


def _complement(start: float, end: float, test_start: float, test_end: float) -> tuple[TimeWindow, ...]:
    """Train windows covering ``[start, end]`` minus ``[test_start, test_end)``."""
    windows: list[TimeWindow] = []
    if test_start > start:
        windows.append(TimeWindow(start=start, end=test_start))
    if test_end < end:
        windows.append(TimeWindow(start=test_end, end=end, closed=True))
    return tuple(windows)


def _k_fold(start: float, end: float, k: int, data_points: int) -> list[Fold]:
    if k <= 0:
        raise BacktestConfigError(f"k_folds must be positive, got {k}")

    k = min(k, day_units(start, end))
    if data_points > 0:
        k = min(k, data_points)
    k = max(1, k)

    span = end - start
    bounds = [start + span * i / k for i in range(k)] + [end]

    folds: list[Fold] = []
    for i in range(k):
        folds.append(Fold(
            index=i,
            train=_complement(start, end, bounds[i], bounds[i + 1]),
            test=TimeWindow(start=bounds[i], end=bounds[i + 1], closed=i == k - 1),
        ))
    return folds


def _walk_forward(start: float, end: float, window_days: float) -> list[Fold]:
    if window_days <= 0:
        raise BacktestConfigError(f"walk_forward_window_days must be positive, got {window_days}")

    window = window_days * DAY_SECS
    if end - start <= window:
        return [_whole_window(start, end)]

    # The first window trains only; tests then advance one window at a time
    # and each trains on everything before it.
    folds: list[Fold] = []
    i = 1
    while start + i * window < end:
        test_start = start + i * window
        test_end = min(start + (i + 1) * window, end)
        folds.append(Fold(
            index=i - 1,
            train=(TimeWindow(start=start, end=test_start),),
            test=TimeWindow(start=test_start, end=test_end, closed=test_end >= end),
        ))
        i += 1
    return folds


def _leave_one_out(start: float, end: float, max_folds: int) -> list[Fold]:
    units = day_units(start, end)
    bounds = [start + j * DAY_SECS for j in range(units)] + [end]

    first = max(0, units - max(1, max_folds))
    folds: list[Fold] = []
    for j in range(first, units):
        folds.append(Fold(
            index=j - first,
            train=_complement(start, end, bounds[j], bounds[j + 1]),
            test=TimeWindow(start=bounds[j], end=bounds[j + 1], closed=j == units - 1),
        ))
    return folds
