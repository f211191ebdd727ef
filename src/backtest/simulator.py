"""Strategy simulator — replays a fold's test window through an evaluator."""

from __future__ import annotations

import asyncio
import bisect
import math
from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from src.backtest.evaluators import StrategyEvaluator, evaluate_unit
from src.backtest.exceptions import BacktestCancelledError
from src.backtest.labeling import Labeler, LabelContext, policy_labeler
from src.backtest.types import (
    DetectionResult,
    EvaluationUnit,
    Fold,
    LabelingPolicy,
    Prediction,
    StrategyConfig,
    TimeWindow,
)
from src.core.types import HistoricalDataset, HistoricalTrade

logger = structlog.stdlib.get_logger()


class CancellationToken:
    """Cooperative cancellation flag shared by a run and its folds."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self, backtest_id: str | None = None) -> None:
        if self._cancelled:
            raise BacktestCancelledError("Backtest cancelled", backtest_id=backtest_id)


@dataclass
class SimulationResult:
    """Detections produced for one fold window."""

    detections: list[DetectionResult] = field(default_factory=list)
    units_evaluated: int = 0
    evaluator_failures: int = 0


def _clamp(value: float, low: float, high: float) -> float:
    if math.isnan(value):
        return low
    return min(high, max(low, value))


def trades_in_window(trades: Sequence[HistoricalTrade], window: TimeWindow) -> list[HistoricalTrade]:
    """Trades inside *window*; *trades* must be sorted by timestamp."""
    lo = bisect.bisect_left(trades, window.start, key=lambda t: t.timestamp)
    if window.closed:
        hi = bisect.bisect_right(trades, window.end, key=lambda t: t.timestamp)
    else:
        hi = bisect.bisect_left(trades, window.end, key=lambda t: t.timestamp)
    return list(trades[lo:hi])


class StrategySimulator:
    """Evaluates every trade of a window and attaches ground truth.

    The simulator itself is stateless between calls, so one instance can
    serve folds running in parallel.

    Usage::

        simulator = StrategySimulator(batch_size=1000)
        result = await simulator.run(dataset, fold, strategy, evaluator)
    """

    def __init__(
        self,
        batch_size: int = 1000,
        policy: LabelingPolicy | None = None,
        labeler: Labeler | None = None,
    ) -> None:
        self._batch_size = max(1, batch_size)
        self._labeler = labeler or policy_labeler(policy or LabelingPolicy())

    async def run(
        self,
        dataset: HistoricalDataset,
        fold: Fold,
        strategy: StrategyConfig,
        evaluator: StrategyEvaluator,
        *,
        windows: Sequence[TimeWindow] | None = None,
        context: LabelContext | None = None,
        cancel_token: CancellationToken | None = None,
        backtest_id: str | None = None,
        id_prefix: str | None = None,
    ) -> SimulationResult:
        """Simulate *strategy* over the fold's test window.

        Args:
            windows: Windows to evaluate instead of ``fold.test`` (the train
                windows when measuring in-sample performance).
            context: Pre-built label lookups; built from *dataset* if omitted.
            id_prefix: Detection id prefix, defaults to the fold index.

        Raises:
            BacktestCancelledError: When *cancel_token* is set between batches.
        """
        ctx = context or LabelContext.from_dataset(dataset)
        prefix = id_prefix if id_prefix is not None else str(fold.index)
        result = SimulationResult()

        for window in windows if windows is not None else (fold.test,):
            for trade in trades_in_window(dataset.trades, window):
                if result.units_evaluated and result.units_evaluated % self._batch_size == 0:
                    if cancel_token is not None:
                        cancel_token.raise_if_cancelled(backtest_id)
                    await asyncio.sleep(0)

                unit = EvaluationUnit(
                    trade=trade,
                    wallet=ctx.wallet(trade.wallet_address),
                    market=ctx.market(trade.market_id),
                    fold_index=fold.index,
                    window=window,
                )
                detection = await self._simulate_unit(unit, strategy, evaluator, ctx, prefix, result)
                result.detections.append(detection)
                result.units_evaluated += 1

        if result.evaluator_failures:
            logger.warning(
                "evaluator_failures",
                backtest_id=backtest_id,
                fold=fold.index,
                failures=result.evaluator_failures,
                units=result.units_evaluated,
            )
        return result

    async def _simulate_unit(
        self,
        unit: EvaluationUnit,
        strategy: StrategyConfig,
        evaluator: StrategyEvaluator,
        ctx: LabelContext,
        prefix: str,
        result: SimulationResult,
    ) -> DetectionResult:
        trade = unit.trade
        failed = False
        try:
            prediction = await evaluate_unit(evaluator, unit, strategy.thresholds)
        except Exception:
            logger.debug("evaluator_error", trade_id=trade.trade_id, exc_info=True)
            prediction = Prediction(label=False)
            result.evaluator_failures += 1
            failed = True

        return DetectionResult(
            detection_id=f"{prefix}-{trade.trade_id}",
            fold_index=unit.fold_index,
            timestamp=trade.timestamp,
            strategy=strategy.type,
            market_id=trade.market_id,
            wallet_address=trade.wallet_address,
            detection_type=prediction.detection_type,
            predicted=bool(prediction.label),
            confidence=0.0 if failed else _clamp(prediction.confidence, 0.0, 1.0),
            suspicion_score=0.0 if failed else _clamp(prediction.suspicion_score, 0.0, 100.0),
            actual=self._labeler(unit, ctx),
            triggering_features=prediction.triggering_features,
            associated_trades=(trade.trade_id,),
            score_breakdown=prediction.score_breakdown,
            evaluator_error=failed,
        )
