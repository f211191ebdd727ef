"""Strategy evaluator contract and registry.

The engine ships no detection heuristics. Built-in strategy types are bound
to evaluators at runtime through :class:`EvaluatorRegistry`; ``CUSTOM``
strategies carry their own evaluator on ``StrategyConfig.evaluator``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

import structlog

from src.backtest.exceptions import BacktestConfigError
from src.backtest.types import DetectionThresholds, EvaluationUnit, Prediction, StrategyConfig
from src.core.types import StrategyType

logger = structlog.stdlib.get_logger()

EvaluationOutcome = Prediction | Awaitable[Prediction]
EvaluateFn = Callable[[EvaluationUnit, DetectionThresholds], EvaluationOutcome]


@runtime_checkable
class StrategyEvaluator(Protocol):
    """Anything that can score one unit against a threshold set.

    ``evaluate`` may be a plain method or a coroutine; evaluators that do
    I/O should be async. Any randomness is the evaluator's own concern.
    """

    def evaluate(self, unit: EvaluationUnit, thresholds: DetectionThresholds) -> EvaluationOutcome:
        ...


class CallableEvaluator:
    """Adapts a bare ``(unit, thresholds) -> Prediction`` callable."""

    def __init__(self, fn: EvaluateFn, name: str = "") -> None:
        self._fn = fn
        self.name = name or getattr(fn, "__name__", "callable")

    def evaluate(self, unit: EvaluationUnit, thresholds: DetectionThresholds) -> EvaluationOutcome:
        return self._fn(unit, thresholds)

    def __repr__(self) -> str:
        return f"CallableEvaluator({self.name!r})"


def as_evaluator(candidate: Any) -> StrategyEvaluator:
    """Coerce an evaluator object or plain callable into a :class:`StrategyEvaluator`."""
    if isinstance(candidate, StrategyEvaluator):
        return candidate
    if callable(candidate):
        return CallableEvaluator(candidate)
    raise BacktestConfigError(
        f"Evaluator must define evaluate() or be callable, got {type(candidate).__name__}"
    )


async def evaluate_unit(
    evaluator: StrategyEvaluator,
    unit: EvaluationUnit,
    thresholds: DetectionThresholds,
) -> Prediction:
    """Run *evaluator* on one unit, awaiting it if it is a coroutine."""
    result = evaluator.evaluate(unit, thresholds)
    if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
        result = await result
    if not isinstance(result, Prediction):
        raise TypeError(f"Evaluator returned {type(result).__name__}, expected Prediction")
    return result


class EvaluatorRegistry:
    """Binds built-in strategy types to evaluator implementations.

    Usage::

        registry = EvaluatorRegistry()
        registry.register(StrategyType.WHALE_DETECTION, WhaleEvaluator())
        evaluator = registry.resolve(strategy_config)
    """

    def __init__(self) -> None:
        self._evaluators: dict[StrategyType, StrategyEvaluator] = {}

    def __contains__(self, strategy_type: object) -> bool:
        return strategy_type in self._evaluators

    @property
    def registered(self) -> list[StrategyType]:
        return sorted(self._evaluators)

    def register(self, strategy_type: StrategyType, evaluator: Any) -> None:
        """Bind *evaluator* (object or callable) to a built-in strategy type."""
        if strategy_type == StrategyType.CUSTOM:
            raise ValueError("CUSTOM evaluators are supplied on StrategyConfig.evaluator")
        self._evaluators[strategy_type] = as_evaluator(evaluator)
        logger.debug("evaluator_registered", strategy_type=strategy_type)

    def unregister(self, strategy_type: StrategyType) -> bool:
        return self._evaluators.pop(strategy_type, None) is not None

    def get(self, strategy_type: StrategyType) -> StrategyEvaluator | None:
        return self._evaluators.get(strategy_type)

    def clear(self) -> None:
        self._evaluators.clear()

    def resolve(self, strategy: StrategyConfig) -> StrategyEvaluator:
        """Pick the evaluator for *strategy*.

        An evaluator attached to the strategy wins over the registry.

        Raises:
            BacktestConfigError: When no evaluator is available.
        """
        if strategy.evaluator is not None:
            return as_evaluator(strategy.evaluator)
        if strategy.type == StrategyType.CUSTOM:
            raise BacktestConfigError("CUSTOM strategy requires StrategyConfig.evaluator")
        evaluator = self._evaluators.get(strategy.type)
        if evaluator is None:
            raise BacktestConfigError(f"No evaluator registered for strategy type {strategy.type}")
        return evaluator


def resolve_evaluator(strategy: StrategyConfig, registry: EvaluatorRegistry | None = None) -> StrategyEvaluator:
    """Resolve the evaluator for *strategy*, using an empty registry when none is given."""
    return (registry or EvaluatorRegistry()).resolve(strategy)
