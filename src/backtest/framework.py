"""BacktestingFramework — run manager for strategy backtests.

Orchestrates load → split → simulate → measure → report for each request,
tracking per-run status, progress and cancellation.
"""

from __future__ import annotations

import asyncio
import functools
import time
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from src.backtest.evaluators import EvaluatorRegistry, StrategyEvaluator
from src.backtest.exceptions import (
    BacktestCancelledError,
    BacktestConfigError,
    BacktestError,
    BacktestFailedError,
    ConcurrencyLimitError,
    UnknownBacktestError,
)
from src.backtest.formatting import strategy_description
from src.backtest.labeling import LabelContext
from src.backtest.metrics import compute_metrics, overfitting_score, period_metrics
from src.backtest.report import ReportAssembler, RunOutcome
from src.backtest.simulator import CancellationToken, SimulationResult, StrategySimulator
from src.backtest.splitter import SplitParams, split
from src.backtest.types import (
    BacktestConfig,
    BacktestEvent,
    BacktestEventType,
    BacktestProgress,
    BacktestReport,
    DetectionResult,
    DetectionThresholds,
    Fold,
    FoldMetrics,
    LabelingPolicy,
    PerformanceMetrics,
    StrategyConfig,
    WalkForwardFold,
    config_problems,
)
from src.core.config import BacktestingConfig, get_settings
from src.core.logging import bind_backtest_context, clear_backtest_context
from src.core.types import (
    TERMINAL_STATUSES,
    BacktestStatus,
    DataSourceType,
    HistoricalDataset,
    ReportDetailLevel,
    StrategyType,
    ValidationMethod,
)
from src.data.base import HistoricalDataSource
from src.data.cache import DatasetCache
from src.data.http import HttpDataSource

logger = structlog.stdlib.get_logger()

BacktestEventCallback = Callable[[BacktestEvent], Awaitable[None] | None]

# Progress fractions at phase boundaries; folds fill the span in between.
_PROGRESS_STARTED = 0.05
_PROGRESS_LOADED = 0.2
_PROGRESS_FOLDS_DONE = 0.95

_CANCELLABLE = frozenset({BacktestStatus.LOADING_DATA, BacktestStatus.RUNNING})


def generate_backtest_id() -> str:
    return f"bt-{uuid.uuid4().hex[:12]}"


def default_strategy_config(strategy_type: StrategyType) -> StrategyConfig:
    """Strategy config with default thresholds and a descriptive name."""
    label = strategy_description(strategy_type)
    return StrategyConfig(
        type=strategy_type,
        name=label,
        description=f"Default {label} strategy",
        thresholds=DetectionThresholds(),
    )


def default_backtest_config(strategy_type: StrategyType, start: float, end: float) -> BacktestConfig:
    """Walk-forward backtest of *strategy_type* over every data source."""
    return BacktestConfig(
        name=f"Backtest {strategy_type}",
        description=f"Backtest of {strategy_description(strategy_type)}",
        strategy=default_strategy_config(strategy_type),
        data_sources=(DataSourceType.ALL,),
        start=start,
        end=end,
        validation_method=ValidationMethod.WALK_FORWARD,
        report_detail_level=ReportDetailLevel.STANDARD,
    )


@dataclass
class RunHandle:
    """Mutable tracking record of one backtest run."""

    backtest_id: str
    config: BacktestConfig
    started_at: float
    status: BacktestStatus = BacktestStatus.IDLE
    progress: float = 0.0
    phase: str = "queued"
    current_fold: int | None = None
    total_folds: int | None = None
    detections_so_far: int = 0
    token: CancellationToken = field(default_factory=CancellationToken)
    task: asyncio.Task[BacktestReport] | None = None

    @property
    def active(self) -> bool:
        return self.status not in TERMINAL_STATUSES

    def advance(self, fraction: float, phase: str | None = None) -> None:
        """Move progress forward; it never goes backwards."""
        self.progress = max(self.progress, min(1.0, max(0.0, fraction)))
        if phase is not None:
            self.phase = phase

    def snapshot(self, now: float) -> BacktestProgress:
        return BacktestProgress(
            backtest_id=self.backtest_id,
            status=self.status,
            progress=self.progress,
            phase=self.phase,
            current_fold=self.current_fold,
            total_folds=self.total_folds,
            detections_so_far=self.detections_so_far,
            elapsed_secs=max(0.0, now - self.started_at),
        )


@dataclass
class _FoldOutcome:
    fold_metrics: FoldMetrics
    detections: list[DetectionResult]
    walk_forward: WalkForwardFold | None = None


class BacktestingFramework:
    """Runs backtests against a shared dataset cache.

    Several runs may execute concurrently up to ``max_concurrent``; further
    requests are rejected with :class:`ConcurrencyLimitError` rather than
    queued.

    Usage::

        framework = create_framework(data_source=InMemoryDataSource(trades=trades))
        framework.evaluators.register(StrategyType.WHALE_DETECTION, whale_evaluator)
        framework.on_event(my_callback)
        report = await framework.run_backtest(config)
    """

    def __init__(
        self,
        config: BacktestingConfig | None = None,
        data_source: HistoricalDataSource | None = None,
        labeling: LabelingPolicy | None = None,
        registry: EvaluatorRegistry | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        settings = get_settings()
        self._config = config or settings.backtesting
        self._source = data_source or HttpDataSource(settings.data_source)
        self._labeling = labeling or LabelingPolicy(**settings.labeling.model_dump())
        self._registry = registry or EvaluatorRegistry()
        self._clock = clock

        self._cache = DatasetCache(
            self._source,
            ttl_secs=self._config.cache_ttl_secs,
            max_entries=self._config.cache_max_entries,
            enabled=self._config.cache_enabled,
        )
        self._assembler = ReportAssembler(self._config)
        self._runs: dict[str, RunHandle] = {}
        self._callbacks: list[BacktestEventCallback] = []

        # Stats
        self._total_backtests = 0
        self._completed_backtests = 0
        self._failed_backtests = 0
        self._cancelled_backtests = 0
        self._total_runtime_secs = 0.0

    # ── Properties ──────────────────────────────────────────────

    @property
    def evaluators(self) -> EvaluatorRegistry:
        """Registry binding built-in strategy types to evaluators."""
        return self._registry

    @property
    def cache(self) -> DatasetCache:
        return self._cache

    @property
    def active_backtest_count(self) -> int:
        return sum(1 for h in self._runs.values() if h.active)

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        """Connect the data source."""
        await self._source.connect()
        logger.info("backtesting_framework_started", source=type(self._source).__name__)

    async def stop(self) -> None:
        """Cancel submitted runs and close the data source."""
        tasks = [h.task for h in self._runs.values() if h.task is not None and not h.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._source.close()
        logger.info("backtesting_framework_stopped", stats=self.get_statistics())

    # ── Events ──────────────────────────────────────────────────

    def on_event(self, callback: BacktestEventCallback) -> None:
        """Register a callback for backtest lifecycle events."""
        self._callbacks.append(callback)

    async def _emit(self, event: BacktestEvent) -> None:
        """Dispatch an event to all registered callbacks."""
        for cb in self._callbacks:
            try:
                result = cb(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("backtest_event_callback_error", event_type=event.event_type)

    async def _emit_for(self, handle: RunHandle, event_type: BacktestEventType, **fields: Any) -> None:
        await self._emit(BacktestEvent(
            event_type=event_type,
            backtest_id=handle.backtest_id,
            status=handle.status,
            timestamp=self._clock(),
            **fields,
        ))

    # ── Public API ──────────────────────────────────────────────

    async def run_backtest(self, config: BacktestConfig, *, backtest_id: str | None = None) -> BacktestReport:
        """Run a backtest to completion and return its report.

        Raises:
            ConcurrencyLimitError: Too many runs are already active.
            BacktestConfigError: The request is invalid.
            BacktestCancelledError: The run was cancelled.
            BacktestFailedError: Every data source failed, or the run broke on an
                unexpected error.
        """
        handle = self._register(config, backtest_id)
        try:
            return await self._execute(handle)
        finally:
            self._runs.pop(handle.backtest_id, None)

    def submit_backtest(
        self,
        config: BacktestConfig,
        *,
        backtest_id: str | None = None,
        detach: bool = False,
    ) -> str:
        """Start a backtest in the background and return its id.

        Collect the report with :meth:`get_result`. A finished run that is
        never collected is released after ``result_retention_secs``; with
        ``detach=True`` it is released as soon as it finishes and the result
        is only observable through events.
        """
        handle = self._register(config, backtest_id)
        task = asyncio.create_task(self._execute(handle), name=f"backtest-{handle.backtest_id}")
        handle.task = task
        task.add_done_callback(functools.partial(self._on_task_done, handle.backtest_id, detach))
        return handle.backtest_id

    def _on_task_done(self, backtest_id: str, detach: bool, task: asyncio.Task[BacktestReport]) -> None:
        if not task.cancelled():
            # Marks the outcome retrieved; get_result re-raises it.
            task.exception()
        if detach:
            self._release(backtest_id, task)
            return
        asyncio.get_running_loop().call_later(
            self._config.result_retention_secs, self._release, backtest_id, task,
        )

    def _release(self, backtest_id: str, task: asyncio.Task[BacktestReport]) -> None:
        handle = self._runs.get(backtest_id)
        if handle is not None and handle.task is task:
            del self._runs[backtest_id]
            logger.debug("backtest_handle_released", backtest_id=backtest_id)

    async def get_result(self, backtest_id: str) -> BacktestReport:
        """Wait for a submitted run and return its report, releasing the handle.

        Raises:
            UnknownBacktestError: No submitted run has this id.
        """
        handle = self._runs.get(backtest_id)
        if handle is None or handle.task is None:
            raise UnknownBacktestError(f"Unknown backtest {backtest_id}", backtest_id=backtest_id)
        try:
            return await asyncio.shield(handle.task)
        finally:
            if handle.task.done():
                self._runs.pop(backtest_id, None)

    def cancel_backtest(self, backtest_id: str) -> bool:
        """Request cancellation; True only while the run is loading or running."""
        handle = self._runs.get(backtest_id)
        if handle is None or handle.status not in _CANCELLABLE:
            return False
        handle.token.cancel()
        handle.advance(handle.progress, phase="cancelling")
        logger.info("backtest_cancel_requested", backtest_id=backtest_id)
        return True

    def get_backtest_progress(self, backtest_id: str) -> BacktestProgress | None:
        handle = self._runs.get(backtest_id)
        if handle is None:
            return None
        return handle.snapshot(self._clock())

    def get_status(self, backtest_id: str) -> BacktestStatus | None:
        handle = self._runs.get(backtest_id)
        return handle.status if handle is not None else None

    def get_statistics(self) -> dict[str, float | int]:
        """Aggregate counters over every run this framework has started."""
        return {
            "total_backtests": self._total_backtests,
            "completed_backtests": self._completed_backtests,
            "failed_backtests": self._failed_backtests,
            "cancelled_backtests": self._cancelled_backtests,
            "total_runtime_secs": round(self._total_runtime_secs, 6),
        }

    def clear_cache(self) -> None:
        self._cache.clear()

    def get_config(self) -> BacktestingConfig:
        return self._config.model_copy(deep=True)

    def update_config(self, **partial: Any) -> BacktestingConfig:
        """Validate and apply a partial configuration update.

        Runs already in progress keep the limits they started with.

        Raises:
            pydantic.ValidationError: The merged configuration is invalid.
        """
        merged = {**self._config.model_dump(), **partial}
        self._config = BacktestingConfig.model_validate(merged)
        self._cache.configure(
            ttl_secs=self._config.cache_ttl_secs,
            max_entries=self._config.cache_max_entries,
            enabled=self._config.cache_enabled,
        )
        self._assembler = ReportAssembler(self._config)
        logger.info("backtesting_config_updated", fields=sorted(partial))
        return self.get_config()

    # ── Run pipeline ────────────────────────────────────────────

    def _register(self, config: BacktestConfig, backtest_id: str | None) -> RunHandle:
        if self.active_backtest_count >= self._config.max_concurrent:
            raise ConcurrencyLimitError(
                f"Maximum concurrent backtests ({self._config.max_concurrent}) reached",
                backtest_id=backtest_id,
            )
        backtest_id = backtest_id or generate_backtest_id()
        if backtest_id in self._runs:
            raise BacktestConfigError(f"Backtest {backtest_id} already exists", backtest_id=backtest_id)

        handle = RunHandle(backtest_id=backtest_id, config=config, started_at=self._clock())
        self._runs[backtest_id] = handle
        self._total_backtests += 1
        return handle

    async def _execute(self, handle: RunHandle) -> BacktestReport:
        config = handle.config
        bind_backtest_context(handle.backtest_id, config.name)
        try:
            report = await self._pipeline(handle)
        except BacktestCancelledError:
            await self._finish_cancelled(handle)
            raise
        except asyncio.CancelledError:
            await self._finish_cancelled(handle)
            raise
        except BacktestError as exc:
            exc.backtest_id = exc.backtest_id or handle.backtest_id
            await self._finish_failed(handle, exc)
            raise
        except Exception as exc:
            logger.exception("backtest_error", backtest_id=handle.backtest_id)
            await self._finish_failed(handle, exc)
            raise BacktestFailedError(
                f"Backtest {handle.backtest_id} failed: {exc}", backtest_id=handle.backtest_id,
            ) from exc
        finally:
            clear_backtest_context()
        return report

    async def _pipeline(self, handle: RunHandle) -> BacktestReport:
        config = handle.config
        token = handle.token

        problems = config_problems(config)
        if problems:
            raise BacktestConfigError("; ".join(problems), backtest_id=handle.backtest_id)
        evaluator = self._registry.resolve(config.strategy)
        run_config = self._config
        assembler = self._assembler

        token.raise_if_cancelled(handle.backtest_id)
        handle.status = BacktestStatus.LOADING_DATA
        handle.advance(_PROGRESS_STARTED, phase="loading_data")
        logger.info(
            "backtest_started",
            backtest_id=handle.backtest_id,
            strategy=config.strategy.type,
            validation=config.validation_method,
            start=config.start,
            end=config.end,
        )
        await self._emit_for(handle, BacktestEventType.BACKTEST_STARTED, config=config)

        lookup = await self._cache.lookup(
            handle.backtest_id,
            config.data_sources,
            config.start,
            config.end,
            bypass_cache=config.bypass_cache,
        )
        dataset = lookup.dataset
        if dataset.sources and set(dataset.failed_sources) >= set(dataset.sources):
            raise BacktestFailedError(
                f"No historical data available: every source failed "
                f"({', '.join(k.value for k in dataset.failed_sources)})",
                backtest_id=handle.backtest_id,
            )
        token.raise_if_cancelled(handle.backtest_id)
        handle.advance(_PROGRESS_LOADED, phase="data_loaded")
        await self._emit_for(handle, BacktestEventType.DATA_LOADED)

        folds = split(dataset, config.validation_method, SplitParams.from_config(config, run_config.max_loo_folds))
        handle.status = BacktestStatus.RUNNING
        handle.total_folds = len(folds)
        handle.advance(_PROGRESS_LOADED, phase="simulating")

        simulator = StrategySimulator(
            batch_size=run_config.batch_size,
            policy=config.labeling or self._labeling,
        )
        context = LabelContext.from_dataset(dataset)
        outcomes = await self._run_folds(handle, dataset, folds, simulator, evaluator, context, run_config)

        token.raise_if_cancelled(handle.backtest_id)
        handle.advance(_PROGRESS_FOLDS_DONE, phase="assembling_report")

        test_detections = [d for o in outcomes for d in o.detections]
        units_evaluated = sum(o.fold_metrics.units_evaluated for o in outcomes)
        walk_forward = None
        if config.validation_method == ValidationMethod.WALK_FORWARD:
            walk_forward = [o.walk_forward for o in outcomes if o.walk_forward is not None]

        outcome = RunOutcome(
            overall_metrics=compute_metrics(test_detections, units_evaluated=units_evaluated),
            fold_metrics=[o.fold_metrics for o in outcomes],
            walk_forward_folds=walk_forward,
            period_metrics=period_metrics(test_detections),
            detections=test_detections,
            units_evaluated=units_evaluated,
            evaluator_failures=sum(o.fold_metrics.evaluator_failures for o in outcomes),
            cache_hit=lookup.hit,
            shared_load=lookup.shared,
        )
        completed_at = self._clock()
        report = assembler.assemble(
            report_id=f"report-{handle.backtest_id}",
            config=config,
            dataset=dataset,
            outcome=outcome,
            started_at=handle.started_at,
            completed_at=completed_at,
        )

        handle.status = BacktestStatus.COMPLETED
        handle.advance(1.0, phase="completed")
        self._completed_backtests += 1
        self._total_runtime_secs += report.runtime_secs
        logger.info(
            "backtest_completed",
            backtest_id=handle.backtest_id,
            tier=report.performance_tier,
            score=report.performance_score,
            detections=report.overall_metrics.total_detections,
            runtime_secs=round(report.runtime_secs, 3),
        )
        await self._emit_for(handle, BacktestEventType.BACKTEST_COMPLETED, report=report)
        return report

    async def _run_folds(
        self,
        handle: RunHandle,
        dataset: HistoricalDataset,
        folds: Sequence[Fold],
        simulator: StrategySimulator,
        evaluator: StrategyEvaluator,
        context: LabelContext,
        run_config: BacktestingConfig,
    ) -> list[_FoldOutcome]:
        """Evaluate every fold, returning outcomes in split order."""
        completed = 0

        async def _one(fold: Fold) -> _FoldOutcome:
            nonlocal completed
            handle.token.raise_if_cancelled(handle.backtest_id)
            handle.current_fold = fold.index
            outcome = await self._run_fold(handle, dataset, fold, simulator, evaluator, context)
            completed += 1
            handle.detections_so_far += len(outcome.detections)
            handle.advance(
                _PROGRESS_LOADED + (_PROGRESS_FOLDS_DONE - _PROGRESS_LOADED) * completed / len(folds),
            )
            await self._emit_for(handle, BacktestEventType.FOLD_COMPLETED, fold=outcome.fold_metrics)
            await self._emit_for(
                handle,
                BacktestEventType.BACKTEST_PROGRESS,
                progress=handle.snapshot(self._clock()),
            )
            return outcome

        if not run_config.parallel_folds or len(folds) <= 1:
            return [await _one(fold) for fold in folds]

        semaphore = asyncio.Semaphore(run_config.max_parallel_folds)

        async def _bounded(fold: Fold) -> _FoldOutcome:
            async with semaphore:
                return await _one(fold)

        tasks = [asyncio.create_task(_bounded(fold)) for fold in folds]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _run_fold(
        self,
        handle: RunHandle,
        dataset: HistoricalDataset,
        fold: Fold,
        simulator: StrategySimulator,
        evaluator: StrategyEvaluator,
        context: LabelContext,
    ) -> _FoldOutcome:
        config = handle.config
        test_run = await simulator.run(
            dataset,
            fold,
            config.strategy,
            evaluator,
            context=context,
            cancel_token=handle.token,
            backtest_id=handle.backtest_id,
        )
        test_metrics = compute_metrics(test_run.detections, units_evaluated=test_run.units_evaluated)
        fold_metrics = FoldMetrics(
            fold_index=fold.index,
            train=fold.train,
            test=fold.test,
            metrics=test_metrics,
            units_evaluated=test_run.units_evaluated,
            evaluator_failures=test_run.evaluator_failures,
        )

        walk_forward = None
        if config.validation_method == ValidationMethod.WALK_FORWARD:
            if fold.train:
                train_run = await simulator.run(
                    dataset,
                    fold,
                    config.strategy,
                    evaluator,
                    windows=fold.train,
                    context=context,
                    cancel_token=handle.token,
                    backtest_id=handle.backtest_id,
                    id_prefix=f"{fold.index}-train",
                )
            else:
                train_run = SimulationResult()
            train_metrics = (
                compute_metrics(train_run.detections, units_evaluated=train_run.units_evaluated)
                if train_run.detections
                else PerformanceMetrics()
            )
            walk_forward = WalkForwardFold(
                fold_number=fold.index + 1,
                train_start=fold.train_start,
                train_end=fold.train_end,
                test_start=fold.test.start,
                test_end=fold.test.end,
                train_metrics=train_metrics,
                test_metrics=test_metrics,
                overfitting_score=overfitting_score(train_metrics, test_metrics) if fold.train else 0.0,
            )

        logger.debug(
            "fold_completed",
            backtest_id=handle.backtest_id,
            fold=fold.index,
            units=test_run.units_evaluated,
            f1=round(test_metrics.f1_score, 4),
        )
        return _FoldOutcome(fold_metrics=fold_metrics, detections=test_run.detections, walk_forward=walk_forward)

    # ── Terminal transitions ────────────────────────────────────

    async def _finish_failed(self, handle: RunHandle, exc: BaseException) -> None:
        handle.status = BacktestStatus.FAILED
        handle.phase = "failed"
        self._failed_backtests += 1
        self._total_runtime_secs += max(0.0, self._clock() - handle.started_at)
        logger.warning("backtest_failed", backtest_id=handle.backtest_id, error=str(exc))
        await self._emit_for(handle, BacktestEventType.BACKTEST_FAILED, error=str(exc))

    async def _finish_cancelled(self, handle: RunHandle) -> None:
        handle.status = BacktestStatus.CANCELLED
        handle.phase = "cancelled"
        self._cancelled_backtests += 1
        self._total_runtime_secs += max(0.0, self._clock() - handle.started_at)
        logger.info("backtest_cancelled", backtest_id=handle.backtest_id)
        await self._emit_for(handle, BacktestEventType.BACKTEST_CANCELLED)


# ── Shared instance ─────────────────────────────────────────────

_shared: BacktestingFramework | None = None


def create_framework(
    config: BacktestingConfig | None = None,
    data_source: HistoricalDataSource | None = None,
    **kwargs: Any,
) -> BacktestingFramework:
    """Build a new, independent framework."""
    return BacktestingFramework(config=config, data_source=data_source, **kwargs)


def get_shared() -> BacktestingFramework:
    """Return the process-wide framework, creating it with settings defaults."""
    global _shared  # noqa: PLW0603
    if _shared is None:
        _shared = create_framework()
    return _shared


def set_shared(framework: BacktestingFramework) -> None:
    global _shared  # noqa: PLW0603
    _shared = framework


def reset_shared() -> None:
    """Forget the process-wide framework (useful for testing)."""
    global _shared  # noqa: PLW0603
    _shared = None
