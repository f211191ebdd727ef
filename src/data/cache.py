"""DatasetCache — TTL + LRU memoization of time-windowed historical datasets."""

from __future__ import annotations

import asyncio
import math
import time
from collections import OrderedDict
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from src.core.types import (
    DataSourceType,
    HistoricalAlert,
    HistoricalDataset,
    HistoricalTrade,
    expand_sources,
)
from src.data.base import HistoricalDataSource, HistoricalRecord

logger = structlog.stdlib.get_logger()

CacheKey = tuple[tuple[DataSourceType, ...], float, float]

_DAY_SECS = 86_400.0

# Weights of the two quality-score components.
_SOURCE_WEIGHT = 0.6
_COVERAGE_WEIGHT = 0.4


@dataclass(frozen=True)
class CacheLookup:
    """Result of a cache lookup.

    ``hit`` means a stored entry served the request; ``shared`` means the
    request waited on another caller's in-flight fetch. Both are False when
    this request triggered the fetch itself.
    """

    dataset: HistoricalDataset
    hit: bool
    shared: bool = False


@dataclass
class _CacheEntry:
    dataset: HistoricalDataset
    stored_at: float


def make_cache_key(
    sources: Sequence[DataSourceType], start: float, end: float,
) -> CacheKey:
    """Key a dataset by its (sorted, expanded) source kinds and window."""
    return (expand_sources(tuple(sources)), float(start), float(end))


def compute_quality_score(
    requested: Sequence[DataSourceType],
    failed: Sequence[DataSourceType],
    trades: Sequence[HistoricalTrade],
    alerts: Sequence[HistoricalAlert],
    start: float,
    end: float,
) -> float:
    """Heuristic completeness score in ``[0, 100]``.

    Blends the fraction of requested kinds that loaded with the fraction of
    days in the window that contain at least one timestamped record.
    """
    if not requested:
        return 0.0
    source_ratio = (len(requested) - len(failed)) / len(requested)

    timestamped = {DataSourceType.TRADES, DataSourceType.ALERTS}
    loaded_timestamped = timestamped.intersection(requested).difference(failed)
    if not timestamped.intersection(requested):
        coverage = source_ratio
    elif not loaded_timestamped:
        coverage = 0.0
    else:
        days = max(1, math.ceil((end - start) / _DAY_SECS))
        covered: set[int] = set()
        for ts in [t.timestamp for t in trades] + [a.timestamp for a in alerts]:
            if start <= ts <= end:
                covered.add(min(int((ts - start) // _DAY_SECS), days - 1))
        coverage = len(covered) / days

    score = 100.0 * (_SOURCE_WEIGHT * source_ratio + _COVERAGE_WEIGHT * coverage)
    return round(min(100.0, max(0.0, score)), 2)


def _dataset_name(start: float, end: float) -> str:
    first = datetime.fromtimestamp(start, tz=UTC).date().isoformat()
    last = datetime.fromtimestamp(end, tz=UTC).date().isoformat()
    return f"Historical data {first} to {last}"


class DatasetCache:
    """Loads and memoizes :class:`HistoricalDataset` bundles.

    - Keyed by ``(sorted(sources), start, end)``.
    - Entries expire after ``ttl_secs`` and the least-recently-used entry is
      evicted while the cache holds more than ``max_entries``.
    - Concurrent loads of the same key share one in-flight fetch.
    - A failing source kind leaves its sequence empty and lowers the
      dataset's quality score instead of failing the load. Such degraded
      datasets are returned but never stored, so the next load refetches.

    Datasets are frozen, so a reader keeps a consistent view even if the
    entry is evicted while the reader is still using it.

    Usage::

        cache = DatasetCache(source, ttl_secs=3600, max_entries=32)
        dataset = await cache.load("bt-1", [DataSourceType.ALL], start, end)
    """

    def __init__(
        self,
        source: HistoricalDataSource,
        ttl_secs: float = 3600.0,
        max_entries: int = 32,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._ttl_secs = ttl_secs
        self._max_entries = max_entries
        self._enabled = enabled
        self._clock = clock
        self._entries: OrderedDict[CacheKey, _CacheEntry] = OrderedDict()
        self._in_flight: dict[CacheKey, asyncio.Task[HistoricalDataset]] = {}

        self._hits = 0
        self._misses = 0
        self._shared_loads = 0
        self._evictions = 0
        self._expirations = 0
        self._degraded_loads = 0

    @property
    def source(self) -> HistoricalDataSource:
        return self._source

    @property
    def stats(self) -> dict[str, int]:
        """Current cache counters."""
        return {
            "hits": self._hits,
            "misses": self._misses,
            "shared_loads": self._shared_loads,
            "evictions": self._evictions,
            "expirations": self._expirations,
            "degraded_loads": self._degraded_loads,
            "entries": len(self._entries),
            "in_flight": len(self._in_flight),
        }

    def __len__(self) -> int:
        return len(self._entries)

    def configure(
        self,
        *,
        ttl_secs: float | None = None,
        max_entries: int | None = None,
        enabled: bool | None = None,
    ) -> None:
        """Apply new limits; shrinking ``max_entries`` evicts immediately."""
        if ttl_secs is not None:
            self._ttl_secs = ttl_secs
        if max_entries is not None:
            self._max_entries = max_entries
        if enabled is not None:
            self._enabled = enabled
            if not enabled:
                self._entries.clear()
        self._evict_overflow()

    def clear(self) -> None:
        """Drop every cached dataset. In-flight fetches are left to finish."""
        self._entries.clear()
        logger.info("dataset_cache_cleared")

    def purge_expired(self) -> int:
        """Remove expired entries and return how many were dropped."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
        for key in expired:
            del self._entries[key]
        self._expirations += len(expired)
        return len(expired)

    async def load(
        self,
        request_id: str,
        sources: Sequence[DataSourceType],
        start: float,
        end: float,
        *,
        bypass_cache: bool = False,
    ) -> HistoricalDataset:
        """Return the dataset for the window, fetching it on a miss."""
        result = await self.lookup(request_id, sources, start, end, bypass_cache=bypass_cache)
        return result.dataset

    async def lookup(
        self,
        request_id: str,
        sources: Sequence[DataSourceType],
        start: float,
        end: float,
        *,
        bypass_cache: bool = False,
    ) -> CacheLookup:
        """Like :meth:`load` but also reports whether the cache served the request."""
        key = make_cache_key(sources, start, end)

        if self._enabled and not bypass_cache:
            entry = self._get_fresh(key)
            if entry is not None:
                self._hits += 1
                logger.debug("dataset_cache_hit", request_id=request_id)
                return CacheLookup(dataset=entry.dataset, hit=True)

            pending = self._in_flight.get(key)
            if pending is not None:
                self._shared_loads += 1
                logger.debug("dataset_cache_shared_load", request_id=request_id)
                dataset = await asyncio.shield(pending)
                return CacheLookup(dataset=dataset, hit=False, shared=True)

        self._misses += 1
        logger.debug("dataset_cache_miss", request_id=request_id, bypass=bypass_cache)
        task = asyncio.create_task(self._fetch_and_store(request_id, key))
        self._in_flight[key] = task
        dataset = await asyncio.shield(task)
        return CacheLookup(dataset=dataset, hit=False)

    # ── Internal ────────────────────────────────────────────────

    def _is_expired(self, entry: _CacheEntry, now: float) -> bool:
        return now - entry.stored_at >= self._ttl_secs

    def _get_fresh(self, key: CacheKey) -> _CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_expired(entry, self._clock()):
            del self._entries[key]
            self._expirations += 1
            return None
        self._entries.move_to_end(key)
        return entry

    def _evict_overflow(self) -> None:
        while len(self._entries) > self._max_entries:
            evicted_key, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug(
                "dataset_cache_evicted",
                sources=[s.value for s in evicted_key[0]],
                start=evicted_key[1],
                end=evicted_key[2],
            )

    async def _fetch_and_store(self, request_id: str, key: CacheKey) -> HistoricalDataset:
        try:
            dataset = await self._fetch(request_id, key)
            if dataset.degraded:
                self._degraded_loads += 1
                logger.info(
                    "dataset_cache_skip_degraded",
                    request_id=request_id,
                    failed_sources=[k.value for k in dataset.failed_sources],
                )
            elif self._enabled:
                self._entries[key] = _CacheEntry(dataset=dataset, stored_at=self._clock())
                self._entries.move_to_end(key)
                self._evict_overflow()
            return dataset
        finally:
            if self._in_flight.get(key) is asyncio.current_task():
                del self._in_flight[key]

    async def _fetch(self, request_id: str, key: CacheKey) -> HistoricalDataset:
        kinds, start, end = key
        results = await asyncio.gather(
            *(self._fetch_kind(request_id, kind, start, end) for kind in kinds)
        )

        rows: dict[DataSourceType, tuple[HistoricalRecord, ...]] = {}
        failed: list[DataSourceType] = []
        for kind, records in zip(kinds, results, strict=True):
            if records is None:
                failed.append(kind)
                rows[kind] = ()
            else:
                rows[kind] = tuple(records)

        trades = tuple(sorted(
            rows.get(DataSourceType.TRADES, ()),
            key=lambda t: (t.timestamp, t.trade_id),  # type: ignore[union-attr]
        ))
        alerts = tuple(sorted(
            rows.get(DataSourceType.ALERTS, ()),
            key=lambda a: a.timestamp,  # type: ignore[union-attr]
        ))

        quality = compute_quality_score(kinds, failed, trades, alerts, start, end)  # type: ignore[arg-type]
        dataset = HistoricalDataset(
            name=_dataset_name(start, end),
            start=start,
            end=end,
            sources=kinds,
            trades=trades,  # type: ignore[arg-type]
            markets=rows.get(DataSourceType.MARKETS, ()),  # type: ignore[arg-type]
            wallets=rows.get(DataSourceType.WALLETS, ()),  # type: ignore[arg-type]
            resolutions=rows.get(DataSourceType.RESOLUTIONS, ()),  # type: ignore[arg-type]
            alerts=alerts,  # type: ignore[arg-type]
            quality_score=quality,
            source_counts={kind.value: len(rows[kind]) for kind in kinds},
            failed_sources=tuple(failed),
            loaded_at=time.time(),
        )
        logger.info(
            "dataset_loaded",
            request_id=request_id,
            records=dataset.total_records,
            quality_score=quality,
            failed_sources=[k.value for k in failed],
        )
        return dataset

    async def _fetch_kind(
        self,
        request_id: str,
        kind: DataSourceType,
        start: float,
        end: float,
    ) -> Sequence[HistoricalRecord] | None:
        """Fetch one kind; a failure is logged and reported as ``None``."""
        try:
            return await self._source.fetch(kind, start, end)
        except Exception:
            logger.warning(
                "dataset_source_failed",
                request_id=request_id,
                kind=kind,
                exc_info=True,
            )
            return None
