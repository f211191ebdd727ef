"""In-memory historical data source backed by pre-loaded records."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from typing import Any

from src.core.types import (
    DataSourceType,
    HistoricalAlert,
    HistoricalMarket,
    HistoricalTrade,
    HistoricalWallet,
    MarketResolution,
)
from src.data.base import HistoricalDataSource


class InMemoryDataSource(HistoricalDataSource):
    """Serves window-filtered slices of records held in memory.

    Useful for replaying exported data, notebooks, and tests. Every fetch
    is counted per kind so callers can see how often the "storage layer"
    was hit.

    Usage::

        source = InMemoryDataSource(trades=trades, wallets=wallets)
        framework = create_framework(data_source=source)
    """

    def __init__(
        self,
        trades: Iterable[HistoricalTrade] = (),
        markets: Iterable[HistoricalMarket] = (),
        wallets: Iterable[HistoricalWallet] = (),
        resolutions: Iterable[MarketResolution] = (),
        alerts: Iterable[HistoricalAlert] = (),
    ) -> None:
        self._trades = sorted(trades, key=lambda t: (t.timestamp, t.trade_id))
        self._markets = list(markets)
        self._wallets = list(wallets)
        self._resolutions = list(resolutions)
        self._alerts = sorted(alerts, key=lambda a: a.timestamp)
        self._fetch_counts: Counter[DataSourceType] = Counter()

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> InMemoryDataSource:
        """Build a source from a JSON-like mapping of record lists.

        Expected keys (all optional): ``trades``, ``markets``, ``wallets``,
        ``resolutions``, ``alerts``.
        """
        return cls(
            trades=[HistoricalTrade.model_validate(r) for r in payload.get("trades", [])],
            markets=[HistoricalMarket.model_validate(r) for r in payload.get("markets", [])],
            wallets=[HistoricalWallet.model_validate(r) for r in payload.get("wallets", [])],
            resolutions=[
                MarketResolution.model_validate(r) for r in payload.get("resolutions", [])
            ],
            alerts=[HistoricalAlert.model_validate(r) for r in payload.get("alerts", [])],
        )

    @property
    def fetch_counts(self) -> dict[DataSourceType, int]:
        """Number of fetches served per kind."""
        return dict(self._fetch_counts)

    @property
    def total_fetches(self) -> int:
        return sum(self._fetch_counts.values())

    async def fetch_trades(self, start: float, end: float) -> list[HistoricalTrade]:
        self._fetch_counts[DataSourceType.TRADES] += 1
        return [t for t in self._trades if start <= t.timestamp <= end]

    async def fetch_markets(self, start: float, end: float) -> list[HistoricalMarket]:
        self._fetch_counts[DataSourceType.MARKETS] += 1
        return [
            m for m in self._markets
            if m.created_at <= end and (m.end_date <= 0 or m.end_date >= start)
        ]

    async def fetch_wallets(self, start: float, end: float) -> list[HistoricalWallet]:
        self._fetch_counts[DataSourceType.WALLETS] += 1
        return [w for w in self._wallets if w.first_seen <= end]

    async def fetch_resolutions(self, start: float, end: float) -> list[MarketResolution]:
        self._fetch_counts[DataSourceType.RESOLUTIONS] += 1
        return [r for r in self._resolutions if start <= r.resolved_at <= end]

    async def fetch_alerts(self, start: float, end: float) -> list[HistoricalAlert]:
        self._fetch_counts[DataSourceType.ALERTS] += 1
        return [a for a in self._alerts if start <= a.timestamp <= end]
