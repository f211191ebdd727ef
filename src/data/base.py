"""Abstract historical data source — one coroutine per data kind."""

from __future__ import annotations

import abc
from collections.abc import Sequence
from types import TracebackType

from src.core.types import (
    DataSourceType,
    HistoricalAlert,
    HistoricalMarket,
    HistoricalTrade,
    HistoricalWallet,
    MarketResolution,
)

HistoricalRecord = (
    HistoricalTrade | HistoricalMarket | HistoricalWallet | MarketResolution | HistoricalAlert
)


class HistoricalDataSource(abc.ABC):
    """Time-windowed access to the storage layer.

    Each kind is fetched independently so the dataset cache can degrade
    gracefully when one of them is unavailable. Implementations raise
    :class:`~src.data.exceptions.DataSourceError` subclasses on failure.

    Usage::

        async with MyDataSource() as source:
            trades = await source.fetch(DataSourceType.TRADES, start, end)
    """

    async def connect(self) -> None:
        """Open underlying connections. No-op by default."""

    async def close(self) -> None:
        """Release underlying connections. No-op by default."""

    @abc.abstractmethod
    async def fetch_trades(self, start: float, end: float) -> Sequence[HistoricalTrade]:
        """Trades executed inside ``[start, end]``."""

    @abc.abstractmethod
    async def fetch_markets(self, start: float, end: float) -> Sequence[HistoricalMarket]:
        """Markets active at any point inside ``[start, end]``."""

    @abc.abstractmethod
    async def fetch_wallets(self, start: float, end: float) -> Sequence[HistoricalWallet]:
        """Wallets that traded inside ``[start, end]``."""

    @abc.abstractmethod
    async def fetch_resolutions(self, start: float, end: float) -> Sequence[MarketResolution]:
        """Market resolutions known at ``end``."""

    @abc.abstractmethod
    async def fetch_alerts(self, start: float, end: float) -> Sequence[HistoricalAlert]:
        """Alerts raised inside ``[start, end]``."""

    async def fetch(
        self, kind: DataSourceType, start: float, end: float,
    ) -> Sequence[HistoricalRecord]:
        """Dispatch to the fetcher for a concrete *kind*."""
        if kind == DataSourceType.TRADES:
            return await self.fetch_trades(start, end)
        if kind == DataSourceType.MARKETS:
            return await self.fetch_markets(start, end)
        if kind == DataSourceType.WALLETS:
            return await self.fetch_wallets(start, end)
        if kind == DataSourceType.RESOLUTIONS:
            return await self.fetch_resolutions(start, end)
        if kind == DataSourceType.ALERTS:
            return await self.fetch_alerts(start, end)
        raise ValueError(f"Cannot fetch non-concrete source kind: {kind}")

    async def __aenter__(self) -> HistoricalDataSource:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
