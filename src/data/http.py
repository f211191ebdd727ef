"""HTTP historical data source — queries the storage service's history API."""

from __future__ import annotations

from typing import Any, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from src.core.config import DataSourceConfig, get_settings
from src.core.types import (
    DataSourceType,
    HistoricalAlert,
    HistoricalMarket,
    HistoricalTrade,
    HistoricalWallet,
    MarketResolution,
)
from src.data.base import HistoricalDataSource
from src.data.exceptions import DataSourceConnectionError, DataSourceParseError

logger = structlog.stdlib.get_logger()

RecordT = TypeVar("RecordT", bound=BaseModel)

# Source kind → URL path segment
_PATHS: dict[DataSourceType, str] = {
    DataSourceType.TRADES: "trades",
    DataSourceType.MARKETS: "markets",
    DataSourceType.WALLETS: "wallets",
    DataSourceType.RESOLUTIONS: "resolutions",
    DataSourceType.ALERTS: "alerts",
}


def _extract_rows(body: object) -> list[dict[str, Any]]:
    """Pull the record list out of a response body.

    Accepts either a bare JSON list or an object wrapping it under ``data``.
    """
    rows = body.get("data") if isinstance(body, dict) else body
    if not isinstance(rows, list):
        raise DataSourceParseError("History API response has no record list")
    return [r for r in rows if isinstance(r, dict)]


class HttpDataSource(HistoricalDataSource):
    """Historical data source backed by a REST history service.

    Each kind is served by ``GET {base_url}/{kind}?start=<ts>&end=<ts>``.

    Usage::

        async with HttpDataSource() as source:
            framework = create_framework(data_source=source)
            report = await framework.run_backtest(config)
    """

    def __init__(self, config: DataSourceConfig | None = None) -> None:
        self._config = config or get_settings().data_source
        self._http: httpx.AsyncClient | None = None

    @property
    def connected(self) -> bool:
        """Whether the HTTP client is active."""
        return self._http is not None and not self._http.is_closed

    async def connect(self) -> None:
        """Create the httpx async client."""
        headers: dict[str, str] = {}
        api_key = self._config.api_key.get_secret_value()
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._http = httpx.AsyncClient(
            base_url=self._config.base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(self._config.timeout_secs),
        )

    async def close(self) -> None:
        """Close the httpx async client."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def fetch_trades(self, start: float, end: float) -> list[HistoricalTrade]:
        return await self._get(DataSourceType.TRADES, HistoricalTrade, start, end)

    async def fetch_markets(self, start: float, end: float) -> list[HistoricalMarket]:
        return await self._get(DataSourceType.MARKETS, HistoricalMarket, start, end)

    async def fetch_wallets(self, start: float, end: float) -> list[HistoricalWallet]:
        return await self._get(DataSourceType.WALLETS, HistoricalWallet, start, end)

    async def fetch_resolutions(self, start: float, end: float) -> list[MarketResolution]:
        return await self._get(DataSourceType.RESOLUTIONS, MarketResolution, start, end)

    async def fetch_alerts(self, start: float, end: float) -> list[HistoricalAlert]:
        return await self._get(DataSourceType.ALERTS, HistoricalAlert, start, end)

    async def _get(
        self,
        kind: DataSourceType,
        model: type[RecordT],
        start: float,
        end: float,
    ) -> list[RecordT]:
        if self._http is None:
            raise DataSourceConnectionError("HTTP client not connected")

        path = f"/{_PATHS[kind]}"
        try:
            response = await self._http.get(path, params={"start": start, "end": end})
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DataSourceConnectionError(
                f"History API returned {exc.response.status_code} for {kind}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DataSourceConnectionError(f"History API request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise DataSourceParseError(f"History API returned invalid JSON for {kind}") from exc

        try:
            records = [model.model_validate(row) for row in _extract_rows(body)]
        except ValidationError as exc:
            raise DataSourceParseError(f"Malformed {kind} record: {exc}") from exc

        logger.debug("history_fetched", kind=kind, count=len(records))
        return records
