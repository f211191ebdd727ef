"""Tests for the historical data sources — in-memory filtering and the HTTP client."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.core.config import DataSourceConfig
from src.core.types import (
    DataSourceType,
    HistoricalMarket,
    HistoricalTrade,
    HistoricalWallet,
    MarketResolution,
    Outcome,
)
from src.data.exceptions import DataSourceConnectionError, DataSourceParseError
from src.data.http import HttpDataSource, _extract_rows
from src.data.memory import InMemoryDataSource

T0 = 1_700_000_000.0

# ── Helpers ─────────────────────────────────────────────────────


def _trade(trade_id: str, ts: float) -> HistoricalTrade:
    return HistoricalTrade(trade_id=trade_id, market_id="m1", wallet_address="0xabc", timestamp=ts)


def _response(status_code: int = 200, json: object = None, path: str = "/trades") -> httpx.Response:
    return httpx.Response(
        status_code=status_code,
        json=json if json is not None else [],
        request=httpx.Request("GET", f"http://history.test{path}"),
    )


def _cfg(**overrides: object) -> DataSourceConfig:
    return DataSourceConfig(base_url="http://history.test", **overrides)  # type: ignore[arg-type]


# ── InMemoryDataSource ──────────────────────────────────────────


class TestInMemoryDataSource:
    @pytest.mark.asyncio
    async def test_trades_filtered_by_window(self) -> None:
        source = InMemoryDataSource(trades=[_trade("a", T0 - 1), _trade("b", T0), _trade("c", T0 + 10)])
        trades = await source.fetch_trades(T0, T0 + 5)
        assert [t.trade_id for t in trades] == ["b"]

    @pytest.mark.asyncio
    async def test_trades_sorted(self) -> None:
        source = InMemoryDataSource(trades=[_trade("b", T0 + 2), _trade("a", T0 + 1)])
        trades = await source.fetch_trades(T0, T0 + 5)
        assert [t.trade_id for t in trades] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_markets_active_in_window(self) -> None:
        source = InMemoryDataSource(markets=[
            HistoricalMarket(market_id="old", created_at=T0 - 100, end_date=T0 - 50),
            HistoricalMarket(market_id="live", created_at=T0 - 100, end_date=T0 + 50),
            HistoricalMarket(market_id="open", created_at=T0 - 100),
            HistoricalMarket(market_id="future", created_at=T0 + 500),
        ])
        markets = await source.fetch_markets(T0, T0 + 100)
        assert {m.market_id for m in markets} == {"live", "open"}

    @pytest.mark.asyncio
    async def test_wallets_seen_before_end(self) -> None:
        source = InMemoryDataSource(wallets=[
            HistoricalWallet(address="0x1", first_seen=T0 - 10),
            HistoricalWallet(address="0x2", first_seen=T0 + 1_000),
        ])
        wallets = await source.fetch_wallets(T0, T0 + 100)
        assert [w.address for w in wallets] == ["0x1"]

    @pytest.mark.asyncio
    async def test_fetch_dispatch_counts(self) -> None:
        source = InMemoryDataSource(resolutions=[
            MarketResolution(market_id="m1", outcome=Outcome.YES, resolved_at=T0 + 1),
        ])
        rows = await source.fetch(DataSourceType.RESOLUTIONS, T0, T0 + 10)
        assert len(rows) == 1
        assert source.fetch_counts == {DataSourceType.RESOLUTIONS: 1}
        assert source.total_fetches == 1

    @pytest.mark.asyncio
    async def test_fetch_rejects_all(self) -> None:
        with pytest.raises(ValueError):
            await InMemoryDataSource().fetch(DataSourceType.ALL, T0, T0 + 1)

    @pytest.mark.asyncio
    async def test_from_dict(self) -> None:
        source = InMemoryDataSource.from_dict({
            "trades": [{"trade_id": "t1", "market_id": "m1", "wallet_address": "0x1", "timestamp": T0}],
            "wallets": [{"address": "0x1", "known_insider": True}],
        })
        trades = await source.fetch_trades(T0, T0 + 1)
        wallets = await source.fetch_wallets(T0, T0 + 1)
        assert trades[0].trade_id == "t1"
        assert wallets[0].known_insider is True


# ── HttpDataSource ──────────────────────────────────────────────


class TestExtractRows:
    def test_bare_list(self) -> None:
        assert _extract_rows([{"a": 1}]) == [{"a": 1}]

    def test_wrapped_list(self) -> None:
        assert _extract_rows({"data": [{"a": 1}, "junk"]}) == [{"a": 1}]

    def test_no_list_raises(self) -> None:
        with pytest.raises(DataSourceParseError):
            _extract_rows({"rows": {}})


class TestHttpDataSource:
    @pytest.mark.asyncio
    async def test_not_connected_raises(self) -> None:
        source = HttpDataSource(_cfg())
        with pytest.raises(DataSourceConnectionError):
            await source.fetch_trades(T0, T0 + 1)

    @pytest.mark.asyncio
    async def test_connect_sets_auth_header(self) -> None:
        source = HttpDataSource(_cfg(api_key="secret"))
        await source.connect()
        try:
            assert source.connected
            assert source._http is not None
            assert source._http.headers["Authorization"] == "Bearer secret"
        finally:
            await source.close()
        assert not source.connected

    @pytest.mark.asyncio
    async def test_fetch_trades_parses_records(self) -> None:
        source = HttpDataSource(_cfg())
        await source.connect()
        body = {"data": [{"trade_id": "t1", "market_id": "m1", "wallet_address": "0x1", "timestamp": T0}]}
        try:
            with patch.object(source._http, "get", new_callable=AsyncMock, return_value=_response(json=body)) as get:
                trades = await source.fetch_trades(T0, T0 + 60)
        finally:
            await source.close()

        assert [t.trade_id for t in trades] == ["t1"]
        get.assert_awaited_once_with("/trades", params={"start": T0, "end": T0 + 60})

    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        source = HttpDataSource(_cfg())
        await source.connect()
        try:
            with patch.object(source._http, "get", new_callable=AsyncMock, return_value=_response(503)):
                with pytest.raises(DataSourceConnectionError, match="503"):
                    await source.fetch_wallets(T0, T0 + 60)
        finally:
            await source.close()

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        source = HttpDataSource(_cfg())
        await source.connect()
        try:
            with patch.object(
                source._http, "get", new_callable=AsyncMock, side_effect=httpx.ConnectError("refused"),
            ):
                with pytest.raises(DataSourceConnectionError):
                    await source.fetch_alerts(T0, T0 + 60)
        finally:
            await source.close()

    @pytest.mark.asyncio
    async def test_malformed_record(self) -> None:
        source = HttpDataSource(_cfg())
        await source.connect()
        try:
            with patch.object(
                source._http, "get", new_callable=AsyncMock,
                return_value=_response(json=[{"market_id": "m1"}], path="/resolutions"),
            ):
                with pytest.raises(DataSourceParseError):
                    await source.fetch_resolutions(T0, T0 + 60)
        finally:
            await source.close()

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        source = HttpDataSource(_cfg())
        await source.connect()
        bad = httpx.Response(
            status_code=200,
            content=b"not json",
            request=httpx.Request("GET", "http://history.test/markets"),
        )
        try:
            with patch.object(source._http, "get", new_callable=AsyncMock, return_value=bad):
                with pytest.raises(DataSourceParseError):
                    await source.fetch_markets(T0, T0 + 60)
        finally:
            await source.close()
