"""Domain types shared across the engine — enums and historical records.

All timestamps are POSIX epoch seconds (UTC floats).
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class StrategyType(StrEnum):
    """Type of detection strategy being backtested."""

    INSIDER_DETECTION = "INSIDER_DETECTION"
    WHALE_DETECTION = "WHALE_DETECTION"
    FRESH_WALLET_DETECTION = "FRESH_WALLET_DETECTION"
    COORDINATED_TRADING = "COORDINATED_TRADING"
    VOLUME_ANOMALY = "VOLUME_ANOMALY"
    PRICE_MANIPULATION = "PRICE_MANIPULATION"
    COMPOSITE = "COMPOSITE"
    CUSTOM = "CUSTOM"


class DataSourceType(StrEnum):
    """Kind of historical data that can be requested for a run."""

    TRADES = "TRADES"
    MARKETS = "MARKETS"
    WALLETS = "WALLETS"
    RESOLUTIONS = "RESOLUTIONS"
    ALERTS = "ALERTS"
    ALL = "ALL"


CONCRETE_SOURCES: tuple[DataSourceType, ...] = (
    DataSourceType.TRADES,
    DataSourceType.MARKETS,
    DataSourceType.WALLETS,
    DataSourceType.RESOLUTIONS,
    DataSourceType.ALERTS,
)


def expand_sources(sources: list[DataSourceType] | tuple[DataSourceType, ...]) -> tuple[DataSourceType, ...]:
    """Expand ``ALL`` and return a sorted, de-duplicated tuple of concrete kinds."""
    kinds: set[DataSourceType] = set()
    for source in sources:
        if source == DataSourceType.ALL:
            kinds.update(CONCRETE_SOURCES)
        else:
            kinds.add(DataSourceType(source))
    return tuple(sorted(kinds))


class ValidationMethod(StrEnum):
    """Validation protocol used to partition the dataset into folds."""

    NONE = "NONE"
    TRAIN_TEST_SPLIT = "TRAIN_TEST_SPLIT"
    K_FOLD_CV = "K_FOLD_CV"
    WALK_FORWARD = "WALK_FORWARD"
    LEAVE_ONE_OUT = "LEAVE_ONE_OUT"


class ReportDetailLevel(StrEnum):
    """How much of a run ends up in the report payload."""

    SUMMARY = "SUMMARY"
    STANDARD = "STANDARD"
    DETAILED = "DETAILED"
    DEBUG = "DEBUG"


class PerformanceTier(StrEnum):
    """Coarse human-facing grade of a strategy's performance."""

    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    ACCEPTABLE = "ACCEPTABLE"
    POOR = "POOR"
    VERY_POOR = "VERY_POOR"


class BacktestStatus(StrEnum):
    """Lifecycle status of a backtest run."""

    IDLE = "IDLE"
    LOADING_DATA = "LOADING_DATA"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({
    BacktestStatus.COMPLETED,
    BacktestStatus.FAILED,
    BacktestStatus.CANCELLED,
})


class TradeSide(StrEnum):
    """Trade side."""

    BUY = "BUY"
    SELL = "SELL"


class Outcome(StrEnum):
    """Binary market outcome."""

    YES = "YES"
    NO = "NO"


# ── Historical records ──────────────────────────────────────────


class HistoricalTrade(BaseModel):
    """A single executed trade."""

    model_config = ConfigDict(frozen=True)

    trade_id: str
    market_id: str
    wallet_address: str
    side: TradeSide = TradeSide.BUY
    outcome: Outcome = Outcome.YES
    size: float = 0.0
    price: float = 0.0
    size_usd: float = 0.0
    timestamp: float
    is_maker: bool = False
    tx_hash: str = ""


class PricePoint(BaseModel):
    """Sampled market probability."""

    model_config = ConfigDict(frozen=True)

    timestamp: float
    price: float
    volume: float = 0.0


class HistoricalMarket(BaseModel):
    """Market metadata, optionally with its resolution."""

    model_config = ConfigDict(frozen=True)

    market_id: str
    question: str = ""
    category: str = ""
    created_at: float = 0.0
    end_date: float = 0.0
    resolved_at: float | None = None
    resolution: Outcome | None = None
    volume_usd: float = 0.0
    final_probability: float | None = None
    price_history: tuple[PricePoint, ...] = ()


class HistoricalWallet(BaseModel):
    """Wallet metadata; ``known_insider`` is ground truth when present."""

    model_config = ConfigDict(frozen=True)

    address: str
    first_seen: float = 0.0
    total_trades: int = 0
    total_volume_usd: float = 0.0
    markets_traded: int = 0
    win_rate: float | None = None
    known_insider: bool | None = None
    suspicion_score: float | None = None


class MarketResolution(BaseModel):
    """Final outcome of a market."""

    model_config = ConfigDict(frozen=True)

    market_id: str
    outcome: Outcome
    resolved_at: float


class HistoricalAlert(BaseModel):
    """An alert previously raised by the live system."""

    model_config = ConfigDict(frozen=True)

    alert_id: str
    alert_type: str = ""
    severity: str = ""
    market_id: str | None = None
    wallet_address: str | None = None
    timestamp: float
    was_correct: bool | None = None
    confidence: float = 0.0
    strategy: str | None = None


class HistoricalDataset(BaseModel):
    """Immutable bundle of historical data covering ``[start, end]``.

    Instances are shared between concurrent runs by the dataset cache, so
    every sequence is a tuple and the model is frozen.
    """

    model_config = ConfigDict(frozen=True)

    name: str = ""
    start: float
    end: float
    sources: tuple[DataSourceType, ...] = ()
    trades: tuple[HistoricalTrade, ...] = ()
    markets: tuple[HistoricalMarket, ...] = ()
    wallets: tuple[HistoricalWallet, ...] = ()
    resolutions: tuple[MarketResolution, ...] = ()
    alerts: tuple[HistoricalAlert, ...] = ()
    quality_score: float = Field(default=100.0, ge=0.0, le=100.0)
    source_counts: dict[str, int] = Field(default_factory=dict)
    failed_sources: tuple[DataSourceType, ...] = ()
    loaded_at: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def total_records(self) -> int:
        return (
            len(self.trades)
            + len(self.markets)
            + len(self.wallets)
            + len(self.resolutions)
            + len(self.alerts)
        )

    @property
    def degraded(self) -> bool:
        """Whether any requested source failed to load."""
        return bool(self.failed_sources)
