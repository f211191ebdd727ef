"""Core module — config, types, logging."""

from src.core.config import Settings, get_settings, load_settings, reset_settings
from src.core.logging import setup_logging
from src.core.types import (
    BacktestStatus,
    DataSourceType,
    HistoricalAlert,
    HistoricalDataset,
    HistoricalMarket,
    HistoricalTrade,
    HistoricalWallet,
    MarketResolution,
    Outcome,
    PerformanceTier,
    ReportDetailLevel,
    StrategyType,
    TradeSide,
    ValidationMethod,
)

__all__ = [
    "BacktestStatus",
    "DataSourceType",
    "HistoricalAlert",
    "HistoricalDataset",
    "HistoricalMarket",
    "HistoricalTrade",
    "HistoricalWallet",
    "MarketResolution",
    "Outcome",
    "PerformanceTier",
    "ReportDetailLevel",
    "Settings",
    "StrategyType",
    "TradeSide",
    "ValidationMethod",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
