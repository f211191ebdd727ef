"""Historical data access — source contract, concrete sources, dataset cache."""

from src.data.base import HistoricalDataSource
from src.data.cache import CacheLookup, DatasetCache, compute_quality_score, make_cache_key
from src.data.exceptions import (
    DataSourceConnectionError,
    DataSourceError,
    DataSourceParseError,
)
from src.data.http import HttpDataSource
from src.data.memory import InMemoryDataSource

__all__ = [
    "CacheLookup",
    "DataSourceConnectionError",
    "DataSourceError",
    "DataSourceParseError",
    "DatasetCache",
    "HistoricalDataSource",
    "HttpDataSource",
    "InMemoryDataSource",
    "compute_quality_score",
    "make_cache_key",
]
