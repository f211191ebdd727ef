"""Exception hierarchy for historical data sources."""

from __future__ import annotations


class DataSourceError(Exception):
    """Base exception for all historical data source errors."""


class DataSourceConnectionError(DataSourceError):
    """Failed to reach the storage service."""


class DataSourceParseError(DataSourceError):
    """The storage service returned a payload that could not be parsed."""
