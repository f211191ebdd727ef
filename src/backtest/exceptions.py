"""Backtesting exceptions."""

from __future__ import annotations


class BacktestError(Exception):
    """Base exception for backtesting errors."""

    def __init__(self, message: str, backtest_id: str | None = None) -> None:
        super().__init__(message)
        self.backtest_id = backtest_id


class BacktestConfigError(BacktestError):
    """The backtest request is invalid; raised before any data is loaded."""


class ConcurrencyLimitError(BacktestError):
    """Rejected because the maximum number of concurrent runs is active."""


class BacktestFailedError(BacktestError):
    """The run broke on an unrecovered error (see ``__cause__``)."""


class BacktestCancelledError(BacktestError):
    """The run was cancelled on request; no report was produced.

    Not a subclass of :class:`BacktestFailedError`: a cancelled run ends in
    ``CANCELLED``, never ``FAILED``.
    """


class UnknownBacktestError(BacktestError):
    """No handle exists for the given backtest id."""
