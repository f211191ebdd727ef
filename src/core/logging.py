"""structlog configuration and per-run log context."""

from __future__ import annotations

import logging
import sys
from typing import TextIO

import structlog

from src.core.config import get_settings

# Chatty third-party loggers kept at WARNING unless DEBUG is requested.
_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")

_RUN_CONTEXT_KEYS = ("backtest_id", "backtest_name")


def _renderer(fmt: str) -> structlog.types.Processor:
    if fmt == "console":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def setup_logging(
    level: str | None = None,
    fmt: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Route structlog and stdlib logging through one formatter.

    Args:
        level: Log level override (e.g. "DEBUG"). Uses config if None.
        fmt: "json" or "console". Uses config if None.
        stream: Destination stream, stderr by default.
    """
    settings = get_settings().logging
    log_level = logging.getLevelName((level or settings.level).upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(fmt or settings.format),
        ],
    ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    third_party = logging.DEBUG if log_level <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(third_party)


def bind_backtest_context(backtest_id: str, name: str = "") -> None:
    """Bind run identifiers so every log line in the current task carries them.

    asyncio tasks copy the context at creation, so binding inside a run's
    task does not leak into other runs.
    """
    structlog.contextvars.bind_contextvars(backtest_id=backtest_id, backtest_name=name)


def clear_backtest_context() -> None:
    """Remove identifiers bound by :func:`bind_backtest_context`."""
    structlog.contextvars.unbind_contextvars(*_RUN_CONTEXT_KEYS)
