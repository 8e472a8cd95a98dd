"""
Fire-and-forget logging for coin services and node adapters.

safe_log() never raises and never lets a logging failure affect the calling
operation. Records go to loguru and, when registered, to an async sink (e.g.
a database writer).

Set COINSVC_ENVIRONMENT=test or COINSVC_LOG_DISABLED=1 to turn every
safe_log() call into a no-op.
"""

from __future__ import annotations

import os
import sys
import warnings
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from loguru import logger

from coinservice.sanitize import sanitize_url

LogSink = Callable[[str, str, dict[str, Any]], Awaitable[None]]

LEVELS = {
    "info": "INFO",
    "warn": "WARNING",
    "error": "ERROR",
}

# Context keys carrying these fragments are dropped before logging
_SECRET_KEY_FRAGMENTS = ("private", "secret", "password", "mnemonic", "operator_key")

_sink: LogSink | None = None


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def set_log_sink(sink: LogSink | None) -> None:
    """Register (or clear with None) the async sink receiving every record."""
    global _sink
    _sink = sink


def logging_disabled() -> bool:
    if os.environ.get("COINSVC_ENVIRONMENT", "").lower() == "test":
        return True
    return os.environ.get("COINSVC_LOG_DISABLED", "").lower() in ("1", "true", "yes")


def scrub_context(context: Mapping[str, Any] | None) -> dict[str, Any]:
    """Drop key material and sanitize URLs in a log context."""
    if not context:
        return {}

    scrubbed: dict[str, Any] = {}
    for key, value in context.items():
        lowered = key.lower()
        if any(fragment in lowered for fragment in _SECRET_KEY_FRAGMENTS):
            continue
        if "url" in lowered and isinstance(value, str):
            value = sanitize_url(value)
        scrubbed[key] = value
    return scrubbed


async def safe_log(level: str, message: str, context: Mapping[str, Any] | None = None) -> None:
    if logging_disabled():
        return

    try:
        loguru_level = LEVELS.get(level)
        if loguru_level is None:
            warnings.warn(f"Unknown log level: {level}", RuntimeWarning, stacklevel=2)
            return

        extra = scrub_context(context)
        logger.bind(**extra).log(loguru_level, message)

        if _sink is not None:
            await _sink(loguru_level, message, extra)

    except Exception as e:
        warnings.warn(f"Logging failed: {e}", RuntimeWarning, stacklevel=2)
