"""Process-wide logging setup."""

from __future__ import annotations

import logging
import sys

from facility_booking.config import settings

_LOGGER_INITIALIZED = False


def configure_logging(level: str | None = None) -> None:
    """Configure the root logger once; later calls are no-ops."""
    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    resolved_level = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(
        level=resolved_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    _LOGGER_INITIALIZED = True
