"""Centralised Loguru configuration.

Use setup_logger() at program start. Idempotent – repeated calls are no-ops.
The library itself only emits records through ``loguru.logger``; applications
decide where they go.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Literal

from loguru import logger

from funkit.settings import settings

_INITIALISED = False


def setup_logger(
    level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] | None = None
) -> None:
    """Configure Loguru sinks once per process.

    If *level* is *None* the value of ``settings.LOG_LEVEL`` is used.  File
    sinks are only added when ``settings.LOG_DIR`` is set.  The function is
    idempotent – subsequent calls are ignored.
    """

    global _INITIALISED
    if _INITIALISED:
        return

    if level is None:
        level = settings.LOG_LEVEL.upper()  # type: ignore[assignment]

    logger.remove()  # remove default stderr sink

    if settings.LOG_DIR:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(log_dir / "funkit.log", level="INFO", rotation="1 MB", retention="10 days")
        logger.add(log_dir / "debug.log", level="DEBUG", rotation="1 MB", retention="10 days")

    # pretty-print to stderr at the chosen level
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:HH:mm:ss.SSS}</green> <level>{level: <8}</level> {name}:{function} – <level>{message}</level>",
        colorize=True,
    )

    logger.info("Logger initialised (level: {})", level)

    _INITIALISED = True
