"""Loguru sink configuration for command-line and service entry points.

Library modules only import `loguru.logger`; sinks are installed once by the
process that embeds the backend.
"""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = "<level>{level: <8}</level> | <cyan>{name}</cyan> - <level>{message}</level>"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


def configure_logging(
    level: str = "INFO",
    log_file: str | Path | None = None,
    rotation: str = "10 MB",
    retention: int = 5,
) -> None:
    """Replace loguru's default sink with a console sink and an optional file sink.

    Args:
        level: Minimum level for the console sink
        log_file: Optional path for a rotating DEBUG-level log file
        rotation: When to rotate the log file (loguru rotation spec)
        retention: Number of rotated files to keep
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=CONSOLE_FORMAT)

    if log_file is not None:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            path,
            level="DEBUG",
            format=FILE_FORMAT,
            rotation=rotation,
            retention=retention,
            enqueue=True,
        )
        logger.debug(f"Logging to {path}")
