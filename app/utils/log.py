"""
Logging setup for Cortex entry points.

Library modules only import ``logger`` from loguru; sinks are configured
here by the CLI and the API application. Third-party libraries that log
through the standard library (watchdog, httpx, uvicorn) are intercepted
and forwarded to loguru.
"""

import logging
import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


class InterceptHandler(logging.Handler):
    """Route standard logging records into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside the logging module so loguru reports the right origin
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO", serialize: bool = False) -> None:
    """
    Configure loguru sinks.

    Args:
        level: Minimum level name
        serialize: Emit JSON records instead of the coloured format
    """
    level = level.upper()
    logger.remove()
    if serialize:
        logger.add(sys.stdout, level=level, serialize=True)
    else:
        logger.add(sys.stdout, format=LOG_FORMAT, level=level)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    # watchdog is chatty at DEBUG about every inotify mask
    logging.getLogger("watchdog").setLevel(logging.INFO)
