"""
Logging bootstrap for the gitlab-search CLI.
"""

from __future__ import annotations

import logging
import sys

from loguru import logger


class InterceptHandler(logging.Handler):
    """Intercept standard logging messages toward Loguru sinks."""
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(verbose: bool = False) -> None:
    """Send library logs to stderr through loguru, keeping stdout for the report."""
    logger.remove()

    if verbose:
        logger.add(sys.stderr, level="DEBUG", format="<level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - {message}")
    else:
        logger.add(sys.stderr, level="INFO", format="{message}")

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # Keep connection pool chatter out of the report stream
    logging.getLogger("urllib3").setLevel(logging.WARNING)
