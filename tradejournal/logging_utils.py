"""
Logging configuration.

Call init_logging() once at the start of an application or script; library
modules only create their own loggers via logging.getLogger(__name__).
"""

import logging
import sys
from typing import Optional

from tradejournal.config import LOG_LEVEL

# Only configure the root logger once
_LOGGER_INITIALIZED = False


def init_logging(level: Optional[int] = None) -> None:
    """Configure the root logger with a single console handler."""
    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    if level is None:
        level = logging.getLevelName(LOG_LEVEL.upper())
        if not isinstance(level, int):
            level = logging.INFO

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # SQLAlchemy is chatty at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    _LOGGER_INITIALIZED = True
    logging.getLogger(__name__).debug("Logging initialized at level %s", logging.getLevelName(level))

