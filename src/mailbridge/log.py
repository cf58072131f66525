# mailbridge/log.py
from __future__ import annotations

import sys

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <7} | {name}:{function} - {message}"


def configure_logging(level: str = "INFO") -> None:
    """
    Send all log records to stderr. stdout stays free for tool output.
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT, backtrace=False)
