"""
Logging setup shared by the API and the CLI.

One line per record: timestamp, level, logger name, message. The CLI
sends records to stderr so that stdout carries only JSON. Request
bodies, raw signals and portfolio figures are never logged above DEBUG.
"""

import logging
import sys
from typing import TextIO

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Chatty at INFO: one access line per request, one line per outcome poll.
QUIET_LOGGERS = (
    "uvicorn.access",
    "uvicorn.error",
    "apscheduler.scheduler",
    "apscheduler.executors.default",
)


def configure_logging(level: str = "INFO", stream: TextIO | None = None) -> None:
    """Install the root handler. Calling it again replaces the handler.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR). Unknown names
            fall back to INFO.
        stream: Output stream; stdout by default.
    """
    root_level = logging.getLevelName(level.upper())
    if not isinstance(root_level, int):
        root_level = logging.INFO

    logging.basicConfig(
        level=root_level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=stream or sys.stdout,
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(root_level, logging.WARNING))
