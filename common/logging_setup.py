"""
common.logging_setup

Set up standard logging for the project.
"""
import logging
import os
from typing import Optional, Union


def setup_logging(level: Optional[Union[int, str]] = None):
    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )
    # connection pool chatter drowns the retry log at DEBUG
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))
