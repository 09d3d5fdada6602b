"""
logging_config.py

Configures the standard library logger once for the whole service.

Every module keeps its own logger:
    logger = logging.getLogger(__name__)
This file only decides level and format.
"""

import logging

from docscan.config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = LOG_LEVEL) -> None:
    """
    Attach a single stream handler to the root logger.

    Safe to call more than once (uvicorn reload, tests).
    """
    root = logging.getLogger()

    # Unknown level names fall back to INFO
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root.setLevel(numeric_level)

    if not any(getattr(h, "_docscan", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._docscan = True
        root.addHandler(handler)
