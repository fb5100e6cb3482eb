from __future__ import annotations

import logging
import sys

_FORMAT = "%(asctime)s %(levelname)s:%(name)s: %(message)s"

_PACKAGE_LOGGER = "todo_api"


# PUBLIC_INTERFACE
def configure_logging(level: str = "INFO") -> logging.Logger:
    """
    Attach a stdout handler to the package logger and set its level.

    Safe to call more than once: a handler is only added the first time.
    Unknown level names fall back to INFO.
    """
    logger = logging.getLogger(_PACKAGE_LOGGER)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    # APScheduler logs every job execution at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    return logger
