"""
Logging setup for QMMMKit package.
"""

import logging
from typing import Optional

logger = logging.getLogger("QMMMKit")

def setup_logging(logfile: Optional[str] = None, level: int = logging.INFO) -> None:
    """Configure the package logger with a console and an optional file handler."""
    logger.setLevel(level)
    fmt = logging.Formatter("%(message)s")
    logger.handlers.clear()
    if logfile:
        fh = logging.FileHandler(logfile)
        fh.setFormatter(fmt)
        logger.addHandler(fh)
    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    logger.addHandler(ch)

def get_logger(name: str) -> logging.Logger:
    """Return a child of the package logger for a module."""
    if name.startswith("QMMMKit."):
        name = name[len("QMMMKit."):]
    return logger.getChild(name)
