"""Logging helper"""
from typing import Callable, Optional

from loguru import logger

from webchat_driver.config import LOG_DIR

LOG_FILE = LOG_DIR / "webchat_driver_{time}.log"

BrowserLogger = Callable[[str], None]


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(
        LOG_FILE,
        rotation="20 MB",
        retention="14 days",
        enqueue=True,
        level=level,
    )
    logger.add(lambda msg: print(msg, end=""), level=level)


def make_log(log: Optional[BrowserLogger] = None) -> BrowserLogger:
    """Return a line logger that writes to loguru and, if given, the caller's callback."""

    def _emit(line: str) -> None:
        logger.info("{}", line)
        if log is not None:
            log(line)

    return _emit


__all__ = ["BrowserLogger", "configure_logging", "logger", "make_log"]
