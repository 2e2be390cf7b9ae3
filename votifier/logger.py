"""
Logging setup for the vote receiver.
"""

import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def create_logger(name: str = "votifier", level: int = logging.INFO, propagate: bool = False) -> logging.Logger:
    """
    Create or retrieve a logger with a standard formatter.

    Calling it again for the same name only updates the level; the handler
    is attached once. Module loggers (`votifier.server`, ...) inherit from
    the "votifier" logger configured here.

    Args:
        name: Logger name, usually the package root "votifier"
        level: Logging level, defaults to INFO
        propagate: Whether to propagate to the root logger

    Returns:
        Configured logging.Logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = propagate

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(handler)

    return logger
