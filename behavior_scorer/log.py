"""Logging setup for the command-line entry point."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_LEVELS = ("debug", "info", "warning", "error")
ROOT_LOGGER_NAME = "behavior_scorer"
HANDLER_NAME = "behavior_scorer.stderr"


def configure_logging(level: str = "warning") -> logging.Logger:
    """Send package logs to stderr at the given level.

    Safe to call more than once; the handler installed by a previous call is
    replaced rather than duplicated.
    """
    normalized = level.lower()
    if normalized not in LOG_LEVELS:
        choices = ", ".join(LOG_LEVELS)
        raise ValueError(f"log level must be one of: {choices}")

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        if handler.get_name() == HANDLER_NAME:
            logger.removeHandler(handler)
            handler.close()

    handler = logging.StreamHandler()
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, normalized.upper()))
    return logger
