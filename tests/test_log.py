"""Tests for CLI logging setup."""

from __future__ import annotations

import io
import logging

import pytest

from behavior_scorer.log import HANDLER_NAME, configure_logging


def test_configure_logging_replaces_its_own_handler() -> None:
    configure_logging("info")
    logger = configure_logging("debug")

    installed = [handler for handler in logger.handlers if handler.get_name() == HANDLER_NAME]
    assert len(installed) == 1
    assert logger.level == logging.DEBUG


def test_installed_handler_accepts_a_new_stream() -> None:
    logger = configure_logging("warning")
    (handler,) = [h for h in logger.handlers if h.get_name() == HANDLER_NAME]
    assert isinstance(handler, logging.StreamHandler)

    buffer = io.StringIO()
    handler.setStream(buffer)
    logging.getLogger("behavior_scorer.scoring").warning("redirected %s", "message")

    assert handler.stream is buffer
    assert "WARNING behavior_scorer.scoring: redirected message" in buffer.getvalue()


def test_configure_logging_rejects_unknown_level() -> None:
    with pytest.raises(ValueError, match="log level must be one of"):
        configure_logging("loud")
