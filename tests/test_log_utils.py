import logging

import pytest
from rich.logging import RichHandler

from mod_profile_dl.log_utils import logger, set_log_level


@pytest.fixture(autouse=True)
def _restore_level():
    level = logger.level
    handler_levels = [h.level for h in logger.handlers]
    yield
    logger.setLevel(level)
    for handler, handler_level in zip(logger.handlers, handler_levels):
        handler.setLevel(handler_level)


def test_logger_uses_rich_handler():
    assert any(isinstance(h, RichHandler) for h in logger.handlers)
    assert logger.propagate is False


def test_set_log_level_updates_handlers():
    set_log_level("debug")

    assert logger.level == logging.DEBUG
    assert all(h.level == logging.DEBUG for h in logger.handlers)


def test_invalid_level_is_ignored():
    set_log_level("ERROR")

    set_log_level("LOUD")

    assert logger.level == logging.ERROR
