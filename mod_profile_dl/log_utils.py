"""Package logger with a rich console handler."""

import logging
import os

from rich.logging import RichHandler

LOGGER_NAME = "mod_profile_dl"
LOG_LEVEL_ENV_VAR = "MOD_PROFILE_DL_LOG_LEVEL"
LOG_DATE_FORMAT = "%H:%M:%S"

logger = logging.getLogger(LOGGER_NAME)


def set_log_level(level_name: str) -> None:
    """Set the level of the package logger and its handlers."""
    level = getattr(logging, level_name.upper(), None)
    if not isinstance(level, int):
        logger.warning(f"Invalid log level name: {level_name}. Using current level.")
        return

    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)
    logger.debug(f"Log level set to {logging.getLevelName(level)}")


def _initialize_logger() -> None:
    """
    Attach a RichHandler to the package logger.

    The initial level comes from MOD_PROFILE_DL_LOG_LEVEL and defaults to
    WARNING, so regular command output stays on the console.
    """
    logger.propagate = False

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        rich_tracebacks=True,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=False,
        log_time_format=LOG_DATE_FORMAT,
    )
    console_handler.setFormatter(logging.Formatter("%(message)s"))

    level_name = os.environ.get(LOG_LEVEL_ENV_VAR, "WARNING").upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        level = logging.WARNING

    logger.addHandler(console_handler)
    logger.setLevel(level)
    console_handler.setLevel(level)


_initialize_logger()
