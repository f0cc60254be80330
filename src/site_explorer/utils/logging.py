"""
Logging configuration for the Site Explorer.

Everything logs under one application logger ("site_explorer"). Modules
call get_logger(__name__); per-page code uses get_logger_with_context()
so every line carries the page identity.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from site_explorer.config.settings import LoggingSettings


ROOT_LOGGER_NAME = "site_explorer"

DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_logging_configured = False


def _build_handlers(settings: "LoggingSettings | None", level: int) -> list[logging.Handler]:
    if settings is None:
        formatter = logging.Formatter(DEFAULT_FORMAT, DEFAULT_DATE_FORMAT)
        handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    else:
        formatter = logging.Formatter(settings.format, settings.date_format)
        handlers = []
        if settings.log_to_console:
            # stderr keeps the CLI's rich output on stdout readable
            handlers.append(logging.StreamHandler(sys.stderr))
        if settings.file_path is not None:
            settings.file_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(RotatingFileHandler(
                settings.file_path,
                maxBytes=settings.max_file_size_mb * 1024 * 1024,
                backupCount=settings.backup_count,
                encoding="utf-8",
            ))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def setup_logging(
    settings: "LoggingSettings | None" = None,
    level: str | None = None,
    force: bool = False,
) -> logging.Logger:
    """
    Configure the application logger.

    Later calls return the configured logger unchanged unless force is set,
    which replaces the handlers (the CLI does this once the config file has
    been read).

    Args:
        settings: Logging configuration. If None, INFO to stderr.
        level: Overrides the configured level (e.g. "DEBUG" for --verbose).
        force: Reconfigure even if logging was already set up.
    """
    global _logging_configured

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    if _logging_configured and not force:
        return logger

    reset_logging()

    level_name = level or (settings.level if settings is not None else "INFO")
    numeric_level = getattr(logging, level_name.upper())
    logger.setLevel(numeric_level)
    for handler in _build_handlers(settings, numeric_level):
        logger.addHandler(handler)

    logger.propagate = False
    _logging_configured = True
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """
    Get a logger under the application logger.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Exploration started")
    """
    if name is None or name == ROOT_LOGGER_NAME:
        return logging.getLogger(ROOT_LOGGER_NAME)
    if name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def reset_logging() -> None:
    """Close and remove all handlers so setup_logging() can run again."""
    global _logging_configured

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    _logging_configured = False


class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    Appends "[key=value]" context to every message.

    Example:
        >>> logger = get_logger_with_context(__name__, url_hash="example.com_root_1a2b3c4d")
        >>> logger.info("Decision received")  # "Decision received [url_hash=example.com_root_1a2b3c4d]"
    """

    def process(self, msg, kwargs):
        if self.extra:
            suffix = " ".join(f"[{key}={value}]" for key, value in self.extra.items())
            msg = f"{msg} {suffix}"
        return msg, kwargs


def get_logger_with_context(name: str | None = None, **context: str) -> ContextLoggerAdapter:
    return ContextLoggerAdapter(get_logger(name), context)
