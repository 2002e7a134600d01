"""Logging for the workflow core.

Every component logs through ``get_logger(<component>)``, which hands out a
child of the ``workflows`` namespace (``workflows.store``, ``workflows.scheduler``
and so on). ``setup_logging`` installs a rich console handler on stderr, so
command output on stdout stays clean, plus an optional rotating log file.
"""

from __future__ import annotations

import logging
from contextlib import suppress
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from .config import LoggingConfig

ROOT_LOGGER_NAME = "workflows"

_loggers: dict[str, logging.Logger] = {}
_configured = False
_current_level: int = logging.INFO

console = Console(stderr=True)


def _release_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        with suppress(Exception):
            handler.flush()
        with suppress(Exception):
            handler.close()


def _build_handlers(config: LoggingConfig) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [
        # Workflow names and payload text may contain brackets; never parse them as markup.
        RichHandler(console=console, markup=False, rich_tracebacks=True, show_path=True)
    ]
    if config.log_file:
        path = Path(config.log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
            delay=True,
        )
        file_handler.setFormatter(logging.Formatter(config.format))
        handlers.append(file_handler)
    return handlers


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Configure console and file logging; safe to call repeatedly.

    Args:
        config: Logging settings, defaults when None
    """
    global _configured, _current_level

    config = config or LoggingConfig()
    level = logging.getLevelName(config.level)

    root_logger = logging.getLogger()
    _release_handlers(root_logger)
    root_logger.setLevel(level)
    for handler in _build_handlers(config):
        handler.setLevel(level)
        root_logger.addHandler(handler)

    logging.getLogger(ROOT_LOGGER_NAME).setLevel(level)
    for component in _loggers.values():
        component.setLevel(level)

    _configured = True
    _current_level = level

    setup_logger = get_logger("setup")
    setup_logger.info(
        "Logging configured: level=%s, file=%s", config.level, config.log_file or "none"
    )


def get_logger(name: str) -> logging.Logger:
    """Component logger under the ``workflows`` namespace."""
    logger = _loggers.get(name)
    if logger is None:
        logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
        logger.setLevel(_current_level)
        _loggers[name] = logger
    return logger


def log_exception(logger: logging.Logger, exc: Exception, context: str = "") -> None:
    """Log ``exc`` at ERROR with its traceback, prefixed by ``context`` when given."""
    logger.exception("%s: %s", context or "Unexpected error", exc)
