"""Tests for the logger module."""

import logging
from logging.handlers import RotatingFileHandler

import pytest
from rich.logging import RichHandler

from chatops_workflows.core.config import LoggingConfig
from chatops_workflows.core.logger import get_logger, log_exception, setup_logging


class TestGetLogger:
    """Tests for the get_logger function."""

    def test_get_logger_returns_namespaced_instance(self):
        """Loggers live under the workflows namespace."""
        logger = get_logger("store")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "workflows.store"

    def test_get_logger_is_cached(self):
        assert get_logger("cached_name") is get_logger("cached_name")


class TestSetupLogging:
    """Tests for the setup_logging function."""

    def test_setup_logging_levels(self):
        """Existing component loggers follow the configured level."""
        component = get_logger("scheduler")

        setup_logging(LoggingConfig(level="DEBUG"))
        assert logging.getLogger("workflows").level == logging.DEBUG
        assert component.level == logging.DEBUG

        setup_logging(LoggingConfig(level="warning"))
        assert component.level == logging.WARNING

    def test_setup_logging_handlers(self, tmp_path):
        setup_logging(LoggingConfig(log_file=None))
        root_handlers = logging.getLogger().handlers
        assert len(root_handlers) == 1
        assert isinstance(root_handlers[0], RichHandler)

        setup_logging(LoggingConfig(log_file=str(tmp_path / "logs" / "workflows.log")))
        root_handlers = logging.getLogger().handlers
        assert len(root_handlers) == 2
        assert any(isinstance(h, RotatingFileHandler) for h in root_handlers)

    def test_file_logging_writes_to_file(self, tmp_path):
        log_file = tmp_path / "workflows.log"
        setup_logging(LoggingConfig(level="INFO", log_file=str(log_file)))

        get_logger("file_test").info("Armed workflow wf-1")

        assert log_file.exists()
        assert "Armed workflow wf-1" in log_file.read_text(encoding="utf-8")

    def test_invalid_level_rejected(self):
        with pytest.raises(ValueError):
            LoggingConfig(level="LOUD")

    def test_log_exception_helper(self, caplog):
        """log_exception records the context, the message and the traceback."""
        logger = get_logger("exception_test")

        try:
            raise ValueError("A test exception")
        except ValueError as e:
            log_exception(logger, e, context="During testing")

        assert len(caplog.records) == 1
        record = caplog.records[0]
        assert record.levelname == "ERROR"
        assert "During testing: A test exception" in record.message
        assert record.exc_info is not None

    def test_log_exception_without_context(self, caplog):
        logger = get_logger("exception_test")

        try:
            raise KeyError("wf-1")
        except KeyError as e:
            log_exception(logger, e)

        assert "Unexpected error" in caplog.records[0].message

    def test_handlers_share_level_and_console_uses_stderr(self, tmp_path):
        setup_logging(LoggingConfig(level="ERROR", log_file=str(tmp_path / "w.log")))

        handlers = logging.getLogger().handlers
        assert {h.level for h in handlers} == {logging.ERROR}
        rich_handler = next(h for h in handlers if isinstance(h, RichHandler))
        assert rich_handler.console.stderr is True
