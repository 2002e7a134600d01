"""Test configuration hooks."""

from __future__ import annotations

import logging

import pytest

from chatops_workflows.core import logger as workflow_logger
from chatops_workflows.workflows import MemoryWorkflowStore, WorkflowEngine
from tests.mocks import FakeRedis


@pytest.fixture(autouse=True)
def reset_logging():
    """Restore logging configuration changed by setup_logging during a test."""
    original_handlers = logging.root.handlers[:]
    original_level = logging.root.level
    original_loggers = dict(workflow_logger._loggers)
    original_levels = {name: lg.level for name, lg in original_loggers.items()}
    namespace = logging.getLogger(workflow_logger.ROOT_LOGGER_NAME)
    namespace_level = namespace.level

    yield

    for handler in logging.root.handlers:
        if handler not in original_handlers:
            handler.close()
    logging.root.handlers = original_handlers
    logging.root.setLevel(original_level)
    namespace.setLevel(namespace_level)

    workflow_logger._loggers.clear()
    workflow_logger._loggers.update(original_loggers)
    for name, level in original_levels.items():
        original_loggers[name].setLevel(level)
    workflow_logger._configured = False
    workflow_logger._current_level = logging.INFO


@pytest.fixture
def fake_redis() -> FakeRedis:
    """Reachable fake Redis client."""
    return FakeRedis()


@pytest.fixture
def memory_store() -> MemoryWorkflowStore:
    return MemoryWorkflowStore()


@pytest.fixture
def engine() -> WorkflowEngine:
    return WorkflowEngine()
