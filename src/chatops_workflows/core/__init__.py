"""Core modules for the workflow automation core.

This package contains:
- Configuration management
- Logging utilities
- Exception hierarchy
"""

from .config import LoggingConfig, SchedulerConfig, StoreConfig, WorkflowSettings
from .exceptions import (
    InvalidScheduleError,
    StoreUnavailableError,
    WorkflowError,
    WorkflowNotFoundError,
)
from .logger import get_logger, log_exception, setup_logging

__all__ = [
    # Config
    "LoggingConfig",
    "SchedulerConfig",
    "StoreConfig",
    "WorkflowSettings",
    # Exceptions
    "InvalidScheduleError",
    "StoreUnavailableError",
    "WorkflowError",
    "WorkflowNotFoundError",
    # Logging
    "get_logger",
    "log_exception",
    "setup_logging",
]
