"""Chat-ops workflow automation core.

Stores declarative automation rules, matches incoming business events against
them, fires cron-based triggers on schedule and hands matched workflows, with
their resolved action inputs, to the caller for execution.

Example:
    ```python
    from chatops_workflows import WorkflowService, WorkflowSettings, WorkflowEvent

    service = WorkflowService.from_settings(WorkflowSettings(), dispatcher=run_actions)
    service.start()

    event = WorkflowEvent.create("webhook", {"status": "closed", "amount": 500})
    for workflow in service.handle_event(event):
        print(workflow.name)
    ```
"""

from importlib.metadata import PackageNotFoundError, version

try:  # pragma: no cover - best-effort during development
    __version__ = version("chatops-workflows")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"

from .core import WorkflowSettings, get_logger, setup_logging
from .workflows import (
    Workflow,
    WorkflowEngine,
    WorkflowEvent,
    WorkflowMatch,
    WorkflowScheduler,
    WorkflowService,
    create_workflow_store,
)

__all__ = [
    "__version__",
    "Workflow",
    "WorkflowEngine",
    "WorkflowEvent",
    "WorkflowMatch",
    "WorkflowScheduler",
    "WorkflowService",
    "WorkflowSettings",
    "create_workflow_store",
    "get_logger",
    "setup_logging",
]
