"""Workflow automation: models, store, engine, scheduler and service.

This package provides:
- Workflow, trigger, action and event models
- WorkflowStore with in-memory and Redis backends
- WorkflowEngine for matching events against triggers
- WorkflowScheduler for cron-triggered workflows
- WorkflowService orchestrating all of the above
"""

from .actions import (
    ActionDispatcher,
    PlannedAction,
    WorkflowMatch,
    build_context,
    build_match,
    plan_actions,
    render_template,
)
from .conditions import evaluate_condition, evaluate_group, resolve_path
from .engine import WorkflowEngine
from .models import (
    Attachment,
    Condition,
    ConditionGroup,
    ConditionOperator,
    DataSyncAction,
    EmailExtractor,
    FileTransferAction,
    IntegrationToolAction,
    MatchResult,
    RouteAttachmentsAction,
    ScheduleConfig,
    SlackMessageAction,
    StripeUpdateAction,
    ToolRef,
    TriggerConfig,
    TriggerType,
    Workflow,
    WorkflowAction,
    WorkflowEvent,
    WorkflowInput,
    WorkflowUpdate,
)
from .scheduler import (
    ScheduleStatus,
    WorkflowScheduler,
    build_cron_trigger,
    upcoming_runs,
    validate_schedule,
)
from .service import WorkflowService
from .store import (
    MemoryWorkflowStore,
    RedisWorkflowStore,
    WorkflowStore,
    create_workflow_store,
)

__all__ = [
    # Models
    "Attachment",
    "Condition",
    "ConditionGroup",
    "ConditionOperator",
    "DataSyncAction",
    "EmailExtractor",
    "FileTransferAction",
    "IntegrationToolAction",
    "MatchResult",
    "RouteAttachmentsAction",
    "ScheduleConfig",
    "SlackMessageAction",
    "StripeUpdateAction",
    "ToolRef",
    "TriggerConfig",
    "TriggerType",
    "Workflow",
    "WorkflowAction",
    "WorkflowEvent",
    "WorkflowInput",
    "WorkflowUpdate",
    # Engine
    "WorkflowEngine",
    "evaluate_condition",
    "evaluate_group",
    "resolve_path",
    # Actions
    "ActionDispatcher",
    "PlannedAction",
    "WorkflowMatch",
    "build_context",
    "build_match",
    "plan_actions",
    "render_template",
    # Store
    "MemoryWorkflowStore",
    "RedisWorkflowStore",
    "WorkflowStore",
    "create_workflow_store",
    # Scheduler
    "ScheduleStatus",
    "WorkflowScheduler",
    "build_cron_trigger",
    "upcoming_runs",
    "validate_schedule",
    # Service
    "WorkflowService",
]
