"""Custom exceptions for the workflow automation core."""

from __future__ import annotations


class WorkflowError(Exception):
    """Base exception for workflow-related errors."""

    pass


class InvalidScheduleError(WorkflowError):
    """Raised when a schedule expression or timezone cannot be parsed."""

    def __init__(self, expression: str, reason: str, workflow_id: str | None = None) -> None:
        """Initialize the exception.

        Args:
            expression: The offending cron expression
            reason: Parser diagnostic
            workflow_id: Owning workflow, when known
        """
        self.expression = expression
        self.reason = reason
        self.workflow_id = workflow_id
        super().__init__(f"Invalid schedule '{expression}': {reason}")


class StoreUnavailableError(WorkflowError):
    """Raised when the persistence backend cannot be reached."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        self.original_error = original_error
        super().__init__(message)


class WorkflowNotFoundError(WorkflowError):
    """Raised when a workflow id does not resolve."""

    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")
