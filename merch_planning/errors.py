"""
Workflow error types.

Every error carries a machine-readable ``reason`` so callers can tell
"not your turn" apart from "already decided" and "not found".
"""


class WorkflowError(Exception):
    """Base exception for workflow errors."""

    reason = "workflow_error"

    def __init__(self, message: str, reason: str = None):
        self.message = message
        if reason:
            self.reason = reason
        super().__init__(message)


class UnknownWorkflowType(WorkflowError, ValueError):
    """Raised when a workflow type has no registered definition."""

    reason = "unknown_workflow_type"

    def __init__(self, workflow_type):
        self.workflow_type = workflow_type
        super().__init__(f"Unknown workflow type: {workflow_type}")


class NotFoundError(WorkflowError, LookupError):
    """Raised when a workflow, step or referenced record does not exist."""

    reason = "not_found"


class InvalidStateError(WorkflowError):
    """Raised when an action is not legal for the current status."""

    reason = "invalid_state"
