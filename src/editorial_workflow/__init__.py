"""Editorial workflow: draft, review and publish on workflow branches."""

from .errors import InvalidTransitionError, WorkflowConflictError, WorkflowError
from .models import WorkflowEntry
from .workflow_engine import EditorialWorkflow

__all__ = [
    "EditorialWorkflow",
    "InvalidTransitionError",
    "WorkflowConflictError",
    "WorkflowEntry",
    "WorkflowError",
]
