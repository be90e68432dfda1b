"""Typed exception hierarchy for editorial workflow errors."""

from typing import TYPE_CHECKING, Optional

from src.provider_client.errors import RepoBackendError

if TYPE_CHECKING:
    from src.models.review import EditorialStatus
    from src.provider_client.errors import ConflictError


class WorkflowError(RepoBackendError):
    """Base exception for all editorial workflow errors."""
    pass


class InvalidTransitionError(WorkflowError):
    """Raised when a status transition is attempted out of order.

    Attributes:
        current: Status the entry is in
        target: Status that was requested
        reason: Extra detail when the order is right but the state is not
    """

    def __init__(
        self,
        current: "EditorialStatus",
        target: "EditorialStatus",
        reason: Optional[str] = None,
    ):
        message = f"Invalid editorial transition {current.value} -> {target.value}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.current = current
        self.target = target
        self.reason = reason


class WorkflowConflictError(WorkflowError):
    """Raised when publishing fails because the merge was rejected.

    No automatic rebase or resolution is attempted.

    Attributes:
        branch: Workflow branch that could not be merged
        cause: The provider's ConflictError
    """

    def __init__(self, branch: str, cause: "ConflictError"):
        super().__init__(f"Could not merge workflow branch {branch}: {cause.message}")
        self.branch = branch
        self.cause = cause
