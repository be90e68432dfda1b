"""Editorial status and pull/merge request models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class EditorialStatus(str, Enum):
    """Editorial workflow status of an entry on its workflow branch.

    Transitions only move forward: draft -> pending_review ->
    pending_publish -> published.
    """
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    PENDING_PUBLISH = "pending_publish"
    PUBLISHED = "published"


class PullRequestState(str, Enum):
    """Provider-side lifecycle of a pull/merge request."""
    OPEN = "open"
    CLOSED = "closed"
    MERGED = "merged"


@dataclass
class PullRequest:
    """Provider review artifact backing pending_review/pending_publish.

    Attributes:
        id: Provider number (GitHub/Gitea) or iid (GitLab)
        branch_name: Source (workflow) branch
        state: open, closed or merged
        status: Editorial status read from the request's status label
        reviewers: Requested reviewer logins
        head_sha: Head commit of the source branch when reported
        url: Web URL of the request
    """
    id: int
    branch_name: str
    state: PullRequestState = PullRequestState.OPEN
    status: Optional[EditorialStatus] = None
    reviewers: List[str] = field(default_factory=list)
    head_sha: Optional[str] = None
    url: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.state == PullRequestState.OPEN
