"""Data models for the editorial workflow."""

from dataclasses import dataclass
from typing import Optional

from src.models.review import EditorialStatus, PullRequest


@dataclass
class WorkflowEntry:
    """One entry moving through the editorial workflow.

    Owned by the caller and passed into every workflow operation; the
    workflow engine keeps no per-entry state of its own.

    Attributes:
        collection: Collection the entry belongs to
        slug: Entry slug
        branch_name: Workflow branch derived from collection and slug
        status: Current editorial status
        pull_request: Review artifact once one exists
    """
    collection: str
    slug: str
    branch_name: str
    status: EditorialStatus = EditorialStatus.DRAFT
    pull_request: Optional[PullRequest] = None
