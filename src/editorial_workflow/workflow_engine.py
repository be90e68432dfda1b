"""Editorial workflow state machine on top of branches and pull requests.

This module provides the EditorialWorkflow class. Each entry gets its own
workflow branch; its status moves strictly forward:

    draft -> pending_review -> pending_publish -> published

- draft -> pending_review opens (or reuses) a pull request
- pending_review -> pending_publish relabels the pull request
- pending_publish -> published merges it and deletes the branch

With the workflow disabled, entries go straight from draft to published
and are written to the base branch.
"""

import logging
import re
import threading
from typing import Optional, Sequence

from src.backends.base import Backend
from src.config.errors import ConfigError
from src.models.content import Asset, CommitResult, DataFile
from src.models.repository import Branch
from src.models.review import EditorialStatus, PullRequest, PullRequestState
from src.persist_engine.persist_engine import PersistEngine
from src.provider_client.errors import ConflictError, NotFoundError

from .errors import InvalidTransitionError, WorkflowConflictError
from .models import WorkflowEntry

logger = logging.getLogger(__name__)

DEFAULT_BRANCH_PREFIX = 'cms'

NEXT_STATUS = {
    EditorialStatus.DRAFT: EditorialStatus.PENDING_REVIEW,
    EditorialStatus.PENDING_REVIEW: EditorialStatus.PENDING_PUBLISH,
    EditorialStatus.PENDING_PUBLISH: EditorialStatus.PUBLISHED,
}

_UNSAFE_BRANCH_CHARS = re.compile(r'[^a-z0-9._/-]+')


def _normalize(value: str) -> str:
    normalized = _UNSAFE_BRANCH_CHARS.sub('-', value.strip().lower())
    return normalized.strip('-/') or '-'


class EditorialWorkflow:
    """Drives entries through review and publication.

    Example:
        >>> workflow = EditorialWorkflow(backend)
        >>> entry = workflow.start("posts", "hello-world")
        >>> workflow.save_draft(entry, files, [], "Draft hello world")
        >>> workflow.request_review(entry)
        >>> workflow.approve(entry)
        >>> workflow.publish(entry)
    """

    def __init__(
        self,
        backend: Backend,
        persist_engine: Optional[PersistEngine] = None,
        enabled: bool = True,
        branch_prefix: str = DEFAULT_BRANCH_PREFIX,
        base_branch: Optional[str] = None,
    ):
        """Initialize the workflow engine.

        Args:
            backend: Backend providing branches and pull requests
            persist_engine: Engine used by save_draft (created if omitted)
            enabled: Whether the review workflow is active
            branch_prefix: First segment of every workflow branch name
            base_branch: Branch content is published to (default: backend branch)

        Raises:
            ConfigError: If the workflow is enabled on a backend without
                pull requests
        """
        if enabled and not backend.capabilities.supports_pull_requests:
            raise ConfigError(
                f"{backend.display_name} backend has no pull requests; "
                f"editorial workflow cannot be enabled",
                'editorial_workflow'
            )
        self.backend = backend
        self.persist_engine = persist_engine or PersistEngine(backend)
        self.enabled = enabled
        self.branch_prefix = branch_prefix.strip('/')
        self.base_branch = base_branch or backend.branch

    def branch_name(self, collection: str, slug: str) -> str:
        """Derive the workflow branch name of an entry.

        Example:
            >>> workflow.branch_name("posts", "Hello World")
            'cms/posts/hello-world'
        """
        return f"{self.branch_prefix}/{_normalize(collection)}/{_normalize(slug)}"

    def start(self, collection: str, slug: str) -> WorkflowEntry:
        """Enter the workflow for an entry in draft status."""
        return WorkflowEntry(
            collection=collection,
            slug=slug,
            branch_name=self.branch_name(collection, slug),
        )

    def save_draft(
        self,
        entry: WorkflowEntry,
        data_files: Sequence[DataFile],
        assets: Sequence[Asset],
        commit_message: str,
        new_entry: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> CommitResult:
        """Persist edits of an entry that is not yet published.

        With the workflow enabled the files go to the entry's workflow
        branch (created from the base branch head when missing); otherwise
        they go to the base branch.

        Raises:
            InvalidTransitionError: If the entry is already published
        """
        if entry.status == EditorialStatus.PUBLISHED:
            raise InvalidTransitionError(
                entry.status, EditorialStatus.DRAFT, "entry is already published"
            )

        if not self.enabled:
            return self.persist_engine.persist_files(
                data_files, assets, commit_message, new_entry,
                branch=self.base_branch, cancel_event=cancel_event,
            )

        self.ensure_branch(entry)
        return self.persist_engine.persist_files(
            data_files, assets, commit_message, new_entry,
            branch=entry.branch_name, cancel_event=cancel_event,
        )

    def transition(self, entry: WorkflowEntry, target: EditorialStatus) -> WorkflowEntry:
        """Move an entry to ``target``.

        Only the next status in order is accepted. The entry is updated only
        after the provider side of the transition succeeded.

        Raises:
            InvalidTransitionError: If ``target`` is not the next status
            WorkflowConflictError: If the merge on publish is rejected
        """
        current = entry.status

        if not self.enabled:
            if current == EditorialStatus.DRAFT and target == EditorialStatus.PUBLISHED:
                entry.status = EditorialStatus.PUBLISHED
                logger.info(f"Published {entry.collection}/{entry.slug} (workflow disabled)")
                return entry
            raise InvalidTransitionError(current, target, "editorial workflow is disabled")

        if NEXT_STATUS.get(current) != target:
            raise InvalidTransitionError(current, target)

        if target == EditorialStatus.PENDING_REVIEW:
            self._open_review(entry)
        elif target == EditorialStatus.PENDING_PUBLISH:
            self._mark_ready(entry)
        else:
            self._publish(entry)

        logger.info(
            f"Moved {entry.collection}/{entry.slug} from {current.value} to {target.value}"
        )
        return entry

    def request_review(self, entry: WorkflowEntry) -> WorkflowEntry:
        return self.transition(entry, EditorialStatus.PENDING_REVIEW)

    def approve(self, entry: WorkflowEntry) -> WorkflowEntry:
        return self.transition(entry, EditorialStatus.PENDING_PUBLISH)

    def publish(self, entry: WorkflowEntry) -> WorkflowEntry:
        return self.transition(entry, EditorialStatus.PUBLISHED)

    def status(self, entry: WorkflowEntry) -> EditorialStatus:
        """Reconcile the entry's status with the live pull request.

        - merged pull request: published
        - closed without merge: back to draft
        - open: the status label, falling back to the local status
        - no pull request while pending: back to draft

        Returns:
            The reconciled status (also stored on the entry)
        """
        if not self.enabled or entry.status == EditorialStatus.PUBLISHED:
            return entry.status

        if entry.pull_request is not None:
            pr: Optional[PullRequest] = self.backend.get_pull_request(entry.pull_request.id)
        else:
            pr = self.backend.find_pull_request(entry.branch_name, include_closed=True)

        if pr is None:
            if entry.status != EditorialStatus.DRAFT:
                logger.warning(
                    f"No pull request found for {entry.branch_name}; "
                    f"treating {entry.slug} as draft"
                )
            entry.status = EditorialStatus.DRAFT
            return entry.status

        if pr.state == PullRequestState.MERGED:
            entry.status = EditorialStatus.PUBLISHED
            entry.pull_request = pr
        elif pr.state == PullRequestState.CLOSED:
            logger.info(f"Pull request #{pr.id} was closed without merge; reverting to draft")
            entry.status = EditorialStatus.DRAFT
            entry.pull_request = None
        else:
            entry.status = pr.status or entry.status
            entry.pull_request = pr
        return entry.status

    def ensure_branch(self, entry: WorkflowEntry) -> Branch:
        """Return the workflow branch, creating it from the base head if absent."""
        branch = self.backend.get_branch(entry.branch_name)
        if branch is not None:
            return branch

        base = self.backend.get_branch(self.base_branch)
        if base is None:
            raise NotFoundError(
                f"Base branch {self.base_branch} not found", 404, self.backend.display_name
            )
        logger.info(f"Creating workflow branch {entry.branch_name} from {base.head_commit_sha}")
        return self.backend.create_branch(entry.branch_name, base)

    def _open_review(self, entry: WorkflowEntry) -> None:
        self.ensure_branch(entry)

        pr = self.backend.find_pull_request(entry.branch_name)
        if pr is None:
            pr = self.backend.create_pull_request(
                entry.branch_name,
                self.base_branch,
                title=f"Update {entry.collection} \"{entry.slug}\"",
                body=f"Editorial workflow entry {entry.collection}/{entry.slug}.",
            )
            logger.info(f"Opened pull request #{pr.id} for {entry.branch_name}")
        else:
            logger.info(f"Reusing open pull request #{pr.id} for {entry.branch_name}")

        pr = self.backend.set_pull_request_status(pr, EditorialStatus.PENDING_REVIEW)
        entry.pull_request = pr
        entry.status = EditorialStatus.PENDING_REVIEW

    def _mark_ready(self, entry: WorkflowEntry) -> None:
        pr = self._open_pull_request(entry, EditorialStatus.PENDING_PUBLISH)
        pr = self.backend.set_pull_request_status(pr, EditorialStatus.PENDING_PUBLISH)
        entry.pull_request = pr
        entry.status = EditorialStatus.PENDING_PUBLISH

    def _publish(self, entry: WorkflowEntry) -> None:
        pr = self._open_pull_request(entry, EditorialStatus.PUBLISHED)
        try:
            commit = self.backend.merge_pull_request(
                pr, f"Publish {entry.collection} \"{entry.slug}\""
            )
        except ConflictError as e:
            raise WorkflowConflictError(entry.branch_name, e) from e

        pr.state = PullRequestState.MERGED
        entry.pull_request = pr
        entry.status = EditorialStatus.PUBLISHED
        logger.info(f"Merged {entry.branch_name} into {self.base_branch} as {commit.sha}")

        try:
            self.backend.delete_branch(entry.branch_name)
        except NotFoundError:
            logger.debug(f"Workflow branch {entry.branch_name} was already deleted")

    def _open_pull_request(
        self, entry: WorkflowEntry, target: EditorialStatus
    ) -> PullRequest:
        pr = entry.pull_request
        if pr is None or not pr.is_open:
            pr = self.backend.find_pull_request(entry.branch_name)
        if pr is None:
            raise InvalidTransitionError(
                entry.status, target, f"no open pull request for {entry.branch_name}"
            )
        return pr
