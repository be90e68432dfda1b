"""Unit tests for editorial_workflow.workflow_engine module."""

from unittest.mock import Mock

import pytest

from src.backends.base import BackendCapabilities
from src.config.errors import ConfigError
from src.editorial_workflow.errors import InvalidTransitionError, WorkflowConflictError
from src.editorial_workflow.workflow_engine import EditorialWorkflow
from src.models.content import CommitResult, DataFile, WriteStrategy
from src.models.repository import Branch, Commit
from src.models.review import EditorialStatus, PullRequest, PullRequestState
from src.provider_client.errors import ConflictError, NotFoundError


def make_backend(pull_requests=True):
    backend = Mock()
    backend.branch = 'main'
    backend.display_name = 'GitHub'
    backend.capabilities = BackendCapabilities(
        supports_atomic_commit=True, supports_pull_requests=pull_requests
    )
    backend.set_pull_request_status.side_effect = lambda pr, status: _with_status(pr, status)
    return backend


def _with_status(pr, status):
    pr.status = status
    return pr


@pytest.fixture
def backend():
    return make_backend()


@pytest.fixture
def persist_engine():
    engine = Mock()
    engine.persist_files.return_value = CommitResult(strategy=WriteStrategy.ATOMIC_TREE_COMMIT)
    return engine


@pytest.fixture
def workflow(backend, persist_engine):
    return EditorialWorkflow(backend, persist_engine=persist_engine)


def open_pr(status=None):
    return PullRequest(id=12, branch_name='cms/posts/hello-world', status=status)


class TestSetup:
    """Test cases for workflow construction and entries."""

    def test_branch_name(self, workflow):
        assert workflow.branch_name('posts', 'hello-world') == 'cms/posts/hello-world'

    def test_branch_name_is_normalized(self, workflow):
        assert workflow.branch_name('Posts', 'Hello World!') == 'cms/posts/hello-world'

    def test_start_enters_draft(self, workflow):
        entry = workflow.start('posts', 'hello-world')

        assert entry.status == EditorialStatus.DRAFT
        assert entry.branch_name == 'cms/posts/hello-world'
        assert entry.pull_request is None

    def test_requires_pull_requests_when_enabled(self):
        with pytest.raises(ConfigError):
            EditorialWorkflow(make_backend(pull_requests=False))

    def test_disabled_on_backend_without_pull_requests(self):
        workflow = EditorialWorkflow(make_backend(pull_requests=False), enabled=False)

        assert workflow.enabled is False


class TestSaveDraft:
    """Test cases for EditorialWorkflow.save_draft."""

    def test_creates_workflow_branch_and_persists_to_it(self, workflow, backend, persist_engine):
        backend.get_branch.side_effect = lambda name: (
            Branch('main', 'head-1') if name == 'main' else None
        )
        entry = workflow.start('posts', 'hello-world')
        files = [DataFile(path='content/posts/hello-world.md', slug='hello-world', raw_content='Hi')]

        workflow.save_draft(entry, files, [], 'Draft hello', new_entry=True)

        backend.create_branch.assert_called_once_with(
            'cms/posts/hello-world', Branch('main', 'head-1')
        )
        persist_engine.persist_files.assert_called_once_with(
            files, [], 'Draft hello', True, branch='cms/posts/hello-world', cancel_event=None
        )
        assert entry.status == EditorialStatus.DRAFT

    def test_existing_branch_is_reused(self, workflow, backend, persist_engine):
        backend.get_branch.return_value = Branch('cms/posts/hello-world', 'draft-1')
        entry = workflow.start('posts', 'hello-world')

        workflow.save_draft(entry, [], [], 'Draft hello')

        backend.create_branch.assert_not_called()

    def test_missing_base_branch(self, workflow, backend):
        backend.get_branch.return_value = None
        entry = workflow.start('posts', 'hello-world')

        with pytest.raises(NotFoundError):
            workflow.save_draft(entry, [], [], 'Draft hello')

    def test_disabled_writes_to_base_branch(self, backend, persist_engine):
        workflow = EditorialWorkflow(backend, persist_engine=persist_engine, enabled=False)
        entry = workflow.start('posts', 'hello-world')

        workflow.save_draft(entry, [], [], 'Update hello')

        backend.get_branch.assert_not_called()
        assert persist_engine.persist_files.call_args.kwargs['branch'] == 'main'

    def test_published_entry_cannot_be_drafted(self, workflow, persist_engine):
        entry = workflow.start('posts', 'hello-world')
        entry.status = EditorialStatus.PUBLISHED

        with pytest.raises(InvalidTransitionError):
            workflow.save_draft(entry, [], [], 'Draft hello')

        persist_engine.persist_files.assert_not_called()


class TestTransitions:
    """Test cases for the forward-only status machine."""

    def test_full_lifecycle(self, workflow, backend):
        """draft -> pending_review -> pending_publish -> published."""
        backend.get_branch.return_value = Branch('cms/posts/hello-world', 'draft-1')
        backend.find_pull_request.return_value = None
        backend.create_pull_request.return_value = open_pr()
        backend.merge_pull_request.return_value = Commit(sha='merge-1')
        entry = workflow.start('posts', 'hello-world')

        workflow.request_review(entry)
        assert entry.status == EditorialStatus.PENDING_REVIEW
        assert entry.pull_request.id == 12
        backend.create_pull_request.assert_called_once()
        assert backend.create_pull_request.call_args.args[:2] == ('cms/posts/hello-world', 'main')

        workflow.approve(entry)
        assert entry.status == EditorialStatus.PENDING_PUBLISH
        assert entry.pull_request.status == EditorialStatus.PENDING_PUBLISH

        workflow.publish(entry)
        assert entry.status == EditorialStatus.PUBLISHED
        assert entry.pull_request.state == PullRequestState.MERGED
        backend.merge_pull_request.assert_called_once()
        backend.delete_branch.assert_called_once_with('cms/posts/hello-world')

        statuses = [c.args[1] for c in backend.set_pull_request_status.call_args_list]
        assert statuses == [EditorialStatus.PENDING_REVIEW, EditorialStatus.PENDING_PUBLISH]

    def test_review_reuses_open_pull_request(self, workflow, backend):
        """Opening a review twice must not create a second pull request."""
        backend.get_branch.return_value = Branch('cms/posts/hello-world', 'draft-1')
        backend.find_pull_request.return_value = open_pr()
        entry = workflow.start('posts', 'hello-world')

        workflow.request_review(entry)

        backend.create_pull_request.assert_not_called()
        assert entry.pull_request.id == 12

    def test_review_creates_missing_branch(self, workflow, backend):
        backend.get_branch.side_effect = lambda name: (
            Branch('main', 'head-1') if name == 'main' else None
        )
        backend.find_pull_request.return_value = None
        backend.create_pull_request.return_value = open_pr()
        entry = workflow.start('posts', 'hello-world')

        workflow.request_review(entry)

        backend.create_branch.assert_called_once()

    @pytest.mark.parametrize('current, target', [
        (EditorialStatus.DRAFT, EditorialStatus.PENDING_PUBLISH),
        (EditorialStatus.DRAFT, EditorialStatus.PUBLISHED),
        (EditorialStatus.PENDING_REVIEW, EditorialStatus.PUBLISHED),
        (EditorialStatus.PENDING_PUBLISH, EditorialStatus.PENDING_REVIEW),
        (EditorialStatus.PUBLISHED, EditorialStatus.DRAFT),
        (EditorialStatus.DRAFT, EditorialStatus.DRAFT),
    ])
    def test_invalid_transition_leaves_state_unchanged(self, workflow, backend, current, target):
        entry = workflow.start('posts', 'hello-world')
        entry.status = current

        with pytest.raises(InvalidTransitionError) as exc_info:
            workflow.transition(entry, target)

        assert entry.status == current
        assert exc_info.value.current == current
        assert exc_info.value.target == target
        backend.create_pull_request.assert_not_called()
        backend.merge_pull_request.assert_not_called()

    def test_approve_without_pull_request(self, workflow, backend):
        backend.find_pull_request.return_value = None
        entry = workflow.start('posts', 'hello-world')
        entry.status = EditorialStatus.PENDING_REVIEW

        with pytest.raises(InvalidTransitionError):
            workflow.approve(entry)

        assert entry.status == EditorialStatus.PENDING_REVIEW

    def test_merge_conflict_is_reported(self, workflow, backend):
        """A rejected merge should raise WorkflowConflictError and not publish."""
        backend.merge_pull_request.side_effect = ConflictError('not mergeable', 405, 'GitHub')
        entry = workflow.start('posts', 'hello-world')
        entry.status = EditorialStatus.PENDING_PUBLISH
        entry.pull_request = open_pr(EditorialStatus.PENDING_PUBLISH)

        with pytest.raises(WorkflowConflictError) as exc_info:
            workflow.publish(entry)

        assert exc_info.value.branch == 'cms/posts/hello-world'
        assert isinstance(exc_info.value.cause, ConflictError)
        assert entry.status == EditorialStatus.PENDING_PUBLISH
        backend.delete_branch.assert_not_called()

    def test_already_deleted_branch_is_ignored(self, workflow, backend):
        backend.merge_pull_request.return_value = Commit(sha='merge-1')
        backend.delete_branch.side_effect = NotFoundError('Reference does not exist', 404, 'GitHub')
        entry = workflow.start('posts', 'hello-world')
        entry.status = EditorialStatus.PENDING_PUBLISH
        entry.pull_request = open_pr(EditorialStatus.PENDING_PUBLISH)

        workflow.publish(entry)

        assert entry.status == EditorialStatus.PUBLISHED


class TestDisabledWorkflow:
    """Test cases for the workflow-disabled mode."""

    def test_draft_publishes_directly(self, backend, persist_engine):
        workflow = EditorialWorkflow(backend, persist_engine=persist_engine, enabled=False)
        entry = workflow.start('posts', 'hello-world')

        workflow.publish(entry)

        assert entry.status == EditorialStatus.PUBLISHED
        backend.merge_pull_request.assert_not_called()

    def test_review_is_rejected(self, backend, persist_engine):
        workflow = EditorialWorkflow(backend, persist_engine=persist_engine, enabled=False)
        entry = workflow.start('posts', 'hello-world')

        with pytest.raises(InvalidTransitionError):
            workflow.request_review(entry)

        assert entry.status == EditorialStatus.DRAFT


class TestStatus:
    """Test cases for reconciling status with the provider."""

    def test_merged_pull_request_means_published(self, workflow, backend):
        pr = open_pr(EditorialStatus.PENDING_PUBLISH)
        pr.state = PullRequestState.MERGED
        backend.get_pull_request.return_value = pr
        entry = workflow.start('posts', 'hello-world')
        entry.status = EditorialStatus.PENDING_PUBLISH
        entry.pull_request = open_pr(EditorialStatus.PENDING_PUBLISH)

        assert workflow.status(entry) == EditorialStatus.PUBLISHED
        backend.get_pull_request.assert_called_once_with(12)

    def test_closed_pull_request_reverts_to_draft(self, workflow, backend):
        pr = open_pr(EditorialStatus.PENDING_REVIEW)
        pr.state = PullRequestState.CLOSED
        backend.find_pull_request.return_value = pr
        entry = workflow.start('posts', 'hello-world')
        entry.status = EditorialStatus.PENDING_REVIEW

        assert workflow.status(entry) == EditorialStatus.DRAFT
        assert entry.pull_request is None
        backend.find_pull_request.assert_called_once_with(
            'cms/posts/hello-world', include_closed=True
        )

    def test_open_pull_request_label_wins(self, workflow, backend):
        backend.find_pull_request.return_value = open_pr(EditorialStatus.PENDING_PUBLISH)
        entry = workflow.start('posts', 'hello-world')

        assert workflow.status(entry) == EditorialStatus.PENDING_PUBLISH
        assert entry.pull_request.id == 12

    def test_open_pull_request_without_label_keeps_local_status(self, workflow, backend):
        backend.find_pull_request.return_value = open_pr(None)
        entry = workflow.start('posts', 'hello-world')
        entry.status = EditorialStatus.PENDING_REVIEW

        assert workflow.status(entry) == EditorialStatus.PENDING_REVIEW

    def test_vanished_pull_request_means_draft(self, workflow, backend):
        backend.find_pull_request.return_value = None
        entry = workflow.start('posts', 'hello-world')
        entry.status = EditorialStatus.PENDING_REVIEW

        assert workflow.status(entry) == EditorialStatus.DRAFT

    def test_published_is_final(self, workflow, backend):
        entry = workflow.start('posts', 'hello-world')
        entry.status = EditorialStatus.PUBLISHED

        assert workflow.status(entry) == EditorialStatus.PUBLISHED
        backend.find_pull_request.assert_not_called()
