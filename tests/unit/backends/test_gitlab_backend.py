"""Unit tests for backends.gitlab module."""

import base64
from unittest.mock import Mock

import pytest

from src.backends.gitlab import GitLabBackend
from src.models.content import DataFile, FileChange, WriteStrategy
from src.models.repository import Branch, EntryType, Repository
from src.models.review import EditorialStatus, PullRequest, PullRequestState
from src.persist_engine.persist_engine import PersistEngine
from src.provider_client.errors import APIError, ConflictError, NotFoundError, ValidationError

PROJECT = '/projects/group%2Fsub%2Frepo'


@pytest.fixture
def client():
    return Mock()


@pytest.fixture
def backend(client):
    return GitLabBackend(Repository.parse('group/sub/repo', 'main'), client)


class TestGitLabTree:
    """Test cases for GitLabBackend.fetch_tree."""

    def test_lists_with_paginated_tree_api(self, backend, client):
        client.request_all.return_value = [
            {'id': 'sha-a', 'name': 'a.md', 'type': 'blob', 'path': 'content/posts/a.md'},
            {'id': 'sha-d', 'name': 'drafts', 'type': 'tree', 'path': 'content/posts/drafts'},
        ]

        entries = backend.fetch_tree('main', '/content/posts/', recursive=True)

        client.request_all.assert_called_once_with(
            f'{PROJECT}/repository/tree',
            params={'path': 'content/posts', 'ref': 'main', 'recursive': 'true', 'per_page': 100},
            cancel_event=None,
        )
        assert [(e.path, e.type, e.sha) for e in entries] == [
            ('content/posts/a.md', EntryType.BLOB, 'sha-a'),
            ('content/posts/drafts', EntryType.TREE, 'sha-d'),
        ]

    def test_entry_without_path_is_malformed(self, backend, client):
        client.request_all.return_value = [{'id': 'x', 'type': 'blob'}]

        with pytest.raises(ValidationError):
            backend.fetch_tree('main', 'content')


class TestGitLabCommits:
    """Test cases for GitLab commits."""

    def test_commit_tree_sends_one_action_per_file(self, backend, client):
        def respond(path, method='GET', **kwargs):
            if method == 'GET':
                return {'name': 'main', 'commit': {'id': 'head-1'}}
            return {'id': 'commit-1', 'message': 'm', 'parent_ids': ['head-1']}
        client.request.side_effect = respond

        commit = backend.commit_tree(
            'main',
            [
                FileChange(path='content/posts/a.md', content=b'A', sha='old-a'),
                FileChange(path='static/b.png', content=b'B'),
            ],
            'm',
            parent_sha='head-1',
        )

        assert commit.sha == 'commit-1'
        assert commit.parent_sha == 'head-1'
        post = client.request.call_args
        assert post.args[0] == f'{PROJECT}/repository/commits'
        assert post.kwargs['body'] == {
            'branch': 'main',
            'commit_message': 'm',
            'actions': [
                {'action': 'update', 'file_path': 'content/posts/a.md',
                 'content': base64.b64encode(b'A').decode('ascii'), 'encoding': 'base64'},
                {'action': 'create', 'file_path': 'static/b.png',
                 'content': base64.b64encode(b'B').decode('ascii'), 'encoding': 'base64'},
            ],
        }

    def test_commit_tree_refuses_moved_head(self, backend, client):
        """The commit must not be created when the branch moved."""
        client.request.return_value = {'name': 'main', 'commit': {'id': 'head-2'}}

        with pytest.raises(ConflictError):
            backend.commit_tree(
                'main', [FileChange(path='a.md', content=b'A')], 'm', parent_sha='head-1'
            )

        assert client.request.call_count == 1

    def test_write_file_is_single_action_commit(self, backend, client):
        client.request.return_value = {'id': 'commit-1'}

        commit = backend.write_file('main', 'a.md', b'A', 'Create a')

        assert commit.sha == 'commit-1'
        assert client.request.call_args.kwargs['body']['actions'][0]['action'] == 'create'

    def test_update_sends_last_commit_id(self, backend, client):
        """An update is checked against the file's blob and pinned to its last commit."""
        def respond(path, method='GET', **kwargs):
            if method == 'GET':
                return {'blob_id': 'sha-a', 'last_commit_id': 'commit-0'}
            return {'id': 'commit-1', 'parent_ids': ['commit-0']}
        client.request.side_effect = respond

        commit = backend.write_file('main', 'content/posts/a.md', b'A', 'Update a', sha='sha-a')

        assert commit.sha == 'commit-1'
        lookup, post = client.request.call_args_list
        assert lookup.args[0] == f'{PROJECT}/repository/files/content%2Fposts%2Fa.md'
        assert lookup.kwargs['params'] == {'ref': 'main'}
        assert post.kwargs['body']['actions'] == [{
            'action': 'update',
            'file_path': 'content/posts/a.md',
            'content': base64.b64encode(b'A').decode('ascii'),
            'encoding': 'base64',
            'last_commit_id': 'commit-0',
        }]

    def test_update_of_changed_file_is_a_conflict(self, backend, client):
        client.request.return_value = {'blob_id': 'sha-new', 'last_commit_id': 'commit-2'}

        with pytest.raises(ConflictError) as exc_info:
            backend.write_file('main', 'content/posts/a.md', b'A', 'Update a', sha='sha-a')

        assert client.request.call_count == 1
        assert exc_info.value.path == 'content/posts/a.md'

    def test_update_of_deleted_file_is_a_conflict(self, backend, client):
        client.request.side_effect = NotFoundError('404 File Not Found', 404, 'GitLab')

        with pytest.raises(ConflictError):
            backend.write_file('main', 'content/posts/a.md', b'A', 'Update a', sha='sha-a')

        assert client.request.call_count == 1

    def test_sequential_persist_rejects_remote_change(self, backend, client):
        """A file changed after tree resolution must not be overwritten."""
        client.request_all.return_value = [
            {'id': 'old-sha', 'name': 'a.md', 'type': 'blob', 'path': 'content/posts/a.md'},
        ]
        client.request.return_value = {'blob_id': 'new-sha', 'last_commit_id': 'commit-2'}
        engine = PersistEngine(backend, strategy=WriteStrategy.SEQUENTIAL_PER_FILE)

        with pytest.raises(ConflictError):
            engine.persist_files(
                [DataFile(path='content/posts/a.md', slug='a', raw_content='X')],
                [],
                commit_message='Update a',
                new_entry=False,
            )

        methods = [c.kwargs.get('method', 'GET') for c in client.request.call_args_list]
        assert 'POST' not in methods

    def test_create_skips_file_lookup(self, backend, client):
        client.request.return_value = {'id': 'commit-1'}

        backend.write_file('main', 'a.md', b'A', 'Create a')

        client.request.assert_called_once()
        assert 'last_commit_id' not in client.request.call_args.kwargs['body']['actions'][0]

    def test_commit_response_without_id(self, backend, client):
        client.request.return_value = {}

        with pytest.raises(ValidationError):
            backend.write_file('main', 'a.md', b'A', 'Create a')


class TestGitLabBranches:
    """Test cases for GitLab branch operations."""

    def test_create_branch(self, backend, client):
        client.request.return_value = {'name': 'cms/posts/a', 'commit': {'id': 'head-1'}}

        branch = backend.create_branch('cms/posts/a', Branch('main', 'head-1'))

        assert branch == Branch('cms/posts/a', 'head-1')
        assert client.request.call_args.kwargs['params'] == {
            'branch': 'cms/posts/a', 'ref': 'head-1',
        }

    def test_delete_branch_quotes_name(self, backend, client):
        backend.delete_branch('cms/posts/a')

        client.request.assert_called_once_with(
            f'{PROJECT}/repository/branches/cms%2Fposts%2Fa', method='DELETE'
        )


class TestGitLabMergeRequests:
    """Test cases for GitLab merge request operations."""

    MR = {
        'iid': 3,
        'source_branch': 'cms/posts/a',
        'state': 'opened',
        'labels': ['cms/pending_review'],
        'sha': 'h',
        'web_url': 'https://gitlab.com/group/sub/repo/-/merge_requests/3',
    }

    def test_find_merge_request(self, backend, client):
        client.request_all.return_value = [self.MR]

        pr = backend.find_pull_request('cms/posts/a')

        assert pr.id == 3
        assert pr.state == PullRequestState.OPEN
        assert pr.status == EditorialStatus.PENDING_REVIEW
        assert client.request_all.call_args.kwargs['params']['state'] == 'opened'

    def test_merged_state(self, backend, client):
        client.request.return_value = {**self.MR, 'state': 'merged'}

        assert backend.get_pull_request(3).state == PullRequestState.MERGED

    def test_set_status_adds_and_removes_labels(self, backend, client):
        client.request.return_value = {**self.MR, 'labels': ['cms/pending_publish']}
        pr = PullRequest(id=3, branch_name='cms/posts/a')

        backend.set_pull_request_status(pr, EditorialStatus.PENDING_PUBLISH)

        body = client.request.call_args.kwargs['body']
        assert body['add_labels'] == 'cms/pending_publish'
        assert 'cms/pending_review' in body['remove_labels'].split(',')
        assert 'cms/pending_publish' not in body['remove_labels'].split(',')
        assert pr.status == EditorialStatus.PENDING_PUBLISH

    @pytest.mark.parametrize('status', [405, 406, 409, 422])
    def test_merge_rejected_is_conflict(self, backend, client, status):
        client.request.side_effect = APIError('Branch cannot be merged', status, 'GitLab')

        with pytest.raises(ConflictError):
            backend.merge_pull_request(PullRequest(id=3, branch_name='cms/posts/a'), 'Publish')

    def test_merge(self, backend, client):
        client.request.return_value = {**self.MR, 'state': 'merged', 'merge_commit_sha': 'm-1'}

        commit = backend.merge_pull_request(PullRequest(id=3, branch_name='cms/posts/a'), 'Publish')

        assert commit.sha == 'm-1'
        assert client.request.call_args.args[0] == f'{PROJECT}/merge_requests/3/merge'
