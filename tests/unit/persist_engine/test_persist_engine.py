"""Unit tests for persist_engine.persist_engine module."""

import logging
import threading
from unittest.mock import Mock

import pytest

from src.backends.base import BackendCapabilities
from src.models.content import Asset, DataFile, WriteStrategy
from src.models.repository import Branch, Commit, EntryType, TreeEntry
from src.persist_engine.persist_engine import PersistEngine
from src.provider_client.errors import (
    ConflictError,
    NotFoundError,
    OperationCancelledError,
    RateLimitedError,
)


def blob(path, sha):
    return TreeEntry(path=path, name=path.rsplit('/', 1)[-1], type=EntryType.BLOB, sha=sha)


def make_backend(atomic=False):
    backend = Mock()
    backend.branch = 'main'
    backend.display_name = 'GitHub' if atomic else 'Gitea'
    backend.capabilities = BackendCapabilities(
        supports_atomic_commit=atomic, supports_pull_requests=True
    )
    return backend


REMOTE = {
    'content/posts': [blob('content/posts/a.md', 'sha-a'), blob('content/posts/b.md', 'sha-b')],
    'static/img': [blob('static/img/c.png', 'sha-c')],
}


def remote_tree(ref, directory, recursive=False, cancel_event=None):
    return list(REMOTE.get(directory, []))


class TestStrategySelection:
    """Test cases for choosing the write strategy."""

    def test_sequential_for_backend_without_atomic_commits(self):
        assert PersistEngine(make_backend(atomic=False)).strategy == WriteStrategy.SEQUENTIAL_PER_FILE

    def test_atomic_when_supported(self):
        assert PersistEngine(make_backend(atomic=True)).strategy == WriteStrategy.ATOMIC_TREE_COMMIT

    def test_sequential_can_be_forced(self):
        engine = PersistEngine(make_backend(atomic=True), strategy=WriteStrategy.SEQUENTIAL_PER_FILE)

        assert engine.strategy == WriteStrategy.SEQUENTIAL_PER_FILE

    def test_atomic_cannot_be_forced_on_unsupported_backend(self):
        with pytest.raises(ValueError):
            PersistEngine(make_backend(atomic=False), strategy=WriteStrategy.ATOMIC_TREE_COMMIT)


class TestSequentialPersist:
    """Test cases for the per-file strategy."""

    def test_new_entry_skips_tree_lookup(self):
        """A new entry should issue one write per file and no listing."""
        backend = make_backend()
        backend.write_file.side_effect = [Commit(sha='c1'), Commit(sha='c2')]

        result = PersistEngine(backend).persist_files(
            [DataFile(path='content/posts/new.md', slug='new', raw_content='# New')],
            [Asset(path='static/img/new.png', content=b'\x89PNG')],
            commit_message='Create new',
            new_entry=True,
        )

        backend.fetch_tree.assert_not_called()
        assert backend.write_file.call_count == 2
        first = backend.write_file.call_args_list[0]
        assert first.args == ('main', 'content/posts/new.md', b'# New', 'Create new')
        assert first.kwargs['sha'] is None
        assert result.strategy == WriteStrategy.SEQUENTIAL_PER_FILE
        assert result.written_paths == ['content/posts/new.md', 'static/img/new.png']
        assert result.heads == {'main': 'c2'}

    def test_one_listing_per_directory(self):
        """Files sharing a directory should share one tree request."""
        backend = make_backend()
        backend.fetch_tree.side_effect = remote_tree
        backend.write_file.return_value = Commit(sha='c')

        PersistEngine(backend).persist_files(
            [
                DataFile(path='content/posts/a.md', slug='a', raw_content='A'),
                DataFile(path='content/posts/b.md', slug='b', raw_content='B'),
            ],
            [Asset(path='static/img/c.png', content=b'C')],
            commit_message='Update',
            new_entry=False,
        )

        directories = sorted(c.args[1] for c in backend.fetch_tree.call_args_list)
        assert directories == ['content/posts', 'static/img']
        shas = [c.kwargs['sha'] for c in backend.write_file.call_args_list]
        assert shas == ['sha-a', 'sha-b', 'sha-c']

    def test_matching_base_sha(self):
        backend = make_backend()
        backend.fetch_tree.side_effect = remote_tree
        backend.write_file.return_value = Commit(sha='c')

        PersistEngine(backend).persist_files(
            [DataFile(path='content/posts/a.md', slug='a', raw_content='A', base_sha='sha-a')],
            [],
            commit_message='Update',
            new_entry=False,
        )

        assert backend.write_file.call_args.kwargs['sha'] == 'sha-a'

    def test_stale_base_sha_conflicts_without_writing(self):
        backend = make_backend()
        backend.fetch_tree.side_effect = remote_tree

        with pytest.raises(ConflictError) as exc_info:
            PersistEngine(backend).persist_files(
                [DataFile(path='content/posts/a.md', slug='a', raw_content='A', base_sha='old')],
                [],
                commit_message='Update',
                new_entry=False,
            )

        backend.write_file.assert_not_called()
        assert exc_info.value.path == 'content/posts/a.md'

    def test_file_not_yet_on_provider_is_created(self):
        backend = make_backend()
        backend.fetch_tree.side_effect = remote_tree
        backend.write_file.return_value = Commit(sha='c')

        PersistEngine(backend).persist_files(
            [DataFile(path='content/posts/z.md', slug='z', raw_content='Z')],
            [],
            commit_message='Create z',
            new_entry=False,
        )

        assert backend.write_file.call_args.kwargs['sha'] is None

    def test_provider_rejection_propagates_without_retry(self):
        """A sha precondition rejected by the provider is not retried or merged."""
        backend = make_backend()
        backend.fetch_tree.side_effect = remote_tree
        backend.write_file.side_effect = ConflictError(
            'sha does not match', 422, 'Gitea', 'content/posts/a.md'
        )

        with pytest.raises(ConflictError) as exc_info:
            PersistEngine(backend).persist_files(
                [
                    DataFile(path='content/posts/a.md', slug='a', raw_content='A'),
                    DataFile(path='content/posts/b.md', slug='b', raw_content='B'),
                ],
                [],
                commit_message='Update',
                new_entry=False,
            )

        assert backend.write_file.call_count == 1
        assert exc_info.value.status == 422

    def test_partial_failure_keeps_earlier_commits(self, caplog):
        """A failure mid-way should propagate and log what was written."""
        backend = make_backend()
        backend.fetch_tree.side_effect = remote_tree
        backend.write_file.side_effect = [
            Commit(sha='c1'),
            RateLimitedError('Gitea', 'content/posts/b.md'),
        ]

        with caplog.at_level(logging.WARNING, logger='src.persist_engine.persist_engine'):
            with pytest.raises(RateLimitedError):
                PersistEngine(backend).persist_files(
                    [
                        DataFile(path='content/posts/a.md', slug='a', raw_content='A'),
                        DataFile(path='content/posts/b.md', slug='b', raw_content='B'),
                        DataFile(path='content/posts/c.md', slug='c', raw_content='C'),
                    ],
                    [],
                    commit_message='Update',
                    new_entry=False,
                )

        assert backend.write_file.call_count == 2
        assert 'content/posts/a.md' in caplog.text
        assert '1 of 3' in caplog.text

    def test_cancel_stops_before_next_write(self):
        backend = make_backend()
        event = threading.Event()

        def write(*args, **kwargs):
            event.set()
            return Commit(sha='c1')
        backend.write_file.side_effect = write

        with pytest.raises(OperationCancelledError):
            PersistEngine(backend).persist_files(
                [
                    DataFile(path='a.md', slug='a', raw_content='A'),
                    DataFile(path='b.md', slug='b', raw_content='B'),
                ],
                [],
                commit_message='Update',
                new_entry=True,
                cancel_event=event,
            )

        assert backend.write_file.call_count == 1

    def test_explicit_branch(self):
        backend = make_backend()
        backend.write_file.return_value = Commit(sha='c1')

        result = PersistEngine(backend).persist_files(
            [DataFile(path='a.md', slug='a', raw_content='A')],
            [],
            commit_message='Draft',
            new_entry=True,
            branch='cms/posts/a',
        )

        assert backend.write_file.call_args.args[0] == 'cms/posts/a'
        assert result.heads == {'cms/posts/a': 'c1'}

    def test_nothing_to_persist(self):
        with pytest.raises(ValueError):
            PersistEngine(make_backend()).persist_files([], [], 'm', new_entry=True)

    def test_duplicate_paths_last_wins(self):
        backend = make_backend()
        backend.write_file.return_value = Commit(sha='c1')

        PersistEngine(backend).persist_files(
            [
                DataFile(path='a.md', slug='a', raw_content='old'),
                DataFile(path='/a.md', slug='a', raw_content='new'),
            ],
            [],
            commit_message='m',
            new_entry=True,
        )

        backend.write_file.assert_called_once()
        assert backend.write_file.call_args.args[2] == b'new'


class TestAtomicPersist:
    """Test cases for the atomic tree commit strategy."""

    def test_resolves_at_head_and_commits_once(self):
        """Shas are read at the head commit the new commit is parented on."""
        backend = make_backend(atomic=True)
        backend.get_branch.return_value = Branch('main', 'head-1')
        backend.fetch_tree.side_effect = remote_tree
        backend.commit_tree.return_value = Commit(sha='commit-1', parent_sha='head-1')

        result = PersistEngine(backend).persist_files(
            [DataFile(path='content/posts/a.md', slug='a', raw_content='A')],
            [Asset(path='static/img/new.png', content=b'N')],
            commit_message='Update a',
            new_entry=False,
        )

        assert {c.args[0] for c in backend.fetch_tree.call_args_list} == {'head-1'}
        backend.write_file.assert_not_called()
        backend.commit_tree.assert_called_once()
        call = backend.commit_tree.call_args
        assert call.args[0] == 'main'
        assert [(c.path, c.sha) for c in call.args[1]] == [
            ('content/posts/a.md', 'sha-a'),
            ('static/img/new.png', None),
        ]
        assert call.kwargs['parent_sha'] == 'head-1'
        assert result.strategy == WriteStrategy.ATOMIC_TREE_COMMIT
        assert result.heads == {'main': 'commit-1'}
        assert result.written_paths == ['content/posts/a.md', 'static/img/new.png']

    def test_new_entry_skips_resolution(self):
        backend = make_backend(atomic=True)
        backend.get_branch.return_value = Branch('main', 'head-1')
        backend.commit_tree.return_value = Commit(sha='commit-1')

        PersistEngine(backend).persist_files(
            [DataFile(path='a.md', slug='a', raw_content='A', base_sha='ignored')],
            [],
            commit_message='Create a',
            new_entry=True,
        )

        backend.fetch_tree.assert_not_called()
        assert backend.commit_tree.call_args.args[1][0].sha is None

    def test_conflict_from_provider_propagates(self):
        backend = make_backend(atomic=True)
        backend.get_branch.return_value = Branch('main', 'head-1')
        backend.fetch_tree.side_effect = remote_tree
        backend.commit_tree.side_effect = ConflictError('Update is not a fast forward', 422, 'GitHub')

        with pytest.raises(ConflictError):
            PersistEngine(backend).persist_files(
                [DataFile(path='content/posts/a.md', slug='a', raw_content='A')],
                [],
                commit_message='m',
                new_entry=False,
            )

    def test_cancelled_before_head_read(self):
        backend = make_backend(atomic=True)
        event = threading.Event()
        event.set()
        backend.get_branch.side_effect = OperationCancelledError()

        with pytest.raises(OperationCancelledError):
            PersistEngine(backend).persist_files(
                [DataFile(path='a.md', slug='a', raw_content='A')], [], 'm',
                new_entry=True, cancel_event=event,
            )

        assert backend.get_branch.call_args.kwargs['cancel_event'] is event
        backend.commit_tree.assert_not_called()

    def test_missing_branch(self):
        backend = make_backend(atomic=True)
        backend.get_branch.return_value = None

        with pytest.raises(NotFoundError):
            PersistEngine(backend).persist_files(
                [DataFile(path='a.md', slug='a', raw_content='A')], [], 'm', new_entry=True
            )

        backend.commit_tree.assert_not_called()
