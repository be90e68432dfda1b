"""Write one logical content change to the provider.

This module provides the PersistEngine class, which writes data files and
assets either as one atomic tree commit or as a sequence of per-file
commits, depending on what the backend supports. Existing files are always
written against the sha observed on the provider; a mismatch is a conflict
and is never retried or merged.
"""

import logging
import threading
from typing import Dict, List, Optional, Sequence

from src.backends.base import Backend
from src.models.content import Asset, CommitResult, DataFile, FileChange, WriteStrategy
from src.models.repository import Commit
from src.provider_client.errors import ConflictError, NotFoundError, OperationCancelledError
from src.tree_resolver.tree_resolver import TreeResolver, split_path

logger = logging.getLogger(__name__)


class PersistEngine:
    """Persists data files and assets as one logical change.

    Strategy selection:
        - ATOMIC_TREE_COMMIT when the backend supports it (GitHub, GitLab)
        - SEQUENTIAL_PER_FILE otherwise (Gitea)

    The sequential strategy makes one commit per file. If file 2 of 3
    fails, file 1 stays committed and file 3 is never written. The result
    (or the log, on failure) tells the caller which strategy was used.

    Example:
        >>> engine = PersistEngine(backend)
        >>> result = engine.persist_files(
        ...     [DataFile(path="content/posts/a.md", slug="a", raw_content="# A")],
        ...     [],
        ...     commit_message="Create post a",
        ...     new_entry=True,
        ... )
        >>> result.heads["main"]
    """

    def __init__(self, backend: Backend, strategy: Optional[WriteStrategy] = None):
        """Initialize persist engine.

        Args:
            backend: Backend to write through
            strategy: Force a strategy (default: best the backend supports)

        Raises:
            ValueError: If atomic commits are forced on a backend without them
        """
        self.backend = backend
        if strategy is None:
            strategy = (
                WriteStrategy.ATOMIC_TREE_COMMIT
                if backend.capabilities.supports_atomic_commit
                else WriteStrategy.SEQUENTIAL_PER_FILE
            )
        elif (
            strategy == WriteStrategy.ATOMIC_TREE_COMMIT
            and not backend.capabilities.supports_atomic_commit
        ):
            raise ValueError(
                f"{backend.display_name} backend does not support atomic tree commits"
            )
        self.strategy = strategy

    def persist_files(
        self,
        data_files: Sequence[DataFile],
        assets: Sequence[Asset],
        commit_message: str,
        new_entry: bool,
        branch: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> CommitResult:
        """Write files and assets as one logical change.

        Args:
            data_files: Text files of the entry
            assets: Binary files of the entry
            commit_message: Message for the commit(s)
            new_entry: True when none of the paths exist remotely yet; skips
                sha resolution entirely
            branch: Target branch (default: backend branch)
            cancel_event: Event that stops further requests; completed
                writes are not rolled back

        Returns:
            CommitResult with the strategy used and the new branch head

        Raises:
            ValueError: If there is nothing to write
            ConflictError: If a file changed on the provider since it was read
            RateLimitedError: If the provider keeps rate limiting
            OperationCancelledError: If cancel_event was set
        """
        changes = self._collect(data_files, assets)
        if not changes:
            raise ValueError("Nothing to persist: no data files or assets given")

        target = branch or self.backend.branch
        logger.info(
            f"Persisting {len(changes)} file(s) to {target} "
            f"({self.strategy.value}, new_entry={new_entry})"
        )

        if self.strategy == WriteStrategy.ATOMIC_TREE_COMMIT:
            return self._persist_atomic(changes, commit_message, new_entry, target, cancel_event)
        return self._persist_sequential(changes, commit_message, new_entry, target, cancel_event)

    def _persist_sequential(
        self,
        changes: List[FileChange],
        commit_message: str,
        new_entry: bool,
        branch: str,
        cancel_event: Optional[threading.Event],
    ) -> CommitResult:
        resolver: Optional[TreeResolver] = None
        if not new_entry:
            resolver = TreeResolver(self.backend, ref=branch, cancel_event=cancel_event)
            resolver.prefetch(split_path(change.path)[0] for change in changes)

        result = CommitResult(strategy=WriteStrategy.SEQUENTIAL_PER_FILE)
        try:
            for change in changes:
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelledError(change.path)

                sha = None
                if resolver is not None:
                    sha = self._resolve_sha(resolver, change)

                commit = self.backend.write_file(
                    branch,
                    change.path,
                    change.content,
                    commit_message,
                    sha=sha,
                    cancel_event=cancel_event,
                )
                self._record(result, branch, change.path, commit)
        except Exception:
            if result.written_paths:
                logger.warning(
                    f"Sequential persist to {branch} stopped after committing "
                    f"{len(result.written_paths)} of {len(changes)} file(s): "
                    f"{', '.join(result.written_paths)}. Those commits are not "
                    f"rolled back; re-read the tree before retrying."
                )
            raise

        return result

    def _persist_atomic(
        self,
        changes: List[FileChange],
        commit_message: str,
        new_entry: bool,
        branch: str,
        cancel_event: Optional[threading.Event],
    ) -> CommitResult:
        head = self.backend.get_branch(branch, cancel_event=cancel_event)
        if head is None:
            raise NotFoundError(
                f"Branch {branch} not found", 404, self.backend.display_name
            )

        if new_entry:
            for change in changes:
                change.sha = None
        else:
            # Resolve against the exact commit the new one will be parented on
            resolver = TreeResolver(
                self.backend, ref=head.head_commit_sha, cancel_event=cancel_event
            )
            resolver.prefetch(split_path(change.path)[0] for change in changes)
            for change in changes:
                change.sha = self._resolve_sha(resolver, change)

        commit = self.backend.commit_tree(
            branch,
            changes,
            commit_message,
            parent_sha=head.head_commit_sha,
            cancel_event=cancel_event,
        )
        result = CommitResult(strategy=WriteStrategy.ATOMIC_TREE_COMMIT)
        for change in changes:
            result.written_paths.append(change.path)
        result.commits.append(commit)
        result.heads[branch] = commit.sha
        logger.info(f"Committed {len(changes)} file(s) to {branch} as {commit.sha}")
        return result

    def _resolve_sha(self, resolver: TreeResolver, change: FileChange) -> Optional[str]:
        """Resolve the remote sha of one file and check the caller's base sha."""
        remote_sha = resolver.get_sha(change.path)
        if change.sha is not None and change.sha != remote_sha:
            raise ConflictError(
                f"{change.path} changed on the provider "
                f"(expected {change.sha}, found {remote_sha or 'no file'})",
                409,
                self.backend.display_name,
                change.path,
            )
        return remote_sha

    @staticmethod
    def _record(result: CommitResult, branch: str, path: str, commit: Commit) -> None:
        result.commits.append(commit)
        result.written_paths.append(path)
        result.heads[branch] = commit.sha
        logger.info(f"Committed {path} to {branch} as {commit.sha}")

    @staticmethod
    def _collect(
        data_files: Sequence[DataFile], assets: Sequence[Asset]
    ) -> List[FileChange]:
        # FileChange.sha starts as the caller's base sha and is replaced by
        # the resolved remote sha before writing
        changes: List[FileChange] = []
        seen: Dict[str, int] = {}
        for item in list(data_files) + list(assets):
            path = item.path.strip('/')
            change = FileChange(path=path, content=item.content, sha=item.base_sha)
            if path in seen:
                changes[seen[path]] = change
            else:
                seen[path] = len(changes)
                changes.append(change)
        return changes
