"""Directory listing and sha resolution over a provider tree API.

This module provides the TreeResolver class, which turns a directory path
and depth into a flat list of file entries and resolves the current sha of
individual files. Listing is the expensive, rate-limited call, so every
directory is requested at most once per resolver; the persist engine creates
one resolver per operation and throws it away afterwards.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Iterable, List, Optional, Tuple

from src.backends.base import Backend
from src.models.repository import TreeEntry
from src.provider_client.errors import NotFoundError

logger = logging.getLogger(__name__)

# Maximum parallel threads for prefetching distinct directories
MAX_WORKERS = 10

# (ref, directory) -> (listing is recursive, entries)
CacheKey = Tuple[str, str]
CacheEntry = Tuple[bool, List[TreeEntry]]


def split_path(path: str) -> Tuple[str, str]:
    """Split a repository path into (directory, file name)."""
    directory, _, name = path.strip('/').rpartition('/')
    return directory, name


def relative_depth(path: str, base_path: str) -> int:
    """Number of path segments of ``path`` below ``base_path``."""
    base = base_path.strip('/')
    relative = path.strip('/')
    if base:
        relative = relative[len(base):].lstrip('/')
    return relative.count('/') + 1


class TreeResolver:
    """Lists directories and resolves file shas with a per-operation cache.

    The cache is keyed by (ref, directory, recursive). A non-recursive
    lookup is also served from a cached recursive listing of the same
    directory. Cache writes only happen on the thread that owns the
    resolver.

    Example:
        >>> resolver = TreeResolver(backend, ref="main")
        >>> resolver.list_files("content/posts", depth=2)
        >>> resolver.get_sha("content/posts/hello.md")
    """

    def __init__(
        self,
        backend: Backend,
        ref: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Initialize resolver.

        Args:
            backend: Backend used for tree listings
            ref: Branch name or commit sha to list (default: backend branch)
            cancel_event: Event that aborts outstanding listings
        """
        self.backend = backend
        self.ref = ref or backend.branch
        self.cancel_event = cancel_event
        self._cache: Dict[CacheKey, CacheEntry] = {}

    def list_files(self, base_path: str, depth: int = 1) -> List[TreeEntry]:
        """List the files below ``base_path`` down to ``depth`` levels.

        Depth 1 returns only the direct children of ``base_path`` that are
        blobs. Deeper listings use the provider's recursive listing and keep
        entries at most ``depth`` segments below ``base_path``. Directory
        entries are never returned. A directory that does not exist yields an
        empty list.

        Args:
            base_path: Repository-relative directory
            depth: Number of levels to include (>= 1)

        Returns:
            File entries in provider order

        Raises:
            ValueError: If depth is smaller than 1
        """
        if depth < 1:
            raise ValueError(f"depth must be at least 1, got {depth}")

        directory = base_path.strip('/')
        entries = self._listing(directory, recursive=depth > 1)

        files = []
        for entry in entries:
            if not entry.is_blob:
                continue
            if relative_depth(entry.path, directory) > depth:
                continue
            files.append(TreeEntry(
                path=entry.path,
                name=entry.path.rsplit('/', 1)[-1],
                type=entry.type,
                sha=entry.sha,
                size=entry.size,
            ))
        return files

    def get_sha(self, path: str) -> Optional[str]:
        """Return the current sha of a file, or None when it does not exist.

        Resolution lists the file's containing directory, so files sharing a
        directory share one request.
        """
        directory, _ = split_path(path)
        target = path.strip('/')
        for entry in self._listing(directory, recursive=False):
            if entry.is_blob and entry.path == target:
                return entry.sha
        return None

    def prefetch(self, directories: Iterable[str]) -> None:
        """List several distinct directories in parallel.

        Directories already in the cache are skipped; each remaining one is
        requested exactly once.

        Args:
            directories: Repository-relative directories

        Raises:
            Exception: The first listing error (other than 404) encountered
        """
        pending = []
        for directory in directories:
            directory = directory.strip('/')
            if directory not in pending and self._cached(directory, recursive=False) is None:
                pending.append(directory)

        if not pending:
            return
        if len(pending) == 1:
            self._listing(pending[0], recursive=False)
            return

        logger.debug(f"Prefetching {len(pending)} directories at {self.ref}")
        with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(pending))) as executor:
            futures = {
                executor.submit(self._fetch, directory, False): directory
                for directory in pending
            }
            for future in as_completed(futures):
                directory = futures[future]
                self._cache[(self.ref, directory)] = (False, future.result())

    def clear(self) -> None:
        """Discard every cached listing."""
        self._cache.clear()

    def _cached(self, directory: str, recursive: bool) -> Optional[List[TreeEntry]]:
        cached = self._cache.get((self.ref, directory))
        if cached is None:
            return None
        is_recursive, entries = cached
        # A shallow listing cannot answer a deeper query
        if recursive and not is_recursive:
            return None
        return entries

    def _listing(self, directory: str, recursive: bool) -> List[TreeEntry]:
        cached = self._cached(directory, recursive)
        if cached is not None:
            logger.debug(f"Tree cache hit for '{directory or '/'}' at {self.ref}")
            return cached

        entries = self._fetch(directory, recursive)
        self._cache[(self.ref, directory)] = (recursive, entries)
        return entries

    def _fetch(self, directory: str, recursive: bool) -> List[TreeEntry]:
        try:
            return self.backend.fetch_tree(
                self.ref, directory, recursive=recursive, cancel_event=self.cancel_event
            )
        except NotFoundError:
            logger.debug(f"Directory '{directory or '/'}' not found at {self.ref}")
            return []
