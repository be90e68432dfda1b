"""Pending writes and persist results."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from src.models.repository import Commit


@dataclass
class DataFile:
    """A pending text write for one entry file.

    Attributes:
        path: Repository-relative path of the file
        slug: Slug of the entry the file belongs to
        raw_content: File content as text
        base_sha: Sha observed before editing (None for new files)
    """
    path: str
    slug: str
    raw_content: str
    base_sha: Optional[str] = None

    @property
    def content(self) -> bytes:
        return self.raw_content.encode('utf-8')


@dataclass
class Asset:
    """A pending binary write. Same write contract as DataFile.

    Attributes:
        path: Repository-relative path of the asset
        content: Raw bytes
        base_sha: Sha observed before editing (None for new assets)
    """
    path: str
    content: bytes
    base_sha: Optional[str] = None


class WriteStrategy(str, Enum):
    """How a multi-file change reaches the provider.

    ATOMIC_TREE_COMMIT touches every file in one commit. SEQUENTIAL_PER_FILE
    makes one commit per file and gives no cross-file atomicity.
    """
    ATOMIC_TREE_COMMIT = "atomic_tree_commit"
    SEQUENTIAL_PER_FILE = "sequential_per_file"


@dataclass
class FileChange:
    """One file inside an atomic tree commit.

    Attributes:
        path: Repository-relative path
        content: Raw bytes to store
        sha: Current remote sha (None when the file is created)
    """
    path: str
    content: bytes
    sha: Optional[str] = None

    @property
    def is_new(self) -> bool:
        return self.sha is None


@dataclass
class CommitResult:
    """Result of a persist operation.

    Attributes:
        strategy: Write strategy that was used
        heads: New head commit sha per branch touched
        commits: Commits created, in order
        written_paths: Paths written, in order
    """
    strategy: WriteStrategy
    heads: Dict[str, str] = field(default_factory=dict)
    commits: List[Commit] = field(default_factory=list)
    written_paths: List[str] = field(default_factory=list)
