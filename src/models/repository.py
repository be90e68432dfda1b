"""Repository, branch, tree and commit data models."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class Repository:
    """Remote content store identity.

    Immutable for the lifetime of a session.

    Attributes:
        owner: Owner (user, organisation or group path)
        name: Repository name
        default_branch: Branch content is published to
    """
    owner: str
    name: str
    default_branch: str = "main"

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @classmethod
    def parse(cls, repo: str, default_branch: str = "main") -> "Repository":
        """Build a Repository from an ``owner/name`` string.

        GitLab subgroups are supported: everything before the last slash is
        the owner.

        Raises:
            ValueError: If the string does not contain both parts
        """
        owner, _, name = repo.strip().strip('/').rpartition('/')
        if not owner or not name:
            raise ValueError(f"Repository must be in 'owner/name' form, got '{repo}'")
        return cls(owner=owner, name=name, default_branch=default_branch)


@dataclass
class Branch:
    """Mutable pointer to a commit.

    Attributes:
        name: Branch name
        head_commit_sha: Sha of the commit the branch points at
    """
    name: str
    head_commit_sha: str


class EntryType(str, Enum):
    """Node type of a TreeEntry."""
    BLOB = "blob"
    TREE = "tree"


@dataclass
class TreeEntry:
    """One node of a tree snapshot.

    Attributes:
        path: Repository-relative path, unique within one snapshot
        name: Final path segment
        type: blob or tree
        sha: Content-addressed identity used for optimistic concurrency
        size: Size in bytes when the provider reports it
    """
    path: str
    name: str
    type: EntryType
    sha: Optional[str] = None
    size: Optional[int] = None

    @property
    def is_blob(self) -> bool:
        return self.type == EntryType.BLOB


@dataclass
class Commit:
    """An append-only commit.

    Attributes:
        sha: Commit sha
        message: Commit message
        parent_sha: Parent commit sha (one parent on the linear write path)
        author: Author name when known
    """
    sha: str
    message: str = ""
    parent_sha: Optional[str] = None
    author: Optional[str] = None
