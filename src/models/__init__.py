"""Data models for repositories, trees, pending content writes and reviews."""

from src.models.repository import Branch, Commit, EntryType, Repository, TreeEntry
from src.models.content import Asset, CommitResult, DataFile, FileChange, WriteStrategy
from src.models.review import EditorialStatus, PullRequest, PullRequestState

__all__ = [
    'Asset',
    'Branch',
    'Commit',
    'CommitResult',
    'DataFile',
    'EditorialStatus',
    'EntryType',
    'FileChange',
    'PullRequest',
    'PullRequestState',
    'Repository',
    'TreeEntry',
    'WriteStrategy',
]
