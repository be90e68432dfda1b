"""Backend protocol shared by every hosting provider variant.

A backend is a thin adapter from one provider's REST dialect to the
primitives the tree resolver, persist engine and editorial workflow need.
Variants are plain classes selected at configuration time; they share
behaviour through the helper functions in this module, not through a base
class.
"""

import base64
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol
from urllib.parse import quote

from src.models.content import FileChange
from src.models.repository import Branch, Commit, EntryType, Repository, TreeEntry
from src.models.review import EditorialStatus, PullRequest, PullRequestState
from src.provider_client.client import ProviderClient
from src.provider_client.errors import ValidationError

STATUS_LABEL_PREFIX = 'cms/'


@dataclass(frozen=True)
class BackendCapabilities:
    """Capability flags a backend declares.

    Attributes:
        supports_atomic_commit: One commit can touch many files at once
        supports_pull_requests: Pull/merge requests are available
    """
    supports_atomic_commit: bool
    supports_pull_requests: bool


class Backend(Protocol):
    """Operations every provider variant implements."""

    name: str
    display_name: str
    capabilities: BackendCapabilities
    repository: Repository
    client: ProviderClient

    @property
    def branch(self) -> str:
        ...

    def fetch_tree(
        self,
        ref: str,
        path: str,
        recursive: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[TreeEntry]:
        ...

    def write_file(
        self,
        branch: str,
        path: str,
        content: bytes,
        message: str,
        sha: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Commit:
        ...

    def commit_tree(
        self,
        branch: str,
        changes: List[FileChange],
        message: str,
        parent_sha: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> Commit:
        ...

    def get_branch(
        self, name: str, cancel_event: Optional[threading.Event] = None
    ) -> Optional[Branch]:
        ...

    def create_branch(self, name: str, from_branch: Branch) -> Branch:
        ...

    def delete_branch(self, name: str) -> None:
        ...

    def find_pull_request(
        self, branch: str, include_closed: bool = False
    ) -> Optional[PullRequest]:
        ...

    def get_pull_request(self, pr_id: int) -> PullRequest:
        ...

    def create_pull_request(
        self, branch: str, base: str, title: str, body: str = ""
    ) -> PullRequest:
        ...

    def set_pull_request_status(
        self, pr: PullRequest, status: EditorialStatus
    ) -> PullRequest:
        ...

    def merge_pull_request(self, pr: PullRequest, message: str) -> Commit:
        ...


def encode_content(content: bytes) -> str:
    """Base64-encode file content for JSON request bodies."""
    return base64.b64encode(content).decode('ascii')


def quote_path(path: str) -> str:
    """Percent-encode a repository path, keeping slashes."""
    return quote(path.strip('/'), safe='/')


def quote_segment(value: str) -> str:
    """Percent-encode a value used as a single URL segment (slashes too)."""
    return quote(value, safe='')


def join_path(directory: str, name: str) -> str:
    directory = directory.strip('/')
    name = name.strip('/')
    if not directory:
        return name
    return f"{directory}/{name}"


def status_label(status: EditorialStatus) -> str:
    return f"{STATUS_LABEL_PREFIX}{status.value}"


def status_from_labels(labels: Iterable[str]) -> Optional[EditorialStatus]:
    """Read the editorial status encoded in a request's labels.

    When several status labels are present the most advanced one wins.
    """
    found: Optional[EditorialStatus] = None
    order = list(EditorialStatus)
    for label in labels:
        if not label.startswith(STATUS_LABEL_PREFIX):
            continue
        try:
            status = EditorialStatus(label[len(STATUS_LABEL_PREFIX):])
        except ValueError:
            continue
        if found is None or order.index(status) > order.index(found):
            found = status
    return found


def require_dict(payload: Any, api: str, path: str) -> Dict[str, Any]:
    """Ensure a response body is a JSON object.

    Raises:
        ValidationError: If the body is anything else
    """
    if not isinstance(payload, dict):
        raise ValidationError(
            api, f"expected an object, got {type(payload).__name__}", path
        )
    return payload


def commit_from_content_response(
    payload: Any, message: str, api: str, path: str
) -> Commit:
    """Extract the new commit from a contents-API write response.

    GitHub and Gitea both answer ``{"content": ..., "commit": {"sha": ...}}``.

    Raises:
        ValidationError: If the response has no commit sha
    """
    body = require_dict(payload, api, path)
    commit = body.get('commit')
    if not isinstance(commit, dict) or not commit.get('sha'):
        raise ValidationError(api, "write response carries no commit sha", path)

    parents = commit.get('parents') or []
    parent_sha = parents[0].get('sha') if parents and isinstance(parents[0], dict) else None
    author = commit.get('author') or {}
    return Commit(
        sha=commit['sha'],
        message=commit.get('message', message),
        parent_sha=parent_sha,
        author=author.get('name') if isinstance(author, dict) else None,
    )


def pull_request_from_payload(payload: Any, api: str, path: str) -> PullRequest:
    """Build a PullRequest from a GitHub or Gitea pull payload.

    Raises:
        ValidationError: If the number or head branch is missing
    """
    body = require_dict(payload, api, path)
    head = body.get('head') or {}
    if 'number' not in body or not isinstance(head, dict) or not head.get('ref'):
        raise ValidationError(api, "pull request payload lacks number or head", path)

    if body.get('merged') or body.get('merged_at'):
        state = PullRequestState.MERGED
    elif body.get('state') == 'closed':
        state = PullRequestState.CLOSED
    else:
        state = PullRequestState.OPEN

    labels = [
        label.get('name', '')
        for label in body.get('labels') or []
        if isinstance(label, dict)
    ]
    reviewers = [
        reviewer.get('login', '')
        for reviewer in body.get('requested_reviewers') or []
        if isinstance(reviewer, dict)
    ]
    return PullRequest(
        id=int(body['number']),
        branch_name=head['ref'],
        state=state,
        status=status_from_labels(labels),
        reviewers=reviewers,
        head_sha=head.get('sha'),
        url=body.get('html_url'),
    )


def tree_entries_from_payload(
    payload: Any, directory: str, api: str, path: str
) -> List[TreeEntry]:
    """Convert a ``git/trees`` response to TreeEntry objects.

    Entry paths in the response are relative to ``directory``; returned
    paths are repository-relative.

    Raises:
        ValidationError: If the body has no ``tree`` list
    """
    body = require_dict(payload, api, path)
    tree = body.get('tree')
    if not isinstance(tree, list):
        raise ValidationError(api, "tree listing has no 'tree' list", path)

    entries = []
    for item in tree:
        if not isinstance(item, dict) or not item.get('path'):
            raise ValidationError(api, "tree entry without path", path)
        entry_type = item.get('type', 'blob')
        if entry_type not in ('blob', 'tree'):
            # Submodules ("commit") are not content
            continue
        full_path = join_path(directory, item['path'])
        entries.append(TreeEntry(
            path=full_path,
            name=full_path.rsplit('/', 1)[-1],
            type=EntryType(entry_type),
            sha=item.get('sha'),
            size=item.get('size'),
        ))
    return entries
