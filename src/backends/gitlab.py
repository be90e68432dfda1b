"""GitLab backend.

Multi-file changes use the commits API with one action per file, which GitLab
applies atomically. The commits API has no branch-head precondition, so the
backend re-reads the branch head right before committing and refuses to
commit when it moved away from the parent the change was resolved against.
Single-file updates check the file's blob sha first and send its
``last_commit_id`` so GitLab rejects a concurrent change itself.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from src.models.content import FileChange
from src.models.repository import Branch, Commit, EntryType, Repository, TreeEntry
from src.models.review import EditorialStatus, PullRequest, PullRequestState
from src.provider_client.client import ProviderClient
from src.provider_client.errors import APIError, ConflictError, NotFoundError, ValidationError

from .base import (
    BackendCapabilities,
    encode_content,
    quote_segment,
    require_dict,
    status_from_labels,
    status_label,
)

logger = logging.getLogger(__name__)

MR_STATES = {
    'opened': PullRequestState.OPEN,
    'locked': PullRequestState.OPEN,
    'closed': PullRequestState.CLOSED,
    'merged': PullRequestState.MERGED,
}


class GitLabBackend:
    """GitLab REST backend (atomic commits, merge requests)."""

    name = 'gitlab'
    display_name = 'GitLab'
    DEFAULT_API_ROOT = 'https://gitlab.com/api/v4'
    AUTH_SCHEME = 'Bearer'
    CONFLICT_MARKERS = ('has changed since', 'already exists', 'sha does not match')
    capabilities = BackendCapabilities(
        supports_atomic_commit=True,
        supports_pull_requests=True,
    )

    def __init__(self, repository: Repository, client: ProviderClient):
        self.repository = repository
        self.client = client
        self.project_url = f"/projects/{quote_segment(repository.full_name)}"

    @property
    def branch(self) -> str:
        return self.repository.default_branch

    def fetch_tree(
        self,
        ref: str,
        path: str,
        recursive: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[TreeEntry]:
        request_path = f"{self.project_url}/repository/tree"
        items = self.client.request_all(
            request_path,
            params={
                'path': path.strip('/'),
                'ref': ref,
                'recursive': 'true' if recursive else 'false',
                'per_page': 100,
            },
            cancel_event=cancel_event,
        )

        entries = []
        for item in items:
            if not isinstance(item, dict) or not item.get('path'):
                raise ValidationError(self.display_name, "tree entry without path", request_path)
            if item.get('type') not in ('blob', 'tree'):
                continue
            entries.append(TreeEntry(
                path=item['path'],
                name=item.get('name') or item['path'].rsplit('/', 1)[-1],
                type=EntryType(item['type']),
                sha=item.get('id'),
            ))
        return entries

    def write_file(
        self,
        branch: str,
        path: str,
        content: bytes,
        message: str,
        sha: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Commit:
        last_commit_ids: Dict[str, str] = {}
        if sha is not None:
            last_commit_ids[path.strip('/')] = self._check_blob(branch, path, sha, cancel_event)

        # The files API does not report the new commit; a one-action commit does
        return self._create_commit(
            branch,
            [FileChange(path=path, content=content, sha=sha)],
            message,
            cancel_event,
            last_commit_ids=last_commit_ids,
        )

    def commit_tree(
        self,
        branch: str,
        changes: List[FileChange],
        message: str,
        parent_sha: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> Commit:
        current = self.get_branch(branch, cancel_event=cancel_event)
        if current is None:
            raise NotFoundError(
                f"Branch {branch} not found", 404, self.display_name,
                f"{self.project_url}/repository/branches",
            )
        if current.head_commit_sha != parent_sha:
            raise ConflictError(
                f"Branch {branch} moved from {parent_sha} to {current.head_commit_sha}",
                409,
                self.display_name,
                f"{self.project_url}/repository/commits",
            )
        commit = self._create_commit(branch, changes, message, cancel_event)
        if commit.parent_sha is None:
            commit.parent_sha = parent_sha
        return commit

    def get_branch(
        self, name: str, cancel_event: Optional[threading.Event] = None
    ) -> Optional[Branch]:
        request_path = f"{self.project_url}/repository/branches/{quote_segment(name)}"
        try:
            result = require_dict(
                self.client.request(request_path, cancel_event=cancel_event),
                self.display_name,
                request_path,
            )
        except NotFoundError:
            return None
        commit = result.get('commit') or {}
        return Branch(name=result.get('name', name), head_commit_sha=commit.get('id', ''))

    def create_branch(self, name: str, from_branch: Branch) -> Branch:
        request_path = f"{self.project_url}/repository/branches"
        result = require_dict(
            self.client.request(
                request_path,
                method='POST',
                params={'branch': name, 'ref': from_branch.head_commit_sha},
            ),
            self.display_name,
            request_path,
        )
        commit = result.get('commit') or {}
        return Branch(name=name, head_commit_sha=commit.get('id', from_branch.head_commit_sha))

    def delete_branch(self, name: str) -> None:
        self.client.request(
            f"{self.project_url}/repository/branches/{quote_segment(name)}",
            method='DELETE',
        )

    def find_pull_request(
        self, branch: str, include_closed: bool = False
    ) -> Optional[PullRequest]:
        request_path = f"{self.project_url}/merge_requests"
        merge_requests = self.client.request_all(
            request_path,
            params={
                'source_branch': branch,
                'state': 'all' if include_closed else 'opened',
                'per_page': 100,
            },
        )
        matching = [
            self._merge_request(mr, request_path)
            for mr in merge_requests
            if isinstance(mr, dict) and mr.get('source_branch') == branch
        ]
        if not matching:
            return None
        return max(matching, key=lambda pr: pr.id)

    def get_pull_request(self, pr_id: int) -> PullRequest:
        request_path = f"{self.project_url}/merge_requests/{pr_id}"
        return self._merge_request(self.client.request(request_path), request_path)

    def create_pull_request(
        self, branch: str, base: str, title: str, body: str = ""
    ) -> PullRequest:
        request_path = f"{self.project_url}/merge_requests"
        result = self.client.request(
            request_path,
            method='POST',
            body={
                'source_branch': branch,
                'target_branch': base,
                'title': title,
                'description': body,
                'remove_source_branch': False,
            },
        )
        return self._merge_request(result, request_path)

    def set_pull_request_status(
        self, pr: PullRequest, status: EditorialStatus
    ) -> PullRequest:
        request_path = f"{self.project_url}/merge_requests/{pr.id}"
        stale = [
            status_label(other) for other in EditorialStatus
            if other != status
        ]
        result = self.client.request(
            request_path,
            method='PUT',
            body={
                'add_labels': status_label(status),
                'remove_labels': ','.join(stale),
            },
        )
        updated = self._merge_request(result, request_path)
        # Keep the caller's object in sync with the provider
        pr.status = updated.status or status
        return pr

    def merge_pull_request(self, pr: PullRequest, message: str) -> Commit:
        request_path = f"{self.project_url}/merge_requests/{pr.id}/merge"
        try:
            result = require_dict(
                self.client.request(
                    request_path,
                    method='PUT',
                    body={
                        'merge_commit_message': message,
                        'should_remove_source_branch': False,
                    },
                ),
                self.display_name,
                request_path,
            )
        except APIError as e:
            # 405/406: cannot be merged, 409: sha mismatch, 422: branch conflicts
            if e.status in (405, 406, 409, 422):
                raise ConflictError(e.message, e.status, e.api, e.path) from e
            raise

        return Commit(
            sha=result.get('merge_commit_sha') or result.get('sha') or '',
            message=message,
            parent_sha=pr.head_sha,
        )

    def _create_commit(
        self,
        branch: str,
        changes: List[FileChange],
        message: str,
        cancel_event: Optional[threading.Event],
        last_commit_ids: Optional[Dict[str, str]] = None,
    ) -> Commit:
        request_path = f"{self.project_url}/repository/commits"
        actions = []
        for change in changes:
            file_path = change.path.strip('/')
            action = {
                'action': 'create' if change.is_new else 'update',
                'file_path': file_path,
                'content': encode_content(change.content),
                'encoding': 'base64',
            }
            # GitLab rejects the action when the file changed after this commit
            if last_commit_ids and file_path in last_commit_ids:
                action['last_commit_id'] = last_commit_ids[file_path]
            actions.append(action)
        result = require_dict(
            self.client.request(
                request_path,
                method='POST',
                body={'branch': branch, 'commit_message': message, 'actions': actions},
                cancel_event=cancel_event,
            ),
            self.display_name,
            request_path,
        )
        if not result.get('id'):
            raise ValidationError(self.display_name, "commit response carries no id", request_path)

        logger.debug(f"Committed {len(changes)} file(s) to {branch} as {result['id']}")
        parents = result.get('parent_ids') or []
        return Commit(
            sha=result['id'],
            message=result.get('message', message),
            parent_sha=parents[0] if parents else None,
            author=result.get('author_name'),
        )

    def _check_blob(
        self,
        branch: str,
        path: str,
        sha: str,
        cancel_event: Optional[threading.Event],
    ) -> str:
        """Verify the file still has blob ``sha`` on ``branch``.

        Returns:
            The file's last commit id, sent back with the update action

        Raises:
            ConflictError: If the file changed or disappeared since ``sha`` was read
        """
        request_path = f"{self.project_url}/repository/files/{quote_segment(path.strip('/'))}"
        try:
            result = require_dict(
                self.client.request(
                    request_path, params={'ref': branch}, cancel_event=cancel_event
                ),
                self.display_name,
                request_path,
            )
        except NotFoundError as e:
            raise ConflictError(
                f"{path} no longer exists on {branch}", 409, self.display_name, path
            ) from e

        if result.get('blob_id') != sha:
            raise ConflictError(
                f"{path} changed on {branch}: expected {sha}, found {result.get('blob_id')}",
                409,
                self.display_name,
                path,
            )
        if not result.get('last_commit_id'):
            raise ValidationError(
                self.display_name, "file response carries no last_commit_id", request_path
            )
        return result['last_commit_id']

    def _merge_request(self, payload: Any, request_path: str) -> PullRequest:
        body = require_dict(payload, self.display_name, request_path)
        if 'iid' not in body or not body.get('source_branch'):
            raise ValidationError(
                self.display_name, "merge request payload lacks iid or source branch",
                request_path,
            )
        labels = [label for label in body.get('labels') or [] if isinstance(label, str)]
        reviewers = [
            reviewer.get('username', '')
            for reviewer in body.get('reviewers') or []
            if isinstance(reviewer, dict)
        ]
        return PullRequest(
            id=int(body['iid']),
            branch_name=body['source_branch'],
            state=MR_STATES.get(body.get('state', 'opened'), PullRequestState.OPEN),
            status=status_from_labels(labels),
            reviewers=reviewers,
            head_sha=body.get('sha'),
            url=body.get('web_url'),
        )
