"""GitHub backend.

Multi-file changes go through the git data API: blobs, then a tree based on
the parent commit's tree, then a commit, then a non-forced ref update. The
ref update is the precondition: if the branch moved since the parent was
read, GitHub refuses the fast-forward and the whole change is rejected.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from src.models.content import FileChange
from src.models.repository import Branch, Commit, Repository, TreeEntry
from src.models.review import EditorialStatus, PullRequest
from src.provider_client.client import ProviderClient
from src.provider_client.errors import APIError, ConflictError, NotFoundError, ValidationError

from .base import (
    BackendCapabilities,
    STATUS_LABEL_PREFIX,
    commit_from_content_response,
    encode_content,
    pull_request_from_payload,
    quote_path,
    quote_segment,
    require_dict,
    status_label,
    tree_entries_from_payload,
)

logger = logging.getLogger(__name__)

BLOB_MODE = '100644'


class GitHubBackend:
    """GitHub REST backend (atomic tree commits, pull requests)."""

    name = 'github'
    display_name = 'GitHub'
    DEFAULT_API_ROOT = 'https://api.github.com'
    AUTH_SCHEME = 'Bearer'
    CONFLICT_MARKERS = ('not a fast forward', 'does not match', 'already exists')
    capabilities = BackendCapabilities(
        supports_atomic_commit=True,
        supports_pull_requests=True,
    )

    def __init__(self, repository: Repository, client: ProviderClient):
        self.repository = repository
        self.client = client
        self.repo_url = f"/repos/{repository.owner}/{repository.name}"

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
        directory = path.strip('/')
        tree_ish = f"{ref}:{quote_segment(directory)}" if directory else ref
        request_path = f"{self.repo_url}/git/trees/{tree_ish}"
        params: Dict[str, Any] = {'recursive': 1} if recursive else {}

        result = self.client.request(request_path, params=params, cancel_event=cancel_event)
        if isinstance(result, dict) and result.get('truncated'):
            logger.warning(
                f"GitHub truncated the tree listing of '{directory or '/'}' at {ref}; "
                f"some entries are missing"
            )
        return tree_entries_from_payload(result, directory, self.display_name, request_path)

    def write_file(
        self,
        branch: str,
        path: str,
        content: bytes,
        message: str,
        sha: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Commit:
        request_path = f"{self.repo_url}/contents/{quote_path(path)}"
        body: Dict[str, Any] = {
            'branch': branch,
            'content': encode_content(content),
            'message': message,
        }
        if sha:
            body['sha'] = sha

        result = self.client.request(
            request_path, method='PUT', body=body, cancel_event=cancel_event
        )
        return commit_from_content_response(result, message, self.display_name, request_path)

    def commit_tree(
        self,
        branch: str,
        changes: List[FileChange],
        message: str,
        parent_sha: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> Commit:
        parent_path = f"{self.repo_url}/git/commits/{parent_sha}"
        parent = require_dict(
            self.client.request(parent_path, cancel_event=cancel_event),
            self.display_name,
            parent_path,
        )
        base_tree = (parent.get('tree') or {}).get('sha')
        if not base_tree:
            raise ValidationError(self.display_name, "parent commit has no tree", parent_path)

        tree_items = []
        for change in changes:
            blob = self._post(
                f"{self.repo_url}/git/blobs",
                {'content': encode_content(change.content), 'encoding': 'base64'},
                cancel_event,
            )
            tree_items.append({
                'path': change.path.strip('/'),
                'mode': BLOB_MODE,
                'type': 'blob',
                'sha': blob['sha'],
            })

        tree = self._post(
            f"{self.repo_url}/git/trees",
            {'base_tree': base_tree, 'tree': tree_items},
            cancel_event,
        )
        commit = self._post(
            f"{self.repo_url}/git/commits",
            {'message': message, 'tree': tree['sha'], 'parents': [parent_sha]},
            cancel_event,
        )

        ref_path = f"{self.repo_url}/git/refs/heads/{quote_path(branch)}"
        self.client.request(
            ref_path,
            method='PATCH',
            body={'sha': commit['sha'], 'force': False},
            cancel_event=cancel_event,
        )
        logger.debug(f"Moved {branch} from {parent_sha} to {commit['sha']}")
        return Commit(sha=commit['sha'], message=message, parent_sha=parent_sha)

    def get_branch(
        self, name: str, cancel_event: Optional[threading.Event] = None
    ) -> Optional[Branch]:
        request_path = f"{self.repo_url}/branches/{quote_path(name)}"
        try:
            result = require_dict(
                self.client.request(request_path, cancel_event=cancel_event),
                self.display_name,
                request_path,
            )
        except NotFoundError:
            return None
        commit = result.get('commit') or {}
        return Branch(name=result.get('name', name), head_commit_sha=commit.get('sha', ''))

    def create_branch(self, name: str, from_branch: Branch) -> Branch:
        self._post(
            f"{self.repo_url}/git/refs",
            {'ref': f"refs/heads/{name}", 'sha': from_branch.head_commit_sha},
            None,
        )
        return Branch(name=name, head_commit_sha=from_branch.head_commit_sha)

    def delete_branch(self, name: str) -> None:
        self.client.request(
            f"{self.repo_url}/git/refs/heads/{quote_path(name)}", method='DELETE'
        )

    def find_pull_request(
        self, branch: str, include_closed: bool = False
    ) -> Optional[PullRequest]:
        request_path = f"{self.repo_url}/pulls"
        pulls = self.client.request_all(
            request_path,
            params={
                'head': f"{self.repository.owner}:{branch}",
                'state': 'all' if include_closed else 'open',
                'per_page': 100,
            },
        )
        matching = [
            pull_request_from_payload(pull, self.display_name, request_path)
            for pull in pulls
            if isinstance(pull, dict) and (pull.get('head') or {}).get('ref') == branch
        ]
        if not matching:
            return None
        return max(matching, key=lambda pr: pr.id)

    def get_pull_request(self, pr_id: int) -> PullRequest:
        request_path = f"{self.repo_url}/pulls/{pr_id}"
        return pull_request_from_payload(
            self.client.request(request_path), self.display_name, request_path
        )

    def create_pull_request(
        self, branch: str, base: str, title: str, body: str = ""
    ) -> PullRequest:
        request_path = f"{self.repo_url}/pulls"
        result = self.client.request(
            request_path,
            method='POST',
            body={'title': title, 'body': body, 'head': branch, 'base': base},
        )
        return pull_request_from_payload(result, self.display_name, request_path)

    def set_pull_request_status(
        self, pr: PullRequest, status: EditorialStatus
    ) -> PullRequest:
        issue_labels = f"{self.repo_url}/issues/{pr.id}/labels"
        current = self.client.request(issue_labels) or []
        for label in current:
            name = label.get('name', '')
            if name.startswith(STATUS_LABEL_PREFIX) and name != status_label(status):
                self.client.request(
                    f"{issue_labels}/{quote_segment(name)}", method='DELETE'
                )

        # GitHub creates missing labels on the fly
        self.client.request(
            issue_labels, method='POST', body={'labels': [status_label(status)]}
        )
        pr.status = status
        return pr

    def merge_pull_request(self, pr: PullRequest, message: str) -> Commit:
        request_path = f"{self.repo_url}/pulls/{pr.id}/merge"
        try:
            result = require_dict(
                self.client.request(
                    request_path,
                    method='PUT',
                    body={'commit_message': message, 'merge_method': 'merge'},
                ),
                self.display_name,
                request_path,
            )
        except APIError as e:
            # 405: not mergeable, 409: head moved since the PR was read
            if e.status in (405, 409):
                raise ConflictError(e.message, e.status, e.api, e.path) from e
            raise

        if not result.get('merged', True):
            raise ConflictError(
                result.get('message', 'Pull request was not merged'),
                405,
                self.display_name,
                request_path,
            )
        return Commit(sha=result.get('sha', ''), message=message, parent_sha=pr.head_sha)

    def _post(
        self,
        path: str,
        body: Dict[str, Any],
        cancel_event: Optional[threading.Event],
    ) -> Dict[str, Any]:
        result = require_dict(
            self.client.request(path, method='POST', body=body, cancel_event=cancel_event),
            self.display_name,
            path,
        )
        if 'sha' not in result and 'ref' not in result:
            raise ValidationError(self.display_name, "response carries no sha", path)
        return result
