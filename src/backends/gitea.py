"""Gitea backend.

Gitea's contents API commits one file per request, so this backend does not
support atomic multi-file commits. Every write carries the file's current
sha as an optimistic-concurrency precondition.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from src.models.content import FileChange
from src.models.repository import Branch, Commit, Repository, TreeEntry
from src.models.review import EditorialStatus, PullRequest
from src.provider_client.client import ProviderClient
from src.provider_client.errors import APIError, ConflictError, NotFoundError

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

# Gitea caps tree listings per page; follow "truncated" up to this many pages
MAX_TREE_PAGES = 50

STATUS_LABEL_COLOR = '#e6e6e6'


class GiteaBackend:
    """Gitea REST backend (per-file writes, pull requests).

    Example:
        >>> backend = GiteaBackend(Repository.parse("owner/repo", "main"), client)
        >>> backend.fetch_tree("main", "content/posts")
    """

    name = 'gitea'
    display_name = 'Gitea'
    DEFAULT_API_ROOT = 'https://try.gitea.io/api/v1'
    AUTH_SCHEME = 'token'
    CONFLICT_MARKERS = ('sha does not match', 'already exists')
    capabilities = BackendCapabilities(
        supports_atomic_commit=False,
        supports_pull_requests=True,
    )

    def __init__(self, repository: Repository, client: ProviderClient, signoff: bool = False):
        self.repository = repository
        self.client = client
        self.signoff = signoff
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
        entries = tree_entries_from_payload(result, directory, self.display_name, request_path)

        page = 1
        while isinstance(result, dict) and result.get('truncated') and page < MAX_TREE_PAGES:
            page += 1
            result = self.client.request(
                request_path,
                params={**params, 'page': page},
                cancel_event=cancel_event,
            )
            entries.extend(
                tree_entries_from_payload(result, directory, self.display_name, request_path)
            )
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
        request_path = f"{self.repo_url}/contents/{quote_path(path)}"
        body: Dict[str, Any] = {
            'branch': branch,
            'content': encode_content(content),
            'message': message,
        }
        if sha:
            body['sha'] = sha
        body['signoff'] = self.signoff

        result = self.client.request(
            request_path,
            method='PUT' if sha else 'POST',
            body=body,
            cancel_event=cancel_event,
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
        raise ValueError(f"{self.display_name} backend does not support atomic tree commits")

    def get_branch(
        self, name: str, cancel_event: Optional[threading.Event] = None
    ) -> Optional[Branch]:
        request_path = f"{self.repo_url}/branches/{quote_segment(name)}"
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
        request_path = f"{self.repo_url}/branches"
        result = require_dict(
            self.client.request(
                request_path,
                method='POST',
                body={
                    'new_branch_name': name,
                    'old_branch_name': from_branch.name,
                    'old_ref_name': from_branch.head_commit_sha,
                },
            ),
            self.display_name,
            request_path,
        )
        commit = result.get('commit') or {}
        return Branch(name=name, head_commit_sha=commit.get('id', from_branch.head_commit_sha))

    def delete_branch(self, name: str) -> None:
        self.client.request(
            f"{self.repo_url}/branches/{quote_segment(name)}", method='DELETE'
        )

    def find_pull_request(
        self, branch: str, include_closed: bool = False
    ) -> Optional[PullRequest]:
        request_path = f"{self.repo_url}/pulls"
        pulls = self.client.request_all(
            request_path,
            params={'state': 'all' if include_closed else 'open', 'limit': 50},
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
            body={'head': branch, 'base': base, 'title': title, 'body': body},
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
                self.client.request(f"{issue_labels}/{label['id']}", method='DELETE')

        label_id = self._ensure_label(status_label(status))
        self.client.request(issue_labels, method='POST', body={'labels': [label_id]})
        pr.status = status
        return pr

    def merge_pull_request(self, pr: PullRequest, message: str) -> Commit:
        request_path = f"{self.repo_url}/pulls/{pr.id}/merge"
        try:
            self.client.request(
                request_path,
                method='POST',
                body={'Do': 'merge', 'MergeMessageField': message},
            )
        except APIError as e:
            # 405: not mergeable (conflicts or failing checks)
            if e.status == 405:
                raise ConflictError(e.message, e.status, e.api, e.path) from e
            raise

        request_path = f"{self.repo_url}/pulls/{pr.id}"
        payload = require_dict(self.client.request(request_path), self.display_name, request_path)
        merged = pull_request_from_payload(payload, self.display_name, request_path)

        sha = payload.get('merge_commit_sha')
        if not sha:
            base_ref = (payload.get('base') or {}).get('ref') or self.branch
            base = self.get_branch(base_ref)
            sha = base.head_commit_sha if base else (merged.head_sha or '')
        return Commit(sha=sha, message=message, parent_sha=merged.head_sha)

    def _ensure_label(self, name: str) -> int:
        labels_path = f"{self.repo_url}/labels"
        for label in self.client.request_all(labels_path, params={'limit': 50}):
            if isinstance(label, dict) and label.get('name') == name:
                return int(label['id'])

        logger.info(f"Creating label {name} in {self.repository.full_name}")
        created = require_dict(
            self.client.request(
                labels_path,
                method='POST',
                body={'name': name, 'color': STATUS_LABEL_COLOR},
            ),
            self.display_name,
            labels_path,
        )
        return int(created['id'])
