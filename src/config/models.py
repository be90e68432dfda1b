"""Resolved backend configuration."""

from dataclasses import dataclass
from typing import Optional

from src.models.repository import Repository
from src.provider_client.auth import DEFAULT_TOKEN_ENV


@dataclass
class BackendConfig:
    """Resolved ``{provider, repo, branch, api_root, token}`` struct.

    The token itself is not part of this object; ``token_env`` names the
    environment variable it is read from.

    Attributes:
        provider: Provider key (gitea, github, gitlab)
        repo: Repository in ``owner/name`` form
        branch: Base branch content is published to
        api_root: API base URL (provider default when None)
        base_url: Web base URL of the provider (informational)
        editorial_workflow: Whether edits go through the review workflow
        timeout: Per-request timeout in seconds
        token_env: Environment variable holding the token
    """
    provider: str
    repo: str
    branch: str = "main"
    api_root: Optional[str] = None
    base_url: Optional[str] = None
    editorial_workflow: bool = False
    timeout: float = 30
    token_env: str = DEFAULT_TOKEN_ENV

    @property
    def repository(self) -> Repository:
        return Repository.parse(self.repo, default_branch=self.branch)
