"""Backend selection by provider name."""

import logging
from typing import Dict, Optional

import requests

from src.config.errors import ConfigError
from src.config.models import BackendConfig
from src.provider_client.auth import CredentialProvider, EnvTokenProvider
from src.provider_client.client import ProviderClient

from .base import Backend
from .gitea import GiteaBackend
from .github import GitHubBackend
from .gitlab import GitLabBackend

logger = logging.getLogger(__name__)

BACKENDS: Dict[str, type] = {
    GiteaBackend.name: GiteaBackend,
    GitHubBackend.name: GitHubBackend,
    GitLabBackend.name: GitLabBackend,
}


def create_backend(
    config: BackendConfig,
    credentials: Optional[CredentialProvider] = None,
    session: Optional[requests.Session] = None,
) -> Backend:
    """Build the backend variant configured for this repository.

    Args:
        config: Resolved backend configuration
        credentials: Credential provider (defaults to the env var named in config)
        session: Optional requests Session shared with the caller

    Returns:
        Backend instance with its own ProviderClient

    Raises:
        ConfigError: If the provider is unknown or the repo string is malformed
    """
    backend_cls = BACKENDS.get(config.provider)
    if backend_cls is None:
        raise ConfigError(
            f"Unsupported provider '{config.provider}' "
            f"(expected one of: {', '.join(sorted(BACKENDS))})",
            'provider'
        )

    try:
        repository = config.repository
    except ValueError as e:
        raise ConfigError(str(e), 'repo') from e

    client = ProviderClient(
        api_root=config.api_root or backend_cls.DEFAULT_API_ROOT,
        api_name=backend_cls.display_name,
        credentials=credentials or EnvTokenProvider(config.token_env),
        auth_scheme=backend_cls.AUTH_SCHEME,
        timeout=config.timeout,
        session=session,
        conflict_markers=backend_cls.CONFLICT_MARKERS,
    )
    logger.debug(
        f"Using {backend_cls.display_name} backend for {repository.full_name} "
        f"at {client.api_root}"
    )
    return backend_cls(repository, client)
