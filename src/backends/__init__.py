"""Provider backends behind one protocol.

Each hosting provider is one variant declaring its capabilities; the
variant is picked from configuration by create_backend().
"""

from .base import Backend, BackendCapabilities
from .gitea import GiteaBackend
from .github import GitHubBackend
from .gitlab import GitLabBackend
from .registry import BACKENDS, create_backend

__all__ = [
    "Backend",
    "BackendCapabilities",
    "BACKENDS",
    "GiteaBackend",
    "GitHubBackend",
    "GitLabBackend",
    "create_backend",
]
