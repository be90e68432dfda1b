"""Provider client library for Git hosting REST APIs.

This package provides the authenticated transport shared by every backend:
request building, response parsing, typed errors, 429 backoff and
pagination.
"""

from .errors import (
    RepoBackendError,
    ProviderError,
    APIError,
    NotFoundError,
    AuthError,
    ConflictError,
    RateLimitedError,
    NetworkError,
    ValidationError,
    OperationCancelledError,
)
from .auth import (
    AuthResult,
    EnvTokenProvider,
    RefreshingTokenProvider,
    StaticTokenProvider,
)
from .client import ProviderClient

__all__ = [
    "RepoBackendError",
    "ProviderError",
    "APIError",
    "NotFoundError",
    "AuthError",
    "ConflictError",
    "RateLimitedError",
    "NetworkError",
    "ValidationError",
    "OperationCancelledError",
    "AuthResult",
    "EnvTokenProvider",
    "RefreshingTokenProvider",
    "StaticTokenProvider",
    "ProviderClient",
]
