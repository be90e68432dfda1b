"""Typed exception hierarchy for provider-related errors.

This module defines all custom exceptions raised while talking to a Git
hosting provider. All exceptions inherit from RepoBackendError so callers
can catch any application-level error, and carry enough structured
context (status, provider, path) to decide between retrying and showing
a message to the user.
"""

from typing import Optional


class RepoBackendError(Exception):
    """Base exception for all cms-repo errors.

    Use this to catch any application-level error from the backend layer.
    """
    pass


class ProviderError(RepoBackendError):
    """Base exception for all errors raised by the Provider Client."""
    pass


class APIError(ProviderError):
    """Raised when the provider answers with a non-success HTTP status.

    Attributes:
        name: Always "API_ERROR" so callers can match on it
        status: HTTP status code returned by the provider
        message: Error message extracted from the provider response
        api: Display name of the provider (e.g. "Gitea")
        path: Request path that failed (None if unknown)
    """

    name = "API_ERROR"

    def __init__(
        self,
        message: str,
        status: int,
        api: str,
        path: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.api = api
        self.path = path

    def to_dict(self) -> dict:
        """Return the error surface exposed to callers."""
        return {
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "api": self.api,
        }


class NotFoundError(APIError):
    """Raised on 404. Usually means "does not exist yet", not always fatal."""
    pass


class AuthError(APIError):
    """Raised on 401/403. The credential must be refreshed upstream."""

    def __init__(
        self,
        message: str,
        status: int = 401,
        api: str = "unknown",
        path: Optional[str] = None,
    ):
        super().__init__(message, status, api, path)


class ConflictError(APIError):
    """Raised when a write precondition (sha or branch head) does not match.

    Conflicts are never resolved automatically.
    """

    def __init__(
        self,
        message: str,
        status: int = 409,
        api: str = "unknown",
        path: Optional[str] = None,
    ):
        super().__init__(message, status, api, path)


class RateLimitedError(APIError):
    """Raised when HTTP 429 persists after the bounded number of retries."""

    def __init__(
        self,
        api: str,
        path: Optional[str] = None,
        attempts: int = 4,
    ):
        super().__init__(
            f"{api} API rate limit exceeded (after {attempts} attempts)",
            429,
            api,
            path,
        )
        self.attempts = attempts


class NetworkError(ProviderError):
    """Raised when the provider cannot be reached. Transient, caller may retry."""

    def __init__(self, api: str, endpoint: str, reason: Optional[str] = None):
        message = f"{api} API is not available at {endpoint}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.api = api
        self.endpoint = endpoint
        self.reason = reason


class ValidationError(ProviderError):
    """Raised when a provider response body is malformed."""

    def __init__(self, api: str, message: str, path: Optional[str] = None):
        super().__init__(f"Malformed {api} response: {message}")
        self.api = api
        self.path = path


class OperationCancelledError(ProviderError):
    """Raised when a request is cancelled before it could be issued.

    Writes that completed before the cancellation are not rolled back.
    """

    def __init__(self, path: Optional[str] = None):
        message = "Operation cancelled"
        if path:
            message += f" before request to {path}"
        super().__init__(message)
        self.path = path
