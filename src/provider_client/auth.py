"""Credential providers for provider API authentication.

The authentication handshake itself (popup window, OAuth redirect) lives
outside this package. What reaches the Provider Client is an opaque
credential provider returning a bearer token, consulted on every request so
that a refreshed token is picked up by the very next call.

Tokens are never cached beyond their declared lifetime and never logged.
"""

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from dotenv import load_dotenv

from .errors import AuthError

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_ENV = 'CMS_REPO_TOKEN'


class CredentialProvider(Protocol):
    """Anything that can hand out the current bearer token."""

    def get_token(self) -> Optional[str]:
        ...


@dataclass(frozen=True)
class AuthResult:
    """Outcome of an authentication handshake.

    Exactly one of ``token`` and ``error`` is set.

    Example:
        >>> result = AuthResult.success("abc")
        >>> result.unwrap()
        'abc'
    """
    token: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, token: str) -> "AuthResult":
        return cls(token=token)

    @classmethod
    def failure(cls, error: str) -> "AuthResult":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None and self.token is not None

    def unwrap(self, api: str = "unknown") -> str:
        """Return the token or raise AuthError carrying the failure reason."""
        if not self.ok:
            raise AuthError(self.error or "Authentication returned no token", api=api)
        return self.token  # type: ignore[return-value]


class StaticTokenProvider:
    """Credential provider for a token known up front."""

    def __init__(self, token: Optional[str]):
        self._token = token

    def get_token(self) -> Optional[str]:
        return self._token


class EnvTokenProvider:
    """Loads the token from an environment variable.

    The variable is read on every call so that rotating the environment
    (or the .env file before start-up) is reflected without restarting.

    Example:
        >>> provider = EnvTokenProvider("CMS_REPO_TOKEN")
        >>> token = provider.get_token()
    """

    def __init__(self, var_name: str = DEFAULT_TOKEN_ENV):
        """Initialize the provider by loading environment variables from .env file.

        Args:
            var_name: Name of the environment variable holding the token
        """
        load_dotenv()
        self.var_name = var_name

    def get_token(self) -> Optional[str]:
        """Get the token from the environment.

        Returns:
            The token, or None if the variable is unset or empty
        """
        token = os.getenv(self.var_name)
        return token or None


class RefreshingTokenProvider:
    """Caches a fetched token until its lifetime expires, then fetches again.

    ``fetch`` performs the handshake and reports its outcome as an
    AuthResult; failures surface as AuthError on the request that needed
    the token.
    """

    def __init__(
        self,
        fetch: Callable[[], AuthResult],
        ttl_seconds: float = 300.0,
        api: str = "unknown",
    ):
        self._fetch = fetch
        self._ttl = ttl_seconds
        self._api = api
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = threading.Lock()

    def get_token(self) -> Optional[str]:
        with self._lock:
            now = time.monotonic()
            if self._token is None or now >= self._expires_at:
                logger.debug("Refreshing provider token")
                self._token = self._fetch().unwrap(self._api)
                self._expires_at = now + self._ttl
            return self._token

    def invalidate(self) -> None:
        """Drop the cached token so the next call fetches a new one."""
        with self._lock:
            self._token = None
            self._expires_at = 0.0
