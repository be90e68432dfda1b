"""REST transport for Git hosting provider APIs.

This module wraps a requests Session and provides:
1. Per-call Authorization header computation from a credential provider
2. Response parsing (JSON or text)
3. Translation of HTTP failures to the typed exception hierarchy
4. Retry with exponential backoff for 429 rate limits
5. Transparent Link-header pagination
6. Per-request timeout and cancellation
"""

import json
import logging
import re
import threading
from typing import Any, Dict, List, Optional, Sequence

import requests
from requests.exceptions import RequestException
from requests.utils import parse_header_links

from .auth import CredentialProvider
from .errors import (
    APIError,
    AuthError,
    ConflictError,
    NetworkError,
    NotFoundError,
    ValidationError,
)
from .retry_logic import MAX_RETRIES, RateLimitSignal, parse_retry_after, retry_on_rate_limit

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30

# Safety net against providers that keep answering with a next link
MAX_PAGES = 100

JSON_CONTENT_TYPE = 'application/json; charset=utf-8'


class ProviderClient:
    """Authenticated REST client for one hosting provider.

    The client holds no mutable session state besides the requests Session
    and the credential provider passed in by the caller. Every request
    recomputes its headers, so refreshed credentials take effect on the next
    call.

    Example:
        >>> client = ProviderClient(
        ...     api_root="https://try.gitea.io/api/v1",
        ...     api_name="Gitea",
        ...     credentials=StaticTokenProvider("token"),
        ...     auth_scheme="token",
        ... )
        >>> client.request("/repos/owner/repo")
    """

    def __init__(
        self,
        api_root: str,
        api_name: str,
        credentials: Optional[CredentialProvider] = None,
        auth_scheme: str = "Bearer",
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        max_retries: int = MAX_RETRIES,
        conflict_markers: Sequence[str] = (),
    ):
        """Initialize the client.

        Args:
            api_root: Base URL of the provider API (no trailing slash needed)
            api_name: Provider display name used in errors (e.g. "Gitea")
            credentials: Credential provider consulted on every request
            auth_scheme: Authorization scheme ("token" or "Bearer")
            timeout: Default per-request timeout in seconds
            session: Optional requests Session (created if omitted)
            max_retries: Retries after the first attempt on HTTP 429
            conflict_markers: Lower-case message fragments that turn a
                400/422 response into a ConflictError for this provider
        """
        self.api_root = api_root.rstrip('/')
        self.api_name = api_name
        self.credentials = credentials
        self.auth_scheme = auth_scheme
        self.timeout = timeout
        self.session = session or requests.Session()
        self.max_retries = max_retries
        self.conflict_markers = tuple(m.lower() for m in conflict_markers)

    def request_headers(self, headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Compute headers for one request.

        Args:
            headers: Extra headers supplied by the caller (win over defaults)

        Returns:
            Headers dictionary including Authorization when a token exists
        """
        base: Dict[str, str] = {'Content-Type': JSON_CONTENT_TYPE}
        token = self.credentials.get_token() if self.credentials else None
        if token:
            base['Authorization'] = f"{self.auth_scheme} {token}"
        if headers:
            base.update(headers)
        return base

    def url_for(self, path: str) -> str:
        """Join the API root and a request path."""
        if path.startswith('http://') or path.startswith('https://'):
            return path
        return f"{self.api_root}/{path.lstrip('/')}"

    def request(
        self,
        path: str,
        method: str = "GET",
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Any:
        """Send a request and return the parsed response body.

        Args:
            path: API path relative to the API root (or an absolute URL)
            method: HTTP method
            body: Request body; dicts and lists are JSON-encoded
            params: Query parameters
            headers: Extra headers
            timeout: Per-request timeout in seconds (default from client)
            cancel_event: Event that aborts the request before it is sent

        Returns:
            Parsed JSON, raw text, or None for empty bodies

        Raises:
            APIError: Non-success status (or a more specific subclass)
            RateLimitedError: If 429 persists after retries
            NetworkError: If the provider is unreachable or times out
            ValidationError: If a JSON body cannot be decoded
            OperationCancelledError: If cancel_event was set
        """
        response = self._execute(path, method, body, params, headers, timeout, cancel_event)
        return self._parse_body(response, path)

    def request_all(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        items_key: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Any]:
        """GET every page of a paginated listing and return all items.

        Pages are followed through the ``Link: <...>; rel="next"`` header.

        Args:
            path: API path of the first page
            params: Query parameters for the first page
            items_key: Key holding the list when pages are JSON objects
            headers: Extra headers
            cancel_event: Event that aborts before the next page is fetched

        Returns:
            Accumulated list of items across all pages

        Raises:
            ValidationError: If a page does not contain a list
        """
        items: List[Any] = []
        next_path: Optional[str] = path
        page_params = params
        pages = 0

        while next_path:
            response = self._execute(
                next_path, "GET", None, page_params, headers, None, cancel_event
            )
            body = self._parse_body(response, path)
            if items_key is not None and isinstance(body, dict):
                body = body.get(items_key)
            if not isinstance(body, list):
                raise ValidationError(
                    self.api_name,
                    f"expected a list of items, got {type(body).__name__}",
                    path,
                )
            items.extend(body)

            pages += 1
            if pages >= MAX_PAGES:
                logger.warning(
                    f"Stopped following pagination for {path} after {MAX_PAGES} pages"
                )
                break

            next_path = self._next_link(response)
            # The next link already carries the query string
            page_params = None

        return items

    def _execute(
        self,
        path: str,
        method: str,
        body: Any,
        params: Optional[Dict[str, Any]],
        headers: Optional[Dict[str, str]],
        timeout: Optional[float],
        cancel_event: Optional[threading.Event],
    ) -> requests.Response:
        url = self.url_for(path)
        data = self._encode_body(body)

        def _attempt() -> requests.Response:
            request_headers = self.request_headers(headers)
            logger.debug(f"{method} {url}")
            try:
                response = self.session.request(
                    method,
                    url,
                    params=params,
                    data=data,
                    headers=request_headers,
                    timeout=timeout or self.timeout,
                )
            except RequestException as e:
                raise NetworkError(
                    self.api_name, self.api_root, self._sanitize_credentials(str(e))
                ) from e

            if response.status_code == 429:
                raise RateLimitSignal(parse_retry_after(response.headers.get('Retry-After')))
            if not 200 <= response.status_code < 300:
                raise self._translate_error(response, path)
            return response

        return retry_on_rate_limit(
            _attempt,
            api=self.api_name,
            path=path,
            max_retries=self.max_retries,
            cancel_event=cancel_event,
        )

    @staticmethod
    def _encode_body(body: Any) -> Any:
        if body is None or isinstance(body, (str, bytes)):
            return body
        return json.dumps(body)

    def _parse_body(self, response: requests.Response, path: str) -> Any:
        text = response.text
        if not text:
            return None

        content_type = response.headers.get('Content-Type', '') or ''
        if 'json' not in content_type.lower():
            return text

        try:
            return json.loads(text)
        except ValueError as e:
            raise ValidationError(self.api_name, f"invalid JSON body ({e})", path) from e

    @staticmethod
    def _next_link(response: requests.Response) -> Optional[str]:
        link_header = response.headers.get('Link')
        if not link_header:
            return None
        for link in parse_header_links(link_header):
            if link.get('rel') == 'next' and link.get('url'):
                return link['url']
        return None

    def _extract_message(self, response: requests.Response) -> str:
        text = response.text or ''
        try:
            payload = json.loads(text) if text else None
        except ValueError:
            payload = None

        if isinstance(payload, dict):
            message = payload.get('message') or payload.get('error')
            if message:
                return message if isinstance(message, str) else json.dumps(message)
        if text:
            return text
        return response.reason or f"HTTP {response.status_code}"

    def _translate_error(self, response: requests.Response, path: str) -> APIError:
        """Translate a non-success response to a typed exception.

        Args:
            response: The failed response
            path: Request path (kept on the error for the caller)

        Returns:
            APIError or one of its subclasses
        """
        status = response.status_code
        message = self._extract_message(response)
        lowered = message.lower()

        if status in (401, 403):
            error: APIError = AuthError(message, status, self.api_name, path)
        elif status == 404:
            error = NotFoundError(message, status, self.api_name, path)
        elif status in (409, 412):
            error = ConflictError(message, status, self.api_name, path)
        elif status in (400, 422) and any(m in lowered for m in self.conflict_markers):
            error = ConflictError(message, status, self.api_name, path)
        else:
            error = APIError(message, status, self.api_name, path)

        log = logger.debug if status == 404 else logger.error
        log(
            f"{self.api_name} API request to {path} failed "
            f"(status {status}): {self._sanitize_credentials(message)}"
        )
        return error

    @staticmethod
    def _sanitize_credentials(text: str) -> str:
        """Mask credentials that may appear in error messages.

        Example:
            >>> ProviderClient._sanitize_credentials("Authorization: token abc")
            'Authorization: ***REDACTED***'
        """
        if not text:
            return text

        sanitized = re.sub(r'://([\w.-]+):([\w.-]+)@', r'://***:***@', text)
        sanitized = re.sub(
            r'Authorization:\s*[^\n\r]+',
            'Authorization: ***REDACTED***',
            sanitized,
            flags=re.IGNORECASE,
        )
        sanitized = re.sub(
            r'Bearer\s+[^\s\n\r]+',
            'Bearer ***REDACTED***',
            sanitized,
            flags=re.IGNORECASE,
        )
        sanitized = re.sub(
            r'(access_token|private_token|token)=([^"\'\s&]+)',
            r'\1=***REDACTED***',
            sanitized,
            flags=re.IGNORECASE,
        )
        return sanitized
