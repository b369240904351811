"""
HTTP Client - Timeout-bounded HTTP requests for adapters.

All HTTP calls MUST use timeouts (sync-worker requirement).
This module wraps requests with sensible defaults and maps
failed responses onto the ExecutionError taxonomy.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, Optional, Union

import requests
from requests.exceptions import Timeout, RequestException

from .errors import ErrorCode, ExecutionError


logger = logging.getLogger(__name__)

# Default timeout in seconds (REQUIRED for sync workers)
DEFAULT_TIMEOUT = 30

# HTTP status -> taxonomy code; anything else non-2xx is API_ERROR
STATUS_CODES: Dict[int, ErrorCode] = {
    400: ErrorCode.BAD_REQUEST,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    429: ErrorCode.RATE_LIMITED,
    500: ErrorCode.INTERNAL_ERROR,
    502: ErrorCode.SERVICE_UNAVAILABLE,
    503: ErrorCode.SERVICE_UNAVAILABLE,
    504: ErrorCode.SERVICE_UNAVAILABLE,
}


class HttpResponse:
    """
    Wrapper for HTTP response with convenient accessors.
    """

    def __init__(self, response: requests.Response):
        self._response = response

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def reason(self) -> str:
        return self._response.reason or ""

    @property
    def headers(self) -> Dict[str, str]:
        return dict(self._response.headers)

    @property
    def text(self) -> str:
        return self._response.text

    @property
    def content(self) -> bytes:
        return self._response.content

    def json(self) -> Any:
        """Parse response as JSON."""
        return self._response.json()

    def json_or_none(self) -> Any:
        """Parse response as JSON, None for empty or non-JSON bodies."""
        if not self._response.content:
            return None
        try:
            return self._response.json()
        except ValueError:
            return None

    def iter_lines(self) -> Iterator[str]:
        """Iterate decoded body lines (streaming responses)."""
        for line in self._response.iter_lines(decode_unicode=True):
            if line is None:
                continue
            if isinstance(line, bytes):
                line = line.decode("utf-8", errors="replace")
            yield line

    def close(self) -> None:
        """Release the connection (required after stream=True)."""
        self._response.close()

    def __enter__(self) -> "HttpResponse":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def ok(self) -> bool:
        """True if status code is 2xx."""
        return self._response.ok

    def raise_for_status(self) -> None:
        """Raise ExecutionError if status code indicates error."""
        if self.ok:
            return

        body = self.json_or_none()
        code = STATUS_CODES.get(self.status_code, ErrorCode.API_ERROR)
        details: Dict[str, Any] = {"status": self.status_code}
        if body is not None:
            details["body"] = body
        elif self.text:
            details["body"] = self.text[:1000]

        raise ExecutionError(
            code,
            _error_message(body) or self.reason or f"HTTP {self.status_code}",
            details=details,
        )


def _error_message(body: Any) -> Optional[str]:
    """Pull a human message out of a JSON error body."""
    if not isinstance(body, dict):
        return None
    if isinstance(body.get("message"), str):
        return body["message"]
    error = body.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str):
        return error
    return None


class HttpClient:
    """
    HTTP client with timeout enforcement and bearer auth.

    SYNC-WORKER SAFE: All requests have explicit timeouts.

    Usage:
        client = HttpClient(base_url="https://api.example.com", bearer_token=token)
        response = client.get("/users", params={"limit": 10})
        data = response.json()
    """

    def __init__(
        self,
        base_url: str = "",
        default_headers: Optional[Dict[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        bearer_token: Optional[str] = None,
    ):
        """
        Initialize HTTP client.

        Args:
            base_url: Base URL for all requests
            default_headers: Headers to include in all requests
            timeout: Default timeout in seconds (REQUIRED)
            bearer_token: Bearer token for Authorization header
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.headers: Dict[str, str] = dict(default_headers or {})

        if bearer_token:
            self.headers["Authorization"] = f"Bearer {bearer_token}"

    def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        data: Optional[Union[Dict[str, Any], str, bytes]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        check_status: bool = True,
        **kwargs: Any,
    ) -> HttpResponse:
        """
        Make HTTP request with timeout enforcement.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE, etc.)
            endpoint: URL endpoint (appended to base_url)
            params: Query parameters
            json: JSON body (auto-serialized)
            data: Form data or raw body
            headers: Additional headers (merged with defaults)
            timeout: Override default timeout
            check_status: Raise for non-2xx responses
            **kwargs: Additional arguments to requests.request

        Returns:
            HttpResponse wrapper

        Raises:
            ExecutionError: TIMEOUT, NETWORK_ERROR or a status-mapped code
        """
        url = f"{self.base_url}{endpoint}" if self.base_url else endpoint

        request_headers = {**self.headers, **(headers or {})}

        request_timeout = timeout or self.timeout

        try:
            response = requests.request(
                method=method,
                url=url,
                params=params,
                json=json,
                data=data,
                headers=request_headers,
                timeout=request_timeout,  # REQUIRED for sync workers
                **kwargs,
            )
        except Timeout as e:
            raise ExecutionError(
                ErrorCode.TIMEOUT,
                f"Request timed out after {request_timeout}s",
                details={"url": url},
            ) from e
        except RequestException as e:
            raise ExecutionError(
                ErrorCode.NETWORK_ERROR,
                f"Request failed: {e}",
                details={"url": url, "method": method},
            ) from e

        wrapped = HttpResponse(response)
        logger.debug("%s %s -> %s", method, url, wrapped.status_code)
        if check_status:
            try:
                wrapped.raise_for_status()
            except ExecutionError:
                wrapped.close()
                raise
        return wrapped

    def get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> HttpResponse:
        """Make GET request."""
        return self.request("GET", endpoint, params=params, **kwargs)

    def post(
        self,
        endpoint: str,
        json: Optional[Any] = None,
        data: Optional[Union[Dict[str, Any], str, bytes]] = None,
        **kwargs: Any,
    ) -> HttpResponse:
        """Make POST request."""
        return self.request("POST", endpoint, json=json, data=data, **kwargs)

    def put(
        self,
        endpoint: str,
        json: Optional[Any] = None,
        **kwargs: Any,
    ) -> HttpResponse:
        """Make PUT request."""
        return self.request("PUT", endpoint, json=json, **kwargs)
