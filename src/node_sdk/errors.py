"""
Execution Errors - Normalized error taxonomy shared by every adapter.

Any failure raised while executing a node is normalized into an
ExecutionError carrying a taxonomy code and a retryability flag.
The retry kernel only looks at those two fields.
"""

from __future__ import annotations

import socket
import ssl
from enum import Enum
from typing import Any, Dict, Optional

from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import Timeout


class ErrorCode(str, Enum):
    """Error taxonomy codes."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_PARAMETER = "MISSING_PARAMETER"
    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    MISSING_CREDENTIALS = "MISSING_CREDENTIALS"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    API_ERROR = "API_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    EXPRESSION_ERROR = "EXPRESSION_ERROR"
    STREAM_ERROR = "STREAM_ERROR"
    EMPTY_WORKFLOW = "EMPTY_WORKFLOW"
    UNKNOWN = "UNKNOWN"


# Static classification table: codes retried by default
RETRYABLE_CODES = frozenset({
    ErrorCode.RATE_LIMITED,
    ErrorCode.TIMEOUT,
    ErrorCode.NETWORK_ERROR,
    ErrorCode.SERVICE_UNAVAILABLE,
    ErrorCode.INTERNAL_ERROR,
})


class ExecutionError(Exception):
    """
    Normalized node execution error.

    Raised inside adapters and the retry kernel; converted into the
    ``error`` field of a NodeExecutionResult at the adapter boundary.
    """

    def __init__(
        self,
        code: ErrorCode | str,
        message: str,
        retryable: Optional[bool] = None,
        provider: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = _coerce_code(code)
        self.message = message
        self.retryable = (
            self.code in RETRYABLE_CODES if retryable is None else retryable
        )
        self.provider = provider
        self.operation = operation
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for results and logs."""
        data: Dict[str, Any] = {
            "code": self.code.value if isinstance(self.code, ErrorCode) else self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.provider:
            data["provider"] = self.provider
        if self.operation:
            data["operation"] = self.operation
        if self.details:
            data["details"] = self.details
        return data

    def __repr__(self) -> str:
        return f"ExecutionError(code={self.code!s}, message={self.message!r})"


def _coerce_code(code: ErrorCode | str) -> ErrorCode | str:
    # Adapters may extend the taxonomy with their own string codes
    if isinstance(code, ErrorCode):
        return code
    try:
        return ErrorCode(code)
    except ValueError:
        return code


def create_error(
    code: ErrorCode | str,
    message: str,
    retryable: Optional[bool] = None,
    details: Optional[Dict[str, Any]] = None,
) -> ExecutionError:
    """Build an ExecutionError, defaulting retryability from the table."""
    return ExecutionError(code, message, retryable=retryable, details=details)


# (substrings, code) checked in order against the lowercased message
_MESSAGE_PATTERNS = (
    (("rate limit", "429"), ErrorCode.RATE_LIMITED),
    (("timeout", "timed out"), ErrorCode.TIMEOUT),
    (("network", "econnrefused", "fetch failed", "connection refused"), ErrorCode.NETWORK_ERROR),
    (("unauthorized", "401"), ErrorCode.UNAUTHORIZED),
    (("forbidden", "403"), ErrorCode.FORBIDDEN),
    (("not found", "404"), ErrorCode.NOT_FOUND),
    (("500", "internal server"), ErrorCode.INTERNAL_ERROR),
    (("503", "service unavailable"), ErrorCode.SERVICE_UNAVAILABLE),
)


def normalize_error(error: Any) -> ExecutionError:
    """
    Normalize any failure into an ExecutionError.

    Args:
        error: Exception (or any value) raised by a node

    Returns:
        ExecutionError with a taxonomy code and default retryability
    """
    if isinstance(error, ExecutionError):
        return error

    if isinstance(error, (Timeout, socket.timeout, TimeoutError)):
        return ExecutionError(ErrorCode.TIMEOUT, str(error) or "Request timed out")

    if isinstance(error, (RequestsConnectionError, ssl.SSLError, ConnectionError, socket.gaierror)):
        return ExecutionError(ErrorCode.NETWORK_ERROR, str(error) or "Network error")

    if isinstance(error, BaseException):
        message = str(error) or error.__class__.__name__
        lowered = message.lower()
        for needles, code in _MESSAGE_PATTERNS:
            if any(needle in lowered for needle in needles):
                return ExecutionError(code, message)
        return ExecutionError(ErrorCode.UNKNOWN, message, retryable=False)

    return ExecutionError(ErrorCode.UNKNOWN, str(error), retryable=False)


__all__ = [
    "ErrorCode",
    "ExecutionError",
    "RETRYABLE_CODES",
    "create_error",
    "normalize_error",
]
