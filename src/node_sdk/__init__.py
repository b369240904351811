"""
Node SDK - Adapter kernel shared by every provider.

This package provides:
- ExecutionContext / NodeExecutionResult / NodeSignal: the node result contract
- BaseAdapter: uniform execute(operation, input, credentials, context)
- ExecutionError + normalize_error: the error taxonomy
- with_retry / RateLimiter: retry with backoff and sliding-window limits
- CredentialManager: credential resolution, caching and OAuth2 refresh
- HttpClient: timeout-bounded requests with status -> error mapping

All adapters execute synchronously (sync-worker safe).
"""

from .base import BaseAdapter
from .conditions import evaluate_condition
from .context import (
    ExecutionContext,
    ExecutionMetadata,
    FlowOutcome,
    FlowState,
    IterationPlan,
    NodeExecutionResult,
    NodeSignal,
    SignalKind,
)
from .credentials import (
    ApiKeyCredentials,
    CredentialManager,
    CredentialStore,
    Credentials,
    InMemoryCredentialStore,
    OAuth2Credentials,
    ServiceAccountCredentials,
    StoredCredential,
    create_api_key_credentials,
    create_oauth_credentials,
    create_service_account_credentials,
    get_credential_manager,
    is_credentials_expired,
)
from .errors import ErrorCode, ExecutionError, create_error, normalize_error
from .expressions import ExpressionError, SafeExpressionEvaluator
from .http import HttpClient, HttpResponse
from .rate_limit import (
    RateLimitConfig,
    RateLimiter,
    clear_rate_limit_state,
    is_rate_limited,
    record_request,
)
from .retry import RetryConfig, with_retry

__all__ = [
    # Contract
    "BaseAdapter",
    "ExecutionContext",
    "ExecutionMetadata",
    "FlowOutcome",
    "FlowState",
    "IterationPlan",
    "NodeExecutionResult",
    "NodeSignal",
    "SignalKind",
    # Errors
    "ErrorCode",
    "ExecutionError",
    "ExpressionError",
    "create_error",
    "normalize_error",
    # Retry / rate limiting
    "RetryConfig",
    "with_retry",
    "RateLimitConfig",
    "RateLimiter",
    "clear_rate_limit_state",
    "is_rate_limited",
    "record_request",
    # Credentials
    "ApiKeyCredentials",
    "CredentialManager",
    "CredentialStore",
    "Credentials",
    "InMemoryCredentialStore",
    "OAuth2Credentials",
    "ServiceAccountCredentials",
    "StoredCredential",
    "create_api_key_credentials",
    "create_oauth_credentials",
    "create_service_account_credentials",
    "get_credential_manager",
    "is_credentials_expired",
    # Helpers
    "HttpClient",
    "HttpResponse",
    "SafeExpressionEvaluator",
    "evaluate_condition",
]
