"""
BaseAdapter - Abstract base class for provider adapters.

Every adapter exposes one entry point:

    execute(operation, input, credentials, context) -> NodeExecutionResult

which wraps the concrete execute_operation() with:
1. a supported-operation check (UNSUPPORTED_OPERATION)
2. a rate-limit check (RATE_LIMITED)
3. retry with backoff, counting every attempt against the rate limit
4. timing and retry-count metadata
5. normalization of any failure into the result's ``error`` field

execute() never raises; failure is always a result with success=False.

SYNC-WORKER SAFE: execute() is synchronous.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, FrozenSet, Optional, Tuple, Union

from flowmesh.config import get_settings
from flowmesh.observability import with_trace_context

from .context import (
    ExecutionContext,
    ExecutionMetadata,
    FlowOutcome,
    NodeExecutionResult,
    NodeSignal,
    utcnow,
)
from .credentials import Credentials, OAuth2Credentials, get_credential_manager, is_credentials_expired
from .errors import ErrorCode, ExecutionError, normalize_error
from .http import HttpClient
from .rate_limit import RateLimiter, get_rate_limiter
from .retry import DEFAULT_RETRY_CONFIG, RetryConfig, with_retry


logger = logging.getLogger(__name__)

AdapterOutput = Union[Dict[str, Any], FlowOutcome, None]


class BaseAdapter(ABC):
    """
    Abstract base class for all provider adapters.

    Subclasses MUST define:
    - provider: Provider id used for credentials and rate limits
    - supported_operations: Operation ids accepted by execute()
    - execute_operation(): The actual work

    Example:
        class EchoAdapter(BaseAdapter):
            provider = "echo"
            supported_operations = ("echo.say",)
            requires_credentials = False

            def execute_operation(self, operation, input, credentials, context):
                return {"output": input.get("text")}
    """

    provider: str = ""
    supported_operations: Tuple[str, ...] = ()
    # Alternative operation names accepted from node config
    operation_aliases: Dict[str, str] = {}
    # Config keys left uninterpolated (resolved by the adapter itself)
    preserve_keys: FrozenSet[str] = frozenset()
    requires_credentials: bool = True
    retry_config: RetryConfig = DEFAULT_RETRY_CONFIG

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self._rate_limiter = rate_limiter
        if retry_config is not None:
            self.retry_config = retry_config
        self._sleep = sleep

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter or get_rate_limiter()

    def normalize_operation(self, operation: str) -> str:
        return self.operation_aliases.get(operation, operation)

    def supports(self, operation: str) -> bool:
        return self.normalize_operation(operation) in self.supported_operations

    @abstractmethod
    def execute_operation(
        self,
        operation: str,
        input: Dict[str, Any],
        credentials: Optional[Credentials],
        context: ExecutionContext,
    ) -> AdapterOutput:
        """
        Perform one operation.

        Returns:
            Output map, or FlowOutcome for control-flow results

        Raises:
            ExecutionError (or anything normalize_error understands)
        """
        ...

    def execute(
        self,
        operation: str,
        input: Dict[str, Any],
        credentials: Optional[Credentials],
        context: ExecutionContext,
    ) -> NodeExecutionResult:
        """Run an operation with rate limiting, retry and error normalization."""
        operation = self.normalize_operation(operation)
        metadata = ExecutionMetadata(provider=self.provider, operation=operation)
        started = time.perf_counter()
        extra = with_trace_context(
            execution_id=context.execution_id,
            workflow_id=context.workflow_id,
            provider=self.provider,
            operation=operation,
        )

        try:
            if operation not in self.supported_operations:
                raise ExecutionError(
                    ErrorCode.UNSUPPORTED_OPERATION,
                    f"Operation {operation} is not supported by {self.provider}",
                    retryable=False,
                )

            limit = self.rate_limiter.is_rate_limited(context.user_id, self.provider, operation)
            if limit.limited:
                raise ExecutionError(
                    ErrorCode.RATE_LIMITED,
                    f"Rate limit exceeded for {self.provider}. Retry after {limit.retry_after_ms:.0f}ms",
                    details={"retryAfter": limit.retry_after_ms},
                )

            def attempt() -> AdapterOutput:
                self.rate_limiter.record_request(context.user_id, self.provider, operation)
                return self.execute_operation(operation, input or {}, credentials, context)

            def on_retry(attempt_number: int, error: ExecutionError, delay_ms: float) -> None:
                metadata.retry_count = attempt_number

            outcome = with_retry(
                attempt,
                self.retry_config,
                on_retry=on_retry,
                sleep=self._sleep,
                deadline=context.deadline,
            )
            output, signal = _unpack(outcome)
            self._finish(metadata, started)
            return NodeExecutionResult(success=True, output=output, metadata=metadata, signal=signal)

        except Exception as e:
            error = normalize_error(e)
            error.provider = error.provider or self.provider
            error.operation = error.operation or operation
            self._finish(metadata, started)
            logger.warning(
                "%s %s failed: [%s] %s", self.provider, operation, error.code, error.message,
                extra=extra,
            )
            return NodeExecutionResult(success=False, error=error, metadata=metadata)

    @staticmethod
    def _finish(metadata: ExecutionMetadata, started: float) -> None:
        metadata.completed_at = utcnow()
        metadata.duration_ms = (time.perf_counter() - started) * 1000

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def refresh_credentials(self, credentials: OAuth2Credentials) -> Optional[OAuth2Credentials]:
        """Refresh an OAuth2 token. Providers without OAuth return None."""
        return None

    def get_valid_credentials(
        self,
        credentials: Optional[Credentials],
        context: ExecutionContext,
    ) -> Optional[Credentials]:
        """Refresh OAuth2 credentials that are about to expire and save the new token."""
        if credentials is None or not is_credentials_expired(credentials):
            return credentials

        manager = context.credential_manager or get_credential_manager()
        refreshed = manager.refresh_and_persist(
            context.user_id, self.provider, credentials, self.refresh_credentials
        )
        context.credentials[self.provider] = refreshed
        return refreshed

    def http_client(self, base_url: str = "", **kwargs: Any) -> HttpClient:
        """HTTP client with the configured default timeout."""
        kwargs.setdefault("timeout", get_settings().http_timeout_s)
        return HttpClient(base_url=base_url, **kwargs)

    @staticmethod
    def require(input: Dict[str, Any], *keys: str) -> None:
        """Raise VALIDATION_ERROR for the first missing or empty key."""
        for key in keys:
            value = input.get(key)
            if value is None or value == "" or value == []:
                raise ExecutionError(
                    ErrorCode.VALIDATION_ERROR,
                    f"Missing required field: {key}",
                    retryable=False,
                )


def _unpack(outcome: AdapterOutput) -> Tuple[Dict[str, Any], NodeSignal]:
    if isinstance(outcome, FlowOutcome):
        return outcome.output, outcome.signal
    if outcome is None:
        return {}, NodeSignal.value()
    if isinstance(outcome, dict):
        return outcome, NodeSignal.value()
    return {"output": outcome}, NodeSignal.value()


__all__ = ["AdapterOutput", "BaseAdapter"]
