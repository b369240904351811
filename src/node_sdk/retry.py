"""
Retry Kernel - Exponential backoff with jitter.

Only errors whose code is listed in RetryConfig.retryable_errors
(and which are not explicitly flagged non-retryable) are retried.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, FrozenSet, Optional, TypeVar

from .errors import ErrorCode, ExecutionError, RETRYABLE_CODES, normalize_error


logger = logging.getLogger(__name__)

T = TypeVar("T")

# on_retry(attempt_number, error, delay_ms)
RetryCallback = Callable[[int, ExecutionError, float], None]


@dataclass(frozen=True)
class RetryConfig:
    """Backoff policy for one adapter."""
    max_retries: int = 3
    initial_delay_ms: float = 1000
    max_delay_ms: float = 30000
    backoff_multiplier: float = 2
    retryable_errors: FrozenSet[str] = field(
        default_factory=lambda: frozenset(code.value for code in RETRYABLE_CODES)
    )


DEFAULT_RETRY_CONFIG = RetryConfig()


def calculate_backoff_delay(attempt: int, config: RetryConfig = DEFAULT_RETRY_CONFIG) -> float:
    """
    Delay in milliseconds before retrying after ``attempt`` (0-based).

    initial * multiplier^attempt with +/-10% jitter, clamped to max_delay_ms.
    """
    delay = config.initial_delay_ms * (config.backoff_multiplier ** attempt)
    jitter = delay * 0.1 * (random.random() * 2 - 1)
    return max(0.0, min(delay + jitter, config.max_delay_ms))


def is_retryable_error(error: ExecutionError, config: RetryConfig = DEFAULT_RETRY_CONFIG) -> bool:
    """True if the error code is retryable under this config."""
    code = error.code.value if isinstance(error.code, ErrorCode) else error.code
    return code in config.retryable_errors and error.retryable is not False


def with_retry(
    fn: Callable[[], T],
    config: RetryConfig = DEFAULT_RETRY_CONFIG,
    on_retry: Optional[RetryCallback] = None,
    sleep: Callable[[float], Any] = time.sleep,
    deadline: Optional[float] = None,
) -> T:
    """
    Call ``fn`` up to ``config.max_retries + 1`` times.

    Args:
        fn: Zero-argument callable to execute
        config: Backoff policy
        on_retry: Called with (attempt, error, delay_ms) before each sleep
        sleep: Sleep function (seconds), injectable for tests
        deadline: Optional ``time.monotonic()`` value; backoff never sleeps past it

    Returns:
        Whatever ``fn`` returns

    Raises:
        ExecutionError: The normalized last error once retries are exhausted
            or the error is not retryable
    """
    attempt = 0
    while True:
        try:
            return fn()
        except Exception as e:
            error = normalize_error(e)

            if attempt >= config.max_retries or not is_retryable_error(error, config):
                _reraise(error, e)

            delay_ms = calculate_backoff_delay(attempt, config)
            if deadline is not None:
                remaining_ms = (deadline - time.monotonic()) * 1000
                if remaining_ms <= 0:
                    _reraise(error, e)
                delay_ms = min(delay_ms, remaining_ms)

            attempt += 1
            logger.warning(
                "[retry] %s: %s. Retrying in %.0fms (%d/%d)",
                error.code, error.message, delay_ms, attempt, config.max_retries,
            )
            if on_retry is not None:
                on_retry(attempt, error, delay_ms)
            sleep(delay_ms / 1000)


def _reraise(error: ExecutionError, original: Exception) -> None:
    if error is original:
        raise error
    raise error from original


__all__ = [
    "RetryConfig",
    "DEFAULT_RETRY_CONFIG",
    "calculate_backoff_delay",
    "is_retryable_error",
    "with_retry",
]
