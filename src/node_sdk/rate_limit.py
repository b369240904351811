"""
Rate Limiting - Sliding-window counters per (user, provider, operation).

State is shared by every run in the process: limits throttle real
upstream usage, so concurrent executions for the same user count
against the same window.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """Window policy for one provider."""
    max_requests: int
    window_ms: int
    retry_after_ms: int


DEFAULT_RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "google": RateLimitConfig(max_requests=100, window_ms=60_000, retry_after_ms=5_000),
    "openai": RateLimitConfig(max_requests=60, window_ms=60_000, retry_after_ms=10_000),
    "email": RateLimitConfig(max_requests=10, window_ms=60_000, retry_after_ms=60_000),
    "webhook": RateLimitConfig(max_requests=100, window_ms=60_000, retry_after_ms=1_000),
    "transform": RateLimitConfig(max_requests=1000, window_ms=60_000, retry_after_ms=100),
    "flow": RateLimitConfig(max_requests=10_000, window_ms=60_000, retry_after_ms=100),
}


def get_rate_limit_config(provider: str) -> RateLimitConfig:
    """Default limits for a provider (webhook limits for unknown providers)."""
    return DEFAULT_RATE_LIMITS.get(provider, DEFAULT_RATE_LIMITS["webhook"])


@dataclass
class RateLimitState:
    """Counter for one user:provider:operation key."""
    requests: int
    window_start: float
    blocked: bool = False
    blocked_until: Optional[float] = None


@dataclass(frozen=True)
class RateLimitResult:
    limited: bool
    retry_after_ms: Optional[float] = None


class RateLimiter:
    """
    Thread-safe sliding-window rate limiter.

    Usage:
        limiter = RateLimiter()
        if not limiter.is_rate_limited(user, "openai", "chat.completion").limited:
            limiter.record_request(user, "openai", "chat.completion")
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            clock: Returns the current time in seconds
        """
        self._clock = clock
        self._states: Dict[str, RateLimitState] = {}
        self._lock = threading.Lock()

    def _now_ms(self) -> float:
        return self._clock() * 1000

    @staticmethod
    def _key(user_id: str, provider: str, operation: str) -> str:
        return f"{user_id}:{provider}:{operation}"

    def is_rate_limited(
        self,
        user_id: str,
        provider: str,
        operation: str,
        config: Optional[RateLimitConfig] = None,
    ) -> RateLimitResult:
        """Check (and update block state for) one key."""
        config = config or get_rate_limit_config(provider)
        key = self._key(user_id, provider, operation)
        now = self._now_ms()

        with self._lock:
            state = self._states.get(key)

            # Fresh window
            if state is None or now - state.window_start > config.window_ms:
                self._states[key] = RateLimitState(requests=0, window_start=now)
                return RateLimitResult(limited=False)

            if state.blocked and state.blocked_until is not None:
                if now < state.blocked_until:
                    return RateLimitResult(limited=True, retry_after_ms=state.blocked_until - now)
                # Block expired
                self._states[key] = RateLimitState(requests=0, window_start=now)
                return RateLimitResult(limited=False)

            if state.requests >= config.max_requests:
                state.blocked = True
                state.blocked_until = now + config.retry_after_ms
                logger.warning(
                    "Rate limit reached for %s (%d requests in window)", key, state.requests
                )
                return RateLimitResult(limited=True, retry_after_ms=config.retry_after_ms)

            return RateLimitResult(limited=False)

    def record_request(self, user_id: str, provider: str, operation: str) -> None:
        """Count one request against the key's current window."""
        key = self._key(user_id, provider, operation)
        with self._lock:
            state = self._states.get(key)
            if state is None:
                self._states[key] = RateLimitState(requests=1, window_start=self._now_ms())
            else:
                state.requests += 1

    def get_state(self, user_id: str, provider: str, operation: str) -> Optional[RateLimitState]:
        with self._lock:
            return self._states.get(self._key(user_id, provider, operation))

    def clear(
        self,
        user_id: Optional[str] = None,
        provider: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        """
        Clear rate limit state.

        With no arguments every key is dropped; otherwise keys matching
        all the given parts are dropped.
        """
        with self._lock:
            if user_id is None and provider is None and operation is None:
                self._states.clear()
                return

            for key in list(self._states):
                key_user, key_provider, key_operation = key.rsplit(":", 2)
                if user_id is not None and key_user != user_id:
                    continue
                if provider is not None and key_provider != provider:
                    continue
                if operation is not None and key_operation != operation:
                    continue
                del self._states[key]


# Process-wide limiter shared by all adapters
_rate_limiter = RateLimiter()


def get_rate_limiter() -> RateLimiter:
    return _rate_limiter


def is_rate_limited(
    user_id: str,
    provider: str,
    operation: str,
    config: Optional[RateLimitConfig] = None,
) -> RateLimitResult:
    return _rate_limiter.is_rate_limited(user_id, provider, operation, config)


def record_request(user_id: str, provider: str, operation: str) -> None:
    _rate_limiter.record_request(user_id, provider, operation)


def clear_rate_limit_state(
    user_id: Optional[str] = None,
    provider: Optional[str] = None,
    operation: Optional[str] = None,
) -> None:
    _rate_limiter.clear(user_id, provider, operation)


__all__ = [
    "DEFAULT_RATE_LIMITS",
    "RateLimitConfig",
    "RateLimitResult",
    "RateLimitState",
    "RateLimiter",
    "clear_rate_limit_state",
    "get_rate_limit_config",
    "get_rate_limiter",
    "is_rate_limited",
    "record_request",
]
