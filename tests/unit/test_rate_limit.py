"""Tests for the sliding-window rate limiter."""
from node_sdk.rate_limit import (
    RateLimitConfig,
    RateLimiter,
    clear_rate_limit_state,
    get_rate_limit_config,
    is_rate_limited,
    record_request,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestRateLimiter:
    """Test window, block and reset behaviour."""

    def test_blocks_after_max_requests(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        config = RateLimitConfig(max_requests=2, window_ms=60_000, retry_after_ms=5_000)

        assert not limiter.is_rate_limited("u1", "openai", "chat.completion", config).limited
        limiter.record_request("u1", "openai", "chat.completion")
        limiter.record_request("u1", "openai", "chat.completion")

        result = limiter.is_rate_limited("u1", "openai", "chat.completion", config)
        assert result.limited
        assert result.retry_after_ms == 5_000

    def test_block_expires(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        config = RateLimitConfig(max_requests=1, window_ms=60_000, retry_after_ms=5_000)

        limiter.is_rate_limited("u1", "email", "email.send", config)
        limiter.record_request("u1", "email", "email.send")
        assert limiter.is_rate_limited("u1", "email", "email.send", config).limited

        clock.advance(2)
        still = limiter.is_rate_limited("u1", "email", "email.send", config)
        assert still.limited
        assert still.retry_after_ms == 3_000

        clock.advance(4)
        assert not limiter.is_rate_limited("u1", "email", "email.send", config).limited

    def test_window_resets(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        config = RateLimitConfig(max_requests=1, window_ms=1_000, retry_after_ms=500)

        limiter.is_rate_limited("u1", "webhook", "webhook.request", config)
        limiter.record_request("u1", "webhook", "webhook.request")
        clock.advance(1.5)

        assert not limiter.is_rate_limited("u1", "webhook", "webhook.request", config).limited
        assert limiter.get_state("u1", "webhook", "webhook.request").requests == 0

    def test_keys_are_independent(self):
        limiter = RateLimiter(clock=FakeClock())
        config = RateLimitConfig(max_requests=1, window_ms=60_000, retry_after_ms=1_000)

        limiter.is_rate_limited("u1", "openai", "chat.completion", config)
        limiter.record_request("u1", "openai", "chat.completion")

        assert limiter.is_rate_limited("u1", "openai", "chat.completion", config).limited
        assert not limiter.is_rate_limited("u2", "openai", "chat.completion", config).limited
        assert not limiter.is_rate_limited("u1", "openai", "embeddings.create", config).limited

    def test_clear_by_user(self):
        limiter = RateLimiter(clock=FakeClock())
        limiter.record_request("u1", "google", "gmail.send")
        limiter.record_request("u2", "google", "gmail.send")

        limiter.clear(user_id="u1")

        assert limiter.get_state("u1", "google", "gmail.send") is None
        assert limiter.get_state("u2", "google", "gmail.send") is not None


class TestDefaults:
    """Test provider defaults and the shared limiter."""

    def test_provider_defaults(self):
        assert get_rate_limit_config("google").max_requests == 100
        assert get_rate_limit_config("openai").retry_after_ms == 10_000
        assert get_rate_limit_config("email").max_requests == 10
        assert get_rate_limit_config("flow").max_requests == 10_000

    def test_unknown_provider_uses_webhook_limits(self):
        assert get_rate_limit_config("crm") == get_rate_limit_config("webhook")

    def test_module_level_limiter(self):
        config = RateLimitConfig(max_requests=1, window_ms=60_000, retry_after_ms=1_000)
        is_rate_limited("u1", "crm", "crm.sync", config)
        record_request("u1", "crm", "crm.sync")
        assert is_rate_limited("u1", "crm", "crm.sync", config).limited

        clear_rate_limit_state(provider="crm")
        assert not is_rate_limited("u1", "crm", "crm.sync", config).limited
