"""
Unit tests for the inventory API rate limiters.

Tests cover:
- TokenBucketRateLimiter burst capacity and refill
- wait_for_token sleeping until a token is available, and timing out
- Thread safety: concurrent callers never exceed capacity
- RedisTokenBucketRateLimiter fails open on Redis errors
- build_rate_limiter backend selection

Version: 1.0.0
"""
import threading
from unittest.mock import MagicMock

import pytest
import redis

from inventory_sync.utils.rate_limiter import (
    NoopRateLimiter,
    RedisTokenBucketRateLimiter,
    TokenBucketRateLimiter,
    build_rate_limiter,
)


class FakeClock:
    """Manual clock; sleep() advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.mark.unit
class TestTokenBucketRateLimiter:
    """Local token bucket behavior."""

    def test_burst_up_to_capacity(self):
        clock = FakeClock()
        limiter = TokenBucketRateLimiter(capacity=2, rate_per_second=2.0, clock=clock, sleep=clock.sleep)

        assert limiter.acquire_token()[0] is True
        assert limiter.acquire_token()[0] is True
        success, wait, _ = limiter.acquire_token()
        assert success is False
        assert wait == pytest.approx(0.5)

    def test_refills_over_time(self):
        clock = FakeClock()
        limiter = TokenBucketRateLimiter(capacity=2, rate_per_second=2.0, clock=clock, sleep=clock.sleep)
        limiter.acquire_token()
        limiter.acquire_token()

        clock.now += 0.5
        assert limiter.acquire_token()[0] is True

    def test_refill_never_exceeds_capacity(self):
        clock = FakeClock()
        limiter = TokenBucketRateLimiter(capacity=2, rate_per_second=2.0, clock=clock, sleep=clock.sleep)

        clock.now += 3600
        status = limiter.get_status()
        assert status["available_tokens"] == 2
        assert status["backend"] == "local"

    def test_wait_for_token_sleeps_until_available(self):
        clock = FakeClock()
        limiter = TokenBucketRateLimiter(capacity=1, rate_per_second=2.0, clock=clock, sleep=clock.sleep)
        limiter.acquire_token()

        assert limiter.wait_for_token(timeout=5) is True
        assert clock.sleeps == [pytest.approx(0.5)]

    def test_wait_for_token_times_out(self):
        clock = FakeClock()
        limiter = TokenBucketRateLimiter(capacity=1, rate_per_second=0.1, clock=clock, sleep=clock.sleep)
        limiter.acquire_token()

        assert limiter.wait_for_token(timeout=1.0) is False
        assert clock.sleeps == []

    def test_sustained_rate_is_respected(self):
        """Ten acquisitions at 2/s with burst 2 take at least 4 seconds of clock time."""
        clock = FakeClock()
        limiter = TokenBucketRateLimiter(capacity=2, rate_per_second=2.0, clock=clock, sleep=clock.sleep)
        start = clock.now

        for _ in range(10):
            assert limiter.wait_for_token(timeout=10)

        assert clock.now - start >= 4.0 - 1e-9

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            TokenBucketRateLimiter(capacity=1, rate_per_second=0)

    def test_concurrent_callers_never_exceed_capacity(self):
        """With a frozen clock only `capacity` tokens can ever be handed out."""
        clock = FakeClock()
        limiter = TokenBucketRateLimiter(capacity=5, rate_per_second=1.0, clock=clock, sleep=clock.sleep)
        granted = []
        lock = threading.Lock()

        def worker():
            for _ in range(20):
                ok, _, _ = limiter.acquire_token()
                if ok:
                    with lock:
                        granted.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(granted) == 5

    def test_reset_restores_capacity(self):
        clock = FakeClock()
        limiter = TokenBucketRateLimiter(capacity=2, rate_per_second=1.0, clock=clock, sleep=clock.sleep)
        limiter.acquire_token()
        limiter.acquire_token()

        limiter.reset()

        assert limiter.get_status()["available_tokens"] == 2


@pytest.mark.unit
class TestRedisTokenBucketRateLimiter:
    """Shared Redis bucket behavior (script mocked)."""

    def _limiter(self, script_result=None, script_error=None):
        mock_redis = MagicMock()
        script = MagicMock()
        if script_error is not None:
            script.side_effect = script_error
        else:
            script.return_value = script_result
        mock_redis.register_script.return_value = script
        return RedisTokenBucketRateLimiter(mock_redis, capacity=2, rate_per_second=2.0), mock_redis, script

    def test_acquire_parses_script_result(self):
        limiter, _, script = self._limiter(script_result=[1, "0", "1.0"])

        success, wait, remaining = limiter.acquire_token()

        assert success is True
        assert wait == 0.0
        assert remaining == 1.0
        assert script.call_args.kwargs["keys"] == [
            "inventory:rate_limiter:tokens",
            "inventory:rate_limiter:last_refill",
        ]

    def test_denied_returns_wait_time(self):
        limiter, _, _ = self._limiter(script_result=[0, "0.25", "0.5"])

        success, wait, _ = limiter.acquire_token()

        assert success is False
        assert wait == 0.25

    def test_fails_open_on_redis_error(self):
        limiter, _, _ = self._limiter(script_error=redis.ConnectionError("down"))

        success, wait, _ = limiter.acquire_token()

        assert success is True
        assert wait == 0.0

    def test_status_reports_error_when_redis_down(self):
        limiter, mock_redis, _ = self._limiter(script_result=[1, "0", "1"])
        mock_redis.get.side_effect = redis.ConnectionError("down")

        status = limiter.get_status()

        assert "error" in status


@pytest.mark.unit
class TestBuildRateLimiter:
    """Backend selection from settings."""

    def test_local_backend(self, mock_settings):
        settings = mock_settings.model_copy(update={"inventory_rate_limit_backend": "local"})
        assert isinstance(build_rate_limiter(settings), TokenBucketRateLimiter)

    def test_noop_backend(self, mock_settings):
        assert isinstance(build_rate_limiter(mock_settings), NoopRateLimiter)

    def test_redis_backend_uses_given_client(self, mock_settings):
        settings = mock_settings.model_copy(update={"inventory_rate_limit_backend": "redis"})
        mock_redis = MagicMock()

        limiter = build_rate_limiter(settings, redis_client=mock_redis)

        assert isinstance(limiter, RedisTokenBucketRateLimiter)
        mock_redis.register_script.assert_called_once()

    def test_unknown_backend_raises(self, mock_settings):
        settings = mock_settings.model_copy(update={"inventory_rate_limit_backend": "carrier-pigeon"})
        with pytest.raises(ValueError, match="Unknown rate limit backend"):
            build_rate_limiter(settings)
