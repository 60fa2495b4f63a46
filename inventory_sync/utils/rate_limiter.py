"""
Inventory API Rate Limiter using Token Bucket Algorithm.

Every outbound call to the inventory API acquires a token first. The
limiter is an explicit object owned by the InventoryClient and shared by
every executor worker, so concurrent callers cannot collectively exceed
the ceiling.

Implementations:
- TokenBucketRateLimiter: in-process bucket guarded by a threading.Lock
- RedisTokenBucketRateLimiter: bucket shared across worker processes,
  stored in Redis and updated by an atomic Lua script
- NoopRateLimiter: never waits (tests)

Token Bucket Configuration (defaults):
- Capacity: 2 tokens (max burst)
- Refill Rate: 2 tokens per second

Usage:
    from inventory_sync.utils.rate_limiter import build_rate_limiter

    limiter = build_rate_limiter(settings)
    limiter.wait_for_token()  # Blocks until token available
    # Now safe to call the inventory API
"""

import logging
import threading
import time
from typing import Callable, Optional, Tuple

import redis

from inventory_sync.core.config import Settings

logger = logging.getLogger("rate_limiter")

# Redis key prefix for the inventory API rate limiter
REDIS_KEY_PREFIX = "inventory:rate_limiter"

# Token bucket configuration
DEFAULT_CAPACITY = 2           # Max tokens (burst capacity)
DEFAULT_RATE_PER_SECOND = 2.0  # Tokens added per second

# Lua script for atomic token acquisition across processes
ACQUIRE_TOKEN_SCRIPT = """
local tokens_key = KEYS[1]
local last_refill_key = KEYS[2]
local capacity = tonumber(ARGV[1])
local tokens_per_second = tonumber(ARGV[2])
local now = tonumber(ARGV[3])

-- Get current state (default to full bucket)
local tokens = tonumber(redis.call('GET', tokens_key) or capacity)
local last_refill = tonumber(redis.call('GET', last_refill_key) or now)

-- Calculate tokens to add based on elapsed time
local elapsed = math.max(0, now - last_refill)
tokens = math.min(capacity, tokens + elapsed * tokens_per_second)

-- Update last refill time
redis.call('SET', last_refill_key, now)

-- Try to acquire token
if tokens >= 1 then
    tokens = tokens - 1
    redis.call('SET', tokens_key, tokens)
    return {1, '0', tostring(tokens)}
else
    local wait_time = (1 - tokens) / tokens_per_second
    redis.call('SET', tokens_key, tokens)
    return {0, tostring(wait_time), tostring(tokens)}
end
"""


class RateLimiter:
    """Interface shared by every limiter implementation."""

    def acquire_token(self) -> Tuple[bool, float, float]:
        raise NotImplementedError

    def wait_for_token(self, timeout: float = 60.0) -> bool:
        """
        Block until a token is acquired or timeout is reached.

        Args:
            timeout: Maximum seconds to wait for a token

        Returns:
            True if token was acquired, False if timeout reached
        """
        start_time = self._now()

        while True:
            success, wait_time, _remaining = self.acquire_token()

            if success:
                return True

            elapsed = self._now() - start_time
            if elapsed + wait_time > timeout:
                logger.warning(
                    f"Token acquisition timeout after {elapsed:.2f}s. "
                    f"Would need to wait {wait_time:.2f}s more."
                )
                return False

            actual_wait = min(wait_time, timeout - elapsed)
            logger.debug(f"Waiting {actual_wait:.3f}s for next token...")
            self._sleep(actual_wait)

    def get_status(self) -> dict:
        raise NotImplementedError

    def reset(self) -> None:
        raise NotImplementedError

    def _now(self) -> float:
        return time.monotonic()

    def _sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class TokenBucketRateLimiter(RateLimiter):
    """
    In-process token bucket.

    One instance is shared by all threads of a worker. The bucket state is
    only touched while holding the lock.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        rate_per_second: float = DEFAULT_RATE_PER_SECOND,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be positive")
        self._capacity = capacity
        self._rate = rate_per_second
        self._clock = clock
        self._sleeper = sleep
        self._lock = threading.Lock()
        self._tokens = float(capacity)
        self._last_refill = clock()

        logger.info(
            f"TokenBucketRateLimiter initialized: capacity={capacity}, "
            f"rate={rate_per_second}/s"
        )

    def _now(self) -> float:
        return self._clock()

    def _sleep(self, seconds: float) -> None:
        self._sleeper(seconds)

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(float(self._capacity), self._tokens + elapsed * self._rate)
        self._last_refill = now

    def acquire_token(self) -> Tuple[bool, float, float]:
        """
        Try to acquire a token from the bucket.

        Returns:
            Tuple of (success, wait_time_seconds, remaining_tokens)
        """
        with self._lock:
            self._refill(self._clock())
            if self._tokens >= 1:
                self._tokens -= 1
                return True, 0.0, self._tokens
            wait_time = (1 - self._tokens) / self._rate
            return False, wait_time, self._tokens

    def get_status(self) -> dict:
        with self._lock:
            self._refill(self._clock())
            return {
                "backend": "local",
                "available_tokens": self._tokens,
                "capacity": self._capacity,
                "refill_rate_per_second": self._rate,
            }

    def reset(self) -> None:
        with self._lock:
            self._tokens = float(self._capacity)
            self._last_refill = self._clock()


class RedisTokenBucketRateLimiter(RateLimiter):
    """
    Global rate limiter for the inventory API stored in Redis.

    Ensures the upstream ceiling is never exceeded across all Celery
    workers and API processes. The bucket is updated by an atomic Lua
    script, so concurrent acquisitions never double-spend a token.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        capacity: int = DEFAULT_CAPACITY,
        rate_per_second: float = DEFAULT_RATE_PER_SECOND,
        key_prefix: str = REDIS_KEY_PREFIX,
    ):
        """
        Initialize the rate limiter.

        Args:
            redis_client: Redis client instance
            capacity: Maximum tokens (burst capacity)
            rate_per_second: Tokens added per second
            key_prefix: Redis key prefix for this limiter
        """
        self._redis = redis_client
        self._capacity = capacity
        self._rate = rate_per_second
        self._tokens_key = f"{key_prefix}:tokens"
        self._last_refill_key = f"{key_prefix}:last_refill"

        # Register Lua script
        self._acquire_script = self._redis.register_script(ACQUIRE_TOKEN_SCRIPT)

        logger.info(
            f"RedisTokenBucketRateLimiter initialized: capacity={capacity}, "
            f"rate={rate_per_second}/s"
        )

    def acquire_token(self) -> Tuple[bool, float, float]:
        """
        Try to acquire a token from the shared bucket.

        Returns:
            Tuple of (success, wait_time_seconds, remaining_tokens)
        """
        now = time.time()

        try:
            result = self._acquire_script(
                keys=[self._tokens_key, self._last_refill_key],
                args=[self._capacity, self._rate, now],
            )

            success = bool(int(result[0]))
            wait_time = float(result[1])
            remaining = float(result[2])

            if success:
                logger.debug(f"Token acquired. Remaining: {remaining:.2f}")
            else:
                logger.debug(f"No token available. Wait time: {wait_time:.2f}s")

            return success, wait_time, remaining

        except redis.RedisError as e:
            logger.error(f"Redis error in acquire_token: {e}")
            # Fail open: a Redis outage must not halt every sync
            return True, 0.0, 0.0

    def get_available_tokens(self) -> float:
        """Snapshot of available tokens (for monitoring)."""
        try:
            tokens = self._redis.get(self._tokens_key)
            if tokens is None:
                return float(self._capacity)
            return float(tokens)
        except redis.RedisError as e:
            logger.error(f"Redis error in get_available_tokens: {e}")
            return 0.0

    def reset(self) -> None:
        """Reset the bucket to full capacity."""
        try:
            self._redis.set(self._tokens_key, self._capacity)
            self._redis.set(self._last_refill_key, time.time())
            logger.info("Rate limiter reset to full capacity")
        except redis.RedisError as e:
            logger.error(f"Redis error in reset: {e}")

    def get_status(self) -> dict:
        """Current rate limiter status (for the status endpoint)."""
        try:
            tokens = self.get_available_tokens()
            last_refill = self._redis.get(self._last_refill_key)
            last_refill_time = float(last_refill) if last_refill else None

            return {
                "backend": "redis",
                "available_tokens": tokens,
                "capacity": self._capacity,
                "refill_rate_per_second": self._rate,
                "last_refill_timestamp": last_refill_time,
                "tokens_key": self._tokens_key,
            }
        except redis.RedisError as e:
            logger.error(f"Redis error in get_status: {e}")
            return {"error": str(e)}


class NoopRateLimiter(RateLimiter):
    """Limiter that never waits."""

    def acquire_token(self) -> Tuple[bool, float, float]:
        return True, 0.0, float("inf")

    def get_status(self) -> dict:
        return {"backend": "noop"}

    def reset(self) -> None:
        pass


def build_rate_limiter(settings: Settings, redis_client: Optional[redis.Redis] = None) -> RateLimiter:
    """
    Create the limiter configured by INVENTORY_RATE_LIMIT_BACKEND.

    Args:
        settings: Application settings
        redis_client: Optional Redis client (created from REDIS_URL if omitted)

    Returns:
        RateLimiter instance
    """
    backend = settings.inventory_rate_limit_backend.lower()
    capacity = settings.inventory_rate_limit_capacity
    rate = settings.inventory_rate_limit_per_second

    if backend == "redis":
        client = redis_client or redis.from_url(settings.redis_url)
        return RedisTokenBucketRateLimiter(client, capacity=capacity, rate_per_second=rate)
    if backend == "local":
        return TokenBucketRateLimiter(capacity=capacity, rate_per_second=rate)
    if backend == "noop":
        return NoopRateLimiter()

    raise ValueError(f"Unknown rate limit backend: {settings.inventory_rate_limit_backend}")
