"""
Dispatch locks and cancellation flags — Redis coordination between processes.

Two mechanisms:

1. Dispatch Idempotency Lock: Ensures only ONE scheduled dispatch per window,
   even when several beat instances or manual triggers overlap.
2. Cancellation Flags: An operator request to abort a running sync, set by
   the API process and polled by the worker executing the run.

Run exclusivity itself is enforced by the sync ledger, not by these locks.
Version: 1.0.0
"""
import logging
from typing import Optional

import redis

from inventory_sync.core.config import settings

logger = logging.getLogger(__name__)

_DISPATCH_LOCK_TTL = 240       # 4 min, shorter than the 5-min beat interval
_CANCEL_FLAG_TTL = 6 * 3600    # 6 hours


def _get_redis() -> redis.Redis:
    """Create a Redis client from the configured URL."""
    return redis.Redis.from_url(settings.redis_url, decode_responses=True)


# ── 1. Dispatch Idempotency Lock ────────────────────────────────────────────

def acquire_dispatch_lock(name: str, task_id: str = "unknown", ttl: int = _DISPATCH_LOCK_TTL) -> bool:
    """Acquire a named dispatch lock (SET NX EX).

    Returns True if lock was acquired (this task should proceed).
    Returns False if lock is already held (another dispatch is running).
    """
    r = _get_redis()
    key = f"dispatch_lock:{name}"

    acquired = r.set(key, task_id, nx=True, ex=ttl)

    if acquired:
        logger.info(f"Dispatch lock ACQUIRED: name={name}, task={task_id}, ttl={ttl}s")
    else:
        holder = r.get(key)
        logger.info(f"Dispatch lock HELD: name={name}, holder={holder}, skipping")

    return bool(acquired)


def release_dispatch_lock(name: str) -> None:
    """Release a named dispatch lock."""
    r = _get_redis()
    r.delete(f"dispatch_lock:{name}")
    logger.debug(f"Dispatch lock released: name={name}")


# ── 2. Cancellation Flags ──────────────────────────────────────────────────

def _cancel_key(run_id: str) -> str:
    return f"sync:cancel:{run_id}"


def request_cancellation(run_id: str, reason: str = "operator request") -> None:
    """Flag a running sync for cooperative cancellation."""
    r = _get_redis()
    r.set(_cancel_key(run_id), reason, ex=_CANCEL_FLAG_TTL)
    logger.info(f"Cancellation requested for run {run_id}: {reason}")


def get_cancellation_reason(run_id: str) -> Optional[str]:
    """Reason string if cancellation was requested for the run, else None."""
    r = _get_redis()
    return r.get(_cancel_key(run_id))


def clear_cancellation(run_id: str) -> None:
    r = _get_redis()
    r.delete(_cancel_key(run_id))
