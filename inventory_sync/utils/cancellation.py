"""
Cancellation tokens — cooperative abort signals for sync runs.

The executor polls its token before each page fetch and each batch. A
token is bound to the run id once the run has been claimed.
Version: 1.0.0
"""
import logging
import threading
from typing import Optional

import redis

from inventory_sync.utils.dispatch_lock import get_cancellation_reason

logger = logging.getLogger(__name__)


class CancellationToken:
    """Never-cancelled token; base for the other implementations."""

    def bind(self, run_id: str) -> None:
        pass

    def is_cancelled(self) -> bool:
        return False

    @property
    def reason(self) -> Optional[str]:
        return None


class LocalCancellationToken(CancellationToken):
    """In-process token backed by a threading.Event."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        self._reason = reason
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason


class RedisCancellationToken(CancellationToken):
    """Token that checks the Redis cancellation flag of its run."""

    def __init__(self) -> None:
        self._run_id: Optional[str] = None
        self._reason: Optional[str] = None

    @property
    def run_id(self) -> Optional[str]:
        return self._run_id

    def bind(self, run_id: str) -> None:
        self._run_id = run_id

    def is_cancelled(self) -> bool:
        if self._reason is not None:
            return True
        if self._run_id is None:
            return False
        try:
            self._reason = get_cancellation_reason(self._run_id)
        except redis.RedisError as e:
            logger.warning(f"Could not read cancellation flag for run {self._run_id}: {e}")
            return False
        return self._reason is not None

    @property
    def reason(self) -> Optional[str]:
        return self._reason
