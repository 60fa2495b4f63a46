"""
Failure Tracker — persistent per-item sync failures with bounded retries.

Provides database operations for the failed_items table:
- One open (unresolved) failure row per SKU, updated on repeat failures
- Retry counting with a hard cap; items at the cap need manual review
- Exponential backoff between automatic retries
- Resolution on the next successful sync of the SKU

Configuration (via settings singleton):
    sync_retry_cap: Maximum retry_count before manual review (default: 10)
    sync_retry_backoff_base_minutes: Backoff after the first failure (default: 5)
    sync_retry_backoff_max_minutes: Backoff ceiling (default: 1440)
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import httpx
from postgrest.exceptions import APIError

from inventory_sync.core.config import settings
from inventory_sync.core.constants.sync import (
    FAILED_ITEMS_TABLE,
    MAX_ERROR_MESSAGE_LENGTH,
    MAX_RETRY_CAP,
    UNIQUE_VIOLATION_CODE,
)
from inventory_sync.core.exceptions import DatabaseTransientError
from inventory_sync.db.base_store import BaseStore
from inventory_sync.clients.supabase_client import SupabaseClient
from inventory_sync.schemas.inventory import FailedItem
from inventory_sync.utils.schedule_helpers import calculate_retry_backoff_minutes, utc_now

logger = logging.getLogger("failure_store")

RESOLVE_CHUNK_SIZE = 200


class FailureStore(BaseStore):
    """Database operations for per-item sync failures."""

    def __init__(
        self,
        supabase_client: Optional[SupabaseClient] = None,
        retry_cap: int = settings.sync_retry_cap,
        backoff_base_minutes: int = settings.sync_retry_backoff_base_minutes,
        backoff_max_minutes: int = settings.sync_retry_backoff_max_minutes,
    ):
        super().__init__(supabase_client)
        self.retry_cap = min(retry_cap, MAX_RETRY_CAP)
        self._backoff_base = backoff_base_minutes
        self._backoff_max = backoff_max_minutes

    def _get_open_failure(self, sku: str) -> Optional[FailedItem]:
        result = self._execute(
            self.client.table(FAILED_ITEMS_TABLE)
            .select("*")
            .eq("sku", sku)
            .is_("resolved_at", "null")
            .order("created_at", desc=True)
            .limit(1),
            f"get open failure {sku}",
        )
        return FailedItem(**result.data[0]) if result.data else None

    def record_failure(
        self,
        sku: str,
        run_id: str,
        error: str,
        now: Optional[datetime] = None,
    ) -> FailedItem:
        """
        Record a failed sync attempt for a SKU.

        The first failure opens a row with retry_count 0. Each later failure
        of the same open row counts as a failed retry; the count saturates
        at the cap and the row is flagged for manual review.

        Args:
            sku: Item SKU
            run_id: Sync run that produced the failure
            error: Error description
            now: Failure time (defaults to current UTC time)

        Returns:
            The stored FailedItem
        """
        now = now or utc_now()
        message = str(error)[:MAX_ERROR_MESSAGE_LENGTH]
        existing = self._get_open_failure(sku)

        if existing is None:
            row = {
                "sku": sku,
                "sync_id": run_id,
                "error_message": message,
                "retry_count": 0,
                "created_at": now.isoformat(),
                "metadata": {"first_sync_id": run_id},
            }
            try:
                result = self.client.table(FAILED_ITEMS_TABLE).insert(row).execute()
            except APIError as e:
                if getattr(e, "code", None) != UNIQUE_VIOLATION_CODE:
                    raise DatabaseTransientError(f"Supabase insert failure {sku} failed: {e}") from e
                # Another run opened the row first
                existing = self._get_open_failure(sku)
                if existing is None:
                    raise DatabaseTransientError(f"Open failure for {sku} vanished after conflict") from e
                logger.info(f"Concurrent failure insert for {sku}; counting as a retry")
            except httpx.HTTPError as e:
                raise DatabaseTransientError(f"Supabase insert failure {sku} failed: {e}") from e
            else:
                logger.info(f"Recorded new failure for {sku} (run {run_id}): {message[:120]}")
                return FailedItem(**(result.data[0] if result.data else row))

        return self._record_retry(existing, run_id, message, now)

    def _record_retry(self, existing: FailedItem, run_id: str, message: str, now: datetime) -> FailedItem:
        sku = existing.sku
        retry_count = min(existing.retry_count + 1, self.retry_cap)
        metadata = dict(existing.metadata)
        if retry_count >= self.retry_cap:
            metadata["needs_review"] = True
            logger.warning(
                f"Item {sku} reached the retry cap ({self.retry_cap}); "
                f"excluded from automatic retry and flagged for manual review"
            )

        update = {
            "sync_id": run_id,
            "error_message": message,
            "retry_count": retry_count,
            "last_retry_at": now.isoformat(),
            "metadata": metadata,
        }
        result = self._execute(
            self.client.table(FAILED_ITEMS_TABLE).update(update).eq("id", existing.id),
            f"update failure {sku}",
        )

        logger.info(f"Recorded failed retry {retry_count}/{self.retry_cap} for {sku}")
        if result.data:
            return FailedItem(**result.data[0])
        return existing.model_copy(update={**update, "last_retry_at": now})

    def record_success(self, sku: str, now: Optional[datetime] = None) -> int:
        """
        Resolve every open failure for a SKU.

        Returns:
            Number of failure rows resolved
        """
        now = now or utc_now()
        result = self._execute(
            self.client.table(FAILED_ITEMS_TABLE)
            .update({"resolved_at": now.isoformat()})
            .eq("sku", sku)
            .is_("resolved_at", "null"),
            f"resolve failures {sku}",
        )
        count = len(result.data) if result.data else 0
        if count:
            logger.info(f"Resolved {count} open failure(s) for {sku}")
        return count

    def record_successes(self, skus: List[str], now: Optional[datetime] = None) -> int:
        """Resolve open failures for a batch of written SKUs in one statement per chunk."""
        pending = sorted(set(skus))
        if not pending:
            return 0

        now = now or utc_now()
        count = 0
        for i in range(0, len(pending), RESOLVE_CHUNK_SIZE):
            result = self._execute(
                self.client.table(FAILED_ITEMS_TABLE)
                .update({"resolved_at": now.isoformat()})
                .in_("sku", pending[i:i + RESOLVE_CHUNK_SIZE])
                .is_("resolved_at", "null"),
                "resolve failures",
            )
            count += len(result.data) if result.data else 0

        if count:
            logger.info(f"Resolved {count} open failure(s) after successful writes")
        return count

    def backoff_minutes(self, retry_count: int) -> int:
        return calculate_retry_backoff_minutes(retry_count, self._backoff_base, self._backoff_max)

    def is_eligible(self, item: FailedItem, now: datetime) -> bool:
        """Open, under the cap, and past its backoff window."""
        if not item.is_open or item.retry_count >= self.retry_cap:
            return False
        last_attempt = item.last_retry_at or item.created_at
        if last_attempt is None:
            return True
        return now >= last_attempt + timedelta(minutes=self.backoff_minutes(item.retry_count))

    def get_open_failures(self, limit: int = 500) -> List[FailedItem]:
        result = self._execute(
            self.client.table(FAILED_ITEMS_TABLE)
            .select("*")
            .is_("resolved_at", "null")
            .order("created_at")
            .limit(limit),
            "get open failures",
        )
        return [FailedItem(**row) for row in result.data or []]

    def items_eligible_for_retry(self, now: Optional[datetime] = None, limit: int = 500) -> List[str]:
        """
        SKUs whose open failure is under the cap and past its backoff.

        Returns:
            List of SKUs ready for an automatic retry
        """
        now = now or utc_now()
        result = self._execute(
            self.client.table(FAILED_ITEMS_TABLE)
            .select("*")
            .is_("resolved_at", "null")
            .lt("retry_count", self.retry_cap)
            .order("created_at")
            .limit(limit),
            "get retry candidates",
        )

        skus: List[str] = []
        seen = set()
        for row in result.data or []:
            item = FailedItem(**row)
            if item.sku not in seen and self.is_eligible(item, now):
                seen.add(item.sku)
                skus.append(item.sku)

        logger.debug(f"{len(skus)} failed items eligible for retry")
        return skus

    def items_needing_review(self, limit: int = 500) -> List[FailedItem]:
        """Open failures that hit the retry cap (no further automatic retry)."""
        result = self._execute(
            self.client.table(FAILED_ITEMS_TABLE)
            .select("*")
            .is_("resolved_at", "null")
            .gte("retry_count", self.retry_cap)
            .order("last_retry_at", desc=True)
            .limit(limit),
            "get items needing review",
        )
        return [FailedItem(**row) for row in result.data or []]

    def count_open_failures(self) -> int:
        result = self._execute(
            self.client.table(FAILED_ITEMS_TABLE)
            .select("id", count="exact")
            .is_("resolved_at", "null")
            .limit(1),
            "count open failures",
        )
        return result.count or 0

    def get_failure_summary(self) -> Dict[str, int]:
        """Counts for the status endpoint."""
        open_items = self.get_open_failures()
        needs_review = sum(1 for item in open_items if item.retry_count >= self.retry_cap)
        return {
            "open": len(open_items),
            "needs_review": needs_review,
            "retrying": len(open_items) - needs_review,
        }
