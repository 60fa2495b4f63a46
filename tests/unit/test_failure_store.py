"""
Unit tests for FailureStore — retry counting, cap, backoff, resolution.

Tests cover:
- First failure opens a row with retry_count 0
- Repeat failures increment retry_count, saturating at the cap
- Items at the cap are flagged for manual review
- Backoff gates retry eligibility
- Successful writes resolve open failures

Version: 1.0.0
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from postgrest.exceptions import APIError

from inventory_sync.core.constants.sync import MAX_ERROR_MESSAGE_LENGTH
from inventory_sync.core.exceptions import DatabaseTransientError
from inventory_sync.db.failure_store import RESOLVE_CHUNK_SIZE, FailureStore
from inventory_sync.schemas.inventory import FailedItem

NOW = datetime(2025, 6, 2, 12, 0, tzinfo=timezone.utc)


def _open_row(retry_count=0, **extra):
    row = {
        "id": 7,
        "sku": "SKU-1",
        "sync_id": "run-0",
        "error_message": "boom",
        "retry_count": retry_count,
        "last_retry_at": None,
        "resolved_at": None,
        "created_at": (NOW - timedelta(hours=1)).isoformat(),
        "metadata": {"first_sync_id": "run-0"},
    }
    row.update(extra)
    return row


def _store(mock_supabase_client, retry_cap=10):
    return FailureStore(mock_supabase_client, retry_cap=retry_cap, backoff_base_minutes=5, backoff_max_minutes=1440)


@pytest.mark.unit
class TestRecordFailure:
    def test_first_failure_inserts_row(self, mock_supabase_client, mock_table):
        mock_table.execute.side_effect = [MagicMock(data=[]), MagicMock(data=[])]

        item = _store(mock_supabase_client).record_failure("SKU-1", "run-1", "bad record", now=NOW)

        inserted = mock_table.insert.call_args.args[0]
        assert inserted["retry_count"] == 0
        assert inserted["sync_id"] == "run-1"
        assert item.retry_count == 0
        assert item.is_open

    def test_concurrent_insert_counts_as_retry(self, mock_supabase_client, mock_table):
        mock_table.execute.side_effect = [
            MagicMock(data=[]),
            APIError({"message": "duplicate key value", "code": "23505"}),
            MagicMock(data=[_open_row(retry_count=0)]),
            MagicMock(data=[]),
        ]

        item = _store(mock_supabase_client).record_failure("SKU-1", "run-2", "bad again", now=NOW)

        assert item.retry_count == 1
        assert mock_table.update.call_args.args[0]["retry_count"] == 1
        mock_table.eq.assert_any_call("id", 7)

    def test_other_insert_error_is_transient(self, mock_supabase_client, mock_table):
        mock_table.execute.side_effect = [
            MagicMock(data=[]),
            APIError({"message": "timeout", "code": "57014"}),
        ]

        with pytest.raises(DatabaseTransientError):
            _store(mock_supabase_client).record_failure("SKU-1", "run-2", "bad", now=NOW)

    def test_repeat_failure_increments_retry_count(self, mock_supabase_client, mock_table):
        mock_table.execute.side_effect = [MagicMock(data=[_open_row(retry_count=2)]), MagicMock(data=[])]

        item = _store(mock_supabase_client).record_failure("SKU-1", "run-2", "still bad", now=NOW)

        payload = mock_table.update.call_args.args[0]
        assert payload["retry_count"] == 3
        assert payload["sync_id"] == "run-2"
        assert item.retry_count == 3
        assert not item.needs_review
        mock_table.insert.assert_not_called()

    def test_reaching_cap_flags_for_review(self, mock_supabase_client, mock_table):
        mock_table.execute.side_effect = [MagicMock(data=[_open_row(retry_count=9)]), MagicMock(data=[])]

        item = _store(mock_supabase_client).record_failure("SKU-1", "run-3", "nope", now=NOW)

        assert item.retry_count == 10
        assert item.needs_review

    def test_retry_count_never_exceeds_cap(self, mock_supabase_client, mock_table):
        mock_table.execute.side_effect = [
            MagicMock(data=[_open_row(retry_count=10, metadata={"needs_review": True})]),
            MagicMock(data=[]),
        ]

        item = _store(mock_supabase_client).record_failure("SKU-1", "run-4", "nope", now=NOW)

        assert item.retry_count == 10

    def test_configured_cap_is_clamped_to_hard_ceiling(self, mock_supabase_client):
        assert _store(mock_supabase_client, retry_cap=50).retry_cap == 10

    def test_error_message_truncated(self, mock_supabase_client, mock_table):
        mock_table.execute.side_effect = [MagicMock(data=[]), MagicMock(data=[])]

        _store(mock_supabase_client).record_failure("SKU-1", "run-1", "x" * 5000, now=NOW)

        assert len(mock_table.insert.call_args.args[0]["error_message"]) == MAX_ERROR_MESSAGE_LENGTH


@pytest.mark.unit
class TestResolution:
    def test_record_success_resolves_open_rows(self, mock_supabase_client, mock_table):
        mock_table.execute.return_value = MagicMock(data=[{"id": 1}, {"id": 2}])

        count = _store(mock_supabase_client).record_success("SKU-1", now=NOW)

        assert count == 2
        assert mock_table.update.call_args.args[0] == {"resolved_at": NOW.isoformat()}
        mock_table.is_.assert_called_with("resolved_at", "null")

    def test_record_successes_chunks(self, mock_supabase_client, mock_table):
        mock_table.execute.return_value = MagicMock(data=[{"id": 1}])
        skus = [f"S{i}" for i in range(RESOLVE_CHUNK_SIZE + 1)]

        count = _store(mock_supabase_client).record_successes(skus, now=NOW)

        assert count == 2
        assert mock_table.in_.call_count == 2

    def test_record_successes_empty(self, mock_supabase_client, mock_table):
        assert _store(mock_supabase_client).record_successes([]) == 0
        mock_table.update.assert_not_called()


@pytest.mark.unit
class TestRetryEligibility:
    def test_backoff_grows_and_caps(self, mock_supabase_client):
        store = _store(mock_supabase_client)
        assert store.backoff_minutes(0) == 5
        assert store.backoff_minutes(1) == 10
        assert store.backoff_minutes(3) == 40
        assert store.backoff_minutes(20) == 1440

    def test_eligible_after_backoff(self, mock_supabase_client):
        store = _store(mock_supabase_client)
        item = FailedItem(**_open_row(retry_count=1, last_retry_at=(NOW - timedelta(minutes=11)).isoformat()))
        assert store.is_eligible(item, NOW) is True

    def test_not_eligible_within_backoff(self, mock_supabase_client):
        store = _store(mock_supabase_client)
        item = FailedItem(**_open_row(retry_count=1, last_retry_at=(NOW - timedelta(minutes=9)).isoformat()))
        assert store.is_eligible(item, NOW) is False

    def test_not_eligible_at_cap(self, mock_supabase_client):
        store = _store(mock_supabase_client)
        assert store.is_eligible(FailedItem(**_open_row(retry_count=10)), NOW) is False

    def test_items_eligible_for_retry_dedupes_and_filters(self, mock_supabase_client, mock_table):
        mock_table.execute.return_value = MagicMock(data=[
            _open_row(id=1, sku="A"),
            _open_row(id=2, sku="A"),
            _open_row(id=3, sku="B", retry_count=2, last_retry_at=NOW.isoformat()),
        ])

        skus = _store(mock_supabase_client).items_eligible_for_retry(now=NOW)

        assert skus == ["A"]
        mock_table.lt.assert_called_with("retry_count", 10)

    def test_items_needing_review_query(self, mock_supabase_client, mock_table):
        mock_table.execute.return_value = MagicMock(data=[_open_row(retry_count=10, metadata={"needs_review": True})])

        items = _store(mock_supabase_client).items_needing_review()

        assert items[0].needs_review
        mock_table.gte.assert_called_with("retry_count", 10)

    def test_failure_summary(self, mock_supabase_client, mock_table):
        mock_table.execute.return_value = MagicMock(data=[_open_row(retry_count=10), _open_row(retry_count=1)])

        summary = _store(mock_supabase_client).get_failure_summary()

        assert summary == {"open": 2, "needs_review": 1, "retrying": 1}
