"""
Schedule helpers — time parsing, business hours, and backoff utilities.
Version: 1.0.0
"""
from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a Supabase timestamp (ISO string or datetime) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_business_hours(now: datetime, start_hour: int, end_hour: int) -> bool:
    """Check if now (UTC) falls on a weekday between start_hour and end_hour."""
    return now.weekday() < 5 and start_hour <= now.hour < end_hour


def calculate_retry_backoff_minutes(retry_count: int, base_minutes: int = 5, max_minutes: int = 1440) -> int:
    """Minutes to wait before the next retry using exponential backoff (capped)."""
    return min(base_minutes * (2 ** max(retry_count, 0)), max_minutes)
