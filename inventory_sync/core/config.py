import os
from typing import Optional
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel


load_dotenv()


class Settings(BaseModel):
    # Supabase
    supabase_url: str | None = os.getenv("SUPABASE_URL")
    supabase_service_role_key: str | None = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    supabase_timeout: float = float(os.getenv("SUPABASE_TIMEOUT", "30"))

    # Inventory API (upstream ERP)
    inventory_api_url: str = os.getenv("INVENTORY_API_URL", "https://api.inventory.example.com/v1")
    inventory_api_username: Optional[str] = os.getenv("INVENTORY_API_USERNAME")
    inventory_api_password: Optional[str] = os.getenv("INVENTORY_API_PASSWORD")
    inventory_api_page_size: int = int(os.getenv("INVENTORY_API_PAGE_SIZE", "100"))
    inventory_api_timeout: float = float(os.getenv("INVENTORY_API_TIMEOUT", "30"))

    # Rate limit: requests per second with a small burst
    inventory_rate_limit_per_second: float = float(os.getenv("INVENTORY_RATE_LIMIT_PER_SECOND", "2"))
    inventory_rate_limit_capacity: int = int(os.getenv("INVENTORY_RATE_LIMIT_CAPACITY", "2"))
    # "local" (in-process bucket) or "redis" (shared across worker processes)
    inventory_rate_limit_backend: str = os.getenv("INVENTORY_RATE_LIMIT_BACKEND", "redis")
    inventory_rate_limit_timeout: float = float(os.getenv("INVENTORY_RATE_LIMIT_TIMEOUT", "60"))

    # Upstream retry policy
    inventory_max_retries: int = int(os.getenv("INVENTORY_MAX_RETRIES", "3"))
    inventory_retry_base_delay: float = float(os.getenv("INVENTORY_RETRY_BASE_DELAY", "1.0"))
    inventory_retry_max_delay: float = float(os.getenv("INVENTORY_RETRY_MAX_DELAY", "30.0"))
    inventory_rate_limit_default_wait: float = float(os.getenv("INVENTORY_RATE_LIMIT_DEFAULT_WAIT", "30"))
    inventory_rate_limit_max_wait: float = float(os.getenv("INVENTORY_RATE_LIMIT_MAX_WAIT", "120"))

    # Redis
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Celery
    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", os.getenv("REDIS_URL", "redis://localhost:6379/0"))
    celery_result_backend: str = os.getenv("CELERY_RESULT_BACKEND", os.getenv("REDIS_URL", "redis://localhost:6379/0"))

    # Sync executor
    sync_enabled: bool = os.getenv("SYNC_ENABLED", "true").lower() == "true"
    sync_batch_size: int = int(os.getenv("SYNC_BATCH_SIZE", "50"))
    sync_max_workers: int = int(os.getenv("SYNC_MAX_WORKERS", "4"))
    sync_stale_run_minutes: int = int(os.getenv("SYNC_STALE_RUN_MINUTES", "30"))

    # Failure tracker
    sync_retry_cap: int = min(int(os.getenv("SYNC_RETRY_CAP", "10")), 10)
    sync_retry_backoff_base_minutes: int = int(os.getenv("SYNC_RETRY_BACKOFF_BASE_MINUTES", "5"))
    sync_retry_backoff_max_minutes: int = int(os.getenv("SYNC_RETRY_BACKOFF_MAX_MINUTES", "1440"))

    # Scheduler
    sync_urgent_staleness_minutes: int = int(os.getenv("SYNC_URGENT_STALENESS_MINUTES", "120"))
    sync_stale_hours: int = int(os.getenv("SYNC_STALE_HOURS", "24"))
    sync_smart_stale_fraction: float = float(os.getenv("SYNC_SMART_STALE_FRACTION", "0.2"))
    sync_full_interval_hours: int = int(os.getenv("SYNC_FULL_INTERVAL_HOURS", "24"))
    sync_business_hours_start: int = int(os.getenv("SYNC_BUSINESS_HOURS_START", "8"))
    sync_business_hours_end: int = int(os.getenv("SYNC_BUSINESS_HOURS_END", "17"))

    # Critical-item monitor
    monitor_low_stock_multiplier: float = float(os.getenv("MONITOR_LOW_STOCK_MULTIPLIER", "1.5"))
    monitor_price_change_percent: float = float(os.getenv("MONITOR_PRICE_CHANGE_PERCENT", "10"))


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = Settings()
