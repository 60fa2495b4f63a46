"""
Pytest configuration and shared fixtures for inventory sync tests.

Provides chainable Supabase mocks, an in-memory monitor state store,
settings with test defaults, and sample inventory records.
Version: 1.0.0
"""
from typing import Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from inventory_sync.schemas.inventory import MonitorState


CHAIN_METHODS = (
    "select", "insert", "upsert", "update", "delete",
    "eq", "neq", "in_", "is_", "lt", "lte", "gt", "gte", "not_",
    "order", "limit", "range", "ilike", "or_",
)


def build_mock_table(data=None, count=0):
    """Chainable PostgREST query builder mock whose execute() returns data."""
    table = MagicMock()
    response = MagicMock()
    response.data = data if data is not None else []
    response.count = count
    for method in CHAIN_METHODS:
        getattr(table, method).return_value = table
    table.execute.return_value = response
    return table


def build_mock_supabase_client(table=None):
    """SupabaseClient wrapper mock whose .client.table() returns one chainable table."""
    wrapper = MagicMock()
    wrapper.client.table.return_value = table if table is not None else build_mock_table()
    return wrapper


class InMemoryMonitorStateStore:
    """MonitorStateStore stand-in that keeps states in a dict."""

    def __init__(self):
        self.states: Dict[str, MonitorState] = {}
        self.saves = 0

    def get_state(self, sku: str) -> Optional[MonitorState]:
        state = self.states.get(sku)
        return state.model_copy() if state else None

    def get_states(self, skus: List[str]) -> Dict[str, MonitorState]:
        return {sku: self.states[sku].model_copy() for sku in skus if sku in self.states}

    def list_active_states(self) -> List[MonitorState]:
        return [s.model_copy() for s in self.states.values() if s.state != "normal"]

    def save_state(self, state: MonitorState) -> None:
        self.saves += 1
        self.states[state.sku] = state.model_copy()


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_settings():
    """Settings object with test defaults (no real credentials)."""
    from inventory_sync.core.config import Settings
    return Settings(
        supabase_url="https://test.supabase.co",
        supabase_service_role_key="test-supabase-key",
        inventory_api_url="https://inventory.test/v1",
        inventory_api_username="sync-user",
        inventory_api_password="sync-pass",
        inventory_api_page_size=100,
        inventory_rate_limit_backend="noop",
        inventory_max_retries=3,
        inventory_retry_base_delay=1.0,
        inventory_retry_max_delay=30.0,
        inventory_rate_limit_default_wait=30.0,
        inventory_rate_limit_max_wait=120.0,
        redis_url="redis://localhost:6379/15",
    )


# ---------------------------------------------------------------------------
# Supabase (mocked)
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_table():
    return build_mock_table()


@pytest.fixture
def mock_supabase_client(mock_table):
    """Mocked SupabaseClient whose every table() call returns mock_table."""
    return build_mock_supabase_client(mock_table)


@pytest.fixture
def state_store():
    return InMemoryMonitorStateStore()


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_record():
    """Sample upstream inventory record (camelCase, as the API sends it)."""
    return {
        "productSku": "WF338109",
        "productName": "GASKET, O-RING",
        "quantityOnHand": 150,
        "reorderPoint": 20,
        "reorderQuantity": 100,
        "unitCost": 23.5,
        "vendor": "BDI",
        "location": "Dallas Central",
        "salesLast30Days": 12,
        "salesLast90Days": 40,
    }


def _make_record(sku: str, stock: int = 50, **overrides) -> dict:
    """Minimal snake_case upstream record."""
    record = {
        "sku": sku,
        "product_name": f"Item {sku}",
        "stock": stock,
        "reorder_point": 10,
        "reorder_quantity": 40,
        "cost": 5.0,
        "vendor": "ACME",
        "location": "Main",
    }
    record.update(overrides)
    return record


@pytest.fixture
def make_record():
    """Factory for minimal snake_case upstream records."""
    return _make_record


@pytest.fixture
def table_factory():
    """Factory for chainable Supabase table mocks."""
    return build_mock_table
