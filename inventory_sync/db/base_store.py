"""
Base store — shared Supabase client access for all stores.

All domain-specific stores inherit from this class to get lazy client
creation and uniform translation of Supabase failures into the sync
engine's exception hierarchy.
Version: 1.0.0
"""

import logging
from typing import Any

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from inventory_sync.core.config import settings
from inventory_sync.core.exceptions import DatabaseTransientError
from inventory_sync.clients.supabase_client import SupabaseClient

logger = logging.getLogger("base_store")


class BaseStore:
    """Base class for all Supabase stores."""

    def __init__(self, supabase_client: SupabaseClient | None = None) -> None:
        self._supabase_client = supabase_client

    @property
    def client(self) -> Client:
        """Get or create Supabase client."""
        if self._supabase_client is None:
            self._supabase_client = SupabaseClient(settings)
        return self._supabase_client.client

    def _execute(self, query: Any, action: str) -> Any:
        """
        Execute a PostgREST query builder.

        Raises:
            DatabaseTransientError: Supabase rejected the query or was unreachable
        """
        try:
            return query.execute()
        except APIError as e:
            logger.info("supabase error action=%s detail=%s", action, str(e))
            raise DatabaseTransientError(f"Supabase {action} failed: {e}") from e
        except httpx.HTTPError as e:
            logger.warning("supabase unreachable action=%s detail=%s", action, str(e))
            raise DatabaseTransientError(f"Supabase {action} failed: {e}") from e
