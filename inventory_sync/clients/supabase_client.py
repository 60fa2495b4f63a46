"""
Supabase client — process-wide handle to the catalog and ledger database.

One supabase-py Client per process; every store shares it through the
container. The PostgREST timeout bounds each catalog read and write so a
hung database surfaces as DatabaseTransientError instead of a stuck run.
Version: 1.0.0
"""
import logging

from supabase import Client, ClientOptions, create_client

from inventory_sync.core.config import Settings

logger = logging.getLogger("supabase_client")

# Table used for connectivity checks
PING_TABLE = "sync_logs"


class SupabaseClient:
    """Lazily created supabase-py client shared by all stores."""

    _instance: Client | None = None

    def __init__(self, settings: Settings) -> None:
        self._url = settings.supabase_url
        self._key = settings.supabase_service_role_key
        self._timeout = settings.supabase_timeout

        if not self._url or not self._key:
            raise RuntimeError(
                "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set for catalog access"
            )

    def get_client(self) -> Client:
        if SupabaseClient._instance is None:
            options = ClientOptions(postgrest_client_timeout=self._timeout)
            SupabaseClient._instance = create_client(self._url, self._key, options=options)
            logger.info(f"Supabase client initialized: url={self._url}, timeout={self._timeout}s")
        return SupabaseClient._instance

    @property
    def client(self) -> Client:
        return self.get_client()

    def ping(self) -> bool:
        """True if a one-row read of the ledger table succeeds."""
        try:
            self.client.table(PING_TABLE).select("id").limit(1).execute()
            return True
        except Exception as e:
            logger.warning(f"Supabase ping failed: {e}")
            return False
