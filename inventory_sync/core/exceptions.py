"""
Exception hierarchy for the inventory sync engine.

Two branches decide what a failure means for a run:
- RetryableError: the upstream API or catalog store may recover. Celery
  tasks retry on it, and the executor falls back to per-item writes.
- NonRetryableError: bad input, bad credentials or a conflicting run.
  The run is closed as error (or skipped) without another attempt.

Item-level problems are never raised past the executor; they become
FailedItem rows instead.
Version: 1.0.0
"""


class InventorySyncException(Exception):
    """Base exception for the inventory sync engine."""
    pass


# ============================================
# RETRYABLE ERRORS - Will trigger Celery retry
# ============================================
class RetryableError(InventorySyncException):
    """Transient failure; a later attempt may succeed."""
    pass


class ExternalAPIError(RetryableError):
    """
    Error from the upstream inventory API after client-side retries ran out.

    Typically transient - the external service might recover.
    """
    def __init__(self, service: str, message: str, status_code: int = None):
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service} API error: {message}")


class RateLimitError(RetryableError):
    """Upstream answered 429 after client retries; retry_after comes from Retry-After."""
    def __init__(self, service: str, retry_after: float = 60):
        self.service = service
        self.retry_after = retry_after
        super().__init__(f"{service} rate limited. Retry after {retry_after}s")


class ConnectionTimeoutError(RetryableError):
    """Connection or timeout error - typically transient."""
    pass


class DatabaseTransientError(RetryableError):
    """Catalog or ledger store unreachable, timed out, or returned a 5xx."""
    pass


# ============================================
# NON-RETRYABLE ERRORS - No automatic retry
# ============================================
class NonRetryableError(InventorySyncException):
    """Permanent failure; retrying with the same input cannot help."""
    pass


class ValidationError(NonRetryableError):
    """Invalid input data - retrying won't help."""
    pass


class AuthenticationError(NonRetryableError):
    """
    API authentication failed (401/403).

    Needs configuration fix, not retry.
    """
    pass


class UpstreamRequestError(NonRetryableError):
    """Upstream rejected the request or returned an unusable body."""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class SyncAlreadyRunningError(NonRetryableError):
    """Another run of the same kind holds the running slot."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"A {kind} sync is already running")


class SyncRunNotFoundError(NonRetryableError):
    """Sync run not found in the ledger."""
    pass


class AlertNotFoundError(NonRetryableError):
    """Alert not found."""
    pass


class ItemWriteError(NonRetryableError):
    """A single catalog item could not be written."""

    def __init__(self, sku: str, message: str):
        self.sku = sku
        super().__init__(f"{sku}: {message}")


class RunReclaimedError(NonRetryableError):
    """The run's ledger row was reclaimed as stale while the run was still working."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run {run_id} reclaimed as stale")
