"""
Error hierarchy for the live feed core.

Every error raised by the core inherits from LiveFeedError so callers can
catch the whole family with one except clause:

    LiveFeedError
      ├── SourceFetchError           content source failed (transient)
      ├── EnrichmentTimeout          scoring model did not answer in time
      ├── MatchingDegradation        similarity could not be computed
      ├── PersistenceFailure         durable store write failed or timed out
      ├── ConfirmationRequiredError  destructive call without confirm=True
      ├── ThreadArchivedError        append to a thread that is archived
      └── ConfigurationError         unusable configuration
"""
from typing import Optional


class LiveFeedError(Exception):
    """Base exception for all live feed errors."""

    def __init__(
        self,
        message: str,
        *,
        item_id: Optional[str] = None,
        stage: Optional[str] = None,
    ):
        self.item_id = item_id
        self.stage = stage
        super().__init__(message)

    def user_message(self) -> str:
        """Human readable message passed to observers."""
        return str(self)


class SourceFetchError(LiveFeedError):
    """Raised when a content source cannot deliver items."""

    def __init__(
        self,
        origin: str,
        reason: str,
        *,
        rate_limited: bool = False,
        status_code: Optional[int] = None,
    ):
        self.origin = origin
        self.reason = reason
        self.rate_limited = rate_limited
        self.status_code = status_code
        super().__init__(f"Failed to fetch r/{origin}: {reason}", stage="fetch")

    def user_message(self) -> str:
        if self.rate_limited:
            return f"Source r/{self.origin} is rate limited, will retry on the next fetch"
        return f"Could not load posts from r/{self.origin}"


class EnrichmentTimeout(LiveFeedError):
    """Raised when the scoring model exceeds its timeout."""

    def __init__(self, item_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Enrichment of {item_id} exceeded {timeout:.1f}s",
            item_id=item_id,
            stage="enrich",
        )


class MatchingDegradation(LiveFeedError):
    """Raised when thread similarity cannot be computed for an item."""

    def __init__(self, item_id: str, reason: str):
        self.reason = reason
        super().__init__(
            f"Thread matching degraded for {item_id}: {reason}",
            item_id=item_id,
            stage="match",
        )


class PersistenceFailure(LiveFeedError):
    """Raised when a durable store operation fails or times out."""

    def __init__(self, operation: str, reason: str, *, item_id: Optional[str] = None):
        self.operation = operation
        self.reason = reason
        super().__init__(
            f"Persistence failure during {operation}: {reason}",
            item_id=item_id,
            stage="persist",
        )

    def user_message(self) -> str:
        return "Some items could not be saved and may disappear after a restart"


class ConfirmationRequiredError(LiveFeedError):
    """Raised when a destructive bulk operation is called without confirmation."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Must confirm {operation}", stage="admin")


class ThreadArchivedError(LiveFeedError):
    """Raised when a member is appended to an archived thread."""

    def __init__(self, thread_id: str, item_id: str):
        self.thread_id = thread_id
        super().__init__(
            f"Thread {thread_id} is archived and cannot accept {item_id}",
            item_id=item_id,
            stage="match",
        )


class ConfigurationError(LiveFeedError):
    """Raised when the configuration makes an operation impossible."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message, stage="config")
