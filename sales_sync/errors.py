"""
Exception types raised by the sync engine.

Every stage raises one of these at the point of failure; the Lambda handlers
catch them once, log them, and collapse them into a JSON error payload.
"""

from typing import Any, Dict, Optional

# Upstream bodies can be whole HTML error pages
MAX_ERROR_BODY_CHARS = 500


def truncate_body(body: Optional[str], limit: int = MAX_ERROR_BODY_CHARS) -> str:
    """
    Trim an upstream response body for logs and error messages.

    Args:
        body: Raw response text (may be None)
        limit: Maximum number of characters to keep

    Returns:
        The body, cut to ``limit`` characters with a marker when shortened
    """
    if not body:
        return ""
    if len(body) <= limit:
        return body
    return f"{body[:limit]}...[truncated]"


class SalesSyncError(Exception):
    """Base class for all engine errors."""


class ConfigurationMissing(SalesSyncError):
    """A required secret or endpoint is not configured."""

    def __init__(self, names):
        self.names = list(names)
        super().__init__(
            f"Missing required environment variables: {', '.join(self.names)}"
        )


class CredentialMissing(SalesSyncError):
    """No stored bearer token exists for a service."""

    def __init__(self, service: str):
        self.service = service
        super().__init__(f"Missing {service} API key in credential store")


class UpstreamError(SalesSyncError):
    """A channel API answered with a non-success HTTP status."""

    def __init__(self, channel: str, status: int, body: Optional[str] = None):
        self.channel = channel
        self.status = status
        self.body = truncate_body(body)
        message = f"{channel} API responded with {status}"
        if self.body:
            message += f": {self.body}"
        super().__init__(message)


class UpstreamAuthError(UpstreamError):
    """The channel rejected the bearer token (401/403)."""


class PaginationLoop(SalesSyncError):
    """A continuation cursor was returned twice by the same query."""

    def __init__(self, channel: str, cursor: str):
        self.channel = channel
        self.cursor = cursor
        super().__init__(
            f"Pagination loop detected while fetching {channel}; cursor repeated: {cursor}"
        )


class PersistenceError(SalesSyncError):
    """The store rejected a read or write."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Store operation '{operation}' failed: {cause}")


class SourceFormatError(SalesSyncError):
    """An uploaded file does not have the expected layout."""


class SyncInProgress(SalesSyncError):
    """Another run of the same channel holds the sync lease."""

    def __init__(self, channel: str):
        self.channel = channel
        super().__init__(f"A {channel} sync is already running")


class SyncError(SalesSyncError):
    """
    Terminal failure of a sync run.

    Wraps the stage-local error with the stage it happened in, the channel,
    and whatever counts the run had accumulated by then.
    """

    def __init__(
        self,
        channel: str,
        stage: str,
        cause: Exception,
        counts: Optional[Dict[str, Any]] = None,
    ):
        self.channel = channel
        self.stage = stage
        self.cause = cause
        self.counts = dict(counts or {})
        super().__init__(str(cause))

    def describe(self) -> str:
        """Long form used in log lines."""
        counts = ", ".join(f"{key}={value}" for key, value in self.counts.items())
        return (
            f"{self.channel} sync failed while {self.stage}: {self.cause}"
            + (f" ({counts})" if counts else "")
        )
