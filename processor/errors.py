"""Exception hierarchy for the ingestion pipeline."""
from typing import Optional


class IngestionError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(IngestionError):
    """A required credential or URL is missing."""


class UpstreamFetchError(IngestionError):
    """A source fetch failed with a network error or non-2xx response."""

    def __init__(self, message: str, url: Optional[str] = None,
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class ValidationError(IngestionError):
    """Input rejected before it reaches the store."""


class EventNotFoundError(IngestionError):
    """No stored event with the requested id."""


class InvalidTransitionError(IngestionError):
    """Moderation action not allowed from the event's current status."""


class SyncRunFinalizedError(IngestionError):
    """A SyncRun was finalized more than once."""
