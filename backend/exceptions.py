"""Error taxonomy for the aggregation pipeline."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from backend.storage.models import Source


class AggregationError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(AggregationError):
    """Raised when a source cannot be processed because of configuration (e.g. no adapter)."""


class TransientProviderError(AggregationError):
    """Raised when one provider request fails: timeout, HTTP error status or malformed body."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class SourceNotFoundError(AggregationError):
    """Raised when no source is registered under the requested slug."""


class SourceNotReadyError(AggregationError):
    """Raised when a source is disabled or its fetch interval has not elapsed."""

    def __init__(
        self,
        source: "Source",
        message: str,
        next_fetch_at: Optional[datetime] = None,
    ) -> None:
        super().__init__(message)
        self.source = source
        self.next_fetch_at = next_fetch_at


class DuplicateKeyError(AggregationError):
    """Raised by the store when an insert violates a uniqueness constraint."""
