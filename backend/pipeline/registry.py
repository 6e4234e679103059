"""Source registry: readiness selection and fetch bookkeeping."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional

from backend.exceptions import SourceNotFoundError
from backend.storage.db import DatabaseManager
from backend.storage.models import Category, Source, utc_now

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class SourceRegistry:
    """Read access to configured sources/categories plus the one mutation the
    pipeline performs on them: recording that a source was fetched."""

    def __init__(self, db: DatabaseManager, clock: Clock = utc_now) -> None:
        self.db = db
        self.clock = clock

    async def ready_sources(self, limit: Optional[int] = None) -> List[Source]:
        """Enabled sources whose fetch interval has elapsed, in id order."""
        now = self.clock()
        sources = [s for s in await self.db.get_sources(enabled_only=True) if s.is_ready(now)]
        return sources if limit is None else sources[:limit]

    async def active_sources(self, limit: Optional[int] = None) -> List[Source]:
        """Enabled sources regardless of readiness, in id order."""
        sources = await self.db.get_sources(enabled_only=True)
        return sources if limit is None else sources[:limit]

    async def get(self, slug: str) -> Source:
        source = await self.db.get_source(slug)
        if source is None:
            raise SourceNotFoundError(f"News source '{slug}' not found")
        return source

    async def active_categories(self) -> List[Category]:
        return await self.db.get_categories(active_only=True)

    async def mark_fetched(
        self,
        source: Source,
        at: Optional[datetime] = None,
        error: Optional[str] = None,
    ) -> None:
        """Record a fetch attempt, successful or not."""
        if source.id is None:
            raise ValueError(f"Source '{source.slug}' must be stored before it is fetched")
        at = at or self.clock()
        await self.db.mark_source_fetched(source.id, at, error=error)
        source.last_fetched_at = at
        source.last_error = error
        source.error_count = source.error_count + 1 if error else 0
        logger.debug("Marked %s fetched at %s", source.slug, at.isoformat())
