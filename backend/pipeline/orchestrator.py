"""Aggregation orchestrator for the news backend.

Selects ready sources, fetches every active category through the source's
adapter, deduplicates candidates against the article store, persists the new
ones and records the fetch on the source.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

from backend.adapters.base import DEFAULT_MAX_CONCURRENT, JsonClient
from backend.adapters.factory import AdapterRegistry, build_adapter_registry
from backend.adapters.http import HttpClient
from backend.exceptions import DuplicateKeyError, SourceNotReadyError
from backend.pipeline.config import AggregationSettings
from backend.pipeline.dedup import Deduplicator, ExistsLookup
from backend.pipeline.registry import Clock, SourceRegistry
from backend.storage.db import DatabaseManager
from backend.storage.models import Article, Category, FetchResult, Source, utc_now

logger = logging.getLogger(__name__)


class AggregationOrchestrator:
    """Runs the aggregation pipeline over configured sources.

    Usage:
        orchestrator = AggregationOrchestrator.from_config(db, config)
        results = await orchestrator.run_all()
    """

    def __init__(
        self,
        db: DatabaseManager,
        adapters: AdapterRegistry,
        *,
        http_client: Optional[JsonClient] = None,
        clock: Clock = utc_now,
        max_concurrent_categories: int = DEFAULT_MAX_CONCURRENT,
        dedup_scope: str = "global",
        request_timeout: float = 30,
    ) -> None:
        self.db = db
        self.adapters = adapters
        self.http_client = http_client
        self.clock = clock
        self.max_concurrent_categories = max_concurrent_categories
        self.request_timeout = request_timeout
        self.registry = SourceRegistry(db, clock)
        self.deduplicator = Deduplicator(dedup_scope)

    @classmethod
    def from_config(
        cls,
        db: DatabaseManager,
        config: Dict[str, Any],
        *,
        http_client: Optional[JsonClient] = None,
        clock: Clock = utc_now,
    ) -> AggregationOrchestrator:
        settings = AggregationSettings.from_config(config)
        return cls(
            db,
            build_adapter_registry(config),
            http_client=http_client,
            clock=clock,
            max_concurrent_categories=settings.max_concurrent_categories,
            dedup_scope=settings.external_id_scope,
            request_timeout=settings.request_timeout_seconds,
        )

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[JsonClient]:
        """Yield the injected client, or an HttpClient that lives for one run."""
        if self.http_client is not None:
            yield self.http_client
            return
        async with HttpClient(timeout=self.request_timeout) as client:
            yield client

    async def run_all(self, force: bool = False, limit: Optional[int] = None) -> List[FetchResult]:
        """Process every ready source (every enabled source when forced).

        A failing source is recorded as an unsuccessful FetchResult and never
        stops the run.
        """
        if force:
            sources = await self.registry.active_sources(limit)
        else:
            sources = await self.registry.ready_sources(limit)
        if not sources:
            logger.info("No sources ready for fetching")
            return []

        logger.info("Found %d sources ready for fetching", len(sources))
        categories = await self.registry.active_categories()
        self.deduplicator.reset()
        results: List[FetchResult] = []

        async with self._client() as client:
            for source in sources:
                t0 = time.monotonic()
                try:
                    result = await self._process_source(source, categories, client)
                except Exception as e:
                    logger.error("Failed to fetch from source %s: %s", source.name, e)
                    result = FetchResult(
                        source=source.name,
                        slug=source.slug,
                        success=False,
                        count=0,
                        message=str(e) or type(e).__name__,
                        duration_seconds=time.monotonic() - t0,
                    )
                results.append(result)

        logger.info(
            "Aggregation complete: %d sources, %d succeeded, %d articles inserted",
            len(results),
            sum(1 for r in results if r.success),
            sum(r.count for r in results if r.success),
        )
        return results

    async def run_one(
        self,
        source_or_slug: Union[Source, str],
        force: bool = True,
    ) -> FetchResult:
        """Process exactly one source.

        Disabled sources are refused. The fetch interval is only enforced
        when ``force`` is False. Configuration and unexpected errors
        propagate to the caller.
        """
        if isinstance(source_or_slug, Source):
            source = source_or_slug
        else:
            source = await self.registry.get(source_or_slug)

        if not source.enabled:
            raise SourceNotReadyError(source, f"News source '{source.name}' is not active")
        if not force and not source.is_ready(self.clock()):
            raise SourceNotReadyError(
                source,
                f"News source '{source.name}' is not ready for fetching yet",
                next_fetch_at=source.next_fetch_at(),
            )

        categories = await self.registry.active_categories()
        self.deduplicator.reset()
        async with self._client() as client:
            return await self._process_source(source, categories, client)

    def _lookup_for(self, source: Source) -> ExistsLookup:
        source_id = source.id if self.deduplicator.scope == "source" else None

        async def exists(url: str, external_id: Optional[str]) -> bool:
            return await self.db.article_exists(url, external_id, source_id=source_id)

        return exists

    async def _process_source(
        self,
        source: Source,
        categories: Sequence[Category],
        client: JsonClient,
    ) -> FetchResult:
        """Fetch, deduplicate and persist one source; always marks it fetched."""
        t0 = time.monotonic()
        result = FetchResult(source=source.name, slug=source.slug)
        error: Optional[str] = None
        logger.info("Fetching from %s (%d categories)", source.name, len(categories))

        try:
            adapter = self.adapters.get(source.slug)
            now = self.clock()
            batches = await adapter.fetch(
                client, source, categories, now, self.max_concurrent_categories
            )

            lookup = self._lookup_for(source)
            for category, candidates in batches:
                result.fetched += len(candidates)
                for candidate in candidates:
                    if not await self.deduplicator.accept(candidate, lookup, source):
                        result.duplicates += 1
                        continue
                    article = Article.from_candidate(candidate, source, category, now)
                    try:
                        await self.db.insert_article(article)
                    except DuplicateKeyError:
                        # Another writer stored the url after our existence check
                        result.duplicates += 1
                        continue
                    result.count += 1
        except BaseException as e:
            error = str(e) or type(e).__name__
            raise
        finally:
            await self.registry.mark_fetched(source, error=error)

        result.success = True
        result.message = f"Fetched {result.count} articles from {source.name}"
        result.duration_seconds = time.monotonic() - t0
        logger.info(
            "Source %s: fetched=%d, inserted=%d, dups=%d",
            source.slug, result.fetched, result.count, result.duplicates,
        )
        return result
