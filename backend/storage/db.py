"""Async SQLite store for sources, categories and articles (FTS5, WAL mode)."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import aiosqlite

from backend.exceptions import DuplicateKeyError
from backend.storage.migrations import apply_migrations
from backend.storage.models import Article, Category, Source, canonical_url, ensure_utc

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20


class DatabaseManager:
    """Async SQLite manager for the article store.

    Usage:
        db = DatabaseManager("data/news.db")
        await db.initialize()
        # ... use db ...
        await db.close()
    """

    def __init__(self, db_path: str, cache_size_mb: int = 64):
        self.db_path = db_path
        self.cache_size_mb = cache_size_mb
        self._conn: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create database, apply migrations, and configure pragmas."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        apply_migrations(self.db_path)

        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row

        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute(f"PRAGMA cache_size=-{self.cache_size_mb * 1000}")
        await self._conn.execute("PRAGMA synchronous=NORMAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")

        logger.info("Database initialized: %s", self.db_path)

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Acquire write lock and begin a transaction."""
        assert self._conn is not None, "Database not initialized"
        async with self._write_lock:
            await self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
                await self._conn.commit()
            except Exception:
                await self._conn.rollback()
                raise

    # --- Sources ---

    async def upsert_source(self, source: Source) -> Source:
        """Insert or update a source from configuration. Fetch status is left untouched."""
        async with self._transaction() as conn:
            await conn.execute(
                """INSERT INTO sources
                       (slug, name, api_url, api_key, config, language, country,
                        enabled, fetch_interval_minutes)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(slug) DO UPDATE SET
                       name=excluded.name,
                       api_url=excluded.api_url,
                       api_key=excluded.api_key,
                       config=excluded.config,
                       language=excluded.language,
                       country=excluded.country,
                       enabled=excluded.enabled,
                       fetch_interval_minutes=excluded.fetch_interval_minutes""",
                source.to_row(),
            )
        stored = await self.get_source(source.slug)
        assert stored is not None
        return stored

    async def get_source(self, slug: str) -> Optional[Source]:
        """Get a source by slug."""
        assert self._conn is not None
        cursor = await self._conn.execute(
            "SELECT * FROM sources WHERE slug = ?", (slug,)
        )
        row = await cursor.fetchone()
        return Source.from_row(dict(row)) if row else None

    async def get_sources(self, enabled_only: bool = False) -> List[Source]:
        """Get sources in id order."""
        assert self._conn is not None
        sql = "SELECT * FROM sources"
        if enabled_only:
            sql += " WHERE enabled = 1"
        cursor = await self._conn.execute(sql + " ORDER BY id")
        rows = await cursor.fetchall()
        return [Source.from_row(dict(r)) for r in rows]

    async def mark_source_fetched(
        self,
        source_id: int,
        fetched_at: datetime,
        error: Optional[str] = None,
    ) -> None:
        """Record a fetch attempt. An error increments error_count, success resets it."""
        ts = ensure_utc(fetched_at).isoformat()
        async with self._transaction() as conn:
            if error:
                await conn.execute(
                    """UPDATE sources
                       SET last_fetched_at = ?, last_error = ?, error_count = error_count + 1
                       WHERE id = ?""",
                    (ts, error, source_id),
                )
            else:
                await conn.execute(
                    """UPDATE sources
                       SET last_fetched_at = ?, last_error = NULL, error_count = 0
                       WHERE id = ?""",
                    (ts, source_id),
                )

    # --- Categories ---

    async def upsert_category(self, category: Category) -> Category:
        """Insert or update a category by slug."""
        async with self._transaction() as conn:
            await conn.execute(
                """INSERT INTO categories (name, slug, description, enabled, sort_order)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(slug) DO UPDATE SET
                       name=excluded.name,
                       description=excluded.description,
                       enabled=excluded.enabled,
                       sort_order=excluded.sort_order""",
                category.to_row(),
            )
        assert self._conn is not None
        cursor = await self._conn.execute(
            "SELECT * FROM categories WHERE slug = ?", (category.slug,)
        )
        row = await cursor.fetchone()
        return Category.from_row(dict(row))

    async def get_categories(self, active_only: bool = True) -> List[Category]:
        """Get categories ordered by sort_order, then name."""
        assert self._conn is not None
        sql = "SELECT * FROM categories"
        if active_only:
            sql += " WHERE enabled = 1"
        cursor = await self._conn.execute(sql + " ORDER BY sort_order, name")
        rows = await cursor.fetchall()
        return [Category.from_row(dict(r)) for r in rows]

    # --- Articles ---

    async def insert_article(self, article: Article) -> int:
        """Insert one article and return its id.

        Raises DuplicateKeyError when the url (raw or canonical) is already stored.
        """
        try:
            async with self._transaction() as conn:
                cursor = await conn.execute(
                    """INSERT INTO articles
                       (title, description, content, url, url_canonical, image_url, author, published_at,
                        source_id, category_id, external_id, metadata, active, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, COALESCE(?, CURRENT_TIMESTAMP))""",
                    article.to_row(),
                )
                article_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e).upper():
                raise DuplicateKeyError(f"Article already stored: {article.url}") from e
            raise
        article.id = article_id
        return article_id

    async def article_exists(
        self,
        url: str,
        external_id: Optional[str] = None,
        source_id: Optional[int] = None,
    ) -> bool:
        """Check for a stored article matching the canonical url or the external id.

        With source_id the external id only matches articles of that source.
        """
        assert self._conn is not None
        sql = "SELECT 1 FROM articles WHERE url_canonical = ?"
        params: list = [canonical_url(url)]
        if external_id:
            if source_id is not None:
                sql += " OR (external_id = ? AND source_id = ?)"
                params.extend([external_id, source_id])
            else:
                sql += " OR external_id = ?"
                params.append(external_id)
        cursor = await self._conn.execute(sql + " LIMIT 1", params)
        return await cursor.fetchone() is not None

    async def get_article(self, article_id: int) -> Optional[Article]:
        """Get an article by id."""
        assert self._conn is not None
        cursor = await self._conn.execute(
            "SELECT * FROM articles WHERE id = ?", (article_id,)
        )
        row = await cursor.fetchone()
        return Article.from_row(dict(row)) if row else None

    async def count_articles(self, source_id: Optional[int] = None) -> int:
        """Count articles, optionally filtered by source."""
        assert self._conn is not None
        if source_id is not None:
            cursor = await self._conn.execute(
                "SELECT COUNT(*) FROM articles WHERE source_id = ?", (source_id,)
            )
        else:
            cursor = await self._conn.execute("SELECT COUNT(*) FROM articles")
        row = await cursor.fetchone()
        return row[0] if row else 0

    def _filters(
        self,
        category: Optional[str],
        source: Optional[str],
        since: Optional[datetime],
        active_only: bool,
    ) -> Tuple[List[str], list]:
        conditions: List[str] = []
        params: list = []
        if category:
            conditions.append("c.slug = ?")
            params.append(category)
        if source:
            conditions.append("s.slug = ?")
            params.append(source)
        if since:
            conditions.append("a.published_at >= ?")
            params.append(ensure_utc(since).isoformat())
        if active_only:
            conditions.append("a.active = 1")
        return conditions, params

    async def list_articles(
        self,
        category: Optional[str] = None,
        source: Optional[str] = None,
        since: Optional[datetime] = None,
        active_only: bool = True,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> List[Article]:
        """List articles newest first, filtered by category/source slug and date."""
        assert self._conn is not None
        conditions, params = self._filters(category, source, since, active_only)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.extend([limit, offset])
        cursor = await self._conn.execute(
            f"""SELECT a.* FROM articles a
                JOIN sources s ON s.id = a.source_id
                JOIN categories c ON c.id = a.category_id
                {where}
                ORDER BY a.published_at DESC, a.id DESC
                LIMIT ? OFFSET ?""",
            params,
        )
        rows = await cursor.fetchall()
        return [Article.from_row(dict(r)) for r in rows]

    async def search_articles(
        self,
        query: str,
        category: Optional[str] = None,
        source: Optional[str] = None,
        since: Optional[datetime] = None,
        active_only: bool = True,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> List[Article]:
        """Full-text search over title, description and content, BM25-ranked."""
        assert self._conn is not None
        conditions, params = self._filters(category, source, since, active_only)
        conditions.insert(0, "articles_fts MATCH ?")
        params.insert(0, query)
        params.extend([limit, offset])

        t0 = time.monotonic()
        cursor = await self._conn.execute(
            f"""SELECT a.*, bm25(articles_fts, 1.0, 0.5, 0.25) AS rank
                FROM articles_fts
                JOIN articles a ON a.id = articles_fts.rowid
                JOIN sources s ON s.id = a.source_id
                JOIN categories c ON c.id = a.category_id
                WHERE {' AND '.join(conditions)}
                ORDER BY rank
                LIMIT ? OFFSET ?""",
            params,
        )
        rows = await cursor.fetchall()
        logger.debug(
            "FTS search for %r: %d results in %.3fs", query, len(rows), time.monotonic() - t0
        )
        return [Article.from_row(dict(r)) for r in rows]

    async def count_search(
        self,
        query: str,
        category: Optional[str] = None,
        source: Optional[str] = None,
        since: Optional[datetime] = None,
        active_only: bool = True,
    ) -> int:
        """Count FTS matches under the same filters as search_articles (for pagination)."""
        assert self._conn is not None
        conditions, params = self._filters(category, source, since, active_only)
        conditions.insert(0, "articles_fts MATCH ?")
        params.insert(0, query)
        cursor = await self._conn.execute(
            f"""SELECT COUNT(*) FROM articles_fts
                JOIN articles a ON a.id = articles_fts.rowid
                JOIN sources s ON s.id = a.source_id
                JOIN categories c ON c.id = a.category_id
                WHERE {' AND '.join(conditions)}""",
            params,
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def delete_articles_older_than(self, cutoff: datetime) -> int:
        """Delete articles published before cutoff. Returns number deleted."""
        async with self._transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM articles WHERE published_at < ?",
                (ensure_utc(cutoff).isoformat(),),
            )
            deleted = cursor.rowcount
        logger.info("Deleted %d articles published before %s", deleted, cutoff.isoformat())
        return deleted

    # --- Maintenance ---

    async def vacuum(self) -> None:
        """Run VACUUM to reclaim space."""
        assert self._conn is not None
        async with self._write_lock:
            await self._conn.execute("VACUUM")

    async def integrity_check(self) -> bool:
        assert self._conn is not None
        cursor = await self._conn.execute("PRAGMA integrity_check")
        row = await cursor.fetchone()
        return row is not None and row[0] == "ok"

    async def get_stats(self) -> Dict[str, Any]:
        """Get database statistics."""
        assert self._conn is not None
        stats: Dict[str, Any] = {}

        for key, table in (
            ("total_articles", "articles"),
            ("total_sources", "sources"),
            ("total_categories", "categories"),
        ):
            cursor = await self._conn.execute(f"SELECT COUNT(*) FROM {table}")
            row = await cursor.fetchone()
            stats[key] = row[0] if row else 0

        cursor = await self._conn.execute(
            """SELECT c.name AS name, COUNT(*) AS cnt FROM articles a
               JOIN categories c ON c.id = a.category_id
               GROUP BY c.name ORDER BY cnt DESC"""
        )
        stats["articles_by_category"] = {r["name"]: r["cnt"] for r in await cursor.fetchall()}

        cursor = await self._conn.execute(
            """SELECT s.name AS name, COUNT(*) AS cnt FROM articles a
               JOIN sources s ON s.id = a.source_id
               GROUP BY s.name ORDER BY cnt DESC"""
        )
        stats["articles_by_source"] = {r["name"]: r["cnt"] for r in await cursor.fetchall()}

        cursor = await self._conn.execute(
            "SELECT page_count * page_size as size FROM pragma_page_count(), pragma_page_size()"
        )
        row = await cursor.fetchone()
        stats["db_size_bytes"] = row[0] if row else 0

        return stats
