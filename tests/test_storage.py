"""Tests for the storage layer: schema, migrations, models, database manager."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from backend.exceptions import DuplicateKeyError
from backend.storage.db import DatabaseManager
from backend.storage.migrations import apply_migrations, get_current_version, pending_migrations
from backend.storage.models import (
    AggregationSummary,
    Article,
    CandidateArticle,
    Category,
    FetchResult,
    Source,
)

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


# --- Fixtures ---

@pytest.fixture
def tmp_db(tmp_path):
    """Return a path to a temporary database file."""
    return str(tmp_path / "test.db")


@pytest.fixture
async def db(tmp_db):
    """Return an initialized DatabaseManager."""
    manager = DatabaseManager(tmp_db)
    await manager.initialize()
    yield manager
    await manager.close()


def make_source(slug: str = "guardian", **kwargs) -> Source:
    return Source(
        slug=slug,
        name=kwargs.pop("name", slug.title()),
        api_url=kwargs.pop("api_url", f"https://{slug}.example.com"),
        **kwargs,
    )


def make_article(
    source: Source,
    category: Category,
    url: str = "https://example.com/article-1",
    title: str = "Test Article",
    description: str = "A test article about technology.",
    external_id: str = None,
    published_at: datetime = NOW,
) -> Article:
    return Article(
        title=title,
        description=description,
        url=url,
        published_at=published_at,
        source_id=source.id,
        category_id=category.id,
        external_id=external_id,
        metadata={"raw": True},
    )


@pytest.fixture
async def seeded(db):
    """Store one source and two categories."""
    source = await db.upsert_source(make_source())
    tech = await db.upsert_category(Category(name="Technology", slug="technology", sort_order=1))
    business = await db.upsert_category(Category(name="Business", slug="business", sort_order=2))
    return source, tech, business


# --- Schema & Migration Tests ---

class TestMigrations:
    def test_apply_migrations_creates_tables(self, tmp_db):
        version = apply_migrations(tmp_db)
        assert version >= 1

        conn = sqlite3.connect(tmp_db)
        tables = {
            r[0]
            for r in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }
        conn.close()

        assert {"sources", "categories", "articles", "articles_fts", "schema_version"} <= tables

    def test_idempotent_migrations(self, tmp_db):
        v1 = apply_migrations(tmp_db)
        v2 = apply_migrations(tmp_db)
        assert v1 == v2

    def test_get_current_version(self, tmp_db):
        conn = sqlite3.connect(tmp_db)
        assert get_current_version(conn) == 0
        conn.close()

        apply_migrations(tmp_db)
        conn = sqlite3.connect(tmp_db)
        assert get_current_version(conn) >= 1
        conn.close()

    def test_no_pending_after_apply(self, tmp_db):
        apply_migrations(tmp_db)
        conn = sqlite3.connect(tmp_db)
        assert pending_migrations(conn) == []
        indexes = {
            r[0]
            for r in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='index'"
            ).fetchall()
        }
        conn.close()
        assert "idx_articles_source_external" in indexes

    def test_url_is_unique_at_storage_level(self, tmp_db):
        apply_migrations(tmp_db)
        conn = sqlite3.connect(tmp_db)
        conn.execute("INSERT INTO sources (slug, name, api_url) VALUES ('s', 'S', 'u')")
        conn.execute("INSERT INTO categories (name, slug) VALUES ('C', 'c')")
        insert = (
            "INSERT INTO articles (title, url, url_canonical, published_at, source_id, category_id, external_id) "
            "VALUES (?, ?, ?, '2026-01-01', 1, 1, ?)"
        )
        conn.execute(insert, ("a", "https://x/1", "https://x/1", "same-id"))
        # external_id is not unique in the schema
        conn.execute(insert, ("b", "https://x/2", "https://x/2", "same-id"))
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(insert, ("c", "https://x/1", "https://x/3", None))
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(insert, ("d", "https://x/4", "https://x/2", None))
        conn.close()


# --- Model Tests ---

class TestSourceReadiness:
    def test_never_fetched_is_ready(self):
        assert make_source(last_fetched_at=None).is_ready(NOW)

    def test_disabled_is_never_ready(self):
        assert not make_source(enabled=False).is_ready(NOW)
        assert not make_source(enabled=False, last_fetched_at=NOW - timedelta(days=30)).is_ready(NOW)

    @pytest.mark.parametrize(
        "elapsed_minutes, ready",
        [(0, False), (59, False), (60, True), (61, True), (24 * 60, True)],
    )
    def test_ready_iff_interval_elapsed(self, elapsed_minutes, ready):
        source = make_source(
            fetch_interval_minutes=60,
            last_fetched_at=NOW - timedelta(minutes=elapsed_minutes),
        )
        assert source.is_ready(NOW) is ready

    def test_next_fetch_at(self):
        source = make_source(fetch_interval_minutes=90, last_fetched_at=NOW)
        assert source.next_fetch_at() == NOW + timedelta(minutes=90)
        assert make_source().next_fetch_at() is None

    def test_from_config(self):
        source = Source.from_config({
            "slug": "bbc",
            "name": "BBC News",
            "api_url": "https://newsapi.org/v2/",
            "api_key": "",
            "config": {"sources": "bbc-news"},
            "fetch_interval_minutes": 90,
        })
        assert source.slug == "bbc"
        assert source.api_url == "https://newsapi.org/v2"
        assert source.api_key is None
        assert source.config == {"sources": "bbc-news"}
        assert source.fetch_interval_minutes == 90
        assert source.enabled is True


class TestModels:
    def test_category_from_config_derives_slug(self):
        category = Category.from_config({"name": "World News"})
        assert category.slug == "world-news"
        assert category.enabled is True

    def test_article_from_candidate(self):
        source = make_source(id=3)
        category = Category(name="Technology", slug="technology", id=7)
        candidate = CandidateArticle(
            title="T", description="D", url="https://x/1", published_at=NOW, external_id="e1"
        )
        article = Article.from_candidate(candidate, source, category, NOW)
        assert article.source_id == 3
        assert article.category_id == 7
        assert article.external_id == "e1"
        assert article.created_at == NOW
        assert article.active is True

    def test_article_from_candidate_requires_stored_refs(self):
        candidate = CandidateArticle(title="T", description="D", url="https://x/1", published_at=NOW)
        category = Category(name="Technology", slug="technology", id=7)
        with pytest.raises(ValueError):
            Article.from_candidate(candidate, make_source(), category, NOW)

    def test_article_canonical_url(self):
        article = Article(
            title="T",
            description="D",
            url="https://www.Example.com/a/?utm_source=tw&id=3#top",
            published_at=NOW,
            source_id=1,
            category_id=1,
        )
        assert article.url_canonical == "https://example.com/a?id=3"

    def test_aggregation_summary(self):
        summary = AggregationSummary.from_results([
            FetchResult(source="a", slug="a", success=True, count=5, duplicates=1, fetched=6),
            FetchResult(source="b", slug="b", success=False, count=0, message="boom"),
            FetchResult(source="c", slug="c", success=True, count=2, fetched=2),
        ])
        assert summary.successful == 2
        assert summary.failed == 1
        assert summary.total_inserted == 7
        assert summary.total_fetched == 8
        assert summary.total_duplicates == 1


# --- Database Manager Tests ---

class TestSources:
    @pytest.mark.asyncio
    async def test_upsert_and_get_source(self, db):
        stored = await db.upsert_source(make_source(config={"endpoints": {"search": "/search"}}))
        assert stored.id is not None

        retrieved = await db.get_source("guardian")
        assert retrieved is not None
        assert retrieved.config == {"endpoints": {"search": "/search"}}
        assert retrieved.last_fetched_at is None

    @pytest.mark.asyncio
    async def test_get_source_missing(self, db):
        assert await db.get_source("nope") is None

    @pytest.mark.asyncio
    async def test_get_sources_enabled_only(self, db):
        await db.upsert_source(make_source("a"))
        await db.upsert_source(make_source("b", enabled=False))
        await db.upsert_source(make_source("c"))

        assert [s.slug for s in await db.get_sources()] == ["a", "b", "c"]
        assert [s.slug for s in await db.get_sources(enabled_only=True)] == ["a", "c"]

    @pytest.mark.asyncio
    async def test_mark_source_fetched(self, db):
        source = await db.upsert_source(make_source())
        await db.mark_source_fetched(source.id, NOW)

        retrieved = await db.get_source("guardian")
        assert retrieved.last_fetched_at == NOW
        assert retrieved.last_error is None
        assert retrieved.error_count == 0

    @pytest.mark.asyncio
    async def test_mark_source_fetched_with_error(self, db):
        source = await db.upsert_source(make_source())
        await db.mark_source_fetched(source.id, NOW, error="timeout")
        await db.mark_source_fetched(source.id, NOW, error="timeout")

        retrieved = await db.get_source("guardian")
        assert retrieved.last_error == "timeout"
        assert retrieved.error_count == 2

        await db.mark_source_fetched(source.id, NOW)
        retrieved = await db.get_source("guardian")
        assert retrieved.last_error is None
        assert retrieved.error_count == 0

    @pytest.mark.asyncio
    async def test_upsert_keeps_fetch_status(self, db):
        source = await db.upsert_source(make_source())
        await db.mark_source_fetched(source.id, NOW)

        await db.upsert_source(make_source(name="The Guardian", fetch_interval_minutes=30))
        retrieved = await db.get_source("guardian")
        assert retrieved.name == "The Guardian"
        assert retrieved.fetch_interval_minutes == 30
        assert retrieved.last_fetched_at == NOW

    @pytest.mark.asyncio
    async def test_zero_interval_survives_roundtrip(self, db):
        source = await db.upsert_source(make_source(fetch_interval_minutes=0))
        await db.mark_source_fetched(source.id, NOW)

        retrieved = await db.get_source("guardian")
        assert retrieved.fetch_interval_minutes == 0
        assert retrieved.is_ready(NOW)


class TestCategories:
    @pytest.mark.asyncio
    async def test_active_categories_ordered(self, db):
        await db.upsert_category(Category(name="Sports", slug="sports", sort_order=3))
        await db.upsert_category(Category(name="Technology", slug="technology", sort_order=1))
        await db.upsert_category(Category(name="Hidden", slug="hidden", enabled=False))

        active = await db.get_categories()
        assert [c.slug for c in active] == ["technology", "sports"]
        assert len(await db.get_categories(active_only=False)) == 3

    @pytest.mark.asyncio
    async def test_upsert_category_updates(self, db):
        first = await db.upsert_category(Category(name="Tech", slug="technology"))
        second = await db.upsert_category(Category(name="Technology", slug="technology"))
        assert first.id == second.id
        assert second.name == "Technology"


class TestArticles:
    @pytest.mark.asyncio
    async def test_insert_article(self, db, seeded):
        source, tech, _ = seeded
        article_id = await db.insert_article(make_article(source, tech))
        assert article_id > 0

        retrieved = await db.get_article(article_id)
        assert retrieved.title == "Test Article"
        assert retrieved.published_at == NOW
        assert retrieved.metadata == {"raw": True}
        assert await db.count_articles() == 1
        assert await db.count_articles(source.id) == 1

    @pytest.mark.asyncio
    async def test_insert_duplicate_url_raises(self, db, seeded):
        source, tech, business = seeded
        await db.insert_article(make_article(source, tech))
        with pytest.raises(DuplicateKeyError):
            await db.insert_article(make_article(source, business, title="Other"))
        assert await db.count_articles() == 1

    @pytest.mark.asyncio
    async def test_tracking_variant_of_stored_url(self, db, seeded):
        source, tech, _ = seeded
        await db.insert_article(make_article(source, tech, url="https://example.com/a"))
        variant = "https://www.example.com/a/?utm_source=tw"

        assert await db.article_exists(variant)
        with pytest.raises(DuplicateKeyError):
            await db.insert_article(make_article(source, tech, url=variant))
        assert await db.count_articles() == 1

    @pytest.mark.asyncio
    async def test_article_exists_by_url_or_external_id(self, db, seeded):
        source, tech, _ = seeded
        await db.insert_article(make_article(source, tech, external_id="ext-1"))

        assert await db.article_exists("https://example.com/article-1")
        assert await db.article_exists("https://example.com/other", "ext-1")
        assert not await db.article_exists("https://example.com/other", "ext-2")
        assert not await db.article_exists("https://example.com/other", None)

    @pytest.mark.asyncio
    async def test_article_exists_scoped_to_source(self, db, seeded):
        source, tech, _ = seeded
        other = await db.upsert_source(make_source("nytimes"))
        await db.insert_article(make_article(source, tech, external_id="42"))

        assert await db.article_exists("https://x/new", "42", source_id=source.id)
        assert not await db.article_exists("https://x/new", "42", source_id=other.id)
        # url matches regardless of scope
        assert await db.article_exists("https://example.com/article-1", None, source_id=other.id)

    @pytest.mark.asyncio
    async def test_list_articles_filters_and_pagination(self, db, seeded):
        source, tech, business = seeded
        for i in range(5):
            await db.insert_article(make_article(
                source, tech, url=f"https://x/tech-{i}", published_at=NOW - timedelta(hours=i)
            ))
        await db.insert_article(make_article(
            source, business, url="https://x/biz", published_at=NOW - timedelta(days=3)
        ))

        page1 = await db.list_articles(limit=2)
        assert [a.url for a in page1] == ["https://x/tech-0", "https://x/tech-1"]
        page2 = await db.list_articles(limit=2, offset=2)
        assert [a.url for a in page2] == ["https://x/tech-2", "https://x/tech-3"]

        assert len(await db.list_articles(category="business")) == 1
        assert len(await db.list_articles(source="guardian", limit=100)) == 6
        recent = await db.list_articles(since=NOW - timedelta(days=1), limit=100)
        assert all(a.category_id == tech.id for a in recent)

    @pytest.mark.asyncio
    async def test_delete_articles_older_than(self, db, seeded):
        source, tech, _ = seeded
        await db.insert_article(make_article(source, tech, url="https://x/new"))
        await db.insert_article(make_article(
            source, tech, url="https://x/old", published_at=NOW - timedelta(days=40)
        ))

        deleted = await db.delete_articles_older_than(NOW - timedelta(days=30))
        assert deleted == 1
        assert [a.url for a in await db.list_articles()] == ["https://x/new"]


class TestSearch:
    @pytest.mark.asyncio
    async def test_basic_search(self, db, seeded):
        source, tech, business = seeded
        await db.insert_article(make_article(
            source, tech, url="https://x/llm",
            title="Large language models reshape search",
            description="Chatbots everywhere.",
        ))
        await db.insert_article(make_article(
            source, business, url="https://x/markets",
            title="Markets rally on rate cut",
            description="Stocks climb.",
        ))

        results = await db.search_articles("language")
        assert [a.url for a in results] == ["https://x/llm"]
        assert await db.count_search("markets") == 1

    @pytest.mark.asyncio
    async def test_search_with_category_filter(self, db, seeded):
        source, tech, business = seeded
        await db.insert_article(make_article(source, tech, url="https://x/1", title="Chip earnings"))
        await db.insert_article(make_article(source, business, url="https://x/2", title="Chip tariffs"))

        results = await db.search_articles("chip", category="business")
        assert len(results) == 1
        assert results[0].url == "https://x/2"

    @pytest.mark.asyncio
    async def test_count_search_applies_filters(self, db, seeded):
        source, tech, business = seeded
        for i in range(5):
            category = business if i < 3 else tech
            await db.insert_article(make_article(
                source, category, url=f"https://x/climate-{i}", title=f"Climate report {i}",
                published_at=NOW - timedelta(days=i),
            ))

        assert await db.count_search("climate") == 5
        assert await db.count_search("climate", category="business") == 3
        assert await db.count_search("climate", source="nytimes") == 0
        assert await db.count_search("climate", since=NOW - timedelta(days=1, hours=1)) == 2

    @pytest.mark.asyncio
    async def test_deleted_articles_leave_index(self, db, seeded):
        source, tech, _ = seeded
        await db.insert_article(make_article(
            source, tech, url="https://x/old", title="Obsolete gadget",
            published_at=NOW - timedelta(days=90),
        ))
        await db.delete_articles_older_than(NOW - timedelta(days=30))
        assert await db.search_articles("gadget") == []


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_integrity_check(self, db):
        assert await db.integrity_check() is True

    @pytest.mark.asyncio
    async def test_vacuum(self, db):
        await db.vacuum()

    @pytest.mark.asyncio
    async def test_get_stats(self, db, seeded):
        source, tech, _ = seeded
        await db.insert_article(make_article(source, tech))
        stats = await db.get_stats()
        assert stats["total_articles"] == 1
        assert stats["total_sources"] == 1
        assert stats["total_categories"] == 2
        assert stats["articles_by_category"] == {"Technology": 1}
        assert stats["articles_by_source"] == {"Guardian": 1}
