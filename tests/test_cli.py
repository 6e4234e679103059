"""Tests for the click CLI."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
import yaml
from click.testing import CliRunner

from backend.pipeline.cli import cli
from backend.storage.db import DatabaseManager
from backend.storage.models import Article


@pytest.fixture
def paths(tmp_path):
    """Config with one source that has no adapter and one disabled source."""
    config = {
        "database": {"path": str(tmp_path / "data" / "news.db")},
        "categories": ["Technology", "Business"],
        "sources": [
            {
                "slug": "broken-source",
                "name": "Broken Source",
                "api_url": "https://broken.example.com",
                "fetch_interval_minutes": 60,
            },
            {
                "slug": "nytimes",
                "name": "New York Times",
                "api_url": "https://api.nytimes.com",
                "enabled": False,
            },
        ],
    }
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.dump(config))
    return {"config": str(config_path), "db": str(tmp_path / "data" / "news.db")}


def invoke(paths, *args):
    runner = CliRunner()
    return runner.invoke(cli, ["--config", paths["config"], *args])


async def store_climate_articles(db_path):
    """Five climate stories, three of them in Business."""
    db = DatabaseManager(db_path)
    await db.initialize()
    try:
        source = await db.get_source("broken-source")
        categories = {c.slug: c for c in await db.get_categories()}
        for i in range(5):
            category = categories["business" if i < 3 else "technology"]
            await db.insert_article(Article(
                title=f"Climate report {i}",
                description="Emissions data.",
                url=f"https://example.com/climate-{i}",
                published_at=datetime.now(timezone.utc),
                source_id=source.id,
                category_id=category.id,
            ))
    finally:
        await db.close()


class TestCLI:
    def test_cli_group_exists(self):
        assert {"sync", "aggregate", "status", "search", "cleanup"} <= set(cli.commands)

    def test_sync(self, paths):
        result = invoke(paths, "sync")
        assert result.exit_code == 0, result.output
        assert "Synced 2 sources and 2 categories" in result.output

    def test_status(self, paths):
        invoke(paths, "sync")
        result = invoke(paths, "status")
        assert result.exit_code == 0, result.output
        assert "Articles: 0" in result.output
        assert "Sources: 2" in result.output

    def test_aggregate_all_records_failures(self, paths):
        result = invoke(paths, "aggregate")
        assert result.exit_code == 0, result.output
        assert "Sources processed: 1" in result.output
        assert "Successful sources: 0" in result.output

    def test_aggregate_unknown_source(self, paths):
        result = invoke(paths, "aggregate", "--source", "missing")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_aggregate_disabled_source(self, paths):
        result = invoke(paths, "aggregate", "--source", "nytimes", "--force")
        assert result.exit_code == 1
        assert "not active" in result.output

    def test_aggregate_source_without_adapter(self, paths):
        result = invoke(paths, "aggregate", "--source", "broken-source")
        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_aggregate_source_not_ready(self, paths):
        invoke(paths, "aggregate")
        result = invoke(paths, "aggregate", "--source", "broken-source")
        assert result.exit_code == 0, result.output
        assert "not ready" in result.output
        assert "Next fetch at" in result.output

    def test_search_no_results(self, paths):
        result = invoke(paths, "search", "nothing")
        assert result.exit_code == 0, result.output
        assert "No results" in result.output

    def test_search_invalid_query(self, paths):
        result = invoke(paths, "search", "\"unbalanced")
        assert result.exit_code == 1
        assert "Invalid search query" in result.output

    def test_search_total_respects_filters(self, paths):
        invoke(paths, "sync")
        asyncio.run(store_climate_articles(paths["db"]))

        result = invoke(paths, "search", "climate", "--category", "business", "--limit", "1")
        assert result.exit_code == 0, result.output
        assert "(3 total, page 1)" in result.output

    def test_cleanup(self, paths):
        result = invoke(paths, "cleanup", "--days", "7")
        assert result.exit_code == 0, result.output
        assert "No old articles found" in result.output

    def test_missing_config_uses_defaults(self, tmp_path):
        runner = CliRunner()
        result = runner.invoke(cli, [
            "--config", str(tmp_path / "missing.yaml"),
            "--db", str(tmp_path / "news.db"),
            "status",
        ])
        assert result.exit_code == 0, result.output
        assert "Articles: 0" in result.output
