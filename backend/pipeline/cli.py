"""CLI interface for the news aggregation backend.

Usage:
    python -m backend.pipeline.cli sync
    python -m backend.pipeline.cli aggregate
    python -m backend.pipeline.cli aggregate --source guardian --force
    python -m backend.pipeline.cli status
    python -m backend.pipeline.cli search "climate policy" --category science
    python -m backend.pipeline.cli cleanup --days 30
"""

from __future__ import annotations

import asyncio
import copy
import logging
import os
import sqlite3
import sys
from datetime import timedelta
from typing import Any, Dict, List, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from backend.exceptions import (
    ConfigurationError,
    SourceNotFoundError,
    SourceNotReadyError,
)
from backend.pipeline.config import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_DB_PATH,
    DEFAULTS,
    categories_from_config,
    load_config,
    sources_from_config,
)
from backend.pipeline.orchestrator import AggregationOrchestrator
from backend.storage.db import DatabaseManager
from backend.storage.models import AggregationSummary, FetchResult, utc_now

console = Console()
logger = logging.getLogger(__name__)


def run_async(coro):
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


def _read_config(path: str) -> Dict[str, Any]:
    """Load config.yaml; a missing file means "use what is already stored"."""
    if not os.path.exists(path):
        logger.debug("Config %s not found, using defaults", path)
        return copy.deepcopy(DEFAULTS)
    return load_config(path)


async def _sync(db: DatabaseManager, config: Dict[str, Any]) -> tuple:
    categories = categories_from_config(config)
    sources = sources_from_config(config)
    for category in categories:
        await db.upsert_category(category)
    for source in sources:
        await db.upsert_source(source)
    return len(sources), len(categories)


@click.group()
@click.option("--db", "db_path", default=None, help="Database path (default: from config)")
@click.option("--config", default=DEFAULT_CONFIG_PATH, help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, db_path: Optional[str], config: str, verbose: bool):
    """News aggregation backend CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    ctx.ensure_object(dict)
    try:
        cfg = _read_config(config)
    except ConfigurationError as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(1)
    ctx.obj["config"] = cfg
    ctx.obj["db_path"] = db_path or cfg.get("database", {}).get("path") or DEFAULT_DB_PATH


@cli.command()
@click.pass_context
def sync(ctx):
    """Load sources and categories from the config file into the store."""

    async def _run():
        db = DatabaseManager(ctx.obj["db_path"])
        await db.initialize()
        try:
            n_sources, n_categories = await _sync(db, ctx.obj["config"])
            console.print(
                f"[green]Synced {n_sources} sources and {n_categories} categories.[/green]"
            )
        finally:
            await db.close()

    run_async(_run())


def _render_results(results: List[FetchResult]) -> None:
    summary = AggregationSummary.from_results(results)

    table = Table(title="Aggregation Results")
    table.add_column("Source", style="cyan")
    table.add_column("Status")
    table.add_column("New", justify="right", style="green")
    table.add_column("Duplicates", justify="right", style="yellow")
    table.add_column("Message", max_width=60)
    table.add_column("Time", justify="right")

    for r in summary.results:
        table.add_row(
            r.source,
            "[green]ok" if r.success else "[red]failed",
            str(r.count),
            str(r.duplicates),
            r.message,
            f"{r.duration_seconds:.1f}s",
        )
    console.print(table)

    console.print("\n[bold]Summary[/bold]")
    console.print(f"  Sources processed: {len(summary.results)}")
    console.print(f"  Successful sources: {summary.successful}")
    console.print(f"  Total articles fetched: {summary.total_inserted}")


@cli.command()
@click.option("--source", "source_slug", help="Specific news source slug to fetch from")
@click.option("--force", is_flag=True, help="Force fetch even if not ready")
@click.option("--limit", type=int, help="Limit number of sources to process")
@click.pass_context
def aggregate(ctx, source_slug: Optional[str], force: bool, limit: Optional[int]):
    """Aggregate news from the configured sources."""
    config = ctx.obj["config"]

    async def _run() -> int:
        db = DatabaseManager(ctx.obj["db_path"])
        await db.initialize()
        try:
            await _sync(db, config)
            orchestrator = AggregationOrchestrator.from_config(db, config)

            if not source_slug:
                with console.status("[bold green]Aggregating..."):
                    results = await orchestrator.run_all(force=force, limit=limit)
                if not results:
                    console.print("[yellow]No sources ready for fetching.[/yellow]")
                    return 0
                _render_results(results)
                return 0

            try:
                with console.status(f"[bold green]Fetching from {source_slug}..."):
                    result = await orchestrator.run_one(source_slug, force=force)
            except SourceNotFoundError as e:
                console.print(f"[red]Error:[/red] {e}")
                return 1
            except SourceNotReadyError as e:
                if not e.source.enabled:
                    console.print(f"[red]Error:[/red] {e}")
                    return 1
                console.print(f"[yellow]{e}[/yellow]")
                if e.source.last_fetched_at:
                    console.print(f"Last fetched: {e.source.last_fetched_at:%Y-%m-%d %H:%M} UTC")
                if e.next_fetch_at:
                    console.print(f"Next fetch at: {e.next_fetch_at:%Y-%m-%d %H:%M} UTC")
                return 0
            except ConfigurationError as e:
                console.print(f"[red]Configuration error:[/red] {e}")
                return 1
            _render_results([result])
            return 0
        finally:
            await db.close()

    code = run_async(_run())
    if code:
        sys.exit(code)


@cli.command()
@click.pass_context
def status(ctx):
    """Show store statistics and per-source readiness."""

    async def _run():
        db = DatabaseManager(ctx.obj["db_path"])
        await db.initialize()
        try:
            stats = await db.get_stats()

            console.print("\n[bold]Database Status[/bold]")
            console.print(f"  Path: {ctx.obj['db_path']}")
            console.print(f"  Size: {stats['db_size_bytes'] / 1024:.1f} KB")
            console.print(f"  Articles: {stats['total_articles']}")
            console.print(f"  Sources: {stats['total_sources']}")
            console.print(f"  Categories: {stats['total_categories']}")

            if stats["articles_by_category"]:
                console.print("\n[bold]Articles by Category[/bold]")
                for name, cnt in stats["articles_by_category"].items():
                    console.print(f"  {name}: {cnt}")

            sources = await db.get_sources()
            if not sources:
                return

            now = utc_now()
            table = Table(title="Source Status")
            table.add_column("Slug", style="cyan")
            table.add_column("Name")
            table.add_column("Enabled")
            table.add_column("Last Fetch")
            table.add_column("Next Fetch")
            table.add_column("Ready")
            table.add_column("Errors", justify="right")
            table.add_column("Last Error")

            for s in sources:
                next_at = s.next_fetch_at()
                table.add_row(
                    s.slug,
                    s.name,
                    "[green]yes" if s.enabled else "[red]no",
                    s.last_fetched_at.strftime("%Y-%m-%d %H:%M") if s.last_fetched_at else "never",
                    next_at.strftime("%Y-%m-%d %H:%M") if next_at else "now",
                    "[green]yes" if s.is_ready(now) else "no",
                    str(s.error_count),
                    (s.last_error or "")[:50],
                )
            console.print(table)
        finally:
            await db.close()

    run_async(_run())


@cli.command()
@click.argument("query")
@click.option("--category", "-c", help="Filter by category slug")
@click.option("--source", "-s", help="Filter by source slug")
@click.option("--days", "-d", type=int, help="Only articles from last N days")
@click.option("--limit", "-n", default=20, show_default=True, help="Results per page")
@click.option("--page", "-p", default=1, show_default=True, help="Page number")
@click.pass_context
def search(
    ctx,
    query: str,
    category: Optional[str],
    source: Optional[str],
    days: Optional[int],
    limit: int,
    page: int,
):
    """Full-text search across stored articles."""

    async def _run() -> int:
        db = DatabaseManager(ctx.obj["db_path"])
        await db.initialize()
        try:
            since = utc_now() - timedelta(days=days) if days else None
            filters = {"category": category, "source": source, "since": since}
            try:
                articles = await db.search_articles(
                    query,
                    limit=limit,
                    offset=(max(page, 1) - 1) * limit,
                    **filters,
                )
                total = await db.count_search(query, **filters)
            except sqlite3.OperationalError as e:
                console.print(f"[red]Invalid search query:[/red] {escape(query)} ({escape(str(e))})")
                return 1
            if not articles:
                console.print(f"[yellow]No results for:[/yellow] {query}")
                return 0

            console.print(f"\n[bold]Search results for:[/bold] {query} ({total} total, page {page})\n")

            table = Table(show_header=True)
            table.add_column("#", style="dim", width=4)
            table.add_column("Title", max_width=60)
            table.add_column("Published", width=16)
            table.add_column("URL", style="cyan", max_width=50)

            first = (max(page, 1) - 1) * limit
            for i, article in enumerate(articles, first + 1):
                table.add_row(
                    str(i),
                    article.title[:60],
                    article.published_at.strftime("%Y-%m-%d %H:%M"),
                    article.url,
                )
            console.print(table)
            return 0
        finally:
            await db.close()

    code = run_async(_run())
    if code:
        sys.exit(code)


@cli.command()
@click.option("--days", default=30, show_default=True, help="Number of days to keep news articles")
@click.pass_context
def cleanup(ctx, days: int):
    """Delete articles published more than N days ago."""

    async def _run():
        db = DatabaseManager(ctx.obj["db_path"])
        await db.initialize()
        try:
            console.print(f"Cleaning up news articles older than {days} days...")
            deleted = await db.delete_articles_older_than(utc_now() - timedelta(days=days))
            if deleted:
                console.print(f"[green]Deleted {deleted} old news articles.[/green]")
            else:
                console.print("No old articles found to clean up.")
        finally:
            await db.close()

    run_async(_run())


def main():
    cli()


if __name__ == "__main__":
    main()
