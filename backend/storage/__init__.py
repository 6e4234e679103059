"""Storage layer - SQLite with FTS5 and WAL mode."""

from backend.storage.db import DatabaseManager
from backend.storage.models import (
    AggregationSummary,
    Article,
    CandidateArticle,
    Category,
    FetchResult,
    Source,
)

__all__ = [
    "DatabaseManager",
    "AggregationSummary",
    "Article",
    "CandidateArticle",
    "Category",
    "FetchResult",
    "Source",
]
