"""Data models for the news aggregation storage layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from dateutil.parser import parse as parse_date

DEFAULT_FETCH_INTERVAL_MINUTES = 60


@dataclass
class Source:
    """An external news provider and its fetch status."""

    slug: str
    name: str
    api_url: str
    id: Optional[int] = None
    api_key: Optional[str] = None
    config: Dict[str, Any] = field(default_factory=dict)
    language: str = "en"
    country: Optional[str] = None
    enabled: bool = True
    fetch_interval_minutes: int = DEFAULT_FETCH_INTERVAL_MINUTES
    last_fetched_at: Optional[datetime] = None
    last_error: Optional[str] = None
    error_count: int = 0

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> Source:
        """Create a Source from a config.yaml entry."""
        return cls(
            slug=cfg["slug"],
            name=cfg.get("name") or cfg["slug"],
            api_url=(cfg.get("api_url") or "").rstrip("/"),
            api_key=cfg.get("api_key") or None,
            config=dict(cfg.get("config") or {}),
            language=cfg.get("language", "en"),
            country=cfg.get("country"),
            enabled=bool(cfg.get("enabled", True)),
            fetch_interval_minutes=int(
                cfg.get("fetch_interval_minutes", DEFAULT_FETCH_INTERVAL_MINUTES)
            ),
        )

    def next_fetch_at(self) -> Optional[datetime]:
        if self.last_fetched_at is None:
            return None
        return self.last_fetched_at + timedelta(minutes=self.fetch_interval_minutes)

    def is_ready(self, now: datetime) -> bool:
        """True when the source is enabled and its fetch interval has elapsed."""
        if not self.enabled:
            return False
        next_at = self.next_fetch_at()
        if next_at is None:
            return True
        return now >= next_at

    def to_row(self) -> tuple:
        return (
            self.slug,
            self.name,
            self.api_url,
            self.api_key,
            json.dumps(self.config),
            self.language,
            self.country,
            int(self.enabled),
            self.fetch_interval_minutes,
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Source:
        return cls(
            id=row["id"],
            slug=row["slug"],
            name=row["name"],
            api_url=row["api_url"],
            api_key=row.get("api_key"),
            config=_parse_json(row.get("config")) or {},
            language=row.get("language") or "en",
            country=row.get("country"),
            enabled=bool(row.get("enabled", 1)),
            fetch_interval_minutes=_int_or(
                row.get("fetch_interval_minutes"), DEFAULT_FETCH_INTERVAL_MINUTES
            ),
            last_fetched_at=_parse_ts(row.get("last_fetched_at")),
            last_error=row.get("last_error"),
            error_count=row.get("error_count", 0),
        )


@dataclass
class Category:
    """A topic used to scope provider queries and classify articles."""

    name: str
    slug: str
    id: Optional[int] = None
    description: Optional[str] = None
    enabled: bool = True
    sort_order: int = 0

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> Category:
        name = cfg["name"]
        return cls(
            name=name,
            slug=cfg.get("slug") or name.lower().replace(" ", "-"),
            description=cfg.get("description"),
            enabled=bool(cfg.get("enabled", True)),
            sort_order=int(cfg.get("sort_order", 0)),
        )

    def to_row(self) -> tuple:
        return (self.name, self.slug, self.description, int(self.enabled), self.sort_order)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Category:
        return cls(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            description=row.get("description"),
            enabled=bool(row.get("enabled", 1)),
            sort_order=row.get("sort_order", 0),
        )


@dataclass
class CandidateArticle:
    """An article parsed from a provider response, not yet deduplicated."""

    title: str
    description: str
    url: str
    published_at: datetime
    content: Optional[str] = None
    image_url: Optional[str] = None
    author: Optional[str] = None
    external_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class Article:
    """A stored, normalized news article."""

    title: str
    description: str
    url: str
    published_at: datetime
    source_id: int
    category_id: int
    id: Optional[int] = None
    content: Optional[str] = None
    image_url: Optional[str] = None
    author: Optional[str] = None
    external_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    active: bool = True
    created_at: Optional[datetime] = None
    url_canonical: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.url_canonical:
            self.url_canonical = canonical_url(self.url)

    @classmethod
    def from_candidate(
        cls,
        candidate: CandidateArticle,
        source: Source,
        category: Category,
        now: datetime,
    ) -> Article:
        if source.id is None or category.id is None:
            raise ValueError("source and category must be stored before articles reference them")
        return cls(
            title=candidate.title,
            description=candidate.description,
            url=candidate.url,
            published_at=candidate.published_at,
            source_id=source.id,
            category_id=category.id,
            content=candidate.content,
            image_url=candidate.image_url,
            author=candidate.author,
            external_id=candidate.external_id,
            metadata=candidate.metadata,
            created_at=now,
        )

    def to_row(self) -> tuple:
        return (
            self.title,
            self.description,
            self.content,
            self.url,
            self.url_canonical,
            self.image_url,
            self.author,
            _format_ts(self.published_at),
            self.source_id,
            self.category_id,
            self.external_id,
            json.dumps(self.metadata, default=str) if self.metadata else None,
            int(self.active),
            _format_ts(self.created_at),
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Article:
        return cls(
            id=row["id"],
            title=row["title"],
            description=row.get("description") or "",
            content=row.get("content"),
            url=row["url"],
            url_canonical=row.get("url_canonical"),
            image_url=row.get("image_url"),
            author=row.get("author"),
            published_at=_parse_ts(row["published_at"]) or datetime.min.replace(tzinfo=timezone.utc),
            source_id=row["source_id"],
            category_id=row["category_id"],
            external_id=row.get("external_id"),
            metadata=_parse_json(row.get("metadata")),
            active=bool(row.get("active", 1)),
            created_at=_parse_ts(row.get("created_at")),
        )


@dataclass
class FetchResult:
    """Outcome of processing one source during a run."""

    source: str
    slug: str
    success: bool = True
    count: int = 0
    message: str = ""
    fetched: int = 0
    duplicates: int = 0
    duration_seconds: float = 0.0


@dataclass
class AggregationSummary:
    """Aggregate of the per-source results of one run."""

    results: List[FetchResult] = field(default_factory=list)
    total_fetched: int = 0
    total_inserted: int = 0
    total_duplicates: int = 0
    successful: int = 0
    failed: int = 0
    duration_seconds: float = 0.0

    def add(self, result: FetchResult) -> None:
        self.results.append(result)
        self.total_fetched += result.fetched
        self.total_duplicates += result.duplicates
        self.duration_seconds += result.duration_seconds
        if result.success:
            self.successful += 1
            self.total_inserted += result.count
        else:
            self.failed += 1

    @classmethod
    def from_results(cls, results: List[FetchResult]) -> AggregationSummary:
        summary = cls()
        for result in results:
            summary.add(result)
        return summary


# --- Helpers ---

_TRACKING_PARAMS = {
    "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
    "fbclid", "gclid", "cmpid", "ito",
}


def canonical_url(url: str) -> str:
    """Normalize a URL for duplicate detection (strip tracking params, fragments, etc.)."""
    try:
        parsed = urlparse(url.strip())
        scheme = parsed.scheme.lower()
        netloc = parsed.netloc.lower().rstrip(".")
        if netloc.startswith("www."):
            netloc = netloc[4:]
        path = parsed.path.rstrip("/") or "/"
        if parsed.query:
            qs = parse_qs(parsed.query, keep_blank_values=True)
            filtered = {k: v for k, v in qs.items() if k.lower() not in _TRACKING_PARAMS}
            query = urlencode(sorted(filtered.items()), doseq=True)
        else:
            query = ""
        return urlunparse((scheme, netloc, path, "", query, ""))
    except ValueError:
        return url.strip().lower()


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(val: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if val.tzinfo is None:
        return val.replace(tzinfo=timezone.utc)
    return val.astimezone(timezone.utc)


def _int_or(val: Any, default: int) -> int:
    return default if val is None else int(val)


def _format_ts(val: Optional[datetime]) -> Optional[str]:
    return ensure_utc(val).isoformat() if val else None


def _parse_ts(val: Any) -> Optional[datetime]:
    """Parse a timestamp string or return None."""
    if val is None:
        return None
    if isinstance(val, datetime):
        return ensure_utc(val)
    try:
        return ensure_utc(parse_date(str(val)))
    except (ValueError, TypeError, OverflowError):
        return None


def _parse_json(val: Any) -> Optional[Dict[str, Any]]:
    """Parse a JSON string or return None."""
    if val is None:
        return None
    if isinstance(val, dict):
        return val
    try:
        return json.loads(val)
    except (json.JSONDecodeError, TypeError):
        return None
