"""Base provider adapter: per-category request building, fetching and parsing."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from dateutil.parser import parse as parse_date

from backend.exceptions import TransientProviderError
from backend.storage.models import CandidateArticle, Category, Source, ensure_utc

logger = logging.getLogger(__name__)

LOOKBACK_HOURS = 24
DEFAULT_MAX_CONCURRENT = 4


@dataclass
class ProviderRequest:
    """One GET request against a provider, scoped to a single category."""

    url: str
    params: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)


class JsonClient(Protocol):
    """Anything that can GET a URL and return decoded JSON (see HttpClient)."""

    async def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        ...


CategoryBatch = Tuple[Category, List[CandidateArticle]]


class ProviderAdapter(ABC):
    """Translate between one provider family's wire format and CandidateArticle.

    Subclasses implement build_request() and parse(); fetching, per-category
    failure isolation and bounded concurrency are shared here.
    """

    name: str = "provider"
    TOPIC_MAP: Dict[str, str] = {}
    DEFAULT_TOPIC: str = "news"

    def __init__(self, lookback_hours: int = LOOKBACK_HOURS) -> None:
        self.lookback_hours = lookback_hours

    def topic_for(self, category_name: str) -> str:
        """Map a category display name to this provider's topic vocabulary."""
        return self.TOPIC_MAP.get(category_name, self.DEFAULT_TOPIC)

    def window_start(self, now: datetime) -> datetime:
        """Start of the trailing publish window queried on each request."""
        return ensure_utc(now) - timedelta(hours=self.lookback_hours)

    @abstractmethod
    def build_request(self, source: Source, category: Category, now: datetime) -> ProviderRequest:
        ...

    def build_requests(
        self,
        source: Source,
        categories: Sequence[Category],
        now: datetime,
    ) -> List[ProviderRequest]:
        """One request per category; no provider supports several topics per call."""
        return [self.build_request(source, c, now) for c in categories]

    @abstractmethod
    def parse(self, payload: Any, now: datetime) -> List[CandidateArticle]:
        """Parse a decoded response body into candidates.

        Raises TransientProviderError when the body does not have the
        provider's shape.
        """
        ...

    async def fetch_category(
        self,
        client: JsonClient,
        source: Source,
        category: Category,
        now: datetime,
    ) -> List[CandidateArticle]:
        """Fetch and parse one category. Provider failures yield no candidates."""
        request = self.build_request(source, category, now)
        try:
            payload = await client.get_json(request.url, request.params, request.headers)
            return self.parse(payload, now)
        except TransientProviderError as e:
            logger.warning(
                "%s: category %s skipped: %s", source.slug, category.name, e
            )
            return []
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            logger.warning(
                "%s: category %s returned a malformed body: %r", source.slug, category.name, e
            )
            return []

    async def fetch(
        self,
        client: JsonClient,
        source: Source,
        categories: Sequence[Category],
        now: datetime,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    ) -> List[CategoryBatch]:
        """Fetch every category concurrently, at most max_concurrent in flight.

        Results keep the order of ``categories``.
        """
        sem = asyncio.Semaphore(max(1, max_concurrent))

        async def _one(category: Category) -> CategoryBatch:
            async with sem:
                return category, await self.fetch_category(client, source, category, now)

        return list(await asyncio.gather(*(_one(c) for c in categories)))


# --- Parsing helpers shared by the concrete adapters ---

def get_path(data: Any, path: str, default: Any = None) -> Any:
    """Look up a dotted path ("response.results") in nested dicts."""
    current = data
    for key in path.split("."):
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


def require_list(data: Any, path: str) -> List[Any]:
    """Return the list at path; raise TransientProviderError if the body lacks it."""
    if not isinstance(data, dict):
        raise TransientProviderError(f"Expected a JSON object, got {type(data).__name__}")
    value = get_path(data, path)
    if value is None:
        return []
    if not isinstance(value, list):
        raise TransientProviderError(f"Expected a list at {path!r}")
    return value


def parse_published(val: Any, now: datetime) -> datetime:
    """Parse a provider publish date; missing or unparseable dates become ``now``."""
    if isinstance(val, datetime):
        return ensure_utc(val)
    if not val:
        return ensure_utc(now)
    try:
        return ensure_utc(parse_date(str(val)))
    except (ValueError, TypeError, OverflowError):
        return ensure_utc(now)


def text_or_none(val: Any) -> Optional[str]:
    if val is None:
        return None
    s = str(val).strip()
    return s or None
