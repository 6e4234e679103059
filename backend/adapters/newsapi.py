"""NewsAPI.org-style adapter (also used for sources proxied through NewsAPI)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List

from backend.adapters.base import (
    ProviderAdapter,
    ProviderRequest,
    parse_published,
    require_list,
    text_or_none,
)
from backend.exceptions import TransientProviderError
from backend.storage.models import CandidateArticle, Category, Source

DEFAULT_ENDPOINT = "/v2/everything"
PAGE_SIZE = 100


class NewsAPIAdapter(ProviderAdapter):
    """GET /v2/everything with apiKey, q, language, from; parses ``articles[]``."""

    name = "newsapi"
    TOPIC_MAP = {
        "Technology": "technology",
        "Business": "business",
        "Sports": "sports",
        "Health": "health",
        "Science": "science",
        "Politics": "politics",
        "World": "world",
        "Entertainment": "entertainment",
        "Environment": "environment",
        "Education": "education",
    }
    DEFAULT_TOPIC = "general"

    def topic_for(self, category_name: str) -> str:
        """Mapped topic, else the lower-cased category name, else "general"."""
        if category_name in self.TOPIC_MAP:
            return self.TOPIC_MAP[category_name]
        return category_name.strip().lower() or self.DEFAULT_TOPIC

    def build_request(self, source: Source, category: Category, now: datetime) -> ProviderRequest:
        endpoint = source.config.get("endpoints", {}).get("everything", DEFAULT_ENDPOINT)
        params = {
            "apiKey": source.api_key,
            "q": self.topic_for(category.name),
            "language": source.language,
            "sortBy": "publishedAt",
            "pageSize": source.config.get("page_size", PAGE_SIZE),
            "from": self.window_start(now).strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        # Restrict to specific upstream outlets, e.g. "bbc-news"
        if source.config.get("sources"):
            params["sources"] = source.config["sources"]
        return ProviderRequest(url=f"{source.api_url}{endpoint}", params=params)

    def parse(self, payload: Any, now: datetime) -> List[CandidateArticle]:
        if isinstance(payload, dict) and payload.get("status") == "error":
            raise TransientProviderError(
                f"NewsAPI error {payload.get('code')}: {payload.get('message')}"
            )
        out: List[CandidateArticle] = []
        for a in require_list(payload, "articles"):
            if not isinstance(a, dict):
                continue
            url = text_or_none(a.get("url"))
            if not url:
                continue
            out.append(
                CandidateArticle(
                    title=a.get("title") or "",
                    description=a.get("description") or "",
                    url=url,
                    content=text_or_none(a.get("content")),
                    image_url=text_or_none(a.get("urlToImage")),
                    author=text_or_none(a.get("author")),
                    published_at=parse_published(a.get("publishedAt"), now),
                    external_id=None,
                    metadata=a,
                )
            )
        return out
