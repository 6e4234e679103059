"""The Guardian Open Platform adapter."""

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
from backend.storage.models import CandidateArticle, Category, Source

DEFAULT_ENDPOINT = "/search"
PAGE_SIZE = 50
SHOW_FIELDS = "headline,trailText,thumbnail,body,byline"


class GuardianAdapter(ProviderAdapter):
    """GET /search with api-key, q, section, from-date; parses ``response.results[]``."""

    name = "guardian"
    TOPIC_MAP = {
        "Technology": "technology",
        "Business": "business",
        "Sports": "sport",
        "Health": "society",
        "Science": "science",
        "Politics": "politics",
        "World": "world",
        "Entertainment": "culture",
        "Environment": "environment",
        "Education": "education",
    }
    DEFAULT_TOPIC = "news"

    def build_request(self, source: Source, category: Category, now: datetime) -> ProviderRequest:
        endpoint = source.config.get("endpoints", {}).get("search", DEFAULT_ENDPOINT)
        params = {
            "api-key": source.api_key,
            "q": category.name,
            "section": self.topic_for(category.name),
            "show-fields": SHOW_FIELDS,
            "page-size": source.config.get("page_size", PAGE_SIZE),
            "order-by": "newest",
            "from-date": self.window_start(now).strftime("%Y-%m-%d"),
        }
        return ProviderRequest(url=f"{source.api_url}{endpoint}", params=params)

    def parse(self, payload: Any, now: datetime) -> List[CandidateArticle]:
        out: List[CandidateArticle] = []
        for r in require_list(payload, "response.results"):
            if not isinstance(r, dict):
                continue
            url = text_or_none(r.get("webUrl"))
            if not url:
                continue
            fields = r.get("fields") if isinstance(r.get("fields"), dict) else {}
            out.append(
                CandidateArticle(
                    title=r.get("webTitle") or fields.get("headline") or "",
                    description=fields.get("trailText") or "",
                    url=url,
                    content=text_or_none(fields.get("body")),
                    image_url=text_or_none(fields.get("thumbnail")),
                    author=text_or_none(fields.get("byline")),
                    published_at=parse_published(r.get("webPublicationDate"), now),
                    external_id=text_or_none(r.get("id")),
                    metadata=r,
                )
            )
        return out
