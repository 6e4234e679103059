"""New York Times Article Search adapter."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from backend.adapters.base import (
    ProviderAdapter,
    ProviderRequest,
    parse_published,
    require_list,
    text_or_none,
)
from backend.storage.models import CandidateArticle, Category, Source

DEFAULT_ENDPOINT = "/svc/search/v2/articlesearch.json"
IMAGE_BASE_URL = "https://www.nytimes.com/"


class NYTimesAdapter(ProviderAdapter):
    """GET articlesearch.json with api-key, q, fq, begin_date; parses ``response.docs[]``."""

    name = "nytimes"
    TOPIC_MAP = {
        "Technology": "technology",
        "Business": "business",
        "Sports": "sports",
        "Health": "health",
        "Science": "science",
        "Politics": "politics",
        "World": "world",
        "Entertainment": "arts",
        "Environment": "climate",
        "Education": "education",
    }
    DEFAULT_TOPIC = "news"

    def build_request(self, source: Source, category: Category, now: datetime) -> ProviderRequest:
        endpoint = source.config.get("endpoints", {}).get("article_search", DEFAULT_ENDPOINT)
        params = {
            "api-key": source.api_key,
            "q": category.name,
            "fq": f'section_name:("{self.topic_for(category.name)}")',
            "begin_date": self.window_start(now).strftime("%Y%m%d"),
            "sort": "newest",
        }
        return ProviderRequest(url=f"{source.api_url}{endpoint}", params=params)

    def parse(self, payload: Any, now: datetime) -> List[CandidateArticle]:
        out: List[CandidateArticle] = []
        for d in require_list(payload, "response.docs"):
            if not isinstance(d, dict):
                continue
            url = text_or_none(d.get("web_url"))
            if not url:
                continue
            headline = d.get("headline") if isinstance(d.get("headline"), dict) else {}
            byline = d.get("byline") if isinstance(d.get("byline"), dict) else {}
            out.append(
                CandidateArticle(
                    title=headline.get("main") or "",
                    description=d.get("abstract") or d.get("snippet") or "",
                    url=url,
                    content=text_or_none(d.get("lead_paragraph")),
                    image_url=_image_url(d.get("multimedia")),
                    author=text_or_none(byline.get("original")),
                    published_at=parse_published(d.get("pub_date"), now),
                    external_id=text_or_none(d.get("_id")),
                    metadata=d,
                )
            )
        return out


def _image_url(multimedia: Any) -> Optional[str]:
    """First large image; relative paths are resolved against nytimes.com."""
    if not isinstance(multimedia, list):
        return None
    for media in multimedia:
        if not isinstance(media, dict):
            continue
        if media.get("type") == "image" and media.get("subtype") == "large" and media.get("url"):
            url = str(media["url"])
            if url.startswith(("http://", "https://")):
                return url
            return IMAGE_BASE_URL + url.lstrip("/")
    return None
