"""Config-driven adapter for JSON providers that have no dedicated adapter."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from backend.adapters.base import (
    LOOKBACK_HOURS,
    ProviderAdapter,
    ProviderRequest,
    get_path,
    parse_published,
    require_list,
    text_or_none,
)
from backend.exceptions import ConfigurationError
from backend.storage.models import CandidateArticle, Category, Source

DEFAULT_FIELDS = {
    "title": "title",
    "description": "description",
    "url": "url",
    "content": "content",
    "image_url": "image_url",
    "author": "author",
    "published_at": "published_at",
    "external_id": "id",
}


class GenericJSONAdapter(ProviderAdapter):
    """Adapter whose request and response shape come from a mapping.

    Recognised keys (all optional except ``results_path``)::

        endpoint: /articles          # appended to the source api_url
        query_param: q
        auth_param: apikey           # api_key sent as a query parameter
        auth_header: X-Api-Key       # ...or as a header
        since_param: from
        since_format: "%Y-%m-%dT%H:%M:%SZ"
        page_size_param: pageSize
        page_size: 50
        params: {language: en}       # static extra parameters
        results_path: data.articles
        fields: {title: headline, url: link, ...}
        topics: {Technology: tech}
        default_topic: general
    """

    name = "generic"

    def __init__(self, mapping: Dict[str, Any], lookback_hours: int = LOOKBACK_HOURS) -> None:
        super().__init__(lookback_hours=lookback_hours)
        if not mapping.get("results_path"):
            raise ConfigurationError("Generic adapter requires 'results_path'")
        self.mapping = mapping
        self.fields = {**DEFAULT_FIELDS, **(mapping.get("fields") or {})}

    def topic_for(self, category_name: str) -> str:
        topics = self.mapping.get("topics") or {}
        return topics.get(category_name, self.mapping.get("default_topic", category_name))

    def build_request(self, source: Source, category: Category, now: datetime) -> ProviderRequest:
        m = self.mapping
        params: Dict[str, Any] = dict(m.get("params") or {})
        headers: Dict[str, str] = {}

        params[m.get("query_param", "q")] = self.topic_for(category.name)
        if m.get("since_param"):
            fmt = m.get("since_format", "%Y-%m-%dT%H:%M:%SZ")
            params[m["since_param"]] = self.window_start(now).strftime(fmt)
        if m.get("page_size_param"):
            params[m["page_size_param"]] = m.get("page_size", 50)
        if source.api_key:
            if m.get("auth_header"):
                headers[m["auth_header"]] = source.api_key
            else:
                params[m.get("auth_param", "apiKey")] = source.api_key

        return ProviderRequest(
            url=f"{source.api_url}{m.get('endpoint', '')}",
            params=params,
            headers=headers,
        )

    def _field(self, item: Dict[str, Any], name: str) -> Any:
        return get_path(item, self.fields[name])

    def parse(self, payload: Any, now: datetime) -> List[CandidateArticle]:
        out: List[CandidateArticle] = []
        for item in require_list(payload, self.mapping["results_path"]):
            if not isinstance(item, dict):
                continue
            url = text_or_none(self._field(item, "url"))
            if not url:
                continue
            external_id: Optional[str] = text_or_none(self._field(item, "external_id"))
            out.append(
                CandidateArticle(
                    title=self._field(item, "title") or "",
                    description=self._field(item, "description") or "",
                    url=url,
                    content=text_or_none(self._field(item, "content")),
                    image_url=text_or_none(self._field(item, "image_url")),
                    author=text_or_none(self._field(item, "author")),
                    published_at=parse_published(self._field(item, "published_at"), now),
                    external_id=external_id,
                    metadata=item,
                )
            )
        return out
