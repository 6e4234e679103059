"""Adapter registry: explicit source slug -> adapter table, built once at startup."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional

from backend.adapters.base import LOOKBACK_HOURS, ProviderAdapter
from backend.adapters.generic import GenericJSONAdapter
from backend.adapters.guardian import GuardianAdapter
from backend.adapters.newsapi import NewsAPIAdapter
from backend.adapters.nytimes import NYTimesAdapter
from backend.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Sources proxied through NewsAPI share its wire format
DEFAULT_ADAPTERS: Dict[str, str] = {
    "newsapi": "newsapi",
    "bbc": "newsapi",
    "opennews": "newsapi",
    "newscred": "newsapi",
    "guardian": "guardian",
    "nytimes": "nytimes",
}


class AdapterRegistry:
    """Maps source slugs to adapter instances."""

    def __init__(self, adapters: Optional[Dict[str, ProviderAdapter]] = None) -> None:
        self._adapters: Dict[str, ProviderAdapter] = dict(adapters or {})

    def register(self, slug: str, adapter: ProviderAdapter) -> None:
        self._adapters[slug] = adapter

    def get(self, slug: str) -> ProviderAdapter:
        """Return the adapter for slug or raise ConfigurationError."""
        try:
            return self._adapters[slug]
        except KeyError:
            raise ConfigurationError(f"No fetch method found for source: {slug}") from None

    def slugs(self) -> List[str]:
        return sorted(self._adapters)

    def __contains__(self, slug: object) -> bool:
        return slug in self._adapters

    def __iter__(self) -> Iterator[str]:
        return iter(self.slugs())

    def __len__(self) -> int:
        return len(self._adapters)


def build_adapter(kind: str, cfg: Dict[str, Any], lookback_hours: int = LOOKBACK_HOURS) -> ProviderAdapter:
    """Return an adapter of the given kind (newsapi | guardian | nytimes | generic)."""
    kind = kind.lower().strip()
    if kind == "newsapi":
        return NewsAPIAdapter(lookback_hours=lookback_hours)
    if kind == "guardian":
        return GuardianAdapter(lookback_hours=lookback_hours)
    if kind == "nytimes":
        return NYTimesAdapter(lookback_hours=lookback_hours)
    if kind == "generic":
        return GenericJSONAdapter(cfg.get("config") or {}, lookback_hours=lookback_hours)
    raise ConfigurationError(f"Unknown adapter type {kind!r} for source {cfg.get('slug')!r}")


def build_adapter_registry(config: Optional[Dict[str, Any]] = None) -> AdapterRegistry:
    """Build the registry from the default table plus config.yaml source entries.

    A source entry's ``adapter`` key overrides the default for its slug; slugs
    with neither a default nor an ``adapter`` key stay unregistered and fail
    with ConfigurationError when fetched.
    """
    config = config or {}
    lookback = int(config.get("aggregation", {}).get("lookback_hours", LOOKBACK_HOURS))
    registry = AdapterRegistry()

    for slug, kind in DEFAULT_ADAPTERS.items():
        registry.register(slug, build_adapter(kind, {"slug": slug}, lookback))

    for cfg in config.get("sources") or []:
        kind = cfg.get("adapter")
        if not kind:
            continue
        registry.register(cfg["slug"], build_adapter(kind, cfg, lookback))

    logger.debug("Adapter registry: %s", ", ".join(registry.slugs()))
    return registry
