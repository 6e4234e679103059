"""YAML configuration loading with ${ENV_VAR} resolution."""

from __future__ import annotations

import copy
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List

import yaml

from backend.exceptions import ConfigurationError
from backend.storage.models import Category, Source

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"
DEFAULT_DB_PATH = "data/news.db"

DEFAULTS: Dict[str, Any] = {
    "database": {"path": DEFAULT_DB_PATH},
    "aggregation": {
        "request_timeout_seconds": 30,
        "max_concurrent_categories": 4,
        "lookback_hours": 24,
        "external_id_scope": "global",
    },
    "categories": [],
    "sources": [],
}

_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")


@dataclass
class AggregationSettings:
    """Typed view of the ``aggregation`` section."""

    request_timeout_seconds: float = 30
    max_concurrent_categories: int = 4
    lookback_hours: int = 24
    external_id_scope: str = "global"

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> AggregationSettings:
        section = config.get("aggregation") or {}
        settings = cls(
            request_timeout_seconds=float(section.get("request_timeout_seconds", 30)),
            max_concurrent_categories=int(section.get("max_concurrent_categories", 4)),
            lookback_hours=int(section.get("lookback_hours", 24)),
            external_id_scope=str(section.get("external_id_scope", "global")),
        )
        if settings.external_id_scope not in ("global", "source"):
            raise ConfigurationError(
                f"external_id_scope must be 'global' or 'source', got {settings.external_id_scope!r}"
            )
        if settings.request_timeout_seconds <= 0:
            raise ConfigurationError("request_timeout_seconds must be positive")
        return settings


def resolve_env(value: Any) -> Any:
    """Recursively replace ${VAR} in strings with environment values (missing -> "")."""
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: resolve_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env(v) for v in value]
    return value


def load_config(path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """Load the YAML config, resolve env references and fill in defaults."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigurationError(f"Config file not found: {path}") from None
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    config = copy.deepcopy(DEFAULTS)
    for key, value in resolve_env(raw).items():
        if isinstance(value, dict) and isinstance(config.get(key), dict):
            config[key].update(value)
        else:
            config[key] = value
    return config


def sources_from_config(config: Dict[str, Any]) -> List[Source]:
    sources = []
    for cfg in config.get("sources") or []:
        if "slug" not in cfg:
            raise ConfigurationError(f"Source entry without slug: {cfg!r}")
        sources.append(Source.from_config(cfg))
    return sources


def categories_from_config(config: Dict[str, Any]) -> List[Category]:
    categories = []
    for i, cfg in enumerate(config.get("categories") or []):
        if isinstance(cfg, str):
            cfg = {"name": cfg}
        cfg = {"sort_order": i + 1, **cfg}
        categories.append(Category.from_config(cfg))
    return categories
