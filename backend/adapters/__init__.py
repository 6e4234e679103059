"""Provider adapters for the news aggregation pipeline.

Supported families: newsapi, guardian, nytimes, generic (config-driven JSON).
"""

from backend.adapters.base import ProviderAdapter, ProviderRequest
from backend.adapters.factory import AdapterRegistry, build_adapter, build_adapter_registry
from backend.adapters.generic import GenericJSONAdapter
from backend.adapters.guardian import GuardianAdapter
from backend.adapters.http import HttpClient
from backend.adapters.newsapi import NewsAPIAdapter
from backend.adapters.nytimes import NYTimesAdapter

__all__ = [
    "ProviderAdapter",
    "ProviderRequest",
    "AdapterRegistry",
    "build_adapter",
    "build_adapter_registry",
    "GenericJSONAdapter",
    "GuardianAdapter",
    "HttpClient",
    "NewsAPIAdapter",
    "NYTimesAdapter",
]
