"""
Multi-provider book search with result caching.

Providers are tried in ascending priority; the first one that reports
success with at least one book wins and nothing further is called. Both
outcomes are cached: successes for a day, failures for an hour.
"""
from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import List, Optional

from book_enricher.core.models import SearchResult
from book_enricher.core.normalize import looks_like_isbn, normalize_query
from book_enricher.integrations.cache import TTLCache
from book_enricher.profiler import ProviderProfiler
from book_enricher.providers.base import ProviderRegistry

logger = logging.getLogger(__name__)

SUCCESS_TTL_S = 24 * 3600
FAILURE_TTL_S = 3600
CACHE_PREFIX = "multi_search:"

ISBN_SUGGESTIONS = [
    "Try searching by book title instead of ISBN",
    "Verify the ISBN is correct and try again",
]
TEXT_SUGGESTIONS = [
    "Try using more specific keywords",
    "Search by ISBN if you have it",
    "Check spelling of title and author name",
]


def cache_key(normalized_query: str, options: Optional[dict] = None) -> str:
    opts = json.dumps(options or {}, sort_keys=True, default=str)
    opts_hash = hashlib.sha256(opts.encode("utf-8")).hexdigest()
    digest = hashlib.sha256((normalized_query + opts_hash).encode("utf-8")).hexdigest()
    return CACHE_PREFIX + digest


class MultiSourceSearch:
    def __init__(
        self,
        registry: ProviderRegistry,
        cache: TTLCache,
        *,
        profiler: Optional[ProviderProfiler] = None,
        success_ttl_s: int = SUCCESS_TTL_S,
        failure_ttl_s: int = FAILURE_TTL_S,
    ) -> None:
        self.registry = registry
        self.cache = cache
        self.profiler = profiler or ProviderProfiler()
        self.success_ttl_s = success_ttl_s
        self.failure_ttl_s = failure_ttl_s

    def search(self, query: str, options: Optional[dict] = None) -> SearchResult:
        options = dict(options or {})
        normalized = normalize_query(query)
        key = cache_key(normalized, options)

        cached = self.cache.get(key)
        if cached is not None:
            logger.info("search cache hit | query=%s | key=%s", normalized, key)
            return SearchResult.from_dict(cached)

        tried: List[str] = []
        for provider in self.registry.enabled():
            tried.append(provider.name)
            started = time.monotonic()
            try:
                result = provider.search(normalized, options)
            except Exception as e:
                elapsed = time.monotonic() - started
                self.profiler.record(provider.name, elapsed, found=False, error=True)
                logger.warning(
                    "search | provider=%s | outcome=error | ms=%d | query=%s | err=%r",
                    provider.name,
                    elapsed * 1000,
                    normalized,
                    e,
                )
                continue

            elapsed = time.monotonic() - started
            found = result.has_results
            self.profiler.record(provider.name, elapsed, found=found)
            logger.info(
                "search | provider=%s | outcome=%s | total_found=%s | ms=%d | query=%s",
                provider.name,
                "found" if found else "empty",
                result.total_found,
                elapsed * 1000,
                normalized,
            )
            if found:
                result.provider_name = result.provider_name or provider.name
                result.query = normalized
                result.providers_tried = list(tried)
                self.cache.put(key, result.to_dict(), self.success_ttl_s)
                return result

        failure = SearchResult(
            success=False,
            provider_name="",
            message="No books found in any provider",
            query=normalized,
            providers_tried=tried,
            suggestions=list(ISBN_SUGGESTIONS if looks_like_isbn(normalized) else TEXT_SUGGESTIONS),
        )
        self.cache.put(key, failure.to_dict(), self.failure_ttl_s)
        logger.info("search | outcome=not_found | query=%s | providers=%s", normalized, ",".join(tried))
        return failure

    def search_with_provider(self, name: str, query: str, options: Optional[dict] = None) -> SearchResult:
        """Query one provider directly, bypassing priority order and cache."""
        provider = self.registry.get(name)
        if provider is None:
            return SearchResult.failure(name, f"Provider '{name}' not found", query)
        if not provider.is_enabled():
            return SearchResult.failure(name, f"Provider '{name}' is disabled", query)
        normalized = normalize_query(query)
        try:
            return provider.search(normalized, dict(options or {}))
        except Exception as e:
            logger.warning("search | provider=%s | outcome=error | query=%s | err=%r", name, normalized, e)
            return SearchResult.failure(name, f"Provider '{name}' failed: {e}", normalized)

    def stats(self) -> dict:
        providers = self.registry.all()
        return {
            "total_providers": len(providers),
            "enabled_providers": sum(1 for p in providers if p.is_enabled()),
            "providers": [p.get_config() for p in providers],
            "timings": self.profiler.summary(),
            "cache": {"entries": self.cache.size(), "hits": self.cache.hits, "misses": self.cache.misses},
        }

    def clear_cache(self) -> int:
        n = self.cache.flush()
        logger.info("search cache cleared | entries=%s", n)
        return n
