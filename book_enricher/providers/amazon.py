from __future__ import annotations

import logging
from typing import Optional

import requests

from book_enricher.core.models import SearchResult
from book_enricher.core.regions import DEFAULT_REGION, get_region, resolve_region
from book_enricher.extract.amazon_html import extract_search_candidates
from book_enricher.integrations.http_client import (
    DEFAULT_TIMEOUT_S,
    FetchError,
    FixedDelayPacer,
    browser_headers,
    get_text,
)
from book_enricher.providers.base import BookSearchProvider

logger = logging.getLogger(__name__)


class ProductAdvertisingApi:
    """
    Placeholder for the Amazon Product Advertising API (PA-API 5).

    Request signing is not implemented; the client reports itself enabled only
    when switched on and fully credentialed, and every search returns a
    structured failure so callers fall through to scraping.
    """

    name = "amazon_pa_api"

    def __init__(
        self,
        *,
        access_key: str = "",
        secret_key: str = "",
        partner_tag: str = "",
        enabled: bool = False,
    ) -> None:
        self.access_key = access_key
        self.secret_key = secret_key
        self.partner_tag = partner_tag
        self.enabled = enabled

    def is_enabled(self) -> bool:
        return bool(self.enabled and self.access_key and self.secret_key and self.partner_tag)

    def search_items(self, keywords: str, region: str = DEFAULT_REGION) -> SearchResult:
        logger.info("pa-api search skipped | region=%s | keywords=%s | reason=not_implemented", region, keywords)
        return SearchResult.failure(self.name, "PA-API client is not available", keywords)


def search_page_url(term: str, region_code: str) -> tuple:
    region = get_region(region_code)
    return region.search_url, {"k": term, "i": "stripbooks"}


class AmazonSearchProvider(BookSearchProvider):
    """Amazon marketplace search: PA-API when available, else the results page."""

    name = "amazon"

    def __init__(
        self,
        session: requests.Session,
        *,
        pacer: Optional[FixedDelayPacer] = None,
        pa_api: Optional[ProductAdvertisingApi] = None,
        default_region: str = DEFAULT_REGION,
        priority: int = 2,
        enabled: bool = False,
        timeout_s: int = DEFAULT_TIMEOUT_S,
    ) -> None:
        super().__init__(priority=priority, enabled=enabled)
        self.session = session
        self.pacer = pacer
        self.pa_api = pa_api or ProductAdvertisingApi()
        self.default_region = default_region
        self.timeout_s = timeout_s

    def search(self, query: str, options: Optional[dict] = None) -> SearchResult:
        options = options or {}
        region_code = resolve_region(options.get("language"), self.default_region)

        if self.pa_api.is_enabled():
            result = self.pa_api.search_items(query, region_code)
            if result.has_results:
                return result

        region = get_region(region_code)
        url, params = search_page_url(query, region_code)
        if self.pacer is not None:
            self.pacer.wait()
        try:
            html = get_text(
                self.session,
                url,
                params=params,
                headers=browser_headers(region),
                timeout_s=self.timeout_s,
                label="AmazonSearch",
            )
        except FetchError as e:
            logger.warning("provider error | provider=%s | query=%s | err=%s", self.name, query, e)
            return SearchResult.failure(self.name, "Amazon search request failed", query)

        books = [
            {
                "provider": self.name,
                "amazon_asin": asin,
                "title": title,
                "amazon_url": f"{region.base_url}/dp/{asin}",
                "region": region.code,
            }
            for asin, title in extract_search_candidates(html)
            if title
        ]
        if not books:
            return SearchResult(success=False, provider_name=self.name, message="No books found", query=query)
        return SearchResult(
            success=True,
            provider_name=self.name,
            books=books,
            total_found=len(books),
            message=f"Found {len(books)} books",
            query=query,
        )
