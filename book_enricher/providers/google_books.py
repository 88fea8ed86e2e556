from __future__ import annotations

import logging
from typing import Dict, Optional

import requests

from book_enricher.core.models import SearchResult
from book_enricher.core.normalize import looks_like_isbn, normalize_isbn
from book_enricher.extract.google_books import transform_volume
from book_enricher.integrations.http_client import FetchError, TokenBucket, get_json
from book_enricher.providers.base import BookSearchProvider

logger = logging.getLogger(__name__)

GOOGLE_BOOKS_URL = "https://www.googleapis.com/books/v1/volumes"

_LEADING_ARTICLES = {
    "a", "an", "the", "o", "os", "as", "um", "uma", "de", "da", "do",
    "e", "and", "or", "of", "in", "on", "at", "to", "for",
}
_MEANINGFUL_SHORT = {"ai", "io", "it", "is", "if", "or", "no", "so", "go", "do", "be"}
_COMMON_FIRST_NAMES = {
    "rebecca", "john", "jane", "michael", "sarah", "david", "maria", "carlos", "ana", "pedro", "jose", "antonio",
}
_SURNAME_SUFFIXES = ("son", "sen", "ez", "oz", "sson", "ros", "rez")


def remove_articles(query: str) -> str:
    words = (query or "").split()
    if len(words) > 1 and words[0].lower() in _LEADING_ARTICLES:
        words = words[1:]
    words = [w for w in words if len(w) > 2 or w.lower() in _MEANINGFUL_SHORT]
    return " ".join(words) or (query or "").strip()


def looks_like_author_name(query: str) -> bool:
    words = (query or "").split()
    if len(words) != 2:
        return False
    if not all(w[:1].isupper() and w[1:].islower() for w in words):
        return False
    first, last = words[0].lower(), words[1].lower()
    return first in _COMMON_FIRST_NAMES or last.endswith(_SURNAME_SUFFIXES)


def build_search_query(query: str, options: Optional[dict] = None) -> str:
    options = options or {}
    if looks_like_isbn(query):
        return f"isbn:{normalize_isbn(query)}"
    if options.get("title") and options.get("author"):
        return f"intitle:{options['title']} inauthor:{options['author']}"
    cleaned = remove_articles(query)
    if looks_like_author_name(cleaned):
        return f"inauthor:{cleaned}"
    if cleaned:
        return f"intitle:{cleaned}"
    return query


class GoogleBooksProvider(BookSearchProvider):
    name = "google_books"

    def __init__(
        self,
        session: requests.Session,
        *,
        api_key: Optional[str] = None,
        priority: int = 1,
        enabled: bool = True,
        timeout_s: int = 10,
        limiter: Optional[TokenBucket] = None,
    ) -> None:
        super().__init__(priority=priority, enabled=enabled)
        self.session = session
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.limiter = limiter

    def search(self, query: str, options: Optional[dict] = None) -> SearchResult:
        options = options or {}
        search_query = build_search_query(query, options)
        params: Dict[str, str] = {
            "q": search_query,
            "maxResults": str(options.get("max_results") or 20),
            "printType": "books",
            "orderBy": "newest",
        }
        if self.api_key:
            params["key"] = self.api_key
        words = (query or "").split()
        if len(words) == 1 and len(query.strip()) <= 3:
            params["filter"] = "ebooks"

        if self.limiter is not None:
            self.limiter.take()
        try:
            data = get_json(self.session, GOOGLE_BOOKS_URL, params=params, timeout_s=self.timeout_s, label="GoogleBooks")
        except FetchError as e:
            logger.warning("provider error | provider=%s | query=%s | err=%s", self.name, search_query, e)
            return SearchResult.failure(self.name, "Google Books API request failed", query)

        items = [i for i in data.get("items") or [] if isinstance(i, dict)]
        books = [transform_volume(i) for i in items]
        books = [b for b in books if b["title"]]
        if not books:
            return SearchResult(success=False, provider_name=self.name, message="No books found", query=query)
        return SearchResult(
            success=True,
            provider_name=self.name,
            books=books,
            total_found=int(data.get("totalItems") or len(books)),
            message=f"Found {len(books)} books",
            query=query,
        )
