from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Iterable, List, Optional

import requests

from book_enricher.core.models import QUALITY_BASIC, QUALITY_ENHANCED, Book, EnrichmentOutcome, max_quality, utc_now
from book_enricher.core.normalize import first_author, normalize_isbn
from book_enricher.core.store import BookStore
from book_enricher.core.stats_tracker import StatsTracker
from book_enricher.extract.google_books import extract_enrichment_fields, info_quality_for
from book_enricher.integrations.http_client import FetchError, TokenBucket, get_json
from book_enricher.providers.google_books import GOOGLE_BOOKS_URL

logger = logging.getLogger(__name__)

BATCH_SIZE = 10


class GoogleBooksEnricher:
    """
    Fill a book's empty fields from its Google Books volume.

    Requests are paced by the injected TokenBucket (5/s by default), shared by
    every call made through this instance.
    """

    def __init__(
        self,
        session: requests.Session,
        *,
        api_key: Optional[str] = None,
        limiter: Optional[TokenBucket] = None,
        timeout_s: int = 10,
        clock: Callable[[], str] = utc_now,
    ) -> None:
        self.session = session
        self.api_key = api_key
        self.limiter = limiter or TokenBucket(5.0, 1)
        self.timeout_s = timeout_s
        self.clock = clock

    def _get(self, url: str, params: Optional[dict] = None) -> dict:
        self.limiter.take()
        params = dict(params or {})
        if self.api_key:
            params["key"] = self.api_key
        return get_json(self.session, url, params=params, timeout_s=self.timeout_s, label="GoogleBooks")

    def fetch_volume(self, book: Book, google_id: Optional[str] = None) -> Optional[dict]:
        volume_id = google_id or book.google_id
        if volume_id:
            data = self._get(f"{GOOGLE_BOOKS_URL}/{volume_id}")
            if data.get("volumeInfo"):
                return data

        isbn = normalize_isbn(book.isbn)
        if isbn:
            data = self._get(GOOGLE_BOOKS_URL, {"q": f"isbn:{isbn}", "maxResults": "1"})
            items = data.get("items") or []
            if items:
                return items[0]

        if book.title:
            q = f'intitle:"{book.title}"'
            author = first_author(book.authors)
            if author:
                q += f' inauthor:"{author}"'
            data = self._get(GOOGLE_BOOKS_URL, {"q": q, "maxResults": "1", "printType": "books"})
            items = data.get("items") or []
            if items:
                return items[0]
        return None

    def enrich_book(
        self,
        book: Book,
        google_id: Optional[str] = None,
        skip_fields: Iterable[str] = (),
    ) -> EnrichmentOutcome:
        try:
            volume = self.fetch_volume(book, google_id)
        except FetchError as e:
            logger.error("google enrich error | book=%s | err=%s", book.id, e)
            return EnrichmentOutcome(book, False, "google_books", f"Google Books request failed: {e}")
        if volume is None:
            return EnrichmentOutcome(book, False, "google_books", "Book not found in Google Books API")

        fields = extract_enrichment_fields(book, volume, skip_fields)
        updated = replace(book, **fields)
        quality = max_quality(book.info_quality, info_quality_for(updated.to_dict()))
        updated = replace(updated, info_quality=quality, enriched_at=self.clock())
        logger.info(
            "google enrich | book=%s | fields=%s | quality=%s->%s",
            book.id,
            ",".join(sorted(fields)),
            book.info_quality,
            quality,
        )
        return EnrichmentOutcome(updated, True, "google_books", "Book enriched successfully", tuple(sorted(fields)))

    def enrich_batch(
        self,
        store: BookStore,
        ids: Optional[Iterable[str]] = None,
        batch_size: int = BATCH_SIZE,
    ) -> dict:
        """Enrich up to `batch_size` books that are still basic and never enriched."""
        books = store.select(
            ids=ids,
            predicate=lambda b: (b.info_quality or QUALITY_BASIC) == QUALITY_BASIC and not b.enriched_at,
            limit=batch_size,
        )
        results: List[EnrichmentOutcome] = []
        for book in books:
            outcome = self.enrich_book(book)
            if outcome.success:
                store.set(outcome.book)
            results.append(outcome)
        return {
            "processed": len(results),
            "results": results,
            "success_count": sum(1 for r in results if r.success),
            "error_count": sum(1 for r in results if not r.success),
        }

    def enrich_books(
        self,
        store: BookStore,
        books: List[Book],
        *,
        batch_size: int = BATCH_SIZE,
        stats: Optional[StatsTracker] = None,
    ) -> List[EnrichmentOutcome]:
        """Enrich an already selected list, `batch_size` books per chunk."""
        outcomes: List[EnrichmentOutcome] = []
        size = max(1, int(batch_size))
        for start in range(0, len(books), size):
            chunk = books[start : start + size]
            logger.info("google enrich batch | books=%s-%s/%s", start + 1, start + len(chunk), len(books))
            for book in chunk:
                if stats is not None:
                    stats.inc_requests()
                outcome = self.enrich_book(book)
                if outcome.success:
                    store.set(outcome.book)
                if stats is not None:
                    stats.record(book.id, outcome.success, outcome.message)
                outcomes.append(outcome)
        return outcomes


def select_books(
    store: BookStore,
    ids: Optional[Iterable[str]] = None,
    *,
    only_basic: bool = False,
    max_books: int = 100,
) -> List[Book]:
    """
    Explicit ids win (no limit). Otherwise basic books only, or by default
    basic/enhanced books plus anything never enriched, capped at `max_books`.
    """
    ids = list(ids or [])
    if ids:
        return store.select(ids=ids)
    if only_basic:
        return store.select(predicate=lambda b: (b.info_quality or QUALITY_BASIC) == QUALITY_BASIC, limit=max_books)
    return store.select(
        predicate=lambda b: (b.info_quality or QUALITY_BASIC) in (QUALITY_BASIC, QUALITY_ENHANCED) or not b.enriched_at,
        limit=max_books,
    )
