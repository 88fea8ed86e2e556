"""
Amazon ASIN enrichment for a single book.

Status lifecycle on the Book row: pending -> processing (set right before the
job is dispatched) -> completed | failed. `failed` is terminal; re-running the
command is the retry. Books that already carry an ASIN complete without any
network traffic.
"""
from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Tuple

import requests

from book_enricher.core.matching import (
    DEFAULT_THRESHOLDS,
    MatchThresholds,
    quick_title_match,
    validate_product_match,
)
from book_enricher.core.models import (
    ASIN_COMPLETED,
    ASIN_FAILED,
    ASIN_PENDING,
    ASIN_PROCESSING,
    Book,
    EnrichmentCandidate,
    EnrichmentOutcome,
    max_quality,
    utc_now,
)
from book_enricher.core.normalize import clean_title, first_author, normalize_isbn, remove_series
from book_enricher.core.regions import DEFAULT_REGION, get_region, region_from_url, resolve_region
from book_enricher.core.store import BookStore
from book_enricher.core.stats_tracker import StatsTracker
from book_enricher.extract.amazon_html import asin_from_url, extract_product, extract_search_candidates
from book_enricher.extract.google_books import info_quality_for
from book_enricher.integrations.http_client import (
    DEFAULT_TIMEOUT_S,
    FetchError,
    FixedDelayPacer,
    browser_headers,
    get_text,
)
from book_enricher.providers.amazon import ProductAdvertisingApi, search_page_url

logger = logging.getLogger(__name__)

_PLACEHOLDER_MARKERS = ("placeholder", "no-image", "no_image", "noimage", "nophoto", "default-book", "default_cover")
_CANONICAL = re.compile(r'<link[^>]*rel="canonical"[^>]*href="([^"]+)"', re.I)


class EnrichmentError(RuntimeError):
    @classmethod
    def invalid_book_data(cls, book_id: str, reason: str) -> "EnrichmentError":
        return cls(f"Invalid book data for book {book_id}: {reason}")


def is_placeholder_thumbnail(url: str) -> bool:
    url = (url or "").strip().lower()
    if not url:
        return True
    if "books.google" in url and "id=test" in url:
        return True
    return any(marker in url for marker in _PLACEHOLDER_MARKERS)


def search_terms(book: Book) -> List[Tuple[str, str]]:
    """Ordered (strategy, term) pairs; ISBN always first when present."""
    terms: List[Tuple[str, str]] = []
    isbn = normalize_isbn(book.isbn)
    if isbn:
        terms.append(("isbn", isbn))
    title = (book.title or "").strip()
    author = first_author(book.authors)
    if title:
        terms.append(("title_author", f"{title} {author}".strip()))
        cleaned = clean_title(title)
        if cleaned and cleaned != title:
            if author:
                terms.append(("clean_title_author", f"{cleaned} {author}"))
            terms.append(("clean_title", cleaned))
        no_series = remove_series(title)
        if no_series and no_series != title:
            terms.append(("title_no_series", no_series))

    seen = set()
    out = []
    for name, term in terms:
        key = term.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append((name, term))
    return out


def merge_candidate(book: Book, candidate: EnrichmentCandidate) -> Tuple[Book, Tuple[str, ...]]:
    """
    Apply a validated candidate to `book`.

    Only empty fields are filled (a placeholder thumbnail counts as empty);
    the ASIN is always taken from the candidate.
    """
    changes: Dict[str, object] = {"amazon_asin": candidate.asin}
    if candidate.thumbnail and is_placeholder_thumbnail(book.thumbnail):
        changes["thumbnail"] = candidate.thumbnail
    if candidate.isbn and not book.isbn:
        changes["isbn"] = candidate.isbn
    if candidate.description and not book.description:
        changes["description"] = candidate.description
    if candidate.publisher and not book.publisher:
        changes["publisher"] = candidate.publisher
    if candidate.page_count and not book.page_count:
        changes["page_count"] = candidate.page_count
    if candidate.authors and not book.authors:
        changes["authors"] = candidate.authors
    if candidate.dimensions:
        width, thickness, height = candidate.dimensions
        if width and not book.width:
            changes["width"] = width
        if thickness and not book.thickness:
            changes["thickness"] = thickness
        if height and not book.height:
            changes["height"] = height

    updated = replace(book, **changes)
    quality = max_quality(book.info_quality, info_quality_for(updated.to_dict()))
    updated = replace(updated, info_quality=quality)
    filled = tuple(k for k in changes if getattr(book, k) != changes[k])
    return updated, filled


class AmazonEnricher:
    def __init__(
        self,
        session: requests.Session,
        *,
        pacer: Optional[FixedDelayPacer] = None,
        pa_api: Optional[ProductAdvertisingApi] = None,
        thresholds: MatchThresholds = DEFAULT_THRESHOLDS,
        default_region: str = DEFAULT_REGION,
        timeout_s: int = DEFAULT_TIMEOUT_S,
        clock: Callable[[], str] = utc_now,
        stats: Optional[StatsTracker] = None,
    ) -> None:
        self.session = session
        self.pacer = pacer
        self.pa_api = pa_api
        self.thresholds = thresholds
        self.default_region = default_region
        self.timeout_s = timeout_s
        self.clock = clock
        self.stats = stats

    def enrich(self, book: Book) -> EnrichmentOutcome:
        if book.amazon_asin:
            done = replace(book, asin_status=ASIN_COMPLETED, asin_processed_at=book.asin_processed_at or self.clock())
            logger.info("amazon enrich skipped | book=%s | reason=asin_present | asin=%s", book.id, book.amazon_asin)
            return EnrichmentOutcome(done, True, "existing", "ASIN already present")
        if not normalize_isbn(book.isbn) and not (book.title or "").strip():
            logger.warning("amazon enrich skipped | book=%s | reason=nothing_to_search", book.id)
            return EnrichmentOutcome(self._failed(book), False, "", "nothing to search on (no ISBN or title)")

        region = resolve_region(book.language, self.default_region)
        candidate: Optional[EnrichmentCandidate] = None
        source = ""
        if self.pa_api is not None and self.pa_api.is_enabled():
            candidate = self._search_pa_api(book, region)
            source = "pa_api"
        if candidate is None:
            candidate = self._search_scraper(book, region)
            source = "scraper"

        if candidate is None:
            logger.info("amazon enrich failed | book=%s | region=%s | reason=no_match", book.id, region)
            return EnrichmentOutcome(self._failed(book), False, "", "no matching Amazon product found")

        updated, filled = merge_candidate(book, candidate)
        updated = replace(updated, asin_status=ASIN_COMPLETED, asin_processed_at=self.clock())
        logger.info(
            "amazon enrich completed | book=%s | asin=%s | source=%s | fields=%s",
            book.id,
            candidate.asin,
            source,
            ",".join(filled),
        )
        return EnrichmentOutcome(updated, True, source, f"matched ASIN {candidate.asin}", filled)

    def enrich_from_url(self, book: Book, url: str) -> EnrichmentOutcome:
        """
        Operator-supplied product link: the ASIN is taken as given (replacing
        any existing one) and empty fields are filled from the product page.
        """
        region_code = region_from_url(url)
        if region_code is None:
            raise EnrichmentError.invalid_book_data(book.id, f"not an Amazon URL: {url}")
        region = get_region(region_code)
        asin = asin_from_url(url)
        if asin is None:
            html = self._fetch(url, None, region_code, "AmazonShortLink")
            canonical = _CANONICAL.search(html or "")
            asin = asin_from_url(canonical.group(1) if canonical else (html or ""))
        if asin is None:
            raise EnrichmentError.invalid_book_data(book.id, f"no ASIN found for URL: {url}")

        html = self._fetch(f"{region.base_url}/dp/{asin}", None, region_code, "AmazonProduct")
        candidate = extract_product(html, asin) if html else EnrichmentCandidate(asin=asin)
        base = replace(book, amazon_asin="")
        updated, filled = merge_candidate(base, candidate)
        updated = replace(updated, asin_status=ASIN_COMPLETED, asin_processed_at=self.clock())
        logger.info("amazon url applied | book=%s | asin=%s | region=%s | fields=%s", book.id, asin, region_code, ",".join(filled))
        return EnrichmentOutcome(updated, True, "manual_url", f"ASIN {asin} set from URL", filled)

    def _failed(self, book: Book) -> Book:
        return replace(book, asin_status=ASIN_FAILED, asin_processed_at=self.clock())

    def _fetch(self, url: str, params: Optional[dict], region_code: str, label: str) -> Optional[str]:
        if self.pacer is not None:
            self.pacer.wait()
        if self.stats is not None:
            self.stats.inc_requests()
        try:
            return get_text(
                self.session,
                url,
                params=params,
                headers=browser_headers(get_region(region_code)),
                timeout_s=self.timeout_s,
                label=label,
            )
        except FetchError as e:
            if self.stats is not None:
                self.stats.inc_errors()
            logger.warning("fetch failed | label=%s | url=%s | err=%s", label, url, e)
            return None

    def _search_pa_api(self, book: Book, region_code: str) -> Optional[EnrichmentCandidate]:
        query = normalize_isbn(book.isbn) or f"{book.title} {book.authors}".strip()
        result = self.pa_api.search_items(query, region_code)
        if not result.has_results:
            return None
        first = result.books[0]
        candidate = EnrichmentCandidate(
            asin=str(first.get("amazon_asin") or first.get("asin") or ""),
            title=first.get("title"),
            isbn=first.get("isbn"),
            authors=first.get("authors"),
            thumbnail=first.get("thumbnail"),
            description=first.get("description"),
            is_book=True,
        )
        if not candidate.asin:
            return None
        ok, reason = validate_product_match(book, candidate, self.thresholds)
        if not ok:
            logger.info("pa-api result rejected | book=%s | asin=%s | reason=%s", book.id, candidate.asin, reason)
            return None
        return candidate

    def _search_scraper(self, book: Book, region_code: str) -> Optional[EnrichmentCandidate]:
        region = get_region(region_code)
        checked = set()
        for strategy, term in search_terms(book):
            url, params = search_page_url(term, region_code)
            html = self._fetch(url, params, region_code, "AmazonSearch")
            if html is None:
                continue
            candidates = extract_search_candidates(html)
            logger.info(
                "amazon search | book=%s | strategy=%s | term=%s | region=%s | candidates=%s",
                book.id,
                strategy,
                term,
                region.code,
                len(candidates),
            )
            for asin, result_title in candidates:
                if asin in checked:
                    continue
                checked.add(asin)
                if result_title and book.title and not quick_title_match(
                    result_title, book.title, self.thresholds.quick_title
                ):
                    logger.debug(
                        "candidate prefiltered | book=%s | asin=%s | book_title=%r | result_title=%r",
                        book.id,
                        asin,
                        book.title,
                        result_title,
                    )
                    continue
                product_html = self._fetch(f"{region.base_url}/dp/{asin}", None, region_code, "AmazonProduct")
                if product_html is None:
                    continue
                candidate = extract_product(product_html, asin)
                ok, reason = validate_product_match(book, candidate, self.thresholds)
                if ok:
                    logger.info(
                        "candidate accepted | book=%s | asin=%s | strategy=%s | reason=%s",
                        book.id,
                        asin,
                        strategy,
                        reason,
                    )
                    return candidate
        return None


def queue_enrichment(
    store: BookStore,
    book_id: str,
    dispatch: Callable[[str], None],
    clock: Callable[[], str] = utc_now,
) -> bool:
    """
    Mark a book `processing` and hand it to `dispatch`.
    Returns False (without dispatching) when the book already has an ASIN.
    If dispatch raises, a book still marked `processing` goes back to `pending`.
    """
    book = store.get(book_id)
    if book is None:
        raise EnrichmentError.invalid_book_data(book_id, "book not found")
    if book.amazon_asin:
        store.update_if_present(
            book_id,
            lambda b: replace(b, asin_status=ASIN_COMPLETED, asin_processed_at=b.asin_processed_at or clock()),
        )
        return False
    store.update_if_present(book_id, lambda b: replace(b, asin_status=ASIN_PROCESSING))
    logger.debug("amazon enrich dispatched | book=%s", book_id)
    try:
        dispatch(book_id)
    except BaseException:
        store.update_if_present(
            book_id,
            lambda b: replace(b, asin_status=ASIN_PENDING) if b.asin_status == ASIN_PROCESSING else b,
        )
        logger.warning("amazon enrich interrupted | book=%s | status=pending", book_id)
        raise
    return True


def run_enrichment_job(store: BookStore, book_id: str, enricher: AmazonEnricher) -> Optional[EnrichmentOutcome]:
    book = store.get(book_id)
    if book is None:
        logger.warning("amazon enrich job | book=%s | reason=missing", book_id)
        return None
    outcome = enricher.enrich(book)
    store.set(outcome.book)
    return outcome


def run_batch(
    store: BookStore,
    enricher: AmazonEnricher,
    books: List[Book],
    *,
    dry_run: bool = False,
    stats: Optional[StatsTracker] = None,
) -> List[EnrichmentOutcome]:
    """Enrich `books` strictly in sequence. Dry-run reports without touching the store."""
    outcomes: List[EnrichmentOutcome] = []
    if dry_run:
        for book in books:
            outcomes.append(EnrichmentOutcome(book, False, "dry_run", "would enrich"))
        return outcomes

    for i, book in enumerate(books, start=1):
        logger.info("amazon enrich | %s/%s | book=%s | title=%s", i, len(books), book.id, book.title)

        def _dispatch(book_id: str) -> None:
            outcome = run_enrichment_job(store, book_id, enricher)
            if outcome is not None:
                outcomes.append(outcome)

        dispatched = queue_enrichment(store, book.id, _dispatch, enricher.clock)
        if not dispatched:
            current = store.get(book.id) or book
            outcomes.append(EnrichmentOutcome(current, True, "existing", "ASIN already present"))
            if stats is not None:
                stats.record(book.id, None, "ASIN already present")
            continue
        if stats is not None and outcomes:
            last = outcomes[-1]
            stats.record(book.id, last.success, last.message)
    return outcomes
