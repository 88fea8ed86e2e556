"""
Re-check stored ASINs against their Amazon product pages.

`validate` only reports. `clean` drops ASINs whose page does not look like
the same book (or is not a book at all, or answers with an HTTP error) and
puts the row back to `pending` so the next enrichment run can retry it.
Network failures without a status code are reported but never clean.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional

import requests

from book_enricher.core.matching import DEFAULT_THRESHOLDS, MatchThresholds, isbn_match, title_match
from book_enricher.core.models import ASIN_PENDING, AsinCheck, Book
from book_enricher.core.regions import DEFAULT_REGION, detect_book_region, get_region
from book_enricher.core.store import BookStore
from book_enricher.core.stats_tracker import StatsTracker
from book_enricher.extract.amazon_html import extract_isbn, extract_title, is_book_page
from book_enricher.integrations.http_client import (
    DEFAULT_TIMEOUT_S,
    FetchError,
    FixedDelayPacer,
    browser_headers,
    get_text,
)

logger = logging.getLogger(__name__)

AUDIT_DELAY_S = 3.0
UNEXTRACTED_TITLE = "[Could not extract title]"
NETWORK_ERROR_PREFIX = "network error"


class AsinAuditor:
    def __init__(
        self,
        session: requests.Session,
        *,
        pacer: Optional[FixedDelayPacer] = None,
        thresholds: MatchThresholds = DEFAULT_THRESHOLDS,
        default_region: str = DEFAULT_REGION,
        timeout_s: int = DEFAULT_TIMEOUT_S,
        stats: Optional[StatsTracker] = None,
    ) -> None:
        self.session = session
        self.pacer = pacer if pacer is not None else FixedDelayPacer(AUDIT_DELAY_S)
        self.thresholds = thresholds
        self.default_region = default_region
        self.timeout_s = timeout_s
        self.stats = stats

    def check(self, book: Book, threshold: Optional[float] = None) -> AsinCheck:
        threshold = self.thresholds.validate if threshold is None else threshold
        asin = book.amazon_asin
        region = get_region(detect_book_region(book, self.default_region))
        url = f"{region.base_url}/dp/{asin}"
        logger.info("asin check | book=%s | asin=%s | url=%s", book.id, asin, url)

        self.pacer.wait()
        if self.stats is not None:
            self.stats.inc_requests()
        try:
            html = get_text(
                self.session,
                url,
                headers=browser_headers(region),
                timeout_s=self.timeout_s,
                retries=2,
                label="AmazonAudit",
            )
        except FetchError as e:
            if self.stats is not None:
                self.stats.inc_errors()
            logger.warning("asin check failed | book=%s | asin=%s | status=%s | err=%s", book.id, asin, e.status_code, e)
            msg = f"HTTP {e.status_code}: invalid ASIN" if e.status_code else f"{NETWORK_ERROR_PREFIX}: {e}"
            return AsinCheck(book.id, asin, False, url=url, error=msg)

        if not is_book_page(html):
            logger.info("asin check | book=%s | asin=%s | outcome=not_a_book | title=%r", book.id, asin, extract_title(html))
            return AsinCheck(
                book.id,
                asin,
                False,
                is_book=False,
                amazon_title=extract_title(html) or "",
                url=url,
                error="Product is not a book",
            )

        amazon_title = extract_title(html)
        amazon_isbn = extract_isbn(html) or ""
        if not amazon_title:
            if asin in html:
                logger.info("asin check | book=%s | asin=%s | outcome=kept_inconclusive", book.id, asin)
                return AsinCheck(
                    book.id,
                    asin,
                    True,
                    amazon_title=UNEXTRACTED_TITLE,
                    amazon_isbn=amazon_isbn,
                    url=url,
                )
            return AsinCheck(book.id, asin, False, url=url, error="Could not extract title from Amazon page")

        score = title_match(book.title, amazon_title)
        same_isbn = bool(book.isbn and amazon_isbn and isbn_match(book.isbn, amazon_isbn))
        accurate = same_isbn or score >= threshold
        logger.info(
            "asin check | book=%s | asin=%s | score=%.2f | isbn_match=%s | accurate=%s | ours=%r | theirs=%r",
            book.id,
            asin,
            score,
            same_isbn,
            accurate,
            book.title,
            amazon_title,
        )
        return AsinCheck(
            book.id,
            asin,
            accurate,
            amazon_title=amazon_title,
            amazon_isbn=amazon_isbn,
            title_score=score,
            isbn_match=same_isbn,
            url=url,
        )

    def validate(self, books: List[Book], threshold: Optional[float] = None) -> List[AsinCheck]:
        threshold = self.thresholds.validate if threshold is None else threshold
        checks: List[AsinCheck] = []
        for book in books:
            if not book.amazon_asin:
                continue
            result = self.check(book, threshold)
            if self.stats is not None:
                self.stats.record(book.id, result.accurate, result.error or result.amazon_title)
            checks.append(result)
        return checks

    def clean(
        self,
        store: BookStore,
        books: List[Book],
        threshold: Optional[float] = None,
        *,
        dry_run: bool = False,
    ) -> List[AsinCheck]:
        """Validate, then clear every ASIN that should go. Dry-run leaves the store untouched."""
        threshold = self.thresholds.clean if threshold is None else threshold
        checks = self.validate(books, threshold)
        for result in checks:
            if not should_clean(result):
                continue
            if dry_run:
                logger.info("asin clean (dry-run) | book=%s | asin=%s", result.book_id, result.asin)
                continue
            store.update_if_present(
                result.book_id,
                lambda b: replace(b, amazon_asin="", asin_status=ASIN_PENDING, asin_processed_at=""),
            )
            logger.info(
                "asin cleaned | book=%s | asin=%s | reason=%s",
                result.book_id,
                result.asin,
                result.error or f"score={result.title_score:.2f}",
            )
        return checks


def should_clean(result: AsinCheck) -> bool:
    """Inaccurate, not a book, or rejected by Amazon. Network failures never clean."""
    if result.accurate:
        return False
    return not result.error.startswith(NETWORK_ERROR_PREFIX)
