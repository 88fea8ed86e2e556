# book_enricher/cli.py
from __future__ import annotations

import argparse
import logging
import re
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from book_enricher.config import Settings, load_dotenv, load_settings
from book_enricher.core.links import all_region_links, enrich_with_links
from book_enricher.core.models import ASIN_COMPLETED, Book
from book_enricher.core.regions import build_regions
from book_enricher.core.stats_tracker import StatsTracker
from book_enricher.core.store import BookStore
from book_enricher.enrich.amazon_enrich import AmazonEnricher, EnrichmentError, run_batch
from book_enricher.enrich.asin_audit import AsinAuditor, should_clean
from book_enricher.enrich.google_enrich import GoogleBooksEnricher, select_books
from book_enricher.integrations.cache import TTLCache
from book_enricher.integrations.http_client import (
    FixedDelayPacer,
    TokenBucket,
    make_api_session,
    make_scraper_session,
)
from book_enricher.io.books_file import read_books, write_books
from book_enricher.io.report import write_report
from book_enricher.providers.amazon import AmazonSearchProvider, ProductAdvertisingApi
from book_enricher.providers.base import ProviderRegistry
from book_enricher.providers.google_books import GoogleBooksProvider
from book_enricher.providers.open_library import OpenLibraryProvider
from book_enricher.search.multi_source import MultiSourceSearch

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

ASIN_RE = re.compile(r"^[A-Z0-9]{10}$")

logger = logging.getLogger(__name__)
console = Console()


def _truncate(text: str, n: int = 40) -> str:
    text = text or ""
    return text if len(text) <= n else text[:n] + "..."


def _print_table(title: str, headers: Sequence[str], rows: List[Sequence[object]]) -> None:
    table = Table(title=title)
    for h in headers:
        table.add_column(h)
    for row in rows:
        table.add_row(*[str(v) for v in row])
    console.print(table)


def _print_stats(title: str, stats: StatsTracker) -> None:
    snap = stats.snapshot()
    _print_table(
        title,
        ("Metric", "Value"),
        [
            ("total", snap.total),
            ("processed", snap.processed),
            ("succeeded", snap.succeeded),
            ("failed", snap.failed),
            ("skipped", snap.skipped),
            ("requests", snap.requests_made),
            ("errors", snap.errors),
            ("elapsed_s", f"{snap.elapsed_s:.1f}"),
        ],
    )
    for book_id, message in stats.failures()[:10]:
        logger.warning("failed | book=%s | %s", book_id, message)


class App:
    """Everything a command needs: settings, the loaded store and lazily built clients."""

    def __init__(self, args: argparse.Namespace, settings: Settings) -> None:
        self.args = args
        self.settings = settings
        self.regions = build_regions(settings.associate_tags)
        self._store: Optional[BookStore] = None
        self._scraper_session = None
        self._api_session = None
        self._scrape_pacer: Optional[FixedDelayPacer] = None

    @property
    def store(self) -> BookStore:
        if self._store is None:
            self._store = BookStore(read_books(self.args.books))
        return self._store

    def save(self) -> None:
        if self._store is not None and self._store.dirty:
            write_books(sorted(self._store.snapshot_values(), key=lambda b: b.id), self.args.books)

    def scraper_session(self):
        if self._scraper_session is None:
            self._scraper_session = make_scraper_session()
        return self._scraper_session

    def api_session(self):
        if self._api_session is None:
            self._api_session = make_api_session()
        return self._api_session

    def scrape_pacer(self) -> FixedDelayPacer:
        # one pacer for every scraping request in the process
        if self._scrape_pacer is None:
            self._scrape_pacer = FixedDelayPacer(self.settings.scrape_delay_s)
        return self._scrape_pacer

    def pa_api(self) -> ProductAdvertisingApi:
        s = self.settings
        return ProductAdvertisingApi(
            access_key=s.pa_api_access_key or "",
            secret_key=s.pa_api_secret_key or "",
            partner_tag=self.regions[s.default_region].associate_tag,
            enabled=s.pa_api_enabled,
        )

    def cache(self) -> TTLCache:
        return TTLCache(self.settings.cache_path)

    def search(self) -> MultiSourceSearch:
        s = self.settings
        p = s.providers
        registry = ProviderRegistry(
            [
                GoogleBooksProvider(
                    self.api_session(),
                    api_key=s.google_api_key,
                    priority=p["google_books"].priority,
                    enabled=p["google_books"].enabled,
                    timeout_s=s.timeout_s,
                    limiter=TokenBucket(s.google_rate_per_sec, 1),
                ),
                AmazonSearchProvider(
                    self.scraper_session(),
                    pacer=self.scrape_pacer(),
                    pa_api=self.pa_api(),
                    default_region=s.default_region,
                    priority=p["amazon"].priority,
                    enabled=p["amazon"].enabled,
                    timeout_s=s.timeout_s,
                ),
                OpenLibraryProvider(
                    self.api_session(),
                    priority=p["open_library"].priority,
                    enabled=p["open_library"].enabled,
                    timeout_s=s.timeout_s,
                ),
            ]
        )
        return MultiSourceSearch(registry, self.cache())

    def amazon_enricher(self, stats: Optional[StatsTracker] = None) -> AmazonEnricher:
        s = self.settings
        return AmazonEnricher(
            self.scraper_session(),
            pacer=self.scrape_pacer(),
            pa_api=self.pa_api(),
            thresholds=s.thresholds,
            default_region=s.default_region,
            timeout_s=s.timeout_s,
            stats=stats,
        )

    def auditor(self, stats: Optional[StatsTracker] = None) -> AsinAuditor:
        s = self.settings
        return AsinAuditor(
            self.scraper_session(),
            pacer=FixedDelayPacer(s.audit_delay_s),
            thresholds=s.thresholds,
            default_region=s.default_region,
            timeout_s=s.timeout_s,
            stats=stats,
        )

    def google_enricher(self) -> GoogleBooksEnricher:
        s = self.settings
        return GoogleBooksEnricher(
            self.api_session(),
            api_key=s.google_api_key,
            limiter=TokenBucket(s.google_rate_per_sec, 1),
            timeout_s=s.timeout_s,
        )

    def require_book(self, book_id: str) -> Book:
        book = self.store.get(book_id)
        if book is None:
            raise SystemExit(f"Book not found: {book_id}")
        return book


# -----------------------
# Commands
# -----------------------


def cmd_enrich_amazon(app: App) -> None:
    args = app.args
    if args.book_id:
        books = app.store.select(ids=args.book_id)
    else:
        books = app.store.select(predicate=lambda b: not b.amazon_asin, limit=args.max_books)
    if not books:
        logger.info("No books found without Amazon ASIN.")
        return
    logger.info("Amazon enrichment | books=%s | dry_run=%s", len(books), args.dry_run)

    if args.dry_run:
        _print_table(
            "Dry run: books that would be enriched",
            ("ID", "Title", "ISBN", "Authors"),
            [(b.id, _truncate(b.title), b.isbn or "N/A", _truncate(b.authors or "Unknown", 30)) for b in books],
        )
        return

    stats = StatsTracker(len(books))
    enricher = app.amazon_enricher(stats)
    outcomes = run_batch(app.store, enricher, books, stats=stats)
    for o in outcomes:
        if o.success and o.source != "existing":
            logger.info("ok | book=%s | asin=%s | filled=%s", o.book.id, o.book.amazon_asin, ",".join(o.fields_filled))
    _print_stats("Amazon enrichment", stats)


def cmd_enrich_google(app: App) -> None:
    args = app.args
    books = select_books(app.store, args.book_id, only_basic=args.only_basic, max_books=args.max_books)
    if not books:
        logger.info("No books found for enrichment.")
        return
    logger.info("Google Books enrichment | books=%s | dry_run=%s", len(books), args.dry_run)

    if args.dry_run:
        _print_table(
            "Dry run: books that would be enriched",
            ("ID", "Title", "Current Quality", "Last Update"),
            [(b.id, _truncate(b.title), b.info_quality or "basic", b.enriched_at or "Never") for b in books],
        )
        return

    stats = StatsTracker(len(books))
    outcomes = app.google_enricher().enrich_books(app.store, books, batch_size=args.batch_size, stats=stats)
    for o in outcomes:
        if o.success and o.fields_filled:
            logger.info("ok | book=%s | added=%s", o.book.id, ", ".join(o.fields_filled))
        elif not o.success:
            logger.warning("not enriched | book=%s | %s", o.book.id, o.message)
    _print_stats("Google Books enrichment", stats)


def _books_with_asin(app: App, limit: int = 0) -> List[Book]:
    ids = app.args.book_id
    return app.store.select(ids=ids, predicate=lambda b: bool(b.amazon_asin), limit=0 if ids else limit)


def _audit_rows(checks) -> List[Sequence[object]]:
    return [
        (
            c.book_id,
            c.asin,
            "yes" if c.accurate else "no",
            f"{c.title_score * 100:.1f}%",
            "yes" if c.isbn_match else "no",
            _truncate(c.error or c.amazon_title),
        )
        for c in checks
    ]


def cmd_validate_asins(app: App) -> None:
    args = app.args
    books = _books_with_asin(app, args.max_books)
    if not books:
        logger.info("No books with Amazon ASINs to validate.")
        return
    stats = StatsTracker(len(books))
    checks = app.auditor(stats).validate(books, args.threshold)
    accurate = sum(1 for c in checks if c.accurate)
    logger.info("ASIN validation | checked=%s | accurate=%s | inaccurate=%s", len(checks), accurate, len(checks) - accurate)
    shown = checks if args.show_details else [c for c in checks if not c.accurate]
    if shown:
        _print_table("ASIN validation", ("Book", "ASIN", "Accurate", "Title score", "ISBN match", "Amazon"), _audit_rows(shown))
    _print_stats("ASIN validation", stats)


def cmd_clean_asins(app: App) -> None:
    args = app.args
    books = _books_with_asin(app)
    if not books:
        logger.info("No books with Amazon ASINs to clean.")
        return
    if args.dry_run:
        logger.warning("DRY-RUN MODE - no changes will be made")
    stats = StatsTracker(len(books))
    checks = app.auditor(stats).clean(app.store, books, args.threshold, dry_run=args.dry_run)
    removed = [c for c in checks if should_clean(c)]
    logger.info(
        "ASIN cleaning | checked=%s | %s=%s | kept=%s",
        len(checks),
        "would_remove" if args.dry_run else "removed",
        len(removed),
        len(checks) - len(removed),
    )
    shown = checks if args.show_details else removed
    if shown:
        _print_table("ASIN cleaning", ("Book", "ASIN", "Accurate", "Title score", "ISBN match", "Amazon"), _audit_rows(shown))
    _print_stats("ASIN cleaning", stats)


def cmd_search(app: App) -> None:
    args = app.args
    options: Dict[str, str] = {}
    if args.title:
        options["title"] = args.title
    if args.author:
        options["author"] = args.author
    search = app.search()
    if args.provider:
        result = search.search_with_provider(args.provider, args.query, options)
    else:
        result = search.search(args.query, options)
    if args.profile:
        search.profiler.write(args.profile)
        logger.info("Wrote profile: %s", args.profile)

    if not result.has_results:
        logger.warning("No books found | query=%s | tried=%s | %s", args.query, ",".join(result.providers_tried), result.message)
        for tip in result.suggestions:
            logger.info("suggestion: %s", tip)
        return
    _print_table(
        f"{result.total_found} result(s) from {result.provider_name}",
        ("Title", "Authors", "ISBN", "Published"),
        [
            (
                _truncate(b.get("title") or ""),
                _truncate(b.get("authors") or "", 30),
                b.get("isbn") or "",
                b.get("published_date") or "",
            )
            for b in result.books[:20]
        ],
    )


def cmd_links(app: App) -> None:
    args = app.args
    books = app.store.select(ids=args.book_id)
    if args.all_regions:
        for book in books:
            links = all_region_links(book, regions=app.regions)
            _print_table(
                f"{book.id}: {_truncate(book.title)}",
                ("Region", "Label", "URL"),
                [(code, v["label"], v["url"]) for code, v in links.items()],
            )
        return
    rows = enrich_with_links(books, args.region, app.regions)
    _print_table("Amazon links", ("ID", "Region", "URL"), [(r["id"], r["amazon_region"], r["amazon_buy_link"]) for r in rows])


def cmd_set_asin(app: App) -> None:
    args = app.args
    asin = args.asin.strip().upper()
    if not ASIN_RE.match(asin):
        raise SystemExit(f"Invalid ASIN: {args.asin} (expected 10 letters/digits)")
    book = app.require_book(args.book_id)
    old = book.amazon_asin
    updated = replace(book, amazon_asin=asin, asin_status=ASIN_COMPLETED)
    app.store.set(updated)
    region = app.regions[app.settings.default_region]
    logger.info("ASIN set | book=%s | old=%s | new=%s", book.id, old or "(none)", asin)
    logger.info("Amazon link: %s/dp/%s?tag=%s", region.base_url, asin, region.associate_tag)


def cmd_extract_url(app: App) -> None:
    args = app.args
    book = app.require_book(args.book_id)
    try:
        outcome = app.amazon_enricher().enrich_from_url(book, args.url)
    except EnrichmentError as e:
        raise SystemExit(str(e)) from e
    app.store.set(outcome.book)
    logger.info("%s | book=%s | filled=%s", outcome.message, book.id, ",".join(outcome.fields_filled) or "(none)")


def cmd_status(app: App) -> None:
    counts = app.store.status_counts()
    _print_table("Enrichment status", ("Metric", "Count"), list(counts.items()))
    if app.args.report:
        cache = app.cache()
        write_report(app.store.snapshot_values(), app.args.report, {"entries": cache.size()})
        logger.info("Wrote report: %s", app.args.report)


def cmd_cache_clear(app: App) -> None:
    n = app.search().clear_cache()
    logger.info("Search cache cleared: %s entries", n)


COMMANDS: Dict[str, Callable[[App], None]] = {
    "enrich-amazon": cmd_enrich_amazon,
    "enrich-google": cmd_enrich_google,
    "validate-asins": cmd_validate_asins,
    "clean-asins": cmd_clean_asins,
    "search": cmd_search,
    "links": cmd_links,
    "set-asin": cmd_set_asin,
    "extract-url": cmd_extract_url,
    "status": cmd_status,
    "cache-clear": cmd_cache_clear,
}


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="book_enricher",
        description="Book metadata enrichment: Amazon ASINs, Google Books fields, multi-source search",
    )
    ap.add_argument("--books", default="books.csv", help="Books file (CSV or JSON) read and written back in place")
    ap.add_argument("--settings", default=None, help="YAML settings file (default: ./enricher.yaml when present)")
    ap.add_argument("--cache", default=None, help="Search cache JSONL path (overrides settings/env)")
    ap.add_argument("--log-level", default="info", help="Log level: debug, info, warning, error")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("enrich-amazon", help="Find Amazon ASINs for books without one")
    p.add_argument("--book-id", action="append", default=[], help="Specific book id (repeatable)")
    p.add_argument("--max-books", type=int, default=20, help="Maximum number of books to process")
    p.add_argument("--dry-run", action="store_true", help="Show what would be processed without making changes")

    p = sub.add_parser("enrich-google", help="Fill empty fields from Google Books")
    p.add_argument("--book-id", action="append", default=[], help="Specific book id (repeatable)")
    p.add_argument("--max-books", type=int, default=100, help="Maximum number of books to process")
    p.add_argument("--batch-size", type=int, default=10, help="Books per batch")
    p.add_argument("--only-basic", action="store_true", help="Only books with basic info quality")
    p.add_argument("--dry-run", action="store_true", help="Show what would be processed without making changes")

    p = sub.add_parser("validate-asins", help="Check stored ASINs against their product pages")
    p.add_argument("--book-id", action="append", default=[], help="Specific book id (repeatable)")
    p.add_argument("--max-books", type=int, default=10, help="Maximum number of books to check")
    p.add_argument("--threshold", type=float, default=None, help="Minimum title similarity 0-1 (default: thresholds.validate)")
    p.add_argument("--show-details", action="store_true", help="Show every book, not only inaccurate ones")

    p = sub.add_parser("clean-asins", help="Validate stored ASINs and remove the inaccurate ones")
    p.add_argument("--book-id", action="append", default=[], help="Specific book id (repeatable)")
    p.add_argument("--threshold", type=float, default=None, help="Minimum title similarity 0-1 (default: thresholds.clean)")
    p.add_argument("--dry-run", action="store_true", help="Show what would be cleaned without making changes")
    p.add_argument("--show-details", action="store_true", help="Show every book, not only removed ones")

    p = sub.add_parser("search", help="Search all enabled providers (cached)")
    p.add_argument("query")
    p.add_argument("--provider", default=None, help="Query one provider directly (google_books, amazon, open_library)")
    p.add_argument("--title", default=None)
    p.add_argument("--author", default=None)
    p.add_argument("--profile", default=None, help="Write per-provider timings JSON to this path")

    p = sub.add_parser("links", help="Amazon buy links for books")
    p.add_argument("--book-id", action="append", default=[], help="Specific book id (repeatable)")
    p.add_argument("--region", default=None, help="Region code (default: detected per book)")
    p.add_argument("--all-regions", action="store_true", help="One link per marketplace")

    p = sub.add_parser("set-asin", help="Set a book's ASIN by hand")
    p.add_argument("book_id")
    p.add_argument("asin")

    p = sub.add_parser("extract-url", help="Set a book's ASIN from an Amazon product URL")
    p.add_argument("book_id")
    p.add_argument("url")

    p = sub.add_parser("status", help="ASIN status counts")
    p.add_argument("--report", default=None, help="Also write a markdown report to this path")

    sub.add_parser("cache-clear", help="Drop every cached search result")
    return ap


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    level = LOG_LEVELS.get(args.log_level.lower(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )

    used = load_dotenv(".env")
    if used:
        logger.info("loaded .env: %s", used)
    else:
        logger.debug(".env not found via search paths; relying on existing environment variables")

    settings = load_settings(args.settings)
    if args.cache:
        settings.cache_path = args.cache
    logger.debug("settings | region=%s | cache=%s", settings.default_region, settings.cache_path)

    app = App(args, settings)
    try:
        COMMANDS[args.command](app)
    finally:
        app.save()


if __name__ == "__main__":
    main()
