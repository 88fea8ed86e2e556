import requests

from book_enricher.core.models import ASIN_COMPLETED, ASIN_PENDING, Book
from book_enricher.core.store import BookStore
from book_enricher.core.stats_tracker import StatsTracker
from book_enricher.enrich.asin_audit import UNEXTRACTED_TITLE, AsinAuditor, should_clean
from book_enricher.integrations import http_client
from book_enricher.integrations.http_client import FixedDelayPacer

from fakes import FakeSession, html

DUNE_PAGE = (
    '<span id="productTitle">Dune: Deluxe Edition</span>'
    "<li><span>Paperback</span></li><li><span>ISBN-13 : </span><span>978-0441172719</span></li>"
)
TV_PAGE = '<span id="productTitle">Samsung 55" Smart TV</span><a href="/tv">Electronics</a>'


def pages(mapping: dict):
    def handler(url, params):
        status, body = mapping[url]
        return html(body, status_code=status)

    return handler


def auditor(session, **kw) -> AsinAuditor:
    kw.setdefault("pacer", FixedDelayPacer(0))
    return AsinAuditor(session, **kw)


def test_accurate_by_title() -> None:
    session = FakeSession(pages({"https://www.amazon.com/dp/0441172717": (200, DUNE_PAGE)}))
    result = auditor(session).check(Book(id="1", title="Dune", amazon_asin="0441172717"))
    assert result.accurate
    assert result.amazon_title == "Dune: Deluxe Edition"
    assert result.title_score >= 0.8
    assert result.url == "https://www.amazon.com/dp/0441172717"


def test_accurate_by_isbn_despite_title() -> None:
    session = FakeSession(pages({"https://www.amazon.com/dp/0441172717": (200, DUNE_PAGE)}))
    result = auditor(session).check(Book(id="1", title="Duna", isbn="0441172717", amazon_asin="0441172717"))
    assert result.accurate
    assert result.isbn_match
    assert result.title_score < 0.7


def test_uses_book_region() -> None:
    session = FakeSession(pages({"https://www.amazon.de/dp/3453317092": (200, DUNE_PAGE)}))
    result = auditor(session).check(Book(id="1", title="Der Wüstenplanet", language="de", amazon_asin="3453317092"))
    assert result.url == "https://www.amazon.de/dp/3453317092"


def test_non_book_product_is_cleanable() -> None:
    session = FakeSession(pages({"https://www.amazon.com/dp/B0TV000001": (200, TV_PAGE)}))
    result = auditor(session).check(Book(id="1", title="The Hobbit", amazon_asin="B0TV000001"))
    assert not result.accurate
    assert not result.is_book
    assert result.error == "Product is not a book"
    assert should_clean(result)


def test_unextractable_title_is_kept_when_asin_on_page() -> None:
    body = "<html><body><li>Paperback</li><input name='ASIN' value='B00ABC1234'></body></html>"
    session = FakeSession(pages({"https://www.amazon.com/dp/B00ABC1234": (200, body)}))
    result = auditor(session).check(Book(id="1", title="Dune", amazon_asin="B00ABC1234"))
    assert result.accurate
    assert result.amazon_title == UNEXTRACTED_TITLE
    assert not should_clean(result)


def test_http_error_is_cleanable() -> None:
    session = FakeSession(pages({"https://www.amazon.com/dp/B0GONE0000": (404, "not found")}))
    result = auditor(session).check(Book(id="1", title="Dune", amazon_asin="B0GONE0000"))
    assert not result.accurate
    assert result.error == "HTTP 404: invalid ASIN"
    assert should_clean(result)


def test_network_error_is_never_cleaned(monkeypatch) -> None:
    monkeypatch.setattr(http_client, "_sleep_jitter", lambda base, jitter=0.25: None)

    def down(url, params):
        raise requests.ConnectionError("connection refused")

    session = FakeSession(down)
    result = auditor(session).check(Book(id="1", title="Dune", amazon_asin="0441172717"))
    assert not result.accurate
    assert result.error.startswith("network error")
    assert not should_clean(result)
    assert len(session.calls) == 3


def test_clean_resets_bad_rows() -> None:
    good = Book(id="1", title="Dune", amazon_asin="0441172717", asin_status=ASIN_COMPLETED)
    bad = Book(id="2", title="The Hobbit", amazon_asin="B0TV000001", asin_status=ASIN_COMPLETED, asin_processed_at="x")
    store = BookStore([good, bad])
    session = FakeSession(
        pages(
            {
                "https://www.amazon.com/dp/0441172717": (200, DUNE_PAGE),
                "https://www.amazon.com/dp/B0TV000001": (200, TV_PAGE),
            }
        )
    )
    checks = auditor(session).clean(store, [good, bad])

    assert [c.accurate for c in checks] == [True, False]
    assert store.get("1") == good
    cleaned = store.get("2")
    assert (cleaned.amazon_asin, cleaned.asin_status, cleaned.asin_processed_at) == ("", ASIN_PENDING, "")
    assert store.dirty


def test_clean_dry_run_changes_nothing() -> None:
    bad = Book(id="2", title="The Hobbit", amazon_asin="B0TV000001")
    store = BookStore([bad])
    session = FakeSession(pages({"https://www.amazon.com/dp/B0TV000001": (200, TV_PAGE)}))
    checks = auditor(session).clean(store, [bad], dry_run=True)
    assert should_clean(checks[0])
    assert store.get("2").amazon_asin == "B0TV000001"
    assert not store.dirty


def test_validate_paces_requests_and_skips_missing_asins() -> None:
    sleeps = []
    pacer = FixedDelayPacer(3.0, clock=lambda: 0.0, sleep=sleeps.append)
    stats = StatsTracker()
    session = FakeSession(
        pages(
            {
                "https://www.amazon.com/dp/0441172717": (200, DUNE_PAGE),
                "https://www.amazon.com/dp/B0TV000001": (200, TV_PAGE),
            }
        )
    )
    books = [
        Book(id="1", title="Dune", amazon_asin="0441172717"),
        Book(id="2", title="No Asin"),
        Book(id="3", title="The Hobbit", amazon_asin="B0TV000001"),
    ]
    checks = auditor(session, pacer=pacer, stats=stats).validate(books)

    assert [c.book_id for c in checks] == ["1", "3"]
    assert sleeps == [3.0]
    snap = stats.snapshot()
    assert (snap.processed, snap.succeeded, snap.failed, snap.requests_made) == (2, 1, 1, 2)
