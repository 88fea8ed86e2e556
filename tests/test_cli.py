import pytest

from book_enricher import cli
from book_enricher.core.models import Book
from book_enricher.io.books_file import read_books, write_books

from fakes import FakeSession, html

ENV_VARS = (
    "ENV_PATH",
    "AMAZON_ASSOCIATE_TAG",
    "AMAZON_SCRAPER_SEARCH_ENABLED",
    "OPEN_LIBRARY_ENABLED",
    "AMAZON_PA_API_ENABLED",
    "BOOK_ENRICHER_CACHE",
    "GOOGLE_BOOKS_API_KEY",
)


@pytest.fixture()
def books_csv(monkeypatch, tmp_path) -> str:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    (tmp_path / "enricher.yaml").write_text(
        f"scrape_delay_s: 0\naudit_delay_s: 0\ncache_path: {tmp_path / 'cache.jsonl'}\n",
        encoding="utf-8",
    )
    path = tmp_path / "books.csv"
    write_books(
        [
            Book(id="1", title="Obscure Title"),
            Book(id="2", title="Dune", amazon_asin="0441172717", asin_status="completed"),
        ],
        str(path),
    )
    return str(path)


def test_set_asin_rewrites_file(books_csv) -> None:
    cli.main(["--books", books_csv, "set-asin", "1", "b00abc1234"])
    book = {b.id: b for b in read_books(books_csv)}["1"]
    assert book.amazon_asin == "B00ABC1234"
    assert book.asin_status == "completed"


def test_set_asin_rejects_bad_values(books_csv) -> None:
    with pytest.raises(SystemExit):
        cli.main(["--books", books_csv, "set-asin", "1", "short"])
    with pytest.raises(SystemExit):
        cli.main(["--books", books_csv, "set-asin", "missing", "B00ABC1234"])


def test_missing_books_file_exits(books_csv, tmp_path) -> None:
    with pytest.raises(SystemExit):
        cli.main(["--books", str(tmp_path / "nope.csv"), "status"])


def test_enrich_amazon_dry_run_touches_nothing(books_csv, monkeypatch) -> None:
    def no_session():
        raise AssertionError("dry run must not open a session")

    monkeypatch.setattr(cli, "make_scraper_session", no_session)
    before = open(books_csv, encoding="utf-8").read()
    cli.main(["--books", books_csv, "enrich-amazon", "--dry-run"])
    assert open(books_csv, encoding="utf-8").read() == before


def test_enrich_amazon_marks_unmatched_books_failed(books_csv, monkeypatch) -> None:
    session = FakeSession(lambda url, params: html("<html>no results</html>"))
    monkeypatch.setattr(cli, "make_scraper_session", lambda: session)

    cli.main(["--books", books_csv, "enrich-amazon"])

    books = {b.id: b for b in read_books(books_csv)}
    assert books["1"].asin_status == "failed"
    assert books["1"].asin_processed_at
    assert books["2"].amazon_asin == "0441172717"
    assert all(c["url"] == "https://www.amazon.com/s" for c in session.calls)


def test_interrupted_enrich_amazon_still_saves_finished_rows(books_csv, monkeypatch) -> None:
    write_books([Book(id="1", title="Obscure Title"), Book(id="3", title="Second Volume")], books_csv)

    def handler(url, params):
        if "Second" in params.get("k", ""):
            raise KeyboardInterrupt
        return html("<html>no results</html>")

    monkeypatch.setattr(cli, "make_scraper_session", lambda: FakeSession(handler))

    with pytest.raises(KeyboardInterrupt):
        cli.main(["--books", books_csv, "enrich-amazon"])

    books = {b.id: b for b in read_books(books_csv)}
    assert books["1"].asin_status == "failed"
    assert books["3"].asin_status == "pending"


def test_extract_url_rejects_non_amazon(books_csv) -> None:
    with pytest.raises(SystemExit):
        cli.main(["--books", books_csv, "extract-url", "1", "https://example.com/dp/B00ABC1234"])


def test_status_report_and_links(books_csv, tmp_path) -> None:
    report = tmp_path / "report.md"
    cli.main(["--books", books_csv, "status", "--report", str(report)])
    assert report.read_text(encoding="utf-8").startswith("# Enrichment Report")

    cli.main(["--books", books_csv, "links", "--all-regions"])
    cli.main(["--books", books_csv, "links", "--region", "BR"])


def test_parser_requires_command() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])
    args = cli.build_parser().parse_args(["validate-asins", "--book-id", "1", "--book-id", "2"])
    assert args.book_id == ["1", "2"]
    assert args.threshold is None
