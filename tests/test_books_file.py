import json

import pytest

from book_enricher.core.models import Book
from book_enricher.core.store import BookStore
from book_enricher.io.books_file import book_from_record, read_books, write_books
from book_enricher.io.report import build_report_data, render_markdown, write_report


def test_csv_keeps_numeric_types(tmp_path) -> None:
    path = tmp_path / "books.csv"
    books = [
        Book(id="1", title="Dune", authors="Frank Herbert", page_count=412, height=240.0, amazon_asin="0441172717"),
        Book(id="2", title="Dom Casmurro, Edição Especial", language="pt-BR"),
    ]
    write_books(books, str(path))

    assert read_books(str(path)) == books
    assert [p.name for p in tmp_path.iterdir()] == ["books.csv"]


def test_json_list_and_wrapped_forms(tmp_path) -> None:
    records = [
        {"id": 1, "title": "Dune", "authors": ["Frank Herbert", "Someone"], "asin_status": "weird", "page_count": "412"},
        {"title": "no id"},
        {"id": "1", "title": "duplicate"},
    ]
    plain = tmp_path / "books.json"
    plain.write_text(json.dumps(records), encoding="utf-8")
    wrapped = tmp_path / "wrapped.json"
    wrapped.write_text(json.dumps({"books": records}), encoding="utf-8")

    for path in (plain, wrapped):
        books = read_books(str(path))
        assert len(books) == 1
        assert books[0].id == "1"
        assert books[0].title == "Dune"
        assert books[0].authors == "Frank Herbert, Someone"
        assert books[0].asin_status == "pending"
        assert books[0].page_count == 412


def test_write_json(tmp_path) -> None:
    path = tmp_path / "out.json"
    write_books([Book(id="1", title="Dune")], str(path))
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data[0]["id"] == "1"
    assert data[0]["info_quality"] == "basic"


def test_bad_input_files_exit(tmp_path) -> None:
    with pytest.raises(SystemExit):
        read_books(str(tmp_path / "missing.csv"))

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(SystemExit):
        read_books(str(broken))

    scalar = tmp_path / "scalar.json"
    scalar.write_text('"just a string"', encoding="utf-8")
    with pytest.raises(SystemExit):
        read_books(str(scalar))


def test_book_from_record_requires_id() -> None:
    with pytest.raises(ValueError):
        book_from_record({"title": "Dune"})
    assert book_from_record({"id": "x", "info_quality": ""}).info_quality == "basic"


def test_status_counts() -> None:
    store = BookStore(
        [
            Book(id="1", isbn="9780441172719", amazon_asin="0441172717", asin_status="completed"),
            Book(id="2", asin_status="failed"),
            Book(id="3"),
        ]
    )
    assert store.status_counts() == {
        "total": 3,
        "with_isbn": 1,
        "with_asin": 1,
        "pending": 1,
        "processing": 0,
        "completed": 1,
        "failed": 1,
    }


def test_report(tmp_path) -> None:
    books = [
        Book(id="1", title="Dune", language="en", amazon_asin="0441172717", asin_status="completed", thumbnail="x"),
        Book(id="2", title="Dom Casmurro", language="pt-BR", asin_status="failed"),
    ]
    data = build_report_data(books, {"entries": 4})
    assert data["total"] == 2
    assert data["with_asin"] == 1
    assert data["without_thumbnail"] == 1
    assert ("failed", 1) in data["asin_status"]
    assert data["failed_books"] == [("2", "Dom Casmurro")]

    md = render_markdown(data)
    assert md.startswith("# Enrichment Report")
    assert "## Failed Books" in md
    assert "| entries | 4 |" in md

    out = tmp_path / "report.md"
    write_report(books, str(out))
    text = out.read_text(encoding="utf-8")
    assert "## ASIN Status" in text
    assert "## Search Cache" not in text
