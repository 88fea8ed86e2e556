from __future__ import annotations

import csv
import json
import logging
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Dict, Iterable, List

from book_enricher.core.models import ASIN_PENDING, ASIN_STATUSES, QUALITY_BASIC, Book
from book_enricher.io.utils import atomic_write

logger = logging.getLogger(__name__)

BOOK_FIELDS = [f.name for f in fields(Book)]
_INT_FIELDS = {"page_count"}
_FLOAT_FIELDS = {"height", "width", "thickness"}


def _to_int(val: Any) -> int:
    try:
        return int(float(val))
    except (TypeError, ValueError):
        return 0


def _to_float(val: Any) -> float:
    try:
        return float(val)
    except (TypeError, ValueError):
        return 0.0


def _join(val: Any) -> str:
    if isinstance(val, (list, tuple)):
        return ", ".join(str(v).strip() for v in val if str(v).strip())
    return "" if val is None else str(val).strip()


def book_from_record(rec: Dict[str, Any]) -> Book:
    book_id = _join(rec.get("id"))
    if not book_id:
        raise ValueError("record has no id")
    kwargs: Dict[str, Any] = {}
    for name in BOOK_FIELDS:
        if name not in rec:
            continue
        raw = rec[name]
        if name in _INT_FIELDS:
            kwargs[name] = _to_int(raw)
        elif name in _FLOAT_FIELDS:
            kwargs[name] = _to_float(raw)
        else:
            kwargs[name] = _join(raw)
    kwargs["id"] = book_id
    if kwargs.get("asin_status") not in ASIN_STATUSES:
        kwargs["asin_status"] = ASIN_PENDING
    kwargs["info_quality"] = kwargs.get("info_quality") or QUALITY_BASIC
    return Book(**kwargs)


def _read_json(path: Path) -> List[dict]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise SystemExit(f"Books file is not valid JSON: {path} ({e})") from e
    if isinstance(data, dict):
        data = data.get("books")
    if not isinstance(data, list):
        raise SystemExit(f"Books file must hold a list of books (or {{\"books\": [...]}}): {path}")
    return [r for r in data if isinstance(r, dict)]


def _read_csv(path: Path) -> List[dict]:
    with path.open("r", newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))


def read_books(path: str) -> List[Book]:
    p = Path(path)
    if not p.is_file():
        raise SystemExit(f"Books file not found: {path}")
    records = _read_json(p) if p.suffix.lower() == ".json" else _read_csv(p)

    books: List[Book] = []
    seen = set()
    for i, rec in enumerate(records, start=1):
        try:
            book = book_from_record(rec)
        except ValueError as e:
            logger.warning("skipping record | file=%s | row=%s | err=%s", path, i, e)
            continue
        if book.id in seen:
            logger.warning("duplicate book id | file=%s | id=%s | keeping first", path, book.id)
            continue
        seen.add(book.id)
        books.append(book)
    logger.info("Loaded books: %s rows=%s", path, len(books))
    return books


def write_books(books: Iterable[Book], out_path: str) -> None:
    books = list(books)
    rows = [asdict(b) for b in books]

    if out_path.lower().endswith(".json"):

        def _write(path: str) -> None:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(rows, f, ensure_ascii=False, indent=2)

    else:

        def _write(path: str) -> None:
            with open(path, "w", newline="", encoding="utf-8") as f:
                w = csv.DictWriter(f, fieldnames=BOOK_FIELDS)
                w.writeheader()
                for r in rows:
                    w.writerow(r)

    atomic_write(_write, out_path)
    logger.info("Wrote books: %s rows=%s", out_path, len(books))
