from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from typing import Iterable, List, Tuple

from book_enricher.core.models import ASIN_STATUSES, Book


def _top(counter: Counter, n: int = 20) -> List[Tuple[str, int]]:
    return counter.most_common(n)


def build_report_data(books: Iterable[Book], cache_stats: dict = None) -> dict:
    books = list(books)
    by_status = Counter(b.asin_status or "pending" for b in books)
    by_quality = Counter(b.info_quality or "basic" for b in books)
    by_language = Counter((b.language or "unknown").strip().lower() or "unknown" for b in books)
    failed = [(b.id, b.title or "(untitled)") for b in books if b.asin_status == "failed"]

    return {
        "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%SZ"),
        "total": len(books),
        "with_isbn": sum(1 for b in books if b.isbn),
        "with_asin": sum(1 for b in books if b.amazon_asin),
        "without_thumbnail": sum(1 for b in books if not b.thumbnail),
        "asin_status": [(s, by_status.get(s, 0)) for s in ASIN_STATUSES],
        "info_quality": _top(by_quality),
        "top_languages": _top(by_language),
        "failed_books": failed[:50],
        "cache": cache_stats or {},
    }


def _md_table(rows: List[Tuple[str, object]], headers: Tuple[str, str]) -> str:
    lines = [f"| {headers[0]} | {headers[1]} |", "| --- | --- |"]
    for k, v in rows:
        lines.append(f"| {k} | {v} |")
    return "\n".join(lines)


def render_markdown(data: dict) -> str:
    out = []
    out.append("# Enrichment Report")
    out.append("")
    out.append(f"Generated: {data['generated_at']}")
    out.append("")
    out.append(f"Total books: {data['total']}")
    out.append(f"With ISBN: {data['with_isbn']}")
    out.append(f"With ASIN: {data['with_asin']}")
    out.append(f"Without thumbnail: {data['without_thumbnail']}")
    out.append("")
    out.append("## ASIN Status")
    out.append(_md_table(data["asin_status"], ("Status", "Count")))
    out.append("")
    out.append("## Info Quality")
    out.append(_md_table(data["info_quality"], ("Quality", "Count")))
    out.append("")
    out.append("## Top Languages")
    out.append(_md_table(data["top_languages"], ("Language", "Count")))
    if data["failed_books"]:
        out.append("")
        out.append("## Failed Books")
        out.append(_md_table(data["failed_books"], ("Book", "Title")))
    if data["cache"]:
        out.append("")
        out.append("## Search Cache")
        out.append(_md_table(sorted(data["cache"].items()), ("Metric", "Value")))
    return "\n".join(out)


def write_report(books: Iterable[Book], out_path: str, cache_stats: dict = None) -> None:
    content = render_markdown(build_report_data(books, cache_stats))
    with open(out_path, "w", encoding="utf-8") as f:
        f.write(content + "\n")
