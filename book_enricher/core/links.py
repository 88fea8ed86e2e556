from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional
from urllib.parse import urlencode

from book_enricher.core.models import Book, RegionConfig
from book_enricher.core.normalize import normalize_isbn
from book_enricher.core.regions import REGIONS, detect_book_region, get_region


def search_term(book: Book) -> str:
    """ISBN > title + authors > title > "book"."""
    isbn = normalize_isbn(book.isbn)
    if isbn:
        return isbn
    title = (book.title or "").strip()
    authors = (book.authors or "").strip()
    if title and authors:
        return f"{title} {authors}"
    if title:
        return title
    return "book"


def build_amazon_link(book: Book, region: RegionConfig, associate_tag: Optional[str] = None) -> str:
    tag = associate_tag if associate_tag is not None else region.associate_tag
    asin = (book.amazon_asin or "").strip()
    if asin:
        url = f"{region.base_url}/dp/{asin}"
        return f"{url}?{urlencode({'tag': tag})}" if tag else url
    params = {"k": search_term(book), "i": "stripbooks"}
    if tag:
        params["tag"] = tag
    return f"{region.search_url}?{urlencode(params)}"


def enrich_with_links(
    books: Iterable[Book],
    region_code: Optional[str] = None,
    regions: Optional[Mapping[str, RegionConfig]] = None,
) -> List[dict]:
    """Book dicts with `amazon_buy_link`/`amazon_region` attached."""
    out = []
    for book in books:
        code = region_code or detect_book_region(book)
        region = get_region(code, regions)
        row = book.to_dict()
        row["amazon_buy_link"] = build_amazon_link(book, region)
        row["amazon_region"] = region.code
        out.append(row)
    return out


def all_region_links(
    book: Book,
    codes: Optional[Iterable[str]] = None,
    regions: Optional[Mapping[str, RegionConfig]] = None,
) -> Dict[str, dict]:
    table = regions or REGIONS
    out: Dict[str, dict] = {}
    for code in codes or table.keys():
        region = get_region(code, table)
        out[region.code] = {
            "url": build_amazon_link(book, region),
            "domain": region.domain,
            "label": region.label,
        }
    return out
