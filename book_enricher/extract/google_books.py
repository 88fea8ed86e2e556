from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, Optional

from book_enricher.core.models import QUALITY_BASIC, QUALITY_COMPLETE, QUALITY_ENHANCED, Book

logger = logging.getLogger(__name__)

ENHANCED_FIELDS = ("description", "published_date", "page_count", "publisher")
COMPLETE_FIELDS = ("format", "categories", "google_id")
DIMENSION_FIELDS = ("height", "width", "thickness")

_DIM_RE = re.compile(r"^\s*([0-9]+(?:[.,][0-9]+)?)\s*(cm|mm|in|inch|inches)?\s*$", re.I)
_UNIT_TO_MM = {"cm": 10.0, "mm": 1.0, "in": 25.4, "inch": 25.4, "inches": 25.4}


def https_thumbnail(url: str) -> str:
    url = (url or "").replace("http:", "https:", 1)
    return url.replace("&edge=curl", "")


def convert_to_millimeters(value: object) -> Optional[float]:
    """'24.00 cm' -> 240.0, '9 in' -> 228.6; bare numbers are taken as cm."""
    m = _DIM_RE.match(str(value or ""))
    if not m:
        return None
    number = float(m.group(1).replace(",", "."))
    unit = (m.group(2) or "cm").lower()
    return round(number * _UNIT_TO_MM[unit], 1)


def _isbns(volume_info: dict) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for ident in volume_info.get("industryIdentifiers") or []:
        if not isinstance(ident, dict):
            continue
        kind = ident.get("type")
        if kind == "ISBN_13":
            out["isbn_13"] = str(ident.get("identifier") or "")
        elif kind == "ISBN_10":
            out["isbn_10"] = str(ident.get("identifier") or "")
    return out


def transform_volume(item: dict) -> dict:
    """Flatten a Google Books volume into the provider book dict."""
    info = item.get("volumeInfo") or {}
    isbns = _isbns(info)
    images = info.get("imageLinks") or {}
    return {
        "google_id": item.get("id") or "",
        "title": info.get("title") or "",
        "subtitle": info.get("subtitle") or "",
        "authors": ", ".join(str(a) for a in info.get("authors") or [] if str(a).strip()),
        "isbn": isbns.get("isbn_13") or isbns.get("isbn_10") or "",
        "isbn_10": isbns.get("isbn_10") or "",
        "isbn_13": isbns.get("isbn_13") or "",
        "thumbnail": https_thumbnail(images.get("thumbnail") or images.get("smallThumbnail") or ""),
        "description": info.get("description") or "",
        "publisher": info.get("publisher") or "",
        "published_date": info.get("publishedDate") or "",
        "page_count": int(info.get("pageCount") or 0),
        "language": info.get("language") or "",
        "categories": list(info.get("categories") or []),
        "provider": "google_books",
    }


def date_precision(value: str) -> str:
    value = (value or "").strip()
    if re.match(r"^\d{4}-\d{2}-\d{2}", value):
        return "full"
    if re.match(r"^\d{4}-\d{2}$", value):
        return "year_month"
    if re.match(r"^\d{4}$", value):
        return "year_only"
    return "unknown"


def parse_published_date(value: str) -> str:
    value = (value or "").strip()
    precision = date_precision(value)
    if precision == "year_only":
        return f"{value}-01-01"
    if precision == "year_month":
        return f"{value}-01"
    if precision == "full":
        return value[:10]
    return ""


def should_update_published_date(current: str, google_date: str) -> bool:
    if not current:
        return True
    current_year_only = current.endswith("-01-01") or date_precision(current) == "year_only"
    google_precision = date_precision(google_date)
    if current_year_only and google_precision in ("full", "year_month"):
        return True
    if not current_year_only and google_precision == "year_only":
        return False
    return google_precision == "full"


def determine_format(item: dict) -> str:
    sale = item.get("saleInfo") or {}
    access = item.get("accessInfo") or {}
    epub = access.get("epub") or {}
    if sale.get("isEbook") or epub.get("isAvailable"):
        return "ebook"
    return "paperback"


def info_quality_for(fields: dict) -> str:
    def filled(name: str) -> bool:
        return bool(fields.get(name))

    complete = sum(1 for f in COMPLETE_FIELDS if filled(f))
    if all(filled(f) for f in DIMENSION_FIELDS):
        complete += 1
    enhanced = sum(1 for f in ENHANCED_FIELDS if filled(f))
    if complete >= 3:
        return QUALITY_COMPLETE
    if enhanced >= 2:
        return QUALITY_ENHANCED
    return QUALITY_BASIC


def extract_enrichment_fields(book: Book, item: dict, skip_fields: Iterable[str] = ()) -> dict:
    """
    Fields from a Google Books volume that `book` is missing.

    Existing non-empty values are never replaced, except published_date when
    Google's date is more precise than the stored one.
    """
    skip = set(skip_fields or ())
    info = item.get("volumeInfo") or {}
    data: dict = {}

    def wanted(name: str) -> bool:
        return name not in skip and not getattr(book, name)

    if wanted("title") and info.get("title"):
        data["title"] = info["title"]
    if wanted("subtitle") and info.get("subtitle"):
        data["subtitle"] = info["subtitle"]
    if wanted("description") and info.get("description"):
        data["description"] = info["description"]
    images = info.get("imageLinks") or {}
    if wanted("thumbnail") and images.get("thumbnail"):
        data["thumbnail"] = https_thumbnail(images["thumbnail"])
    if "published_date" not in skip and info.get("publishedDate"):
        if should_update_published_date(book.published_date, info["publishedDate"]):
            parsed = parse_published_date(info["publishedDate"])
            if parsed:
                data["published_date"] = parsed
            else:
                logger.warning("unparseable published date | book=%s | value=%s", book.id, info["publishedDate"])
    if wanted("authors") and info.get("authors"):
        data["authors"] = ", ".join(str(a) for a in info["authors"])
    if wanted("publisher") and info.get("publisher"):
        data["publisher"] = info["publisher"]
    if wanted("page_count") and info.get("pageCount"):
        data["page_count"] = int(info["pageCount"])
    if wanted("categories") and info.get("categories"):
        cats = info["categories"] if isinstance(info["categories"], list) else [info["categories"]]
        data["categories"] = ", ".join(str(c) for c in cats)
    if wanted("isbn"):
        isbns = _isbns(info)
        if isbns:
            data["isbn"] = isbns.get("isbn_13") or isbns.get("isbn_10")
    dims = info.get("dimensions") or {}
    for name in DIMENSION_FIELDS:
        if wanted(name) and dims.get(name):
            mm = convert_to_millimeters(dims[name])
            if mm:
                data[name] = mm
    if wanted("google_id") and item.get("id"):
        data["google_id"] = item["id"]
    if wanted("format"):
        data["format"] = determine_format(item)
    return {k: v for k, v in data.items() if v not in (None, "")}
