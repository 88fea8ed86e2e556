"""
Regex extraction for Amazon product and search-result pages.

Every field is an ordered list of named `Pattern`s evaluated first-match-wins.
A pattern may carry a validator; a match it rejects does not stop the chain,
the next candidate (same pattern, then next pattern) is tried. Nothing here
raises on unexpected markup: misses come back as None / empty.
"""
from __future__ import annotations

import html as html_lib
import json
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from book_enricher.core.models import EnrichmentCandidate

MAX_SEARCH_CANDIDATES = 5
MIN_DESCRIPTION_LEN = 50

_WS_RE = re.compile(r"\s+")
_TAG_RE = re.compile(r"<[^>]+>")


def _clean_text(text: str) -> str:
    text = _TAG_RE.sub(" ", text or "")
    return _WS_RE.sub(" ", html_lib.unescape(text)).strip()


def _digits(text: str) -> str:
    return re.sub(r"[^0-9X]", "", (text or "").upper())


@dataclass(frozen=True)
class Pattern:
    name: str
    regex: re.Pattern
    clean: Callable[[str], str] = _clean_text
    validator: Optional[Callable[[str], bool]] = None

    def apply(self, html: str) -> Optional[str]:
        for m in self.regex.finditer(html or ""):
            value = self.clean(m.group(1))
            if not value:
                continue
            if self.validator is not None and not self.validator(value):
                continue
            return value
        return None


def first_match(html: str, patterns: Sequence[Pattern]) -> Optional[str]:
    hit = first_match_named(html, patterns)
    return hit[1] if hit else None


def first_match_named(html: str, patterns: Sequence[Pattern]) -> Optional[Tuple[str, str]]:
    for pattern in patterns:
        value = pattern.apply(html)
        if value is not None:
            return pattern.name, value
    return None


# ---------------------------------------------------------------------------
# Title
# ---------------------------------------------------------------------------

_DATE_WORDS = re.compile(r"^(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+\d{1,2},?\s*\d{4}$", re.I)
_DATE_NUMERIC = re.compile(r"^\d{1,4}[-/]\d{1,2}[-/]\d{1,4}$")
_PRICE = re.compile(r"^(?:R\$|US\$|[$€£¥])\s*\d+(?:[.,]\d+)*$")
_BARE_NUMBER = re.compile(r"^\d{1,3}(\.\d+)?$")
FORMAT_LABELS = frozenset(
    [
        "paperback",
        "hardcover",
        "kindle edition",
        "audiobook",
        "audio cd",
        "spiral-bound",
        "board book",
        "mass market paperback",
        "capa comum",
        "capa dura",
        "ebook kindle",
    ]
)
_GENERIC_PREFIXES = ("amazon", "error", "page not found", "sorry", "robot check")
_AMAZON_SUFFIX = re.compile(r"\s*[:\-|]\s*Amazon\..*$", re.I)


def is_valid_title(text: str) -> bool:
    """Reject text that is a date, price, short number or format label."""
    text = (text or "").strip()
    if len(text) < 3:
        return False
    if _DATE_WORDS.match(text) or _DATE_NUMERIC.match(text):
        return False
    if _PRICE.match(text):
        return False
    if _BARE_NUMBER.match(text):
        return False
    if text.lower() in FORMAT_LABELS:
        return False
    lower = text.lower()
    if any(lower.startswith(p) for p in _GENERIC_PREFIXES):
        return False
    return True


def _clean_page_title(text: str) -> str:
    text = _clean_text(text)
    text = _AMAZON_SUFFIX.sub("", text)
    text = re.sub(r"^Amazon\.[a-z.]+\s*:\s*", "", text, flags=re.I)
    return text.strip()


def _jsonld_name(block: str) -> str:
    try:
        data = json.loads(html_lib.unescape(block))
    except ValueError:
        return ""
    items = data if isinstance(data, list) else [data]
    for item in items:
        if isinstance(item, dict) and isinstance(item.get("name"), str):
            return _clean_text(item["name"])
    return ""


TITLE_PATTERNS: List[Pattern] = [
    Pattern("product_title", re.compile(r'<span[^>]*id="productTitle"[^>]*>(.*?)</span>', re.S | re.I), validator=is_valid_title),
    Pattern("ebooks_product_title", re.compile(r'<span[^>]*id="ebooksProductTitle"[^>]*>(.*?)</span>', re.S | re.I), validator=is_valid_title),
    Pattern("title_heading", re.compile(r'<h1[^>]*id="title"[^>]*>.*?<span[^>]*>(.*?)</span>', re.S | re.I), validator=is_valid_title),
    Pattern("size_large_heading", re.compile(r'<h1[^>]*class="[^"]*a-size-large[^"]*"[^>]*>(.*?)</h1>', re.S | re.I), validator=is_valid_title),
    Pattern("size_extra_large", re.compile(r'<span[^>]*class="[^"]*a-size-extra-large[^"]*"[^>]*>(.*?)</span>', re.S | re.I), validator=is_valid_title),
    Pattern(
        "jsonld_name",
        re.compile(r'<script[^>]*type="application/ld\+json"[^>]*>(.*?)</script>', re.S | re.I),
        clean=_jsonld_name,
        validator=is_valid_title,
    ),
    Pattern("page_title", re.compile(r"<title[^>]*>(.*?)</title>", re.S | re.I), clean=_clean_page_title, validator=is_valid_title),
]


def extract_title(html: str) -> Optional[str]:
    return first_match(html, TITLE_PATTERNS)


# ---------------------------------------------------------------------------
# ISBN
# ---------------------------------------------------------------------------

def _valid_isbn_length(value: str) -> bool:
    return len(value) in (10, 13)


_ISBN13_BODY = r"(97[89](?:[-\s]?\d){10})"

ISBN_PATTERNS: List[Pattern] = [
    Pattern(
        "isbn13_detail_card",
        re.compile(r'data-rpi-attribute-name="book_details-isbn13"[^>]*>.{0,600}?<span[^>]*>\s*' + _ISBN13_BODY, re.S | re.I),
        clean=_digits,
        validator=_valid_isbn_length,
    ),
    Pattern("isbn13_labelled", re.compile(r"ISBN-13.{0,300}?" + _ISBN13_BODY, re.S | re.I), clean=_digits, validator=_valid_isbn_length),
    Pattern(
        "isbn13_tagged",
        re.compile(r"ISBN-13[:\s]*<[^>]*>\s*(\d{3}(?:[-\s]?\d){10})", re.I),
        clean=_digits,
        validator=_valid_isbn_length,
    ),
    Pattern("isbn13_plain", re.compile(r"ISBN-13[:\s]*(\d{13})", re.I), clean=_digits, validator=_valid_isbn_length),
    Pattern("isbn10_labelled", re.compile(r"ISBN-10.{0,300}?(?<!\d)(\d{9}[\dXx])\b", re.S | re.I), clean=_digits, validator=_valid_isbn_length),
    Pattern("isbn_generic", re.compile(r"ISBN[:\s]*(\d{10,13})", re.I), clean=_digits, validator=_valid_isbn_length),
    Pattern("isbn_json", re.compile(r'"isbn"\s*:\s*"([^"]+)"', re.I), clean=_digits, validator=_valid_isbn_length),
    Pattern("isbn13_json", re.compile(r'"isbn13"\s*:\s*"([^"]+)"', re.I), clean=_digits, validator=_valid_isbn_length),
    Pattern("isbn10_json", re.compile(r'"isbn10"\s*:\s*"([^"]+)"', re.I), clean=_digits, validator=_valid_isbn_length),
]


def extract_isbn(html: str) -> Optional[str]:
    return first_match(html, ISBN_PATTERNS)


# ---------------------------------------------------------------------------
# Is-a-book signal
# ---------------------------------------------------------------------------

BOOK_INDICATORS: Dict[str, re.Pattern] = {
    "books_category_link": re.compile(r"Books</a>", re.I),
    "books_node": re.compile(r"node=283155"),
    "book_format_json": re.compile(r'"bookFormat"\s*:'),
    "format_words": re.compile(r"\b(Paperback|Hardcover|Kindle Edition|Mass Market|Capa comum|Capa dura)\b"),
    "schema_book": re.compile(r'"@type"\s*:\s*"Book"'),
    "book_details_id": re.compile(r'id="book_details'),
    "publisher_label": re.compile(r"(Publisher|Editora)\s*(&rlm;|&lrm;|\s)*:"),
    "publication_date": re.compile(r"Publication date|Data da publicação", re.I),
}


def book_signals(html: str) -> List[str]:
    return [name for name, rx in BOOK_INDICATORS.items() if rx.search(html or "")]


def is_book_page(html: str) -> bool:
    return bool(book_signals(html))


# ---------------------------------------------------------------------------
# Page count / publisher / authors
# ---------------------------------------------------------------------------

def _page_count_ok(value: str) -> bool:
    return value.isdigit() and 0 < int(value) < 20000


PAGE_COUNT_PATTERNS: List[Pattern] = [
    Pattern("pages_label", re.compile(r"(\d{1,5})\s*(?:pages|páginas)", re.I), validator=_page_count_ok),
]

_ENTITY_GAP = r"(?:\s|:|&rlm;|&lrm;|\u200e|\u200f)*"


def _clean_publisher(text: str) -> str:
    text = _clean_text(text)
    text = re.sub(r"\s*\([^)]*\)\s*$", "", text)
    return text.strip(" ;:")


PUBLISHER_PATTERNS: List[Pattern] = [
    Pattern(
        "publisher_detail_bullet",
        re.compile(r"(?:Publisher|Editora)" + _ENTITY_GAP + r"</span>\s*<span[^>]*>([^<]+)", re.I),
        clean=_clean_publisher,
    ),
    Pattern("publisher_label", re.compile(r"(?:Publisher|Editora)[:\s]*<[^>]*>([^<]+)", re.I), clean=_clean_publisher),
]

_AUTHOR_LINK = re.compile(r'<span[^>]*class="author[^"]*"[^>]*>.*?<a[^>]*>([^<]+)</a>', re.S | re.I)


def extract_page_count(html: str) -> Optional[int]:
    value = first_match(html, PAGE_COUNT_PATTERNS)
    return int(value) if value else None


def extract_publisher(html: str) -> Optional[str]:
    return first_match(html, PUBLISHER_PATTERNS)


def extract_authors(html: str) -> Optional[str]:
    names: List[str] = []
    for m in _AUTHOR_LINK.finditer(html or ""):
        name = _clean_text(m.group(1))
        if name and name not in names:
            names.append(name)
    return ", ".join(names) or None


# ---------------------------------------------------------------------------
# Dimensions
# ---------------------------------------------------------------------------

_DIMENSIONS = [
    (
        "dimensions_label",
        re.compile(
            r"(?:Dimens(?:ões|ions))[:\s]*([0-9.,]+)\s*x\s*([0-9.,]+)\s*x\s*([0-9.,]+)\s*(cm|in)\b",
            re.I,
        ),
    ),
    (
        "dimensions_detail_bullet",
        re.compile(
            r"(?:Dimens(?:ões|ions))[^0-9<]{0,40}(?:</span>\s*<span[^>]*>)?\s*"
            r"([0-9.,]+)\s*x\s*([0-9.,]+)\s*x\s*([0-9.,]+)\s*(cm|centimeters|centímetros|inches|in)\b",
            re.I,
        ),
    ),
]

_UNIT_TO_MM = {"cm": 10.0, "centimeters": 10.0, "centímetros": 10.0, "in": 25.4, "inches": 25.4}


def _to_float(raw: str) -> Optional[float]:
    try:
        return float(raw.replace(",", "."))
    except ValueError:
        return None


def extract_dimensions(html: str) -> Optional[Tuple[float, float, float]]:
    """(width, thickness, height) in millimetres."""
    for _name, rx in _DIMENSIONS:
        m = rx.search(html or "")
        if not m:
            continue
        factor = _UNIT_TO_MM.get(m.group(4).lower(), 10.0)
        values = [_to_float(m.group(i)) for i in (1, 2, 3)]
        if any(v is None or v <= 0 for v in values):
            continue
        width, thickness, height = (round(v * factor, 1) for v in values)
        return width, thickness, height
    return None


# ---------------------------------------------------------------------------
# Description
# ---------------------------------------------------------------------------

DESCRIPTION_PATTERNS: List[Pattern] = [
    Pattern("book_description_div", re.compile(r'<div[^>]*id="bookDescription[^"]*"[^>]*>(.*?)</div>\s*</div>', re.S | re.I), clean=lambda s: s),
    Pattern(
        "book_description_expander",
        re.compile(r'<div[^>]*id="bookDescription_feature_div"[^>]*>.*?<div[^>]*data-a-expander-content[^>]*>(.*?)</div>', re.S | re.I),
        clean=lambda s: s,
    ),
    Pattern("iframe_content", re.compile(r'<div[^>]*id="iframeContent"[^>]*>(.*?)</div>', re.S | re.I), clean=lambda s: s),
    Pattern("book_description_span", re.compile(r'<div[^>]*id="bookDescription[^"]*"[^>]*>.*?<span[^>]*>(.*?)</span>', re.S | re.I), clean=lambda s: s),
]

_KEEP_TAGS = ("b", "strong", "i", "em")
_ANY_TAG = re.compile(r"<(/?)([a-zA-Z][a-zA-Z0-9]*)[^>]*>")
_READ_MORE = re.compile(r"\s*(Leia mais|Read more|Ver mais|See more)\s*$", re.I)


def _keep_emphasis_only(m: re.Match) -> str:
    tag = m.group(2).lower()
    if tag in _KEEP_TAGS:
        return f"<{m.group(1)}{tag}>"
    return ""


def clean_description(raw: str) -> str:
    d = raw or ""
    d = re.sub(r'<span[^>]*class="[^"]*a-text-bold[^"]*a-text-italic[^"]*"[^>]*>(.*?)</span>', r"<strong><em>\1</em></strong>", d, flags=re.S | re.I)
    d = re.sub(r'<span[^>]*class="[^"]*a-text-italic[^"]*a-text-bold[^"]*"[^>]*>(.*?)</span>', r"<strong><em>\1</em></strong>", d, flags=re.S | re.I)
    d = re.sub(r'<span[^>]*class="[^"]*a-text-bold[^"]*"[^>]*>(.*?)</span>', r"<strong>\1</strong>", d, flags=re.S | re.I)
    d = re.sub(r'<span[^>]*class="[^"]*a-text-italic[^"]*"[^>]*>(.*?)</span>', r"<em>\1</em>", d, flags=re.S | re.I)
    d = re.sub(r"<br\s*/?>", "\n", d, flags=re.I)
    d = re.sub(r"</p>", "\n\n", d, flags=re.I)
    d = _ANY_TAG.sub(_keep_emphasis_only, d)
    d = html_lib.unescape(d)
    d = d.strip()
    d = _READ_MORE.sub("", d)
    d = re.sub(r"[ \t]+", " ", d)
    d = re.sub(r" *\n *", "\n", d)
    d = re.sub(r"\n{3,}", "\n\n", d)
    return d.strip()


def extract_description(html: str) -> Optional[str]:
    for pattern in DESCRIPTION_PATTERNS:
        raw = pattern.apply(html)
        if raw is None:
            continue
        text = clean_description(raw)
        if len(text) > MIN_DESCRIPTION_LEN:
            return text
    return None


# ---------------------------------------------------------------------------
# Thumbnail
# ---------------------------------------------------------------------------

_SIZE_TOKEN = re.compile(r"\._(?:AC_)?[A-Z]{2}\d+_")


def high_resolution(url: str) -> str:
    """Swap Amazon's size token (`._SX331_`, `._AC_SY400_`) for `._SL1500_`."""
    return _SIZE_TOKEN.sub("._SL1500_", url or "", count=1)


def _clean_image_url(text: str) -> str:
    url = html_lib.unescape((text or "").strip())
    if not url.startswith("http"):
        return ""
    return high_resolution(url)


THUMBNAIL_PATTERNS: List[Pattern] = [
    Pattern("dynamic_image", re.compile(r'data-a-dynamic-image="\{&quot;([^&]+)'), clean=_clean_image_url),
    Pattern("landing_image", re.compile(r'<img[^>]*id="landingImage"[^>]*src="([^"]+)"', re.I), clean=_clean_image_url),
    Pattern("old_hires", re.compile(r'data-old-hires="([^"]+)"', re.I), clean=_clean_image_url),
    Pattern("img_blk_front", re.compile(r'<img[^>]*id="imgBlkFront"[^>]*src="([^"]+)"', re.I), clean=_clean_image_url),
]


def extract_thumbnail(html: str) -> Optional[str]:
    return first_match(html, THUMBNAIL_PATTERNS)


# ---------------------------------------------------------------------------
# Search results / URLs
# ---------------------------------------------------------------------------

_RESULT_BLOCK = re.compile(r'data-asin="([A-Z0-9]{10})"[^>]*>(.*?)(?=data-asin="|\Z)', re.S)

SEARCH_TITLE_PATTERNS: List[Pattern] = [
    Pattern(
        "result_medium_title",
        re.compile(r'<span[^>]*class="[^"]*a-size-medium[^"]*a-color-base[^"]*a-text-normal[^"]*"[^>]*>([^<]+)<', re.I),
        validator=is_valid_title,
    ),
    Pattern(
        "result_base_plus_title",
        re.compile(r'<span[^>]*class="[^"]*a-size-base-plus[^"]*a-color-base[^"]*a-text-normal[^"]*"[^>]*>([^<]+)<', re.I),
        validator=is_valid_title,
    ),
    Pattern(
        "result_h2_title",
        re.compile(r'<h2[^>]*class="[^"]*a-size-mini[^"]*"[^>]*>.*?<span[^>]*>([^<]+)</span>', re.S | re.I),
        validator=is_valid_title,
    ),
]


def _result_link_title(block: str, asin: str) -> Optional[str]:
    rx = re.compile(
        r'<a[^>]*href="[^"]*/dp/' + re.escape(asin) + r'[^"]*"[^>]*>.*?<span[^>]*>([^<]{10,})</span>',
        re.S | re.I,
    )
    return Pattern("result_link_title", rx, validator=is_valid_title).apply(block)


def extract_search_candidates(html: str, limit: int = MAX_SEARCH_CANDIDATES) -> List[Tuple[str, Optional[str]]]:
    """(asin, title-or-None) per result block, de-duplicated, capped at `limit`."""
    out: List[Tuple[str, Optional[str]]] = []
    seen = set()
    for m in _RESULT_BLOCK.finditer(html or ""):
        asin, block = m.group(1), m.group(2)
        if asin in seen:
            continue
        seen.add(asin)
        title = first_match(block, SEARCH_TITLE_PATTERNS) or _result_link_title(block, asin)
        out.append((asin, title))
        if len(out) >= limit:
            break
    return out


_ASIN_FROM_URL = [
    re.compile(r"/(?:dp|gp/product)/([A-Z0-9]{10})(?:[/?#]|$)", re.I),
    re.compile(r"[?&]asin=([A-Z0-9]{10})\b", re.I),
]


def asin_from_url(url: str) -> Optional[str]:
    for rx in _ASIN_FROM_URL:
        m = rx.search(url or "")
        if m:
            return m.group(1).upper()
    return None


def extract_product(html: str, asin: str) -> EnrichmentCandidate:
    return EnrichmentCandidate(
        asin=asin,
        title=extract_title(html),
        isbn=extract_isbn(html),
        authors=extract_authors(html),
        thumbnail=extract_thumbnail(html),
        description=extract_description(html),
        publisher=extract_publisher(html),
        page_count=extract_page_count(html),
        dimensions=extract_dimensions(html),
        is_book=is_book_page(html),
    )


def patterns_by_name() -> Dict[str, Pattern]:
    out: Dict[str, Pattern] = {}
    for chain in (
        TITLE_PATTERNS,
        ISBN_PATTERNS,
        PAGE_COUNT_PATTERNS,
        PUBLISHER_PATTERNS,
        DESCRIPTION_PATTERNS,
        THUMBNAIL_PATTERNS,
        SEARCH_TITLE_PATTERNS,
    ):
        for p in chain:
            out[p.name] = p
    return out
