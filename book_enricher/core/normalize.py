from __future__ import annotations

import re
from typing import List

ISBN10_RE = re.compile(r"^\d{9}[\dX]$")
ISBN13_RE = re.compile(r"^\d{13}$")

TITLE_STOPWORDS = frozenset(
    ["the", "a", "an", "o", "os", "as", "um", "uma", "uns", "umas", "de", "da", "do", "das", "dos"]
)

_BRACKETED = re.compile(r"\([^)]*\)|\[[^\]]*\]")
_NON_WORD = re.compile(r"[^\w\s]|_")
_NON_AUTHOR = re.compile(r"[^\w\s,]|[\d_]")
_WS_RE = re.compile(r"\s+")
_SUBTITLE = re.compile(r"[:\-–—].+$")
_SERIES_PATTERNS = [
    re.compile(r"\s*\(.*?(volume|vol|book|livro|série|series).*?\)", re.I),
    re.compile(r"\s*-\s*(volume|vol|book|livro|série|series).*$", re.I),
    re.compile(r"\s*:\s*(volume|vol|book|livro|série|series).*$", re.I),
    re.compile(r"\s*#\d+.*$", re.I),
    re.compile(r"\s*\d+º?\s*(volume|vol|livro).*$", re.I),
]
_AUTHOR_SPLIT = re.compile(r"[,;&|]")


def normalize_isbn(x: str) -> str:
    x = (x or "").strip()
    x = re.sub(r"[^0-9Xx]", "", x).upper()
    return x


def is_valid_isbn10(isbn10: str) -> bool:
    isbn10 = normalize_isbn(isbn10)
    if not ISBN10_RE.match(isbn10):
        return False
    total = 0
    for i, ch in enumerate(isbn10[:9], start=1):
        total += i * int(ch)
    check = isbn10[9]
    check_val = 10 if check == "X" else int(check)
    total += 10 * check_val
    return total % 11 == 0


def is_valid_isbn13(isbn13: str) -> bool:
    isbn13 = normalize_isbn(isbn13)
    if not ISBN13_RE.match(isbn13):
        return False
    return _isbn13_check_digit(isbn13[:12]) == int(isbn13[12])


def _isbn13_check_digit(core: str) -> int:
    s = 0
    for i, ch in enumerate(core):
        s += int(ch) * (1 if i % 2 == 0 else 3)
    return (10 - (s % 10)) % 10


def isbn10_to_isbn13(isbn10: str) -> str:
    """
    Convert an ISBN-10 to its 978-prefixed ISBN-13 form.

    Only the shape is checked (nine digits plus digit/X); marketplace data
    carries enough typo'd check digits that a strict checksum loses matches.
    """
    isbn10 = normalize_isbn(isbn10)
    if not ISBN10_RE.match(isbn10):
        return ""
    core = "978" + isbn10[:9]
    return f"{core}{_isbn13_check_digit(core)}"


def looks_like_isbn(query: str) -> bool:
    return len(normalize_isbn(query)) in (10, 13)


def normalize_query(query: str) -> str:
    """Collapse whitespace; ISBN-looking queries become bare digits."""
    q = _WS_RE.sub(" ", (query or "").strip())
    if looks_like_isbn(q):
        return normalize_isbn(q)
    return q


def normalize_title(title: str, drop_stopwords: bool = True) -> str:
    t = (title or "").lower()
    t = _BRACKETED.sub(" ", t)
    t = _NON_WORD.sub("", t)
    t = _WS_RE.sub(" ", t).strip()
    if drop_stopwords and t:
        t = " ".join(w for w in t.split(" ") if w not in TITLE_STOPWORDS)
    return t


def normalize_authors(authors: str) -> str:
    a = (authors or "").lower()
    a = _NON_AUTHOR.sub("", a)
    parts = [p.strip() for p in a.split(",")]
    a = " ".join(p for p in parts if p)
    return _WS_RE.sub(" ", a).strip()


def split_authors(authors: str) -> List[str]:
    return [p.strip() for p in _AUTHOR_SPLIT.split(authors or "") if p.strip()]


def first_author(authors: str) -> str:
    parts = split_authors(authors)
    return parts[0] if parts else ""


def clean_title(title: str) -> str:
    """Drop subtitle, bracketed series info and punctuation."""
    cleaned = _SUBTITLE.sub("", title or "")
    cleaned = re.sub(r"[(\[].*?[)\]]", "", cleaned)
    cleaned = re.sub(r"[^\w\s]", " ", cleaned)
    return _WS_RE.sub(" ", cleaned).strip()


def remove_series(title: str) -> str:
    cleaned = title or ""
    for pat in _SERIES_PATTERNS:
        cleaned = pat.sub("", cleaned)
    return cleaned.strip()
