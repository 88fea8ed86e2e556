from __future__ import annotations

import logging
from typing import Dict, List, Optional

import requests

from book_enricher.core.models import SearchResult
from book_enricher.core.normalize import looks_like_isbn, normalize_isbn
from book_enricher.integrations.http_client import FetchError, get_json
from book_enricher.providers.base import BookSearchProvider

logger = logging.getLogger(__name__)

OPEN_LIBRARY_BOOKS_URL = "https://openlibrary.org/api/books"
OPEN_LIBRARY_SEARCH_URL = "https://openlibrary.org/search.json"
COVERS_URL = "https://covers.openlibrary.org/b"


def cover_url(isbn: str) -> str:
    return f"{COVERS_URL}/isbn/{isbn}-M.jpg" if isbn else ""


def _names(items: list) -> List[str]:
    out = []
    for item in items or []:
        name = item.get("name") if isinstance(item, dict) else str(item)
        if name:
            out.append(str(name))
    return out


def _first_isbn(values: List[str], length: int) -> str:
    for raw in values or []:
        clean = normalize_isbn(raw)
        if len(clean) == length:
            return clean
    return ""


def transform_isbn_record(record: dict, isbn: str) -> Optional[dict]:
    if not record.get("title"):
        return None
    identifiers = record.get("identifiers") or {}
    languages = record.get("languages") or []
    language = ""
    if languages:
        key = languages[0].get("key", "") if isinstance(languages[0], dict) else str(languages[0])
        language = key.rsplit("/", 1)[-1]
    return {
        "provider": "open_library",
        "open_library_key": record.get("key") or "",
        "title": record["title"],
        "subtitle": record.get("subtitle") or "",
        "authors": ", ".join(_names(record.get("authors"))),
        "isbn": isbn,
        "isbn_10": (identifiers.get("isbn_10") or [""])[0],
        "isbn_13": (identifiers.get("isbn_13") or [""])[0],
        "thumbnail": cover_url(isbn),
        "publisher": ", ".join(_names(record.get("publishers"))),
        "published_date": record.get("publish_date") or "",
        "page_count": int(record.get("number_of_pages") or 0),
        "language": language,
        "categories": _names(record.get("subjects"))[:10],
    }


def transform_search_doc(doc: dict) -> Optional[dict]:
    if not doc.get("title"):
        return None
    isbns = doc.get("isbn") or []
    isbn = _first_isbn(isbns, 13) or _first_isbn(isbns, 10)
    key = doc.get("key") or ""
    return {
        "provider": "open_library",
        "open_library_key": key,
        "title": doc["title"],
        "subtitle": doc.get("subtitle") or "",
        "authors": ", ".join(str(a) for a in doc.get("author_name") or []),
        "isbn": isbn,
        "isbn_10": _first_isbn(isbns, 10),
        "isbn_13": _first_isbn(isbns, 13),
        "thumbnail": cover_url(isbn),
        "publisher": ", ".join(str(p) for p in (doc.get("publisher") or [])[:3]),
        "published_date": str(doc.get("first_publish_year") or ""),
        "page_count": 0,
        "language": ", ".join(str(x) for x in (doc.get("language") or [])[:3]),
        "categories": [str(s) for s in (doc.get("subject") or [])[:10]],
        "info_link": f"https://openlibrary.org{key}" if key else "",
    }


class OpenLibraryProvider(BookSearchProvider):
    name = "open_library"

    def __init__(
        self,
        session: requests.Session,
        *,
        priority: int = 3,
        enabled: bool = True,
        timeout_s: int = 10,
    ) -> None:
        super().__init__(priority=priority, enabled=enabled)
        self.session = session
        self.timeout_s = timeout_s

    def search(self, query: str, options: Optional[dict] = None) -> SearchResult:
        options = options or {}
        try:
            if looks_like_isbn(query):
                books = self._search_by_isbn(normalize_isbn(query))
                total = len(books)
            else:
                books, total = self._search_by_text(query, options)
        except FetchError as e:
            logger.warning("provider error | provider=%s | query=%s | err=%s", self.name, query, e)
            return SearchResult.failure(self.name, "Open Library request failed", query)

        if not books:
            return SearchResult(success=False, provider_name=self.name, message="No books found", query=query)
        return SearchResult(
            success=True,
            provider_name=self.name,
            books=books,
            total_found=total,
            message=f"Found {len(books)} books",
            query=query,
        )

    def _search_by_isbn(self, isbn: str) -> List[dict]:
        params = {"bibkeys": f"ISBN:{isbn}", "format": "json", "jscmd": "data"}
        data = get_json(self.session, OPEN_LIBRARY_BOOKS_URL, params=params, timeout_s=self.timeout_s, label="OpenLibrary")
        record = data.get(f"ISBN:{isbn}") or {}
        book = transform_isbn_record(record, isbn) if isinstance(record, dict) else None
        return [book] if book else []

    def _search_by_text(self, query: str, options: dict) -> tuple:
        params: Dict[str, str] = {"q": query, "limit": str(options.get("max_results") or 20)}
        if options.get("title"):
            params["title"] = options["title"]
        if options.get("author"):
            params["author"] = options["author"]
        data = get_json(self.session, OPEN_LIBRARY_SEARCH_URL, params=params, timeout_s=self.timeout_s, label="OpenLibrarySearch")
        docs = [d for d in data.get("docs") or [] if isinstance(d, dict)]
        books = [b for b in (transform_search_doc(d) for d in docs) if b]
        return books, int(data.get("numFound") or len(books))
