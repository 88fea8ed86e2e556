from __future__ import annotations

import threading
from collections import Counter
from typing import Callable, Dict, Iterable, List, Optional

from book_enricher.core.models import ASIN_STATUSES, Book


class BookStore:
    """
    Thread-safe store of immutable Book records keyed by id.
    Updates are atomic read/modify/write operations; `dirty` tracks whether
    anything changed since load so callers know to write the file back.
    """

    def __init__(self, books: Optional[Iterable[Book]] = None) -> None:
        self._lock = threading.Lock()
        self._books: Dict[str, Book] = {b.id: b for b in (books or [])}
        self.dirty = False

    def get(self, book_id: str) -> Optional[Book]:
        with self._lock:
            return self._books.get(str(book_id))

    def set(self, book: Book) -> None:
        with self._lock:
            self._books[book.id] = book
            self.dirty = True

    def size(self) -> int:
        with self._lock:
            return len(self._books)

    def snapshot_values(self) -> List[Book]:
        with self._lock:
            return list(self._books.values())

    def update_if_present(self, book_id: str, updater: Callable[[Book], Book]) -> Optional[Book]:
        with self._lock:
            cur = self._books.get(str(book_id))
            if cur is None:
                return None
            nxt = updater(cur)
            if nxt != cur:
                self._books[cur.id] = nxt
                self.dirty = True
            return nxt

    def select(
        self,
        ids: Optional[Iterable[str]] = None,
        predicate: Optional[Callable[[Book], bool]] = None,
        limit: int = 0,
    ) -> List[Book]:
        """Books by explicit id list (in that order), else all matching `predicate`."""
        with self._lock:
            if ids:
                books = [self._books[str(i)] for i in ids if str(i) in self._books]
            else:
                books = list(self._books.values())
        if predicate is not None:
            books = [b for b in books if predicate(b)]
        if limit and limit > 0:
            books = books[:limit]
        return books

    def status_counts(self) -> Dict[str, int]:
        with self._lock:
            books = list(self._books.values())
        counts = Counter(b.asin_status or "pending" for b in books)
        out = {
            "total": len(books),
            "with_isbn": sum(1 for b in books if b.isbn),
            "with_asin": sum(1 for b in books if b.amazon_asin),
        }
        for status in ASIN_STATUSES:
            out[status] = counts.get(status, 0)
        return out
