"""
Fuzzy matching between a stored book and a marketplace candidate.

Scores are built on `similar_text`: the recursive longest-common-substring
count used by PHP, so a score of 0.6 here means the same thing it meant in
the thresholds the catalogue was originally tuned against.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple

from book_enricher.core.models import Book, EnrichmentCandidate
from book_enricher.core.normalize import (
    isbn10_to_isbn13,
    normalize_authors,
    normalize_isbn,
    normalize_title,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchThresholds:
    quick_title: float = 0.5
    product_title: float = 0.6
    author: float = 0.7
    author_word: float = 0.8
    validate: float = 0.7
    clean: float = 0.5


DEFAULT_THRESHOLDS = MatchThresholds()


def _longest_common(a: str, b: str) -> Tuple[int, int, int]:
    pos1 = pos2 = best = 0
    for i in range(len(a)):
        for j in range(len(b)):
            k = 0
            while i + k < len(a) and j + k < len(b) and a[i + k] == b[j + k]:
                k += 1
            if k > best:
                best, pos1, pos2 = k, i, j
    return pos1, pos2, best


def similar_text(a: str, b: str) -> int:
    """Number of matching characters between `a` and `b`."""
    if not a or not b:
        return 0
    pos1, pos2, best = _longest_common(a, b)
    if not best:
        return 0
    total = best
    if pos1 and pos2:
        total += similar_text(a[:pos1], b[:pos2])
    if pos1 + best < len(a) and pos2 + best < len(b):
        total += similar_text(a[pos1 + best :], b[pos2 + best :])
    return total


def similarity(a: str, b: str) -> float:
    a = a or ""
    b = b or ""
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return (2.0 * similar_text(a, b)) / (len(a) + len(b))


def title_match(ours: str, theirs: str) -> float:
    n1 = normalize_title(ours)
    n2 = normalize_title(theirs)
    if not n1 and not n2:
        # titles made only of stopwords/punctuation ("The", "!!!")
        n1 = (ours or "").strip().casefold()
        n2 = (theirs or "").strip().casefold()
    if not n1 or not n2:
        return 0.0

    score = similarity(n1, n2)
    if len(n1) > 3 and len(n2) > 3 and (n1 in n2 or n2 in n1):
        score = max(score, 0.8)

    p1 = " ".join(n1.split(" ")[:3])
    p2 = " ".join(n2.split(" ")[:3])
    if len(p1) > 3 and len(p2) > 3:
        score = max(score, 0.9 * similarity(p1, p2))
    return score


def _as_isbn13(isbn: str) -> str:
    if len(isbn) == 13:
        return isbn
    if len(isbn) == 10:
        return isbn10_to_isbn13(isbn)
    return ""


def isbn_match(a: str, b: str) -> bool:
    x = normalize_isbn(a)
    y = normalize_isbn(b)
    if not x or not y:
        return False
    if x == y:
        return True
    x13 = _as_isbn13(x)
    return bool(x13) and x13 == _as_isbn13(y)


def _word_matches(word: str, other: str, min_similarity: float) -> bool:
    if word == other:
        return True
    if len(word) <= 3 or len(other) <= 3:
        return word in other or other in word
    return similarity(word, other) >= min_similarity


def author_words_match(a: str, b: str, min_similarity: float = 0.8) -> bool:
    words_a = [w for w in normalize_authors(a).split(" ") if len(w) >= 2]
    words_b = [w for w in normalize_authors(b).split(" ") if len(w) >= 2]
    if not words_a or not words_b:
        return False
    for word in words_a:
        if not any(_word_matches(word, other, min_similarity) for other in words_b):
            return False
    return True


def quick_title_match(search_title: str, book_title: str, threshold: float = 0.5) -> bool:
    """Cheap prefilter on a search-result title before fetching the product page."""
    n1 = normalize_title(search_title)
    n2 = normalize_title(book_title)
    if not n1 or not n2:
        return False
    if n1 in n2 or n2 in n1:
        return True
    return similarity(n1, n2) >= threshold


def validate_product_match(
    book: Book,
    candidate: EnrichmentCandidate,
    thresholds: MatchThresholds = DEFAULT_THRESHOLDS,
) -> Tuple[bool, str]:
    """
    Decide whether a product page describes the same work as `book`.

    ISBN is authoritative when both sides carry one. Otherwise the title must
    pass (containment or similarity), then the authors when both sides
    have them.
    """
    if book.isbn and candidate.isbn:
        if isbn_match(book.isbn, candidate.isbn):
            return True, "isbn"
        logger.info(
            "match rejected | reason=isbn_mismatch | asin=%s | book_isbn=%s | amazon_isbn=%s",
            candidate.asin,
            book.isbn,
            candidate.isbn,
        )
        return False, "isbn_mismatch"

    if not candidate.title:
        return False, "no_title"

    n_book = normalize_title(book.title)
    n_cand = normalize_title(candidate.title)
    contained = (
        bool(n_book and n_cand)
        and min(len(n_book), len(n_cand)) >= 3
        and (n_book in n_cand or n_cand in n_book)
    )
    if n_book or n_cand:
        title_score = similarity(n_book, n_cand)
    else:
        title_score = title_match(book.title, candidate.title)
    if not contained and title_score < thresholds.product_title:
        logger.info(
            "match rejected | reason=title | asin=%s | book_title=%r | amazon_title=%r | score=%.2f",
            candidate.asin,
            book.title,
            candidate.title,
            title_score,
        )
        return False, "title"

    if book.authors and candidate.authors:
        if not author_words_match(book.authors, candidate.authors, thresholds.author_word):
            author_score = similarity(normalize_authors(book.authors), normalize_authors(candidate.authors))
            if author_score < thresholds.author:
                logger.info(
                    "match rejected | reason=author | asin=%s | book_authors=%r | amazon_authors=%r | score=%.2f",
                    candidate.asin,
                    book.authors,
                    candidate.authors,
                    author_score,
                )
                return False, "author"

    return True, "title"
