from book_enricher.core.matching import (
    MatchThresholds,
    author_words_match,
    isbn_match,
    quick_title_match,
    similar_text,
    similarity,
    title_match,
    validate_product_match,
)
from book_enricher.core.models import Book, EnrichmentCandidate


def test_similar_text_counts_like_php() -> None:
    assert similar_text("World", "Word") == 4
    assert similar_text("bafoobar", "barfoo") == 5
    assert similar_text("barfoo", "bafoobar") == 3
    assert similar_text("", "abc") == 0


def test_similarity_bounds() -> None:
    assert similarity("abc", "abc") == 1.0
    assert similarity("", "abc") == 0.0
    assert 0.0 < similarity("World", "Word") < 1.0


def test_title_match_is_one_for_identical_titles() -> None:
    for title in ("Dom Casmurro", "1984", "The Hobbit", "The"):
        assert title_match(title, title) == 1.0


def test_title_match_containment_floor() -> None:
    assert title_match("Dune", "Dune: Deluxe Edition") >= 0.8


def test_unrelated_product_title_scores_near_zero() -> None:
    assert title_match("The Hobbit", 'Samsung 55" Smart TV') < 0.2


def test_isbn_match_symmetric_and_handles_isbn10() -> None:
    assert isbn_match("978-0-306-40615-7", "9780306406157")
    assert isbn_match("0306406152", "9780306406157")
    assert isbn_match("9780306406157", "0306406152")
    assert not isbn_match("9780306406157", "9788525406552")
    assert not isbn_match("", "9780306406157")


def test_author_words_match() -> None:
    assert author_words_match("Frank Herbert", "Herbert, Frank")
    assert author_words_match("J. R. R. Tolkien", "Tolkien")
    assert not author_words_match("Frank Herbert", "Jane Austen")


def test_quick_title_match_prefilter() -> None:
    assert quick_title_match("Dune (Dune Chronicles, Book 1)", "Dune")
    assert not quick_title_match('Samsung 55" Smart TV', "The Hobbit")


def test_validate_accepts_exact_title_without_isbn() -> None:
    book = Book(id="b1", title="1984")
    cand = EnrichmentCandidate(asin="B000000001", title="1984")
    assert validate_product_match(book, cand) == (True, "title")


def test_validate_rejects_unrelated_product() -> None:
    book = Book(id="b1", title="The Hobbit")
    cand = EnrichmentCandidate(asin="B0TV000001", title='Samsung 55" Smart TV')
    assert validate_product_match(book, cand) == (False, "title")


def test_validate_isbn_is_authoritative() -> None:
    book = Book(id="b1", title="Completely Different", isbn="0306406152")
    ok = EnrichmentCandidate(asin="B000000001", title="Other", isbn="9780306406157")
    bad = EnrichmentCandidate(asin="B000000002", title="Completely Different", isbn="9788525406552")
    assert validate_product_match(book, ok) == (True, "isbn")
    assert validate_product_match(book, bad) == (False, "isbn_mismatch")


def test_validate_rejects_author_mismatch() -> None:
    book = Book(id="b1", title="Dune", authors="Frank Herbert")
    cand = EnrichmentCandidate(asin="B000000001", title="Dune", authors="Jane Austen")
    assert validate_product_match(book, cand) == (False, "author")


def test_validate_without_candidate_title() -> None:
    book = Book(id="b1", title="Dune")
    assert validate_product_match(book, EnrichmentCandidate(asin="B000000001")) == (False, "no_title")


def test_thresholds_are_injectable() -> None:
    book = Book(id="b1", title="Dune Messiah")
    cand = EnrichmentCandidate(asin="B000000001", title="Dune Messenger")
    strict = MatchThresholds(product_title=0.99)
    assert validate_product_match(book, cand, strict) == (False, "title")
