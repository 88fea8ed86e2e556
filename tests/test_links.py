from book_enricher.core.links import all_region_links, build_amazon_link, enrich_with_links, search_term
from book_enricher.core.models import Book
from book_enricher.core.regions import REGIONS, build_regions


def test_link_prefers_asin() -> None:
    book = Book(id="1", title="Dune", isbn="9780441172719", amazon_asin="B00ABC1234")
    assert build_amazon_link(book, REGIONS["US"]) == "https://www.amazon.com/dp/B00ABC1234?tag=livrolog-20"


def test_search_link_uses_isbn_then_title_authors() -> None:
    by_isbn = Book(id="1", title="Anything", isbn="978-0-306-40615-7")
    assert (
        build_amazon_link(by_isbn, REGIONS["US"])
        == "https://www.amazon.com/s?k=9780306406157&i=stripbooks&tag=livrolog-20"
    )
    by_title = Book(id="2", title="Dune", authors="Frank Herbert")
    assert "k=Dune+Frank+Herbert" in build_amazon_link(by_title, REGIONS["US"])
    assert search_term(Book(id="3")) == "book"


def test_empty_tag_is_omitted() -> None:
    book = Book(id="1", amazon_asin="B00ABC1234")
    assert build_amazon_link(book, REGIONS["US"], associate_tag="") == "https://www.amazon.com/dp/B00ABC1234"
    searched = build_amazon_link(Book(id="2", title="Dune"), REGIONS["US"], associate_tag="")
    assert "tag=" not in searched


def test_enrich_with_links_uses_region_tag() -> None:
    rows = enrich_with_links([Book(id="1", title="Dom Casmurro")], "BR")
    assert rows[0]["amazon_region"] == "BR"
    assert rows[0]["amazon_buy_link"].startswith("https://www.amazon.com.br/s?")
    assert "tag=livrolog01-20" in rows[0]["amazon_buy_link"]
    assert rows[0]["title"] == "Dom Casmurro"


def test_all_region_links_normalizes_codes() -> None:
    links = all_region_links(Book(id="1", amazon_asin="B00ABC1234"), ["US", "GB"])
    assert set(links) == {"US", "UK"}
    assert links["UK"]["domain"] == "amazon.co.uk"
    assert links["UK"]["url"].startswith("https://www.amazon.co.uk/dp/B00ABC1234")


def test_build_regions_overrides_tags() -> None:
    regions = build_regions({"us": "custom-20"})
    assert regions["US"].associate_tag == "custom-20"
    assert regions["BR"].associate_tag == "livrolog01-20"
    link = build_amazon_link(Book(id="1", amazon_asin="B00ABC1234"), regions["US"])
    assert link.endswith("?tag=custom-20")
