from book_enricher.integrations.http_client import FixedDelayPacer, TokenBucket
from book_enricher.providers.amazon import AmazonSearchProvider, ProductAdvertisingApi
from book_enricher.providers.google_books import (
    GOOGLE_BOOKS_URL,
    GoogleBooksProvider,
    build_search_query,
    looks_like_author_name,
    remove_articles,
)
from book_enricher.providers.open_library import (
    OPEN_LIBRARY_BOOKS_URL,
    OPEN_LIBRARY_SEARCH_URL,
    OpenLibraryProvider,
)

from fakes import FakeResponse, FakeSession, html

DUNE_VOLUME = {
    "id": "B1hSG45JCX4C",
    "volumeInfo": {
        "title": "Dune",
        "authors": ["Frank Herbert"],
        "industryIdentifiers": [
            {"type": "ISBN_10", "identifier": "0441172717"},
            {"type": "ISBN_13", "identifier": "9780441172719"},
        ],
        "imageLinks": {"thumbnail": "http://books.google.com/books/content?id=B1hSG45JCX4C&edge=curl"},
        "pageCount": 412,
    },
}


def test_build_search_query() -> None:
    assert build_search_query("978-0-441-17271-9") == "isbn:9780441172719"
    assert build_search_query("x", {"title": "Dune", "author": "Herbert"}) == "intitle:Dune inauthor:Herbert"
    assert build_search_query("The Hobbit") == "intitle:Hobbit"
    assert build_search_query("Rebecca Yarros") == "inauthor:Rebecca Yarros"


def test_query_helpers() -> None:
    assert remove_articles("o pequeno príncipe") == "pequeno príncipe"
    assert remove_articles("AI") == "AI"
    assert looks_like_author_name("Carlos Gonzalez")
    assert not looks_like_author_name("Dune Messiah")


def test_google_provider_flattens_volumes() -> None:
    session = FakeSession(lambda url, params: FakeResponse(json_data={"totalItems": 1, "items": [DUNE_VOLUME]}))
    provider = GoogleBooksProvider(session, api_key="k", limiter=TokenBucket(1000.0, 10))

    result = provider.search("9780441172719")
    assert result.success and result.total_found == 1
    book = result.books[0]
    assert book["isbn"] == "9780441172719"
    assert book["authors"] == "Frank Herbert"
    assert book["thumbnail"] == "https://books.google.com/books/content?id=B1hSG45JCX4C"
    assert session.calls[0]["url"] == GOOGLE_BOOKS_URL
    assert session.calls[0]["params"]["q"] == "isbn:9780441172719"
    assert session.calls[0]["params"]["key"] == "k"


def test_google_provider_short_query_and_errors() -> None:
    session = FakeSession(lambda url, params: FakeResponse(status_code=403, json_data={"error": "forbidden"}))
    provider = GoogleBooksProvider(session)
    result = provider.search("AI")
    assert not result.success
    assert result.message == "Google Books API request failed"
    assert session.calls[0]["params"]["filter"] == "ebooks"

    empty = GoogleBooksProvider(FakeSession(lambda url, params: FakeResponse(json_data={"totalItems": 0})))
    assert empty.search("Nothing Here").message == "No books found"


def test_open_library_isbn_lookup() -> None:
    record = {
        "ISBN:9780441172719": {
            "key": "/books/OL1M",
            "title": "Dune",
            "authors": [{"name": "Frank Herbert"}],
            "publishers": [{"name": "Ace"}],
            "number_of_pages": 412,
            "languages": [{"key": "/languages/eng"}],
        }
    }
    session = FakeSession(lambda url, params: FakeResponse(json_data=record))
    result = OpenLibraryProvider(session).search("9780441172719")
    assert result.success
    book = result.books[0]
    assert (book["title"], book["publisher"], book["page_count"], book["language"]) == ("Dune", "Ace", 412, "eng")
    assert book["thumbnail"] == "https://covers.openlibrary.org/b/isbn/9780441172719-M.jpg"
    assert session.calls[0]["url"] == OPEN_LIBRARY_BOOKS_URL
    assert session.calls[0]["params"]["bibkeys"] == "ISBN:9780441172719"


def test_open_library_text_search() -> None:
    data = {
        "numFound": 42,
        "docs": [
            {
                "key": "/works/OL893415W",
                "title": "Dune",
                "author_name": ["Frank Herbert"],
                "isbn": ["0441172717", "9780441172719"],
                "first_publish_year": 1965,
            },
            {"key": "/works/untitled"},
        ],
    }
    session = FakeSession(lambda url, params: FakeResponse(json_data=data))
    result = OpenLibraryProvider(session).search("dune herbert", {"author": "Herbert"})
    assert result.total_found == 42
    assert len(result.books) == 1
    book = result.books[0]
    assert book["isbn"] == "9780441172719"
    assert book["isbn_10"] == "0441172717"
    assert book["published_date"] == "1965"
    assert book["info_link"] == "https://openlibrary.org/works/OL893415W"
    assert session.calls[0]["url"] == OPEN_LIBRARY_SEARCH_URL
    assert session.calls[0]["params"]["author"] == "Herbert"


def test_amazon_provider_scrapes_regional_results() -> None:
    page = (
        '<div data-asin="B000000001"><span class="a-size-medium a-color-base a-text-normal">Dom Casmurro</span></div>'
        '<div data-asin="B000000002"><img src="x.jpg"></div>'
    )
    session = FakeSession(lambda url, params: html(page))
    pa_api = ProductAdvertisingApi(access_key="a", secret_key="b", partner_tag="t", enabled=True)
    provider = AmazonSearchProvider(session, pacer=FixedDelayPacer(0), pa_api=pa_api, enabled=True)

    result = provider.search("Dom Casmurro", {"language": "pt-BR"})
    assert result.success
    assert result.books == [
        {
            "provider": "amazon",
            "amazon_asin": "B000000001",
            "title": "Dom Casmurro",
            "amazon_url": "https://www.amazon.com.br/dp/B000000001",
            "region": "BR",
        }
    ]
    assert session.calls[0]["url"] == "https://www.amazon.com.br/s"
    assert session.calls[0]["params"] == {"k": "Dom Casmurro", "i": "stripbooks"}


def test_pa_api_requires_credentials() -> None:
    assert not ProductAdvertisingApi(enabled=True).is_enabled()
    api = ProductAdvertisingApi(access_key="a", secret_key="b", partner_tag="t", enabled=True)
    assert api.is_enabled()
    assert not api.search_items("dune").success
