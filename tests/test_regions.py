from book_enricher.core.models import Book
from book_enricher.core.regions import (
    REGIONS,
    accept_language,
    detect_book_region,
    get_region,
    region_from_url,
    resolve_region,
)


def test_region_table_is_complete() -> None:
    assert len(REGIONS) == 21
    assert REGIONS["BR"].base_url == "https://www.amazon.com.br"
    assert REGIONS["UK"].search_url == "https://www.amazon.co.uk/s"


def test_resolve_region_locales() -> None:
    assert resolve_region("pt-BR") == "BR"
    assert resolve_region("en_GB") == "UK"
    assert resolve_region("de") == "DE"
    assert resolve_region("fr-CA") == "CA"


def test_resolve_region_falls_back_without_raising() -> None:
    assert resolve_region(None) == "US"
    assert resolve_region(42) == "US"
    assert resolve_region("xx-YY") == "US"
    assert resolve_region("xx", "br") == "BR"
    assert resolve_region("zz", "nope") == "US"


def test_get_region_aliases_and_default() -> None:
    assert get_region("GB").code == "UK"
    assert get_region("zz").code == "US"
    assert get_region(None).code == "US"


def test_region_from_url() -> None:
    assert region_from_url("https://www.amazon.com.br/dp/B00ABC1234") == "BR"
    assert region_from_url("https://amazon.de/gp/product/B00ABC1234") == "DE"
    assert region_from_url("https://amzn.to/3xyz") == "US"
    assert region_from_url("https://example.com/dp/B00ABC1234") is None


def test_detect_book_region() -> None:
    assert detect_book_region(Book(id="1", title="O Livro das Coisas")) == "BR"
    assert detect_book_region(Book(id="2", title="The Name of the Wind")) == "US"
    assert detect_book_region(Book(id="3", title="Faust", language="de-DE")) == "DE"
    assert detect_book_region(Book(id="4", title="Xyz"), "UK") == "UK"


def test_accept_language_headers() -> None:
    assert accept_language("BR") == "pt-BR,pt;q=0.8,en;q=0.5,en-US;q=0.3"
    assert accept_language("IT") == "it-IT,it;q=0.8,en;q=0.5"


def test_bare_language_codes_are_not_marketplace_codes() -> None:
    assert resolve_region("ca") == resolve_region("ca-ES") == "US"
    assert resolve_region("uk") == resolve_region("uk-UA") == "US"
    assert resolve_region("be") == "US"
    assert resolve_region("sa", "BR") == "BR"
