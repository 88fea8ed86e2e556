import json
from typing import Optional

from book_enricher.core.models import SearchResult
from book_enricher.integrations.cache import TTLCache
from book_enricher.providers.base import BookSearchProvider, ProviderRegistry
from book_enricher.search.multi_source import (
    FAILURE_TTL_S,
    ISBN_SUGGESTIONS,
    SUCCESS_TTL_S,
    TEXT_SUGGESTIONS,
    MultiSourceSearch,
    cache_key,
)


class StubProvider(BookSearchProvider):
    def __init__(self, name: str, priority: int, result: Optional[SearchResult] = None, exc=None, enabled=True) -> None:
        super().__init__(priority=priority, enabled=enabled)
        self.name = name
        self.result = result
        self.exc = exc
        self.calls = []

    def search(self, query, options=None):
        self.calls.append(query)
        if self.exc is not None:
            raise self.exc
        return self.result or SearchResult(success=False, provider_name=self.name, message="No books found")


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def found(title: str) -> SearchResult:
    return SearchResult(success=True, books=[{"title": title}], total_found=1, message="Found 1 books")


def test_first_successful_provider_wins_and_is_cached() -> None:
    google = StubProvider("google_books", 1, found("Dune"))
    library = StubProvider("open_library", 3, found("Dune (OL)"))
    search = MultiSourceSearch(ProviderRegistry([library, google]), TTLCache())

    first = search.search("  Dune ")
    assert first.success
    assert first.provider_name == "google_books"
    assert first.providers_tried == ["google_books"]
    assert first.query == "Dune"
    assert library.calls == []

    second = search.search("Dune")
    assert second.books == [{"title": "Dune"}]
    assert second.provider_name == "google_books"
    assert google.calls == ["Dune"]


def test_raising_provider_is_skipped() -> None:
    google = StubProvider("google_books", 1, exc=RuntimeError("boom"))
    library = StubProvider("open_library", 3, found("Dune"))
    search = MultiSourceSearch(ProviderRegistry([google, library]), TTLCache())

    result = search.search("Dune")
    assert result.provider_name == "open_library"
    assert result.providers_tried == ["google_books", "open_library"]
    timings = search.stats()["timings"]
    assert timings["google_books"]["errors"] == 1
    assert timings["open_library"]["hits"] == 1


def test_disabled_provider_is_not_called() -> None:
    amazon = StubProvider("amazon", 0, found("Dune"), enabled=False)
    google = StubProvider("google_books", 1, found("Dune"))
    search = MultiSourceSearch(ProviderRegistry([amazon, google]), TTLCache())

    assert search.search("Dune").provider_name == "google_books"
    assert amazon.calls == []
    stats = search.stats()
    assert (stats["total_providers"], stats["enabled_providers"]) == (2, 1)


def test_total_failure_is_cached_for_an_hour() -> None:
    clock = Clock()
    google = StubProvider("google_books", 1)
    library = StubProvider("open_library", 3)
    search = MultiSourceSearch(ProviderRegistry([google, library]), TTLCache(clock=clock))

    result = search.search("978-0-306-40615-7")
    assert not result.success
    assert result.message == "No books found in any provider"
    assert result.query == "9780306406157"
    assert result.providers_tried == ["google_books", "open_library"]
    assert result.suggestions == ISBN_SUGGESTIONS

    search.search("978-0-306-40615-7")
    assert len(google.calls) == 1

    clock.now += FAILURE_TTL_S + 1
    search.search("978-0-306-40615-7")
    assert len(google.calls) == 2


def test_text_query_failure_suggestions() -> None:
    search = MultiSourceSearch(ProviderRegistry([StubProvider("google_books", 1)]), TTLCache())
    assert search.search("some obscure title").suggestions == TEXT_SUGGESTIONS


def test_options_are_part_of_the_cache_key() -> None:
    assert cache_key("dune", {}) != cache_key("dune", {"language": "pt-BR"})
    assert cache_key("dune", {"a": 1, "b": 2}) == cache_key("dune", {"b": 2, "a": 1})


def test_search_with_provider() -> None:
    google = StubProvider("google_books", 1, found("Dune"))
    amazon = StubProvider("amazon", 2, found("Dune"), enabled=False)
    search = MultiSourceSearch(ProviderRegistry([google, amazon]), TTLCache())

    missing = search.search_with_provider("nope", "Dune")
    assert not missing.success
    assert missing.message == "Provider 'nope' not found"

    disabled = search.search_with_provider("amazon", "Dune")
    assert not disabled.success
    assert disabled.message == "Provider 'amazon' is disabled"

    assert search.search_with_provider("google_books", "Dune").success
    search.search_with_provider("google_books", "Dune")
    assert len(google.calls) == 2


def test_clear_cache() -> None:
    google = StubProvider("google_books", 1, found("Dune"))
    search = MultiSourceSearch(ProviderRegistry([google]), TTLCache())
    search.search("Dune")
    assert search.clear_cache() == 1
    search.search("Dune")
    assert len(google.calls) == 2


def test_profiler_writes_per_provider_timings(tmp_path) -> None:
    google = StubProvider("google_books", 1)
    library = StubProvider("open_library", 3, found("Dune"))
    search = MultiSourceSearch(ProviderRegistry([google, library]), TTLCache())
    search.search("Dune")

    out = tmp_path / "profile.json"
    search.profiler.write(str(out))
    data = json.loads(out.read_text(encoding="utf-8"))
    assert data["providers"]["google_books"]["calls"] == 1
    assert data["providers"]["google_books"]["hits"] == 0
    assert data["providers"]["open_library"]["hits"] == 1


def test_registry_orders_by_priority_and_unregisters() -> None:
    google = StubProvider("google_books", 1)
    amazon = StubProvider("amazon", 2, enabled=False)
    library = StubProvider("open_library", 3)
    registry = ProviderRegistry([library, amazon, google])

    assert [p.name for p in registry.all()] == ["google_books", "amazon", "open_library"]
    assert [p.name for p in registry.enabled()] == ["google_books", "open_library"]
    assert registry.unregister("google_books") is google
    assert registry.unregister("google_books") is None
    assert registry.get("google_books") is None
    assert [p.name for p in registry.all()] == ["amazon", "open_library"]


def test_empty_success_falls_through_and_is_not_cached() -> None:
    google = StubProvider("google_books", 1, SearchResult(success=True, books=[], total_found=0, message="Found 0 books"))
    library = StubProvider("open_library", 3, found("Dune"))
    cache = TTLCache()
    search = MultiSourceSearch(ProviderRegistry([google, library]), cache)

    result = search.search("Dune")
    assert result.provider_name == "open_library"
    assert result.providers_tried == ["google_books", "open_library"]
    assert cache.size() == 1

    again = search.search("Dune")
    assert again.provider_name == "open_library"
    assert again.books == [{"title": "Dune"}]
    assert google.calls == ["Dune"]
    assert library.calls == ["Dune"]


def test_success_is_cached_for_a_day() -> None:
    clock = Clock()
    google = StubProvider("google_books", 1, found("Dune"))
    search = MultiSourceSearch(ProviderRegistry([google]), TTLCache(clock=clock))

    search.search("Dune")
    clock.now += SUCCESS_TTL_S - 1
    search.search("Dune")
    assert google.calls == ["Dune"]

    clock.now += 2
    search.search("Dune")
    assert google.calls == ["Dune", "Dune"]


def test_search_with_provider_reports_provider_errors() -> None:
    google = StubProvider("google_books", 1, exc=RuntimeError("quota exceeded"))
    search = MultiSourceSearch(ProviderRegistry([google]), TTLCache())

    result = search.search_with_provider("google_books", " Dune ")
    assert not result.success
    assert result.provider_name == "google_books"
    assert "quota exceeded" in result.message
    assert result.query == "Dune"
