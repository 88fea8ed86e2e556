from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from book_enricher.core.models import SearchResult


class BookSearchProvider(ABC):
    """
    A searchable book source. Lower `priority` runs first.

    `search` returns a SearchResult for "nothing found" and for handled
    upstream errors; it may still raise on unexpected failures, which the
    orchestrator logs and skips.
    """

    name: str = ""

    def __init__(self, *, priority: int, enabled: bool = True) -> None:
        self.priority = int(priority)
        self.enabled = bool(enabled)

    def is_enabled(self) -> bool:
        return self.enabled

    @abstractmethod
    def search(self, query: str, options: Optional[dict] = None) -> SearchResult:
        raise NotImplementedError

    def get_config(self) -> dict:
        return {"name": self.name, "priority": self.priority, "enabled": self.is_enabled()}


class ProviderRegistry:
    def __init__(self, providers: Optional[List[BookSearchProvider]] = None) -> None:
        self._lock = threading.Lock()
        self._providers: Dict[str, BookSearchProvider] = {}
        for p in providers or []:
            self.register(p)

    def register(self, provider: BookSearchProvider) -> None:
        if not provider.name:
            raise ValueError("provider must define a name")
        with self._lock:
            self._providers[provider.name] = provider

    def unregister(self, name: str) -> Optional[BookSearchProvider]:
        with self._lock:
            return self._providers.pop(name, None)

    def get(self, name: str) -> Optional[BookSearchProvider]:
        with self._lock:
            return self._providers.get(name)

    def all(self) -> List[BookSearchProvider]:
        with self._lock:
            providers = list(self._providers.values())
        return sorted(providers, key=lambda p: (p.priority, p.name))

    def enabled(self) -> List[BookSearchProvider]:
        return [p for p in self.all() if p.is_enabled()]
