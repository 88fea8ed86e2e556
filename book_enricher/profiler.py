from __future__ import annotations

import json
import threading
from collections import defaultdict
from typing import Dict


class ProviderProfiler:
    """Per-provider call counts, outcomes and latency for search orchestration."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Dict[str, int] = defaultdict(int)
        self._hits: Dict[str, int] = defaultdict(int)
        self._errors: Dict[str, int] = defaultdict(int)
        self._lat_sum: Dict[str, float] = defaultdict(float)

    def record(self, provider: str, elapsed_s: float, *, found: bool, error: bool = False) -> None:
        with self._lock:
            self._counts[provider] += 1
            self._lat_sum[provider] += float(elapsed_s)
            if found:
                self._hits[provider] += 1
            if error:
                self._errors[provider] += 1

    def summary(self) -> dict:
        with self._lock:
            out = {}
            for key, count in self._counts.items():
                err = self._errors.get(key, 0)
                out[key] = {
                    "calls": count,
                    "hits": self._hits.get(key, 0),
                    "errors": err,
                    "error_rate": (err / count) if count else 0.0,
                    "avg_latency_s": (self._lat_sum.get(key, 0.0) / count) if count else 0.0,
                }
            return out

    def write(self, path: str) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"providers": self.summary()}, f, indent=2, sort_keys=True)
