from __future__ import annotations

import json
import logging
import os
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class TTLCache:
    """
    Key/value cache with per-entry TTL.

    Entries live in memory; when `path` is set every put/forget is appended
    to a JSONL journal that is replayed on startup (expired entries are
    skipped). Last write wins.
    """

    def __init__(self, path: Optional[str] = None, *, clock: Callable[[], float] = time.time) -> None:
        self.path = path
        self._clock = clock
        self._lock = threading.Lock()
        self._data: Dict[str, Tuple[float, Any]] = {}
        self.hits = 0
        self.misses = 0
        if path:
            self._load(path)

    def _load(self, path: str) -> None:
        if not os.path.exists(path):
            return
        now = self._clock()
        loaded = 0
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        rec = json.loads(line)
                    except ValueError:
                        continue
                    if not isinstance(rec, dict):
                        continue
                    key = rec.get("key")
                    if not key or not isinstance(key, str):
                        continue
                    if rec.get("deleted"):
                        self._data.pop(key, None)
                        continue
                    try:
                        expires_at = float(rec.get("expires_at") or 0)
                    except (TypeError, ValueError):
                        continue
                    if expires_at <= now:
                        self._data.pop(key, None)
                        continue
                    self._data[key] = (expires_at, rec.get("value"))
                    loaded += 1
        except OSError as e:
            logger.warning("cache unavailable | path=%s | err=%r", path, e)
            return
        logger.debug("cache loaded | path=%s | entries=%s", path, loaded)

    def _append(self, rec: dict) -> None:
        if not self.path:
            return
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(rec, ensure_ascii=False) + "\n")
        except OSError as e:
            logger.warning("cache write failed | path=%s | err=%r", self.path, e)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                self.misses += 1
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._data[key]
                self.misses += 1
                return None
            self.hits += 1
            return value

    def put(self, key: str, value: Any, ttl_s: float) -> None:
        with self._lock:
            expires_at = self._clock() + float(ttl_s)
            self._data[key] = (expires_at, value)
            self._append({"key": key, "expires_at": expires_at, "value": value})

    def forget(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._append({"key": key, "deleted": True})

    def flush(self) -> int:
        with self._lock:
            n = len(self._data)
            self._data.clear()
            if self.path and os.path.exists(self.path):
                with open(self.path, "w", encoding="utf-8"):
                    pass
            return n

    def size(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for expires_at, _ in self._data.values() if expires_at > now)
