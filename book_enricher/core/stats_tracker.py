from __future__ import annotations

import threading
import time
from typing import List, Optional, Tuple

from book_enricher.core.models import StatsSnapshot


class StatsTracker:
    """
    Counters for a batch run (enrich, validate, clean).

    All mutation is done under one lock; snapshot() returns a consistent
    StatsSnapshot for the summary table.
    """

    def __init__(self, total: int = 0) -> None:
        self._lock = threading.Lock()
        self._total = int(total)
        self._processed = 0
        self._succeeded = 0
        self._failed = 0
        self._skipped = 0
        self._requests_made = 0
        self._errors = 0
        self._failures: List[Tuple[str, str]] = []
        self._start_ts = time.monotonic()

    def inc_requests(self, n: int = 1) -> None:
        with self._lock:
            self._requests_made += int(n)

    def inc_errors(self, n: int = 1) -> None:
        with self._lock:
            self._errors += int(n)

    def record(self, book_id: str, ok: Optional[bool], message: str = "") -> None:
        """ok=None counts the book as skipped."""
        with self._lock:
            self._processed += 1
            if ok is None:
                self._skipped += 1
            elif ok:
                self._succeeded += 1
            else:
                self._failed += 1
                self._failures.append((str(book_id), message))

    def failures(self) -> List[Tuple[str, str]]:
        with self._lock:
            return list(self._failures)

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                total=self._total,
                processed=self._processed,
                succeeded=self._succeeded,
                failed=self._failed,
                skipped=self._skipped,
                requests_made=self._requests_made,
                errors=self._errors,
                elapsed_s=time.monotonic() - self._start_ts,
            )
