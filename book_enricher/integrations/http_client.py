from __future__ import annotations

import json
import logging
import random
import threading
import time
from typing import Callable, Dict, Optional

import requests

from book_enricher.core.models import RegionConfig

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/139.0.0.0 Safari/537.36"
)
DEFAULT_TIMEOUT_S = 15
RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


def _safe_body_preview(resp: requests.Response, limit: int = 500) -> str:
    try:
        if "application/json" in (resp.headers.get("Content-Type") or "").lower():
            try:
                text = json.dumps(resp.json(), ensure_ascii=False)
            except ValueError:
                text = resp.text or ""
        else:
            text = resp.text or ""
    except Exception:
        return "<unavailable>"
    text = text.replace("\r", " ").replace("\n", " ").strip()
    if len(text) > limit:
        return text[:limit].rstrip() + "..."
    return text


class FetchError(RuntimeError):
    def __init__(self, url: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class RateLimitError(FetchError):
    def __init__(self, label: str, url: str, status_code: int, body_preview: str) -> None:
        super().__init__(url, f"{label} rate limited (status={status_code})", status_code)
        self.label = label
        self.body_preview = body_preview


class TokenBucket:
    """Token-bucket limiter for API clients (Google Books: 5 requests/second)."""

    def __init__(
        self,
        rate_per_sec: float,
        burst: int = 1,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.rate = max(0.01, float(rate_per_sec))
        self.capacity = max(1, int(burst))
        self.tokens = float(self.capacity)
        self.lock = threading.Lock()
        self._clock = clock
        self._sleep = sleep
        self.last = clock()

    def take(self, n: float = 1.0) -> None:
        while True:
            with self.lock:
                now = self._clock()
                elapsed = now - self.last
                self.last = now
                self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
                if self.tokens >= n:
                    self.tokens -= n
                    return
                need = (n - self.tokens) / self.rate
            self._sleep(min(0.25, max(0.01, need)))


class FixedDelayPacer:
    """
    Cooperative pacing for scraping: guarantees at least `delay_s` between
    consecutive `wait()` returns. The first call never sleeps.
    """

    def __init__(
        self,
        delay_s: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.delay_s = max(0.0, float(delay_s))
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last: Optional[float] = None

    def wait(self) -> float:
        with self._lock:
            slept = 0.0
            if self._last is not None and self.delay_s:
                remaining = self.delay_s - (self._clock() - self._last)
                if remaining > 0:
                    self._sleep(remaining)
                    slept = remaining
            self._last = self._clock()
            return slept


def browser_headers(region: RegionConfig) -> Dict[str, str]:
    return {
        "User-Agent": BROWSER_USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": region.accept_language_header,
        "Accept-Encoding": "gzip, deflate",
        "Connection": "keep-alive",
    }


def make_scraper_session() -> requests.Session:
    s = requests.Session()
    s.headers.update({"User-Agent": BROWSER_USER_AGENT})
    return s


def make_api_session() -> requests.Session:
    s = requests.Session()
    s.headers.update({
        "Accept": "application/json",
        "User-Agent": "book-enricher/1.0",
    })
    return s


def _sleep_jitter(base: float, jitter: float = 0.25) -> None:
    time.sleep(max(0.0, base + random.random() * jitter))


def _get_with_retries(
    session: requests.Session,
    url: str,
    *,
    params: Optional[dict],
    headers: Optional[dict],
    timeout_s: int,
    retries: int,
    label: str,
) -> requests.Response:
    backoff = 1.0
    for attempt in range(1, retries + 2):
        try:
            logger.debug(
                "request | label=%s | method=GET | url=%s | params=%s | attempt=%s/%s",
                label,
                url,
                params,
                attempt,
                retries + 1,
            )
            r = session.get(url, params=params, headers=headers, timeout=timeout_s)
        except requests.RequestException as e:
            if attempt <= retries:
                logger.warning("request error | label=%s | url=%s | err=%r (retrying)", label, url, e)
                _sleep_jitter(backoff, 0.5)
                backoff = min(30.0, backoff * 2)
                continue
            raise FetchError(url, f"{label} request failed: {e}") from e

        if r.status_code in RETRYABLE_STATUSES:
            if attempt <= retries:
                ra = (r.headers.get("Retry-After") or "").strip()
                wait = float(ra) if ra.isdigit() else backoff
                logger.warning(
                    "retrying | label=%s | status=%s | wait=%s | url=%s",
                    label,
                    r.status_code,
                    wait,
                    url,
                )
                _sleep_jitter(wait, 0.5)
                backoff = min(30.0, backoff * 2)
                continue
            if r.status_code == 429:
                raise RateLimitError(label, url, r.status_code, _safe_body_preview(r))

        if r.status_code >= 400:
            logger.warning(
                "http error | label=%s | status=%s | url=%s | body=%s",
                label,
                r.status_code,
                url,
                _safe_body_preview(r, limit=200),
            )
            raise FetchError(url, f"{label} returned HTTP {r.status_code}", r.status_code)
        return r
    raise FetchError(url, f"{label} exhausted retries")


def get_text(
    session: requests.Session,
    url: str,
    *,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout_s: int = DEFAULT_TIMEOUT_S,
    retries: int = 1,
    label: str = "HTTP",
) -> str:
    r = _get_with_retries(
        session, url, params=params, headers=headers, timeout_s=timeout_s, retries=retries, label=label
    )
    return r.text or ""


def get_json(
    session: requests.Session,
    url: str,
    *,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout_s: int = DEFAULT_TIMEOUT_S,
    retries: int = 2,
    label: str = "HTTP",
) -> dict:
    r = _get_with_retries(
        session, url, params=params, headers=headers, timeout_s=timeout_s, retries=retries, label=label
    )
    try:
        data = r.json() if r.content else {}
    except ValueError as e:
        raise FetchError(url, f"{label} returned invalid JSON") from e
    return data if isinstance(data, dict) else {}
