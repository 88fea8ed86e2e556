from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

ASIN_PENDING = "pending"
ASIN_PROCESSING = "processing"
ASIN_COMPLETED = "completed"
ASIN_FAILED = "failed"
ASIN_STATUSES = (ASIN_PENDING, ASIN_PROCESSING, ASIN_COMPLETED, ASIN_FAILED)

QUALITY_BASIC = "basic"
QUALITY_ENHANCED = "enhanced"
QUALITY_COMPLETE = "complete"
_QUALITY_RANK = {QUALITY_BASIC: 0, QUALITY_ENHANCED: 1, QUALITY_COMPLETE: 2}


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def max_quality(current: str, candidate: str) -> str:
    """Return the higher of two info_quality levels (never regresses)."""
    cur = _QUALITY_RANK.get((current or "").lower(), 0)
    new = _QUALITY_RANK.get((candidate or "").lower(), 0)
    if new > cur:
        return candidate
    return current or QUALITY_BASIC


@dataclass(frozen=True)
class Book:
    id: str
    title: str = ""
    subtitle: str = ""
    authors: str = ""
    isbn: str = ""
    google_id: str = ""
    amazon_asin: str = ""
    language: str = ""
    publisher: str = ""
    published_date: str = ""
    page_count: int = 0
    height: float = 0.0
    width: float = 0.0
    thickness: float = 0.0
    description: str = ""
    thumbnail: str = ""
    categories: str = ""
    format: str = ""
    info_quality: str = QUALITY_BASIC
    enriched_at: str = ""
    asin_status: str = ASIN_PENDING
    asin_processed_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EnrichmentCandidate:
    asin: str
    title: Optional[str] = None
    isbn: Optional[str] = None
    authors: Optional[str] = None
    thumbnail: Optional[str] = None
    description: Optional[str] = None
    publisher: Optional[str] = None
    page_count: Optional[int] = None
    dimensions: Optional[Tuple[float, float, float]] = None  # width, thickness, height (mm)
    is_book: bool = False


@dataclass(frozen=True)
class RegionConfig:
    code: str
    domain: str
    language: str
    accept_language_header: str
    associate_tag: str = ""
    label: str = ""

    @property
    def base_url(self) -> str:
        return f"https://www.{self.domain}"

    @property
    def search_url(self) -> str:
        return f"{self.base_url}/s"


@dataclass
class SearchResult:
    success: bool
    provider_name: str = ""
    books: List[dict] = field(default_factory=list)
    total_found: int = 0
    message: str = ""
    query: str = ""
    providers_tried: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    @property
    def has_results(self) -> bool:
        return bool(self.success and self.total_found > 0)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchResult":
        return cls(
            success=bool(data.get("success")),
            provider_name=str(data.get("provider_name") or ""),
            books=list(data.get("books") or []),
            total_found=int(data.get("total_found") or 0),
            message=str(data.get("message") or ""),
            query=str(data.get("query") or ""),
            providers_tried=list(data.get("providers_tried") or []),
            suggestions=list(data.get("suggestions") or []),
        )

    @classmethod
    def failure(cls, provider_name: str, message: str, query: str = "") -> "SearchResult":
        return cls(success=False, provider_name=provider_name, message=message, query=query)


@dataclass(frozen=True)
class EnrichmentOutcome:
    book: Book
    success: bool
    source: str = ""
    message: str = ""
    fields_filled: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AsinCheck:
    book_id: str
    asin: str
    accurate: bool
    is_book: bool = True
    amazon_title: str = ""
    amazon_isbn: str = ""
    title_score: float = 0.0
    isbn_match: bool = False
    url: str = ""
    error: str = ""


@dataclass(frozen=True)
class StatsSnapshot:
    total: int
    processed: int
    succeeded: int
    failed: int
    skipped: int
    requests_made: int
    errors: int
    elapsed_s: float
