"""Core data models shared by the extraction pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, Generic, List, Optional, Set, Tuple, TypeVar

MAX_RESULTS_LIMIT = 200
MAX_SCROLLS_LIMIT = 100

T = TypeVar("T")


@dataclass(slots=True)
class BusinessRecord:
    """One business listing, optionally enriched from its detail view and website."""

    identity: str
    name: str
    coordinates: Optional[Tuple[float, float]] = None
    rating: float = 0.0
    review_count: int = 0
    address: str = ""
    phone: str = ""
    website: str = ""
    business_type: str = ""
    price_level: str = ""
    hours: List[str] = field(default_factory=list)
    hours_raw: Dict[str, str] = field(default_factory=dict, repr=False)
    email: Optional[str] = None
    emails: List[str] = field(default_factory=list)
    source_url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        if self.coordinates is not None:
            payload["coordinates"] = {"latitude": self.coordinates[0], "longitude": self.coordinates[1]}
        return payload


@dataclass(frozen=True)
class ExtractionConfig:
    """Immutable description of one search. Region variants are derived copies."""

    query: str = ""
    direct_url: Optional[str] = None
    max_results: int = 100
    locale: str = "en"
    max_scrolls: int = 50
    scrape_details: bool = True
    scrape_emails: bool = True

    def __post_init__(self) -> None:
        if not (self.query or "").strip() and not self.direct_url:
            raise ValueError("Search query or direct URL required")
        if not 1 <= self.max_results <= MAX_RESULTS_LIMIT:
            raise ValueError(f"max_results must be between 1 and {MAX_RESULTS_LIMIT}")
        if not 1 <= self.max_scrolls <= MAX_SCROLLS_LIMIT:
            raise ValueError(f"max_scrolls must be between 1 and {MAX_SCROLLS_LIMIT}")

    def for_region(self, region: str) -> "ExtractionConfig":
        region = (region or "").strip()
        if not region:
            return self
        return replace(self, query=f"{self.query.strip()} {region}")


@dataclass
class SearchStats:
    """Mutable per-run counters owned by one search session."""

    loaded_count: int = 0
    extracted_count: int = 0
    scroll_attempts: int = 0
    emails_extracted: int = 0


@dataclass
class SearchSession:
    """State for one pipeline invocation: the page, the dedup set and the counters."""

    page: Any
    config: ExtractionConfig
    seen: Set[str] = field(default_factory=set)
    stats: SearchStats = field(default_factory=SearchStats)


@dataclass(frozen=True)
class StatsSnapshot:
    loaded_count: int
    extracted_count: int
    scroll_attempts: int
    emails_extracted: int
    final_result_count: int = 0
    email_stats: Dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ItemResult(Generic[T]):
    """Outcome of a per-business enrichment or harvest step."""

    identity: str
    ok: bool
    value: Optional[T] = None
    reason: Optional[str] = None

    @classmethod
    def success(cls, identity: str, value: Optional[T] = None) -> "ItemResult[T]":
        return cls(identity=identity, ok=True, value=value)

    @classmethod
    def failure(cls, identity: str, reason: str) -> "ItemResult[T]":
        return cls(identity=identity, ok=False, reason=reason)
