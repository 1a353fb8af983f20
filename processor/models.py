"""Data models for event ingestion and reconciliation."""
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class EventSource(str, Enum):
    """Origin of an event record."""
    FACEBOOK = 'facebook'
    MANUAL = 'manual'
    OTHER = 'other'


class EventStatus(str, Enum):
    """Moderation status of a stored event."""
    DRAFT = 'draft'
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


# Statuses set by a moderator; ingestion must not overwrite content of these.
LOCKED_STATUSES = frozenset({EventStatus.APPROVED, EventStatus.REJECTED})


class SyncStatus(str, Enum):
    """Lifecycle of one ingestion run."""
    RUNNING = 'running'
    SUCCESS = 'success'
    FAILED = 'failed'


class SkipReason(str, Enum):
    """Why an adapter dropped a source item."""
    NO_DATE = 'no_date'
    NO_GEO = 'no_geo'
    NO_LOCATION = 'no_location'
    NO_COUNTRY = 'no_country'
    DUPLICATE = 'duplicate'
    MALFORMED = 'malformed'
    PAST = 'past'
    FETCH_FAILED = 'fetch_failed'
    FILTERED = 'filtered'


def format_coordinate(value: float) -> str:
    """Render a coordinate with fixed 6-digit precision."""
    return f"{float(value):.6f}"


def natural_key_of(source: EventSource, source_id: str) -> str:
    """Build the composite store key for (source, source_id)."""
    return f"{EventSource(source).value}#{source_id}"


@dataclass
class ExternalEvent:
    """Canonical output of every source adapter."""
    title: str
    country_code: str
    city: str
    start_at: datetime
    lat: str
    lng: str
    source: EventSource
    source_id: Optional[str]
    description: Optional[str] = None
    place: Optional[str] = None
    end_at: Optional[datetime] = None
    source_url: Optional[str] = None
    raw_payload: Any = None

    def __post_init__(self):
        self.title = (self.title or '').strip()
        if not self.title:
            raise ValueError("ExternalEvent.title must not be empty")

        code = (self.country_code or '').strip().upper()
        if len(code) != 2 or not code.isalpha():
            raise ValueError(f"Invalid country code: {self.country_code!r}")
        self.country_code = code

        if self.start_at is None:
            raise ValueError("ExternalEvent.start_at is required")
        if self.end_at is not None and self.end_at <= self.start_at:
            self.end_at = None

        self.city = (self.city or '').strip() or 'Unknown'
        self.source = EventSource(self.source)
        self.lat = format_coordinate(self.lat)
        self.lng = format_coordinate(self.lng)

    @property
    def natural_key(self) -> Optional[str]:
        if not self.source_id:
            return None
        return natural_key_of(self.source, self.source_id)


@dataclass
class StoredEvent:
    """Persisted event, a superset of ExternalEvent."""
    event_id: str
    status: EventStatus
    created_at: datetime
    updated_at: datetime
    title: str
    country_code: str
    city: str
    start_at: datetime
    lat: str
    lng: str
    source: EventSource
    source_id: str
    description: Optional[str] = None
    place: Optional[str] = None
    end_at: Optional[datetime] = None
    source_url: Optional[str] = None
    raw_payload: Any = None

    @property
    def natural_key(self) -> str:
        return natural_key_of(self.source, self.source_id)

    @property
    def is_locked(self) -> bool:
        return self.status in LOCKED_STATUSES

    @property
    def was_created(self) -> bool:
        """True when the last write created the record."""
        return self.created_at == self.updated_at


@dataclass
class SyncRun:
    """Ledger record of one ingestion execution."""
    run_id: str
    source: str
    status: SyncStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    fetched_count: int = 0
    created_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    error_message: Optional[str] = None


@dataclass
class GeoCacheEntry:
    """Cached geocoding outcome; null coordinates mark a failed lookup."""
    query: str
    lat: Optional[str]
    lng: Optional[str]
    raw: Any = None

    @property
    def is_negative(self) -> bool:
        return self.lat is None or self.lng is None


@dataclass
class GeoPoint:
    lat: float
    lng: float


@dataclass
class GeoDetails:
    """Forward geocoding result with precision metadata."""
    lat: float
    lng: float
    city_level: bool
    address: Dict[str, Any] = field(default_factory=dict)
    display_name: Optional[str] = None
    feature_class: Optional[str] = None
    feature_type: Optional[str] = None


@dataclass
class ReverseGeocode:
    city: Optional[str]
    country_code: Optional[str]


@dataclass
class AdapterStats:
    """Scan/accept/skip counters of one adapter invocation."""
    scanned: int = 0
    accepted: int = 0
    skipped: Counter = field(default_factory=Counter)

    def record_skip(self, reason: SkipReason) -> None:
        self.skipped[SkipReason(reason).value] += 1

    @property
    def skipped_total(self) -> int:
        return sum(self.skipped.values())

    def breakdown(self) -> Dict[str, int]:
        return dict(self.skipped)


@dataclass
class AdapterResult:
    results: List[ExternalEvent]
    stats: AdapterStats


@dataclass
class ReconcileResult:
    created: int
    updated: int


@dataclass
class RunSummary:
    """Outcome of one pipeline entry point call."""
    source: str
    status: str
    run_id: Optional[str] = None
    fetched: int = 0
    accepted: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    skip_breakdown: Dict[str, int] = field(default_factory=dict)
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': self.source,
            'status': self.status,
            'run_id': self.run_id,
            'fetched': self.fetched,
            'accepted': self.accepted,
            'created': self.created,
            'updated': self.updated,
            'skipped': self.skipped,
            'skip_breakdown': dict(self.skip_breakdown),
            'error_message': self.error_message,
        }
