"""
Uptime Telemetry - Data Models.

============================================================
CORE DATA STRUCTURES
============================================================

Raw records (produced externally, consumed read-only):
- CheckResult: One health-check attempt for an endpoint
- Endpoint: A monitored URL, mutated by lifecycle events
- Incident: An operator-managed incident, mutated by lifecycle events

Derived records (never stored):
- AggregateWindow: Counts and sorted response times for a time slice
- StatusSnapshot: Current status and uptime figures for an endpoint
- TimeSeriesPoint: One chart bucket
- SystemSnapshot: System-wide status banner
- UptimeDataPoint: One calendar day of uptime history

Events:
- TelemetryEvent: One decoded lifecycle/check event

All timestamps are timezone-aware UTC datetimes.

============================================================
"""

from bisect import insort
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union


# =============================================================
# TIME HELPERS
# =============================================================


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_day(value: datetime) -> datetime:
    """Midnight UTC of the given instant."""
    value = ensure_utc(value)
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_last_day(end: datetime) -> datetime:
    """
    Midnight UTC of the day holding the last instant before `end`.

    A right-open window ending exactly at midnight covers the
    previous day.
    """
    return start_of_day(ensure_utc(end) - timedelta.resolution)


def round_for_display(value: float, precision: int = 1) -> float:
    """Round a full-precision figure at the render boundary."""
    return round(value, precision)


# =============================================================
# ENUMS
# =============================================================


class EndpointStatus(str, Enum):
    """
    Status of a single endpoint.

    DISABLED is a presentation state: disabled endpoints are
    never evaluated against thresholds.
    """
    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    OUTAGE = "outage"
    UNKNOWN = "unknown"
    DISABLED = "disabled"


class SystemStatus(str, Enum):
    """System-wide status shown on the banner."""
    OPERATIONAL = "operational"
    DEGRADATION = "degradation"
    OUTAGE = "outage"

    @property
    def rank(self) -> int:
        """Severity rank; higher is worse."""
        return {
            SystemStatus.OPERATIONAL: 0,
            SystemStatus.DEGRADATION: 1,
            SystemStatus.OUTAGE: 2,
        }[self]


class IncidentStatus(str, Enum):
    """Lifecycle status of an incident."""
    OPEN = "open"
    INVESTIGATING = "investigating"
    IDENTIFIED = "identified"
    MONITORING = "monitoring"
    RESOLVED = "resolved"
    CLOSED = "closed"

    def is_active(self) -> bool:
        """Visible on live status surfaces."""
        return self in (IncidentStatus.OPEN, IncidentStatus.INVESTIGATING)

    def is_terminal(self) -> bool:
        """Removed from live views, kept in history."""
        return self in (IncidentStatus.RESOLVED, IncidentStatus.CLOSED)


class IncidentSeverity(str, Enum):
    """Severity of an incident."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    def is_major(self) -> bool:
        """Major incidents put the whole system into outage."""
        return self in (IncidentSeverity.CRITICAL, IncidentSeverity.HIGH)


class EntityKind(str, Enum):
    """Kinds of entity carried by events."""
    CHECK = "check"
    ENDPOINT = "endpoint"
    INCIDENT = "incident"


class EventType(str, Enum):
    """
    Events understood by the reconciler.

    The push channel names check results `status_update`;
    the ingestor maps wire names onto these values.
    """
    CHECK_RESULT_ADDED = "check_result_added"
    ENDPOINT_CREATED = "endpoint_created"
    ENDPOINT_UPDATED = "endpoint_updated"
    ENDPOINT_DELETED = "endpoint_deleted"
    INCIDENT_CREATED = "incident_created"
    INCIDENT_UPDATED = "incident_updated"
    INCIDENT_DELETED = "incident_deleted"
    PING = "ping"

    @property
    def kind(self) -> Optional[EntityKind]:
        """Entity kind this event carries (None for ping)."""
        if self == EventType.CHECK_RESULT_ADDED:
            return EntityKind.CHECK
        if self.value.startswith("endpoint_"):
            return EntityKind.ENDPOINT
        if self.value.startswith("incident_"):
            return EntityKind.INCIDENT
        return None

    @property
    def is_deletion(self) -> bool:
        return self.value.endswith("_deleted")


# =============================================================
# RAW RECORDS
# =============================================================


@dataclass(frozen=True)
class CheckResult:
    """
    Single health-check attempt.

    Immutable once created. `response_time_ms` is only
    meaningful for successful checks.
    """
    endpoint_id: str
    timestamp: datetime
    success: bool
    response_time_ms: Optional[int] = None
    status_code: Optional[int] = None
    id: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))

    @property
    def dedupe_key(self) -> Tuple[str, Any]:
        """Identity used to drop duplicate deliveries."""
        if self.id:
            return ("id", self.id)
        return ("at", self.endpoint_id, self.timestamp)

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        """Chronological order, ties broken by id."""
        return (self.timestamp, self.id or "")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "endpoint_id": self.endpoint_id,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "response_time_ms": self.response_time_ms,
            "status_code": self.status_code,
        }


@dataclass(frozen=True)
class Endpoint:
    """Monitored endpoint. `updated_at` is its monotonic version."""
    id: str
    name: str = ""
    url: str = ""
    enabled: bool = True
    expected_status_code: int = 200
    timeout_seconds: int = 30
    check_interval_seconds: int = 300
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.updated_at is not None:
            object.__setattr__(self, "updated_at", ensure_utc(self.updated_at))

    @property
    def version(self) -> Optional[datetime]:
        return self.updated_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "enabled": self.enabled,
            "expected_status_code": self.expected_status_code,
            "timeout_seconds": self.timeout_seconds,
            "check_interval_seconds": self.check_interval_seconds,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class Incident:
    """Incident record. `updated_at` is its monotonic version."""
    id: str
    status: IncidentStatus = IncidentStatus.OPEN
    severity: IncidentSeverity = IncidentSeverity.MEDIUM
    affected_endpoint_ids: FrozenSet[str] = frozenset()
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    title: str = ""
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "affected_endpoint_ids", frozenset(self.affected_endpoint_ids))
        for name in ("start_time", "end_time", "updated_at"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, ensure_utc(value))

    @property
    def version(self) -> Optional[datetime]:
        return self.updated_at

    @property
    def is_active(self) -> bool:
        return self.status.is_active()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "severity": self.severity.value,
            "affected_endpoint_ids": sorted(self.affected_endpoint_ids),
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


Entity = Union[CheckResult, Endpoint, Incident]


# =============================================================
# DERIVED RECORDS
# =============================================================


@dataclass(frozen=True)
class AggregateWindow:
    """
    Aggregate over the right-open interval [window_start, window_end).

    `response_times` holds the response times of successful checks
    that carried one, sorted ascending for percentile lookup.
    """
    window_start: datetime
    window_end: datetime
    total_checks: int = 0
    successful_checks: int = 0
    response_times: Tuple[int, ...] = ()

    def contains(self, timestamp: datetime) -> bool:
        """Right-open membership test."""
        return self.window_start <= timestamp < self.window_end

    @property
    def failed_checks(self) -> int:
        return self.total_checks - self.successful_checks

    @property
    def uptime(self) -> float:
        """Full-precision uptime; no data counts as fully up."""
        if self.total_checks == 0:
            return 100.0
        return self.successful_checks * 100 / self.total_checks

    def with_check(self, check: CheckResult) -> "AggregateWindow":
        """Return a copy with one more check counted."""
        if not check.success:
            return replace(self, total_checks=self.total_checks + 1)

        response_times = self.response_times
        if check.response_time_ms is not None:
            updated = list(response_times)
            insort(updated, check.response_time_ms)
            response_times = tuple(updated)

        return replace(
            self,
            total_checks=self.total_checks + 1,
            successful_checks=self.successful_checks + 1,
            response_times=response_times,
        )

    def merge(self, other: "AggregateWindow") -> "AggregateWindow":
        """Combine two aggregates over the same interval."""
        return replace(
            self,
            total_checks=self.total_checks + other.total_checks,
            successful_checks=self.successful_checks + other.successful_checks,
            response_times=tuple(sorted(self.response_times + other.response_times)),
        )


@dataclass(frozen=True)
class TimeSeriesPoint:
    """One chart/heatmap bucket."""
    bucket_start: datetime
    success_count: int
    failure_count: int
    avg_response_time_ms: float

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count

    @property
    def uptime(self) -> float:
        if self.total == 0:
            return 100.0
        return self.success_count * 100 / self.total

    def to_dict(self, precision: int = 1) -> Dict[str, Any]:
        return {
            "bucket_start": self.bucket_start.isoformat(),
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "avg_response_time_ms": round_for_display(self.avg_response_time_ms, precision),
            "uptime": round_for_display(self.uptime, precision),
        }


@dataclass(frozen=True)
class StatusSnapshot:
    """
    Derived status for one endpoint.

    Uptime figures keep full precision; rounding happens in to_dict().
    """
    endpoint_id: str
    name: str
    enabled: bool
    status: EndpointStatus
    uptime_window: float
    uptime_today: float
    uptime_30d: float
    uptime_90d: float
    avg_response_time_ms: float
    p95_response_time_ms: float
    p99_response_time_ms: float
    last_check_time: Optional[datetime]

    def to_dict(self, precision: int = 1) -> Dict[str, Any]:
        return {
            "endpoint_id": self.endpoint_id,
            "name": self.name,
            "enabled": self.enabled,
            "status": self.status.value,
            "uptime_window": round_for_display(self.uptime_window, precision),
            "uptime_today": round_for_display(self.uptime_today, precision),
            "uptime_30d": round_for_display(self.uptime_30d, precision),
            "uptime_90d": round_for_display(self.uptime_90d, precision),
            "avg_response_time_ms": round_for_display(self.avg_response_time_ms, precision),
            "p95_response_time_ms": self.p95_response_time_ms,
            "p99_response_time_ms": self.p99_response_time_ms,
            "last_check_time": self.last_check_time.isoformat() if self.last_check_time else None,
        }


@dataclass(frozen=True)
class SystemSnapshot:
    """System-wide banner: status, counts and overall uptime."""
    status: SystemStatus
    endpoint_count: int
    status_counts: Dict[str, int]
    active_incident_count: int
    uptime_today: float
    uptime_30d: float
    uptime_90d: float

    def to_dict(self, precision: int = 1) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "endpoint_count": self.endpoint_count,
            "status_counts": dict(self.status_counts),
            "active_incident_count": self.active_incident_count,
            "uptime_today": round_for_display(self.uptime_today, precision),
            "uptime_30d": round_for_display(self.uptime_30d, precision),
            "uptime_90d": round_for_display(self.uptime_90d, precision),
        }


@dataclass(frozen=True)
class UptimeDataPoint:
    """One calendar day of uptime history."""
    day: date
    uptime: float
    status: EndpointStatus
    total_checks: int = 0

    def to_dict(self, precision: int = 1) -> Dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "uptime": round_for_display(self.uptime, precision),
            "status": self.status.value,
            "total_checks": self.total_checks,
        }


# =============================================================
# EVENTS
# =============================================================


@dataclass(frozen=True)
class TelemetryEvent:
    """
    One decoded event.

    `entity` is None for pings and for deletions that only
    carried an id.
    """
    event_type: EventType
    entity_id: Optional[str] = None
    entity: Optional[Entity] = None
    event_id: Optional[str] = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def kind(self) -> Optional[EntityKind]:
        return self.event_type.kind

    @property
    def version(self) -> Optional[datetime]:
        """Version/timestamp used for ordering guards."""
        if isinstance(self.entity, CheckResult):
            return self.entity.timestamp
        if isinstance(self.entity, (Endpoint, Incident)):
            return self.entity.updated_at
        return None


# =============================================================
# WINDOW SPEC
# =============================================================


@dataclass(frozen=True)
class WindowSpec:
    """
    Requested look-back: `bucket_count` buckets of `bucket_width`
    ending (exclusive) at `now`.
    """
    now: datetime
    bucket_width: timedelta
    bucket_count: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "now", ensure_utc(self.now))
        if self.bucket_width <= timedelta(0):
            raise ValueError("bucket_width must be positive")
        if self.bucket_count < 0:
            raise ValueError("bucket_count must not be negative")

    @property
    def span(self) -> timedelta:
        return self.bucket_width * self.bucket_count

    @property
    def start(self) -> datetime:
        return self.now - self.span

    def advanced_to(self, now: datetime) -> "WindowSpec":
        """Same shape anchored at a later instant."""
        return replace(self, now=ensure_utc(now))
