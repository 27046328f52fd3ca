"""
Uptime Telemetry - Aggregation Engine.

============================================================
PURPOSE
============================================================

Produces the derived metrics the status surfaces display:
- Per-endpoint StatusSnapshot (status, uptime, response times)
- System-wide time series for the requested window
- System-wide banner (SystemSnapshot)

Plus the analytics views:
- Daily uptime history
- Hourly status heatmap
- Endpoint performance ranking
- Incident analytics (active count, severity, MTTR)

============================================================
WINDOWS
============================================================

Every window is recomputed independently from raw checks,
right-open relative to the anchor `now`:
- today     [00:00 UTC of now, now)
- short     [now - 30 days, now)
- long      [now - 90 days, now)
- requested [now - width * count, now)

Endpoint status is classified from the requested window.

============================================================
TOTALITY
============================================================

No endpoints, no checks and no incidents are all valid
inputs; the engine returns empty or default aggregates.

============================================================
"""

import logging
from bisect import insort
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .bucketing import (
    HOUR,
    aggregate_checks,
    bucket_checks,
    bucket_index,
    empty_buckets,
    merge_bucket_lists,
    to_series,
)
from .classifier import classify, classify_system
from .config import StatusThresholds, TelemetryConfig, WindowSettings, get_config
from .ingestor import normalize_checks
from .models import (
    AggregateWindow,
    CheckResult,
    Endpoint,
    EndpointStatus,
    Incident,
    IncidentSeverity,
    StatusSnapshot,
    SystemSnapshot,
    TimeSeriesPoint,
    UptimeDataPoint,
    WindowSpec,
    ensure_utc,
    round_for_display,
    start_of_last_day,
)
from .statistics import CheckStatistics, compute_statistics, mean, percentile


logger = logging.getLogger(__name__)


# =============================================================
# WINDOW BOUNDARIES
# =============================================================


def window_bounds(spec: WindowSpec, windows: WindowSettings) -> Tuple[Tuple[datetime, datetime], ...]:
    """(start, end) of the today, short, long and requested windows."""
    now = spec.now
    return (
        (start_of_last_day(now), now),
        (now - timedelta(days=windows.short_window_days), now),
        (now - timedelta(days=windows.long_window_days), now),
        (spec.start, now),
    )


def retention_start(spec: WindowSpec, windows: WindowSettings) -> datetime:
    """Oldest instant whose checks are still retained."""
    return min(spec.now - timedelta(days=windows.retention_days), spec.start)


# =============================================================
# PER-ENDPOINT AGGREGATE
# =============================================================


@dataclass(frozen=True)
class EndpointAggregate:
    """
    All windows of one endpoint plus the raw checks they came from.

    `checks` is sorted chronologically and deduplicated; it is
    what the aggregate is rebuilt from when the window advances.
    """
    endpoint_id: str
    today: AggregateWindow
    short_window: AggregateWindow
    long_window: AggregateWindow
    window: AggregateWindow
    buckets: Tuple[AggregateWindow, ...]
    last_check_time: Optional[datetime] = None
    checks: Tuple[CheckResult, ...] = ()
    check_keys: FrozenSet[Any] = frozenset()

    @classmethod
    def build(
        cls,
        endpoint_id: str,
        checks: Iterable[CheckResult],
        spec: WindowSpec,
        windows: WindowSettings,
    ) -> "EndpointAggregate":
        """Aggregate from raw checks, every window computed on its own."""
        floor = retention_start(spec, windows)
        seen = set()
        retained: List[CheckResult] = []

        for check in checks:
            if check.endpoint_id != endpoint_id or check.timestamp < floor:
                continue
            if check.dedupe_key in seen:
                continue
            seen.add(check.dedupe_key)
            retained.append(check)

        retained.sort(key=lambda c: c.sort_key)

        today, short_window, long_window, window = (
            aggregate_checks(start, end, retained)
            for start, end in window_bounds(spec, windows)
        )

        return cls(
            endpoint_id=endpoint_id,
            today=today,
            short_window=short_window,
            long_window=long_window,
            window=window,
            buckets=tuple(bucket_checks(retained, spec)),
            last_check_time=max(
                (c.timestamp for c in retained if c.timestamp < spec.now),
                default=None,
            ),
            checks=tuple(retained),
            check_keys=frozenset(seen),
        )

    @classmethod
    def empty(cls, endpoint_id: str, spec: WindowSpec, windows: WindowSettings) -> "EndpointAggregate":
        return cls.build(endpoint_id, (), spec, windows)

    def with_check(
        self,
        check: CheckResult,
        spec: WindowSpec,
        windows: WindowSettings,
    ) -> "EndpointAggregate":
        """
        Count one more check.

        Only the windows and the bucket containing its timestamp
        change. Duplicates and checks older than retention leave
        the aggregate untouched.

        Cost: no window is recomputed, but the immutable copies of
        the retained checks, their keys and the response times of
        each touched window are O(retained checks) per call. At one
        check per endpoint every 5 minutes over 90 days that is about
        26k entries per endpoint per event.
        """
        if check.dedupe_key in self.check_keys:
            return self
        if check.timestamp < retention_start(spec, windows):
            return self

        checks = list(self.checks)
        insort(checks, check, key=lambda c: c.sort_key)

        def counted(window: AggregateWindow) -> AggregateWindow:
            return window.with_check(check) if window.contains(check.timestamp) else window

        buckets = self.buckets
        index = bucket_index(check.timestamp, spec)
        if index is not None:
            buckets = buckets[:index] + (buckets[index].with_check(check),) + buckets[index + 1:]

        last_check_time = self.last_check_time
        if check.timestamp < spec.now and (last_check_time is None or check.timestamp > last_check_time):
            last_check_time = check.timestamp

        return replace(
            self,
            today=counted(self.today),
            short_window=counted(self.short_window),
            long_window=counted(self.long_window),
            window=counted(self.window),
            buckets=buckets,
            last_check_time=last_check_time,
            checks=tuple(checks),
            check_keys=self.check_keys | {check.dedupe_key},
        )

    def rebuilt(self, spec: WindowSpec, windows: WindowSettings) -> "EndpointAggregate":
        """Re-anchor on a new window spec from the retained checks."""
        return EndpointAggregate.build(self.endpoint_id, self.checks, spec, windows)


def build_aggregates(
    endpoint_ids: Optional[Iterable[str]],
    checks: Iterable[CheckResult],
    spec: WindowSpec,
    windows: WindowSettings,
) -> Dict[str, EndpointAggregate]:
    """
    Build one aggregate per endpoint.

    Args:
        endpoint_ids: Endpoints to aggregate (None: every endpoint seen in checks)
        checks: Raw check results, any order
        spec: Requested window
        windows: Window settings

    Returns:
        Aggregates keyed by endpoint id
    """
    grouped: Dict[str, List[CheckResult]] = defaultdict(list)
    for check in checks:
        grouped[check.endpoint_id].append(check)

    ids = set(grouped) if endpoint_ids is None else set(endpoint_ids)
    return {
        endpoint_id: EndpointAggregate.build(endpoint_id, grouped.get(endpoint_id, ()), spec, windows)
        for endpoint_id in sorted(ids)
    }


# =============================================================
# SNAPSHOTS
# =============================================================


def snapshot_for(
    endpoint: Endpoint,
    aggregate: EndpointAggregate,
    thresholds: StatusThresholds,
) -> StatusSnapshot:
    """Derive the status snapshot of one endpoint from its aggregate."""
    window = aggregate.window
    return StatusSnapshot(
        endpoint_id=endpoint.id,
        name=endpoint.name,
        enabled=endpoint.enabled,
        status=classify(endpoint.enabled, window.uptime, thresholds),
        uptime_window=window.uptime,
        uptime_today=aggregate.today.uptime,
        uptime_30d=aggregate.short_window.uptime,
        uptime_90d=aggregate.long_window.uptime,
        avg_response_time_ms=mean(window.response_times),
        p95_response_time_ms=percentile(window.response_times, 0.95),
        p99_response_time_ms=percentile(window.response_times, 0.99),
        last_check_time=aggregate.last_check_time,
    )


def overall_uptime(snapshots: Iterable[StatusSnapshot]) -> Tuple[float, float, float]:
    """Mean today/30d/90d uptime across enabled endpoints (100 when none)."""
    enabled = [s for s in snapshots if s.enabled]
    if not enabled:
        return 100.0, 100.0, 100.0
    return (
        mean([s.uptime_today for s in enabled]),
        mean([s.uptime_30d for s in enabled]),
        mean([s.uptime_90d for s in enabled]),
    )


def summarize_system(
    snapshots: Iterable[StatusSnapshot],
    incidents: Iterable[Incident],
) -> SystemSnapshot:
    """System-wide banner from endpoint snapshots and incidents."""
    snapshots = list(snapshots)
    active = [i for i in incidents if i.is_active]

    status_counts = {status.value: 0 for status in EndpointStatus}
    for snapshot in snapshots:
        status_counts[snapshot.status.value] += 1

    uptime_today, uptime_30d, uptime_90d = overall_uptime(snapshots)

    return SystemSnapshot(
        status=classify_system([s.status for s in snapshots], active),
        endpoint_count=len(snapshots),
        status_counts=status_counts,
        active_incident_count=len(active),
        uptime_today=uptime_today,
        uptime_30d=uptime_30d,
        uptime_90d=uptime_90d,
    )


# =============================================================
# AGGREGATION RESULT
# =============================================================


@dataclass(frozen=True)
class AggregationResult:
    """Snapshots, series and system status for one window."""
    snapshots: Tuple[StatusSnapshot, ...]
    series: Tuple[TimeSeriesPoint, ...]
    system: SystemSnapshot
    active_incidents: Tuple[Incident, ...] = ()

    @property
    def system_status(self):
        return self.system.status

    def to_dict(self, precision: int = 1) -> Dict[str, Any]:
        return {
            "snapshots": [s.to_dict(precision) for s in self.snapshots],
            "series": [p.to_dict(precision) for p in self.series],
            "system": self.system.to_dict(precision),
            "active_incidents": [i.to_dict() for i in self.active_incidents],
        }


def assemble(
    endpoints: Iterable[Endpoint],
    aggregates: Mapping[str, EndpointAggregate],
    incidents: Iterable[Incident],
    spec: WindowSpec,
    config: TelemetryConfig,
) -> AggregationResult:
    """
    Combine per-endpoint aggregates into the published result.

    Aggregates of endpoints not in `endpoints` are ignored.
    """
    by_id = {endpoint.id: endpoint for endpoint in endpoints}
    incidents = list(incidents)

    snapshots = []
    bucket_lists = []
    for endpoint_id in sorted(by_id):
        aggregate = aggregates.get(endpoint_id)
        if aggregate is None:
            aggregate = EndpointAggregate.empty(endpoint_id, spec, config.windows)
        snapshots.append(snapshot_for(by_id[endpoint_id], aggregate, config.thresholds))
        bucket_lists.append(aggregate.buckets)

    buckets = merge_bucket_lists(bucket_lists) if bucket_lists else empty_buckets(spec)
    active = sorted((i for i in incidents if i.is_active), key=lambda i: i.id)

    return AggregationResult(
        snapshots=tuple(snapshots),
        series=tuple(to_series(buckets)),
        system=summarize_system(snapshots, incidents),
        active_incidents=tuple(active),
    )


# =============================================================
# EXPOSED OPERATIONS
# =============================================================


def compute(
    endpoints: Iterable[Endpoint],
    checks: Iterable[CheckResult],
    incidents: Iterable[Incident],
    window: WindowSpec,
    config: Optional[TelemetryConfig] = None,
) -> AggregationResult:
    """
    Full computation over raw data.

    Args:
        endpoints: Known endpoints
        checks: Raw check results (duplicates are dropped)
        incidents: Incidents, active and historical
        window: Requested window
        config: Telemetry config (global config by default)

    Returns:
        AggregationResult
    """
    config = config or get_config()
    endpoints = list(endpoints)

    aggregates = build_aggregates([e.id for e in endpoints], checks, window, config.windows)
    result = assemble(endpoints, aggregates, incidents, window, config)

    logger.debug(
        f"Computed {len(result.snapshots)} snapshot(s), "
        f"{len(result.series)} bucket(s), system={result.system.status.value}"
    )
    return result


def compute_snapshot(
    endpoints: Iterable[Endpoint],
    checks: Iterable[CheckResult],
    incidents: Iterable[Incident],
    window: WindowSpec,
    config: Optional[TelemetryConfig] = None,
) -> List[StatusSnapshot]:
    """Per-endpoint snapshots, ordered by endpoint id."""
    return list(compute(endpoints, checks, incidents, window, config).snapshots)


def compute_series(
    checks: Iterable[CheckResult],
    bucket_width: timedelta,
    bucket_count: int,
    now: Optional[datetime] = None,
) -> List[TimeSeriesPoint]:
    """
    Chart series over `bucket_count` buckets of `bucket_width` ending at `now`.

    Every bucket is present; the most recent one is last.
    """
    spec = WindowSpec(
        now=now or datetime.now(timezone.utc),
        bucket_width=bucket_width,
        bucket_count=bucket_count,
    )
    return to_series(bucket_checks(normalize_checks(checks), spec))


# =============================================================
# ANALYTICS
# =============================================================


def uptime_history(
    endpoint_id: str,
    checks: Iterable[CheckResult],
    now: datetime,
    days: int = 90,
    thresholds: Optional[StatusThresholds] = None,
) -> List[UptimeDataPoint]:
    """
    One data point per UTC calendar day, oldest first, today last.

    Today covers [00:00, now). Days without checks are 100%.
    """
    now = ensure_utc(now)
    thresholds = thresholds or get_config().thresholds
    own = [c for c in normalize_checks(checks) if c.endpoint_id == endpoint_id]
    today = start_of_last_day(now)

    history = []
    for offset in range(days - 1, -1, -1):
        day_start = today - timedelta(days=offset)
        day_end = min(day_start + timedelta(days=1), now)
        window = aggregate_checks(day_start, day_end, own)
        history.append(
            UptimeDataPoint(
                day=day_start.date(),
                uptime=window.uptime,
                status=classify(True, window.uptime, thresholds),
                total_checks=window.total_checks,
            )
        )
    return history


@dataclass(frozen=True)
class HeatmapCell:
    """One classified hourly bucket."""
    bucket_start: datetime
    uptime: float
    status: EndpointStatus
    total_checks: int = 0

    def to_dict(self, precision: int = 1) -> Dict[str, Any]:
        return {
            "bucket_start": self.bucket_start.isoformat(),
            "uptime": round_for_display(self.uptime, precision),
            "status": self.status.value,
            "total_checks": self.total_checks,
        }


def status_heatmap(
    endpoints: Iterable[Endpoint],
    checks: Iterable[CheckResult],
    now: datetime,
    hours: int = 24,
    thresholds: Optional[StatusThresholds] = None,
) -> Dict[str, List[HeatmapCell]]:
    """Hourly buckets per endpoint, each classified like an endpoint."""
    thresholds = thresholds or get_config().thresholds
    spec = WindowSpec(now=now, bucket_width=HOUR, bucket_count=hours)

    grouped: Dict[str, List[CheckResult]] = defaultdict(list)
    for check in normalize_checks(checks):
        grouped[check.endpoint_id].append(check)

    heatmap = {}
    for endpoint in sorted(endpoints, key=lambda e: e.id):
        heatmap[endpoint.id] = [
            HeatmapCell(
                bucket_start=bucket.window_start,
                uptime=bucket.uptime,
                status=classify(endpoint.enabled, bucket.uptime, thresholds),
                total_checks=bucket.total_checks,
            )
            for bucket in bucket_checks(grouped.get(endpoint.id, ()), spec)
        ]
    return heatmap


@dataclass(frozen=True)
class EndpointPerformance:
    """Ranking row for one endpoint."""
    endpoint_id: str
    name: str
    statistics: CheckStatistics

    def to_dict(self, precision: int = 1) -> Dict[str, Any]:
        data = {"endpoint_id": self.endpoint_id, "name": self.name}
        data.update(self.statistics.to_dict(precision))
        return data


def performance_ranking(
    endpoints: Iterable[Endpoint],
    checks: Iterable[CheckResult],
    window: WindowSpec,
) -> List[EndpointPerformance]:
    """Endpoints ranked by uptime over the window, best first, then by name."""
    grouped: Dict[str, List[CheckResult]] = defaultdict(list)
    for check in normalize_checks(checks):
        if window.start <= check.timestamp < window.now:
            grouped[check.endpoint_id].append(check)

    rows = [
        EndpointPerformance(
            endpoint_id=endpoint.id,
            name=endpoint.name,
            statistics=compute_statistics(grouped.get(endpoint.id, ())),
        )
        for endpoint in endpoints
    ]
    rows.sort(key=lambda r: (-r.statistics.uptime_pct, r.name, r.endpoint_id))
    return rows


@dataclass(frozen=True)
class IncidentAnalytics:
    """Incident counts and mean time to resolve."""
    total: int
    active_count: int
    by_severity: Dict[str, int] = field(default_factory=dict)
    mttr_minutes: float = 0.0
    resolved_count: int = 0

    def to_dict(self, precision: int = 1) -> Dict[str, Any]:
        return {
            "total": self.total,
            "active_count": self.active_count,
            "by_severity": dict(self.by_severity),
            "mttr_minutes": round_for_display(self.mttr_minutes, precision),
            "resolved_count": self.resolved_count,
        }


def incident_analytics(incidents: Iterable[Incident]) -> IncidentAnalytics:
    """
    Incident analytics.

    MTTR averages end_time - start_time over incidents carrying both.
    """
    incidents = list(incidents)

    by_severity = {severity.value: 0 for severity in IncidentSeverity}
    for incident in incidents:
        by_severity[incident.severity.value] += 1

    durations = [
        (i.end_time - i.start_time).total_seconds() / 60
        for i in incidents
        if i.start_time is not None and i.end_time is not None
    ]

    return IncidentAnalytics(
        total=len(incidents),
        active_count=sum(1 for i in incidents if i.is_active),
        by_severity=by_severity,
        mttr_minutes=mean(durations),
        resolved_count=len(durations),
    )
