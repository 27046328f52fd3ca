"""
Uptime Telemetry Aggregation Module.

============================================================
STATUS DERIVATION FOR UPTIME MONITORING
============================================================

Turns raw endpoint health checks, plus the endpoint and
incident lifecycle events layered on top, into the metrics
status surfaces display, and keeps them correct as live
updates arrive.

1. Ingest      - validate bulk fetches and push messages
2. Bucket      - fixed-width hourly/daily buckets
3. Calculate   - uptime, error rate, avg/p95/p99 response time
4. Classify    - endpoint and system status
5. Aggregate   - snapshots, series and system banner
6. Reconcile   - apply one event without a full recompute

============================================================
STATUS THRESHOLDS
============================================================

- OPERATIONAL (uptime >= 99)
- DEGRADED    (95 <= uptime < 99)
- OUTAGE      (uptime < 95)
- No checks in a window count as 100% uptime

============================================================
USAGE
============================================================

```python
from uptime_telemetry import (
    TelemetrySession,
    compute_snapshot,
    parse_bulk,
)

session = TelemetrySession()
session.load(parse_bulk(document))

session.handle_message("status_update", payload)

for snapshot in session.state.snapshots():
    print(snapshot.name, snapshot.status, snapshot.uptime_30d)
```

============================================================
"""

from .models import (
    AggregateWindow,
    CheckResult,
    Endpoint,
    EndpointStatus,
    EntityKind,
    EventType,
    Incident,
    IncidentSeverity,
    IncidentStatus,
    StatusSnapshot,
    SystemSnapshot,
    SystemStatus,
    TelemetryEvent,
    TimeSeriesPoint,
    UptimeDataPoint,
    WindowSpec,
)
from .config import (
    TelemetryConfig,
    StatusThresholds,
    WindowSettings,
    get_config,
    set_config,
)
from .exceptions import (
    TelemetryError,
    MalformedEventError,
    UnknownEventTypeError,
    StaleEventError,
    StaleRefreshError,
    ConfigurationError,
)
from .statistics import CheckStatistics, compute_statistics, percentile
from .bucketing import bucket_checks, window_for_range
from .classifier import classify, classify_system
from .ingestor import BulkPayload, decode_frame, iter_frames, parse_bulk, parse_message
from .engine import (
    AggregationResult,
    EndpointAggregate,
    compute,
    compute_series,
    compute_snapshot,
    incident_analytics,
    performance_ranking,
    status_heatmap,
    uptime_history,
)
from .reconciler import AggregateState, advance, initial_state, reconcile, state_from_bulk
from .session import TelemetrySession
from .sharding import ShardOutput, compute_shard, fold_shards, shard_for


__all__ = [
    # Models
    "AggregateWindow",
    "CheckResult",
    "Endpoint",
    "EndpointStatus",
    "EntityKind",
    "EventType",
    "Incident",
    "IncidentSeverity",
    "IncidentStatus",
    "StatusSnapshot",
    "SystemSnapshot",
    "SystemStatus",
    "TelemetryEvent",
    "TimeSeriesPoint",
    "UptimeDataPoint",
    "WindowSpec",
    # Config
    "TelemetryConfig",
    "StatusThresholds",
    "WindowSettings",
    "get_config",
    "set_config",
    # Exceptions
    "TelemetryError",
    "MalformedEventError",
    "UnknownEventTypeError",
    "StaleEventError",
    "StaleRefreshError",
    "ConfigurationError",
    # Statistics / bucketing / classification
    "CheckStatistics",
    "compute_statistics",
    "percentile",
    "bucket_checks",
    "window_for_range",
    "classify",
    "classify_system",
    # Ingestion
    "BulkPayload",
    "decode_frame",
    "iter_frames",
    "parse_bulk",
    "parse_message",
    # Engine
    "AggregationResult",
    "EndpointAggregate",
    "compute",
    "compute_series",
    "compute_snapshot",
    "incident_analytics",
    "performance_ranking",
    "status_heatmap",
    "uptime_history",
    # Reconciliation
    "AggregateState",
    "advance",
    "initial_state",
    "reconcile",
    "state_from_bulk",
    "TelemetrySession",
    # Sharding
    "ShardOutput",
    "compute_shard",
    "fold_shards",
    "shard_for",
]
