"""
Uptime Telemetry - Sharded Aggregation.

============================================================
SCALE-OUT
============================================================

Endpoints are sharded by a stable hash of their id:
- Each shard owns its endpoints and their checks exclusively
- A shard publishes an immutable ShardOutput
- System-wide views are a read-only fold over shard outputs

fold_shards() over all shard outputs equals compute() over
the full data set.

============================================================
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from .bucketing import empty_buckets, merge_bucket_lists, to_series
from .config import TelemetryConfig, get_config
from .engine import AggregationResult, EndpointAggregate, build_aggregates, snapshot_for, summarize_system
from .models import AggregateWindow, CheckResult, Endpoint, Incident, StatusSnapshot, WindowSpec
from .reconciler import AggregateState


logger = logging.getLogger(__name__)


def shard_for(endpoint_id: str, shard_count: int) -> int:
    """Stable shard index for an endpoint id."""
    if shard_count <= 0:
        raise ValueError("shard_count must be positive")
    digest = hashlib.sha256(endpoint_id.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") % shard_count


def partition_endpoints(endpoints: Iterable[Endpoint], shard_count: int) -> List[List[Endpoint]]:
    shards: List[List[Endpoint]] = [[] for _ in range(shard_count)]
    for endpoint in endpoints:
        shards[shard_for(endpoint.id, shard_count)].append(endpoint)
    return shards


def partition_checks(checks: Iterable[CheckResult], shard_count: int) -> List[List[CheckResult]]:
    shards: List[List[CheckResult]] = [[] for _ in range(shard_count)]
    for check in checks:
        shards[shard_for(check.endpoint_id, shard_count)].append(check)
    return shards


# =============================================================
# SHARD OUTPUT
# =============================================================


@dataclass(frozen=True)
class ShardOutput:
    """Immutable output of one shard: its snapshots and merged raw buckets."""
    shard: int
    snapshots: Tuple[StatusSnapshot, ...]
    buckets: Tuple[AggregateWindow, ...]


def _shard_output(
    shard: int,
    endpoints: Iterable[Endpoint],
    aggregates: dict,
    window: WindowSpec,
    config: TelemetryConfig,
) -> ShardOutput:
    snapshots = []
    bucket_lists = []
    for endpoint in sorted(endpoints, key=lambda e: e.id):
        aggregate = aggregates.get(endpoint.id) or EndpointAggregate.empty(endpoint.id, window, config.windows)
        snapshots.append(snapshot_for(endpoint, aggregate, config.thresholds))
        bucket_lists.append(aggregate.buckets)

    buckets = merge_bucket_lists(bucket_lists) if bucket_lists else empty_buckets(window)
    return ShardOutput(shard=shard, snapshots=tuple(snapshots), buckets=tuple(buckets))


def compute_shard(
    shard: int,
    endpoints: Iterable[Endpoint],
    checks: Iterable[CheckResult],
    window: WindowSpec,
    config: Optional[TelemetryConfig] = None,
) -> ShardOutput:
    """Aggregate one shard's endpoints from raw checks."""
    config = config or get_config()
    endpoints = list(endpoints)
    aggregates = build_aggregates([e.id for e in endpoints], checks, window, config.windows)
    return _shard_output(shard, endpoints, aggregates, window, config)


def shard_output_from_state(shard: int, state: AggregateState) -> ShardOutput:
    """Publish the current output of a shard's reconciliation loop."""
    return _shard_output(shard, state.endpoints.values(), state.aggregates, state.window, state.config)


# =============================================================
# FOLD
# =============================================================


def fold_shards(
    outputs: Sequence[ShardOutput],
    incidents: Iterable[Incident],
    window: WindowSpec,
) -> AggregationResult:
    """
    Combine shard outputs into system-wide views.

    Args:
        outputs: One output per shard
        incidents: All incidents (they are not sharded)
        window: The window every shard was computed for

    Returns:
        AggregationResult equal to a single unsharded computation
    """
    incidents = list(incidents)
    snapshots = sorted(
        (snapshot for output in outputs for snapshot in output.snapshots),
        key=lambda s: s.endpoint_id,
    )
    buckets = merge_bucket_lists([o.buckets for o in outputs]) if outputs else empty_buckets(window)
    active = sorted((i for i in incidents if i.is_active), key=lambda i: i.id)

    logger.debug(f"Folded {len(outputs)} shard output(s) with {len(snapshots)} snapshot(s)")
    return AggregationResult(
        snapshots=tuple(snapshots),
        series=tuple(to_series(buckets)),
        system=summarize_system(snapshots, incidents),
        active_incidents=tuple(active),
    )


def compute_sharded(
    endpoints: Iterable[Endpoint],
    checks: Iterable[CheckResult],
    incidents: Iterable[Incident],
    window: WindowSpec,
    shard_count: int,
    config: Optional[TelemetryConfig] = None,
) -> AggregationResult:
    """Partition, compute every shard, then fold."""
    endpoint_shards = partition_endpoints(endpoints, shard_count)
    check_shards = partition_checks(checks, shard_count)
    outputs = [
        compute_shard(i, endpoint_shards[i], check_shards[i], window, config)
        for i in range(shard_count)
    ]
    return fold_shards(outputs, incidents, window)
