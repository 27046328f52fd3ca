"""Tests for sharded aggregation."""

import random
from datetime import timedelta

import pytest

from uptime_telemetry.bucketing import HOUR
from uptime_telemetry.engine import compute
from uptime_telemetry.models import (
    CheckResult,
    Endpoint,
    EventType,
    Incident,
    IncidentSeverity,
    IncidentStatus,
    TelemetryEvent,
    WindowSpec,
)
from uptime_telemetry.reconciler import initial_state, reconcile_all
from uptime_telemetry.sharding import (
    compute_shard,
    compute_sharded,
    fold_shards,
    partition_checks,
    partition_endpoints,
    shard_for,
    shard_output_from_state,
)


@pytest.fixture
def window(t0):
    return WindowSpec(now=t0 + timedelta(days=1), bucket_width=HOUR, bucket_count=24)


@pytest.fixture
def dataset(window):
    rng = random.Random(2024)
    endpoints = [Endpoint(id=f"ep-{i}", name=f"Endpoint {i}", enabled=i % 4 != 0) for i in range(9)]
    checks = []
    for n in range(400):
        success = rng.random() < 0.9
        checks.append(CheckResult(
            endpoint_id=rng.choice(endpoints).id,
            timestamp=window.now - timedelta(minutes=rng.randint(1, 40 * 24 * 60)),
            success=success,
            response_time_ms=rng.randint(20, 900) if success else None,
            id=f"c{n}",
        ))
    incidents = [
        Incident(id="i1", status=IncidentStatus.OPEN, severity=IncidentSeverity.MEDIUM),
        Incident(id="i2", status=IncidentStatus.CLOSED, severity=IncidentSeverity.CRITICAL),
    ]
    return endpoints, checks, incidents


class TestShardFor:
    """Tests for the stable shard function."""

    def test_stable_and_in_range(self):
        for endpoint_id in ["a", "b", "api-gateway", "ep-17"]:
            shard = shard_for(endpoint_id, 4)
            assert 0 <= shard < 4
            assert shard_for(endpoint_id, 4) == shard

    def test_invalid_count(self):
        with pytest.raises(ValueError):
            shard_for("a", 0)

    def test_partitions_agree(self, dataset):
        endpoints, checks, _ = dataset

        endpoint_shards = partition_endpoints(endpoints, 3)
        check_shards = partition_checks(checks, 3)

        for shard, shard_checks in enumerate(check_shards):
            owned = {e.id for e in endpoint_shards[shard]}
            assert all(c.endpoint_id in owned for c in shard_checks)


class TestFold:
    """Folding shard outputs equals one unsharded computation."""

    @pytest.mark.parametrize("shard_count", [1, 3, 16])
    def test_fold_equals_compute(self, dataset, window, shard_count):
        endpoints, checks, incidents = dataset

        sharded = compute_sharded(endpoints, checks, incidents, window, shard_count)
        expected = compute(endpoints, checks, incidents, window)

        assert sharded == expected

    def test_fold_of_reconciled_shards(self, dataset, window, default_config):
        endpoints, checks, incidents = dataset
        endpoint_shards = partition_endpoints(endpoints, 2)
        check_shards = partition_checks(checks, 2)

        outputs = []
        for shard in range(2):
            events = [TelemetryEvent(EventType.ENDPOINT_CREATED, e.id, e) for e in endpoint_shards[shard]]
            events += [TelemetryEvent(EventType.CHECK_RESULT_ADDED, c.endpoint_id, c) for c in check_shards[shard]]
            state = reconcile_all(initial_state(window, default_config), events)
            outputs.append(shard_output_from_state(shard, state))

        assert fold_shards(outputs, incidents, window) == compute(endpoints, checks, incidents, window)

    def test_empty_shard(self, window):
        output = compute_shard(0, [], [], window)

        assert output.snapshots == ()
        assert len(output.buckets) == 24

    def test_no_outputs(self, window):
        result = fold_shards([], [], window)

        assert result.snapshots == ()
        assert len(result.series) == 24
