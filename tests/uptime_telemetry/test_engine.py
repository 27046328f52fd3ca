"""
Tests for the aggregation engine.

============================================================
PURPOSE
============================================================
End-to-end snapshots and series, independent windows,
totality on empty input, and the analytics views.

============================================================
"""

from datetime import date, timedelta

import pytest

from uptime_telemetry.bucketing import HOUR
from uptime_telemetry.engine import (
    EndpointAggregate,
    compute,
    compute_series,
    compute_snapshot,
    incident_analytics,
    performance_ranking,
    status_heatmap,
    uptime_history,
)
from uptime_telemetry.models import (
    CheckResult,
    Endpoint,
    EndpointStatus,
    Incident,
    IncidentSeverity,
    IncidentStatus,
    SystemStatus,
    WindowSpec,
)


# ============================================================
# END-TO-END SCENARIO
# ============================================================

class TestScenario:
    """Three hourly checks: success, failure, success."""

    def test_series(self, scenario_endpoints, scenario_checks, scenario_window):
        result = compute(scenario_endpoints, scenario_checks, [], scenario_window)

        assert [(p.success_count, p.failure_count, p.avg_response_time_ms) for p in result.series] == [
            (1, 0, 200.0),
            (0, 1, 0.0),
            (1, 0, 100.0),
        ]

    def test_snapshot(self, scenario_endpoints, scenario_checks, scenario_window, t0):
        snapshots = compute_snapshot(scenario_endpoints, scenario_checks, [], scenario_window)

        assert len(snapshots) == 1
        snapshot = snapshots[0]
        assert snapshot.to_dict()["uptime_window"] == 66.7
        assert snapshot.status == EndpointStatus.OUTAGE
        assert snapshot.uptime_today == pytest.approx(66.6667, rel=1e-4)
        assert snapshot.avg_response_time_ms == 150.0
        assert snapshot.p95_response_time_ms == 200
        assert snapshot.last_check_time == t0 + timedelta(hours=2)

    def test_system_status(self, scenario_endpoints, scenario_checks, scenario_window):
        result = compute(scenario_endpoints, scenario_checks, [], scenario_window)

        assert result.system_status == SystemStatus.OUTAGE
        assert result.system.status_counts["outage"] == 1
        assert result.system.endpoint_count == 1

    def test_series_function_matches(self, scenario_checks, scenario_window):
        series = compute_series(scenario_checks, HOUR, 3, scenario_window.now)
        result = compute([Endpoint(id="a")], scenario_checks, [], scenario_window)

        assert series == list(result.series)


# ============================================================
# TOTALITY
# ============================================================

class TestEmptyInputs:
    """Empty inputs produce well-defined outputs."""

    def test_nothing(self, scenario_window):
        result = compute([], [], [], scenario_window)

        assert result.snapshots == ()
        assert len(result.series) == 3
        assert all(p.total == 0 for p in result.series)
        assert result.system_status == SystemStatus.OPERATIONAL
        assert result.system.uptime_30d == 100.0

    def test_endpoint_without_checks(self, scenario_window):
        snapshot = compute_snapshot([Endpoint(id="quiet")], [], [], scenario_window)[0]

        assert snapshot.status == EndpointStatus.OPERATIONAL
        assert snapshot.uptime_90d == 100.0
        assert snapshot.last_check_time is None
        assert snapshot.p99_response_time_ms == 0

    def test_disabled_endpoint(self, scenario_checks, scenario_window):
        result = compute([Endpoint(id="a", enabled=False)], scenario_checks, [], scenario_window)

        assert result.snapshots[0].status == EndpointStatus.DISABLED
        assert result.system_status == SystemStatus.OPERATIONAL
        assert result.system.uptime_today == 100.0


# ============================================================
# WINDOWS
# ============================================================

class TestWindows:
    """Each window is computed from raw data on its own."""

    def test_independent_windows(self, t0, scenario_window):
        now = scenario_window.now
        checks = [
            CheckResult("a", now - timedelta(days=40), False),
            CheckResult("a", now - timedelta(days=10), False),
            CheckResult("a", now - timedelta(days=10, minutes=5), True, 120),
            CheckResult("a", t0 + timedelta(minutes=30), True, 80),
        ]

        snapshot = compute_snapshot([Endpoint(id="a")], checks, [], scenario_window)[0]

        assert snapshot.uptime_today == 100.0
        assert snapshot.uptime_window == 100.0
        assert snapshot.uptime_30d == pytest.approx(200 / 3)
        assert snapshot.uptime_90d == 50.0
        assert snapshot.status == EndpointStatus.OPERATIONAL

    def test_future_checks_excluded(self, scenario_window):
        checks = [CheckResult("a", scenario_window.now, False)]

        snapshot = compute_snapshot([Endpoint(id="a")], checks, [], scenario_window)[0]

        assert snapshot.uptime_today == 100.0
        assert snapshot.last_check_time is None

    def test_duplicates_counted_once(self, scenario_checks, scenario_window):
        doubled = scenario_checks + scenario_checks

        assert compute_snapshot([Endpoint(id="a")], doubled, [], scenario_window) == \
            compute_snapshot([Endpoint(id="a")], scenario_checks, [], scenario_window)

    def test_unknown_endpoint_checks_ignored(self, scenario_checks, scenario_window):
        result = compute([], scenario_checks, [], scenario_window)
        assert all(p.total == 0 for p in result.series)

    def test_aggregate_build_matches_incremental(self, scenario_checks, scenario_window, default_config):
        windows = default_config.windows
        built = EndpointAggregate.build("a", scenario_checks, scenario_window, windows)

        incremental = EndpointAggregate.empty("a", scenario_window, windows)
        for check in reversed(scenario_checks):
            incremental = incremental.with_check(check, scenario_window, windows)

        assert incremental == built


# ============================================================
# SYSTEM
# ============================================================

class TestSystem:
    """Tests for the system banner."""

    def test_overall_uptime_is_mean_of_enabled(self, t0, scenario_window):
        endpoints = [Endpoint(id="a"), Endpoint(id="b"), Endpoint(id="c", enabled=False)]
        checks = [
            CheckResult("a", t0, True, 100),
            CheckResult("b", t0, True, 100),
            CheckResult("b", t0 + HOUR, False),
            CheckResult("c", t0, False),
        ]

        system = compute(endpoints, checks, [], scenario_window).system

        assert system.uptime_today == 75.0
        assert system.status_counts["disabled"] == 1

    def test_active_incident_degrades(self, scenario_window):
        incident = Incident(id="i1", status=IncidentStatus.OPEN, severity=IncidentSeverity.MEDIUM)

        result = compute([Endpoint(id="a")], [], [incident], scenario_window)

        assert result.system_status == SystemStatus.DEGRADATION
        assert result.system.active_incident_count == 1
        assert result.active_incidents == (incident,)


# ============================================================
# ANALYTICS
# ============================================================

class TestAnalytics:
    """Tests for history, heatmap, ranking and incident analytics."""

    def test_uptime_history(self, t0, scenario_window):
        checks = [
            CheckResult("a", t0 - timedelta(hours=12), True, 100),
            CheckResult("a", t0 - timedelta(hours=11), False),
            CheckResult("a", t0 + timedelta(minutes=10), True, 100),
            CheckResult("other", t0 - timedelta(days=2), False),
        ]

        history = uptime_history("a", checks, scenario_window.now, days=3)

        assert [p.day for p in history] == [date(2024, 2, 28), date(2024, 2, 29), date(2024, 3, 1)]
        assert [p.uptime for p in history] == [100.0, 50.0, 100.0]
        assert [p.status for p in history] == [
            EndpointStatus.OPERATIONAL,
            EndpointStatus.OUTAGE,
            EndpointStatus.OPERATIONAL,
        ]
        assert history[0].total_checks == 0

    def test_status_heatmap(self, scenario_endpoints, scenario_checks, scenario_window):
        heatmap = status_heatmap(scenario_endpoints, scenario_checks, scenario_window.now, hours=3)

        assert [cell.status for cell in heatmap["a"]] == [
            EndpointStatus.OPERATIONAL,
            EndpointStatus.OUTAGE,
            EndpointStatus.OPERATIONAL,
        ]

    def test_performance_ranking(self, t0, scenario_window):
        endpoints = [Endpoint(id="a", name="Alpha"), Endpoint(id="b", name="Beta"), Endpoint(id="c", name="Aardvark")]
        checks = [
            CheckResult("a", t0, True, 100),
            CheckResult("a", t0 + HOUR, False, status_code=500),
            CheckResult("b", t0, True, 300),
        ]

        ranking = performance_ranking(endpoints, checks, scenario_window)

        assert [r.endpoint_id for r in ranking] == ["c", "b", "a"]
        assert ranking[2].statistics.error_rate_pct == 50.0
        assert ranking[2].to_dict()["status_codes"]["5xx"] == 1

    def test_incident_analytics(self, t0):
        incidents = [
            Incident(id="i1", status=IncidentStatus.OPEN, severity=IncidentSeverity.CRITICAL, start_time=t0),
            Incident(
                id="i2", status=IncidentStatus.RESOLVED, severity=IncidentSeverity.HIGH,
                start_time=t0, end_time=t0 + timedelta(minutes=30),
            ),
            Incident(
                id="i3", status=IncidentStatus.CLOSED, severity=IncidentSeverity.LOW,
                start_time=t0, end_time=t0 + timedelta(minutes=90),
            ),
        ]

        analytics = incident_analytics(incidents)

        assert analytics.total == 3
        assert analytics.active_count == 1
        assert analytics.by_severity == {"critical": 1, "high": 1, "medium": 0, "low": 1}
        assert analytics.mttr_minutes == 60.0
        assert analytics.resolved_count == 2

    def test_incident_analytics_empty(self):
        analytics = incident_analytics([])

        assert analytics.mttr_minutes == 0.0
        assert set(analytics.by_severity) == {"critical", "high", "medium", "low"}


class TestMidnightAnchor:
    """A window ending exactly at midnight reports the day it covers."""

    def test_today_is_the_day_before(self, t0):
        window = WindowSpec(now=t0 + timedelta(days=1), bucket_width=HOUR, bucket_count=24)
        checks = [CheckResult("a", t0 + timedelta(hours=23), False)]

        snapshot = compute_snapshot([Endpoint(id="a")], checks, [], window)[0]

        assert snapshot.uptime_today == 0.0

    def test_history_ends_with_covered_day(self, t0):
        history = uptime_history("a", [CheckResult("a", t0 + HOUR, False)], t0 + timedelta(days=1), days=2)

        assert [p.day for p in history] == [date(2024, 2, 29), date(2024, 3, 1)]
        assert history[-1].total_checks == 1
