"""Tests for the status classifier."""

import pytest

from uptime_telemetry.classifier import classify, classify_system, worse
from uptime_telemetry.config import StatusThresholds
from uptime_telemetry.exceptions import ConfigurationError
from uptime_telemetry.models import (
    EndpointStatus,
    Incident,
    IncidentSeverity,
    IncidentStatus,
    SystemStatus,
)


class TestClassify:
    """Tests for endpoint status."""

    @pytest.mark.parametrize("uptime,expected", [
        (100.0, EndpointStatus.OPERATIONAL),
        (99.0, EndpointStatus.OPERATIONAL),
        (98.99, EndpointStatus.DEGRADED),
        (96.0, EndpointStatus.DEGRADED),
        (95.0, EndpointStatus.DEGRADED),
        (94.99, EndpointStatus.OUTAGE),
        (94.0, EndpointStatus.OUTAGE),
        (0.0, EndpointStatus.OUTAGE),
    ])
    def test_thresholds(self, uptime, expected):
        assert classify(True, uptime) == expected

    def test_disabled_never_outage(self):
        assert classify(False, 0.0) == EndpointStatus.DISABLED
        assert classify(False, 100.0) == EndpointStatus.DISABLED

    def test_unknown_without_uptime(self):
        assert classify(True, None) == EndpointStatus.UNKNOWN

    def test_custom_thresholds(self):
        thresholds = StatusThresholds(operational_threshold=90.0, degraded_threshold=80.0)

        assert classify(True, 91.0, thresholds) == EndpointStatus.OPERATIONAL
        assert classify(True, 85.0, thresholds) == EndpointStatus.DEGRADED
        assert classify(True, 79.0, thresholds) == EndpointStatus.OUTAGE

    def test_invalid_thresholds(self):
        with pytest.raises(ConfigurationError):
            StatusThresholds(operational_threshold=95.0, degraded_threshold=95.0)


class TestClassifySystem:
    """Tests for the system-wide precedence."""

    def test_empty_is_operational(self):
        assert classify_system([], []) == SystemStatus.OPERATIONAL

    def test_endpoint_outage_dominates(self):
        statuses = [EndpointStatus.DEGRADED, EndpointStatus.OUTAGE, EndpointStatus.OPERATIONAL]
        assert classify_system(statuses, []) == SystemStatus.OUTAGE

    def test_degraded_endpoint(self):
        statuses = [EndpointStatus.OPERATIONAL, EndpointStatus.DEGRADED]
        assert classify_system(statuses, []) == SystemStatus.DEGRADATION

    def test_disabled_ignored(self):
        statuses = [EndpointStatus.OPERATIONAL, EndpointStatus.DISABLED]
        assert classify_system(statuses, []) == SystemStatus.OPERATIONAL

    @pytest.mark.parametrize("severity", [IncidentSeverity.CRITICAL, IncidentSeverity.HIGH])
    def test_major_active_incident_is_outage(self, severity):
        incident = Incident(id="i1", status=IncidentStatus.INVESTIGATING, severity=severity)
        assert classify_system([EndpointStatus.OPERATIONAL], [incident]) == SystemStatus.OUTAGE

    def test_minor_active_incident_is_degradation(self):
        incident = Incident(id="i1", status=IncidentStatus.OPEN, severity=IncidentSeverity.LOW)
        assert classify_system([EndpointStatus.OPERATIONAL], [incident]) == SystemStatus.DEGRADATION

    @pytest.mark.parametrize("status", [
        IncidentStatus.IDENTIFIED,
        IncidentStatus.MONITORING,
        IncidentStatus.RESOLVED,
        IncidentStatus.CLOSED,
    ])
    def test_inactive_incident_ignored(self, status):
        incident = Incident(id="i1", status=status, severity=IncidentSeverity.CRITICAL)
        assert classify_system([EndpointStatus.OPERATIONAL], [incident]) == SystemStatus.OPERATIONAL

    def test_worse(self):
        assert worse(SystemStatus.DEGRADATION, SystemStatus.OUTAGE) == SystemStatus.OUTAGE
        assert worse(SystemStatus.DEGRADATION, SystemStatus.OPERATIONAL) == SystemStatus.DEGRADATION
