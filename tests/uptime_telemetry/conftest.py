"""Shared fixtures for the uptime telemetry tests."""

from datetime import datetime, timedelta, timezone

import pytest

from uptime_telemetry.bucketing import HOUR
from uptime_telemetry.config import TelemetryConfig, set_config
from uptime_telemetry.models import CheckResult, Endpoint, WindowSpec


T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def default_config():
    """Pin the global config to defaults for every test."""
    config = TelemetryConfig()
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture
def t0():
    """Midnight UTC anchor."""
    return T0


@pytest.fixture
def scenario_window():
    """3 x 1h window ending at t0 + 3h."""
    return WindowSpec(now=T0 + timedelta(hours=3), bucket_width=HOUR, bucket_count=3)


@pytest.fixture
def scenario_endpoints():
    return [Endpoint(id="a", name="API", enabled=True)]


@pytest.fixture
def scenario_checks():
    """Success 200ms, failure, success 100ms, one hour apart."""
    return [
        CheckResult(endpoint_id="a", timestamp=T0, success=True, response_time_ms=200, status_code=200),
        CheckResult(endpoint_id="a", timestamp=T0 + timedelta(hours=1), success=False, status_code=503),
        CheckResult(endpoint_id="a", timestamp=T0 + timedelta(hours=2), success=True, response_time_ms=100, status_code=200),
    ]
