"""
Uptime Telemetry - Status Classifier.

============================================================
ENDPOINT STATUS
============================================================

- disabled                        -> DISABLED (no thresholds applied)
- uptime >= operational (99)      -> OPERATIONAL
- degraded (95) <= uptime < 99    -> DEGRADED
- uptime < 95                     -> OUTAGE
- uptime unknown (None)           -> UNKNOWN

No data means 100% uptime, so an enabled endpoint without
checks is OPERATIONAL.

============================================================
SYSTEM STATUS
============================================================

Strict precedence, worst state wins:
1. OUTAGE       any endpoint in outage, or any active
                critical/high incident
2. DEGRADATION  any endpoint degraded, or any active incident
3. OPERATIONAL  otherwise

Disabled endpoints do not contribute.

============================================================
"""

from typing import Iterable, Optional

from .config import StatusThresholds, get_config
from .models import EndpointStatus, Incident, SystemStatus


def classify(
    enabled: bool,
    uptime_pct: Optional[float],
    thresholds: Optional[StatusThresholds] = None,
) -> EndpointStatus:
    """
    Map enablement and an aggregate uptime to an endpoint status.

    Args:
        enabled: Whether the endpoint is enabled
        uptime_pct: Full-precision uptime of a window aggregate
        thresholds: Status thresholds (global config by default)

    Returns:
        EndpointStatus
    """
    if not enabled:
        return EndpointStatus.DISABLED
    if uptime_pct is None:
        return EndpointStatus.UNKNOWN

    thresholds = thresholds or get_config().thresholds
    if uptime_pct >= thresholds.operational_threshold:
        return EndpointStatus.OPERATIONAL
    if uptime_pct >= thresholds.degraded_threshold:
        return EndpointStatus.DEGRADED
    return EndpointStatus.OUTAGE


def worse(left: SystemStatus, right: SystemStatus) -> SystemStatus:
    """The more severe of two system statuses."""
    return left if left.rank >= right.rank else right


def classify_system(
    endpoint_statuses: Iterable[EndpointStatus],
    incidents: Iterable[Incident],
) -> SystemStatus:
    """
    Derive the system-wide status.

    Args:
        endpoint_statuses: Status of every known endpoint
        incidents: Incidents (inactive ones are ignored)

    Returns:
        SystemStatus
    """
    status = SystemStatus.OPERATIONAL

    for endpoint_status in endpoint_statuses:
        if endpoint_status == EndpointStatus.OUTAGE:
            return SystemStatus.OUTAGE
        if endpoint_status == EndpointStatus.DEGRADED:
            status = worse(status, SystemStatus.DEGRADATION)

    for incident in incidents:
        if not incident.is_active:
            continue
        if incident.severity.is_major():
            return SystemStatus.OUTAGE
        status = worse(status, SystemStatus.DEGRADATION)

    return status
