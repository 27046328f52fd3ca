"""
Uptime Telemetry - Statistics Calculator.

============================================================
PURE CHECK STATISTICS
============================================================

Computes over a set of check results:
- total / successful / failed counts
- uptime and error rate percentages
- average, p95 and p99 response times
- status code class distribution

Every function here is pure: no I/O, no clock, no logging.

============================================================
PERCENTILES
============================================================

Response times of successful checks are sorted ascending and
the value at index floor(n * p) is taken. With no samples the
percentile is 0.

============================================================
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence

from .models import AggregateWindow, CheckResult


STATUS_CODE_CLASSES = ("2xx", "3xx", "4xx", "5xx", "other")


def uptime_percent(successful: int, total: int) -> float:
    """Full-precision uptime; absence of data is 100%."""
    if total == 0:
        return 100.0
    return successful * 100 / total


def error_rate_percent(successful: int, total: int) -> float:
    """Share of failed checks; 0 when there is no data."""
    if total == 0:
        return 0.0
    return (total - successful) * 100 / total


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """
    Nearest-rank percentile on an ascending sequence.

    Args:
        sorted_values: Values sorted ascending
        p: Fraction in [0, 1), e.g. 0.95

    Returns:
        sorted_values[floor(n * p)], or 0 when out of range
    """
    index = math.floor(len(sorted_values) * p)
    if index < 0 or index >= len(sorted_values):
        return 0
    return sorted_values[index]


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def status_code_class(status_code: int) -> str:
    """Bucket an HTTP status code into its class label."""
    if status_code >= 500:
        return "5xx"
    if status_code >= 400:
        return "4xx"
    if status_code >= 300:
        return "3xx"
    if status_code >= 200:
        return "2xx"
    return "other"


def status_code_distribution(checks: Iterable[CheckResult]) -> Dict[str, int]:
    """Count checks per status code class (checks without a code are skipped)."""
    distribution = {label: 0 for label in STATUS_CODE_CLASSES}
    for check in checks:
        if check.status_code is not None:
            distribution[status_code_class(check.status_code)] += 1
    return distribution


def successful_response_times(checks: Iterable[CheckResult]) -> List[int]:
    """Sorted response times of successful checks that carried one."""
    return sorted(
        c.response_time_ms
        for c in checks
        if c.success and c.response_time_ms is not None
    )


# =============================================================
# STATISTICS RESULT
# =============================================================


@dataclass(frozen=True)
class CheckStatistics:
    """Statistics over one set of check results."""
    total: int
    successful: int
    uptime_pct: float
    error_rate_pct: float
    avg_response_ms: float
    p95_response_ms: float
    p99_response_ms: float
    status_codes: Dict[str, int] = field(default_factory=dict)

    @property
    def failed(self) -> int:
        return self.total - self.successful

    @classmethod
    def from_window(cls, window: AggregateWindow) -> "CheckStatistics":
        """Statistics from an already-aggregated window."""
        return cls(
            total=window.total_checks,
            successful=window.successful_checks,
            uptime_pct=uptime_percent(window.successful_checks, window.total_checks),
            error_rate_pct=error_rate_percent(window.successful_checks, window.total_checks),
            avg_response_ms=mean(window.response_times),
            p95_response_ms=percentile(window.response_times, 0.95),
            p99_response_ms=percentile(window.response_times, 0.99),
        )

    def to_dict(self, precision: int = 1) -> Dict:
        return {
            "total": self.total,
            "successful": self.successful,
            "uptime_pct": round(self.uptime_pct, precision),
            "error_rate_pct": round(self.error_rate_pct, precision),
            "avg_response_ms": round(self.avg_response_ms, precision),
            "p95_response_ms": self.p95_response_ms,
            "p99_response_ms": self.p99_response_ms,
            "status_codes": dict(self.status_codes),
        }


def compute_statistics(checks: Iterable[CheckResult]) -> CheckStatistics:
    """
    Compute statistics over a set of check results.

    Args:
        checks: Check results (any order)

    Returns:
        CheckStatistics with full-precision figures
    """
    checks = list(checks)
    total = len(checks)
    successful = sum(1 for c in checks if c.success)
    response_times = successful_response_times(checks)

    return CheckStatistics(
        total=total,
        successful=successful,
        uptime_pct=uptime_percent(successful, total),
        error_rate_pct=error_rate_percent(successful, total),
        avg_response_ms=mean(response_times),
        p95_response_ms=percentile(response_times, 0.95),
        p99_response_ms=percentile(response_times, 0.99),
        status_codes=status_code_distribution(checks),
    )
