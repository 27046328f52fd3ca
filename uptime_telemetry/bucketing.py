"""
Uptime Telemetry - Time-Window Bucketer.

============================================================
FIXED-WIDTH BUCKETS
============================================================

Groups check results into `count` buckets of `width` covering
[now - count * width, now):

- Bucket i covers [start_i, start_i + width) (right-open)
- Every bucket is present, empty ones included
- Ordered oldest first; the most recent bucket is last
- A span that is not a multiple of the width loses its oldest
  partial bucket (floor division)

============================================================
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence

from .models import AggregateWindow, CheckResult, TimeSeriesPoint, WindowSpec, ensure_utc
from .statistics import mean


HOUR = timedelta(hours=1)
DAY = timedelta(days=1)
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def anchor_after(instant: datetime, resolution: timedelta) -> datetime:
    """First multiple of `resolution` since the Unix epoch strictly after `instant`."""
    if resolution <= timedelta(0):
        raise ValueError("resolution must be positive")
    elapsed = ensure_utc(instant) - EPOCH
    return EPOCH + resolution * (elapsed // resolution + 1)


def bucket_count_for_span(span: timedelta, width: timedelta) -> int:
    """Number of whole buckets that fit in `span`."""
    if span <= timedelta(0):
        return 0
    return span // width


def granularity_for_range(hours: int, hourly_max_hours: int = 24) -> timedelta:
    """Hourly buckets for short ranges, daily beyond."""
    return HOUR if hours <= hourly_max_hours else DAY


def window_for_range(now: datetime, hours: int, hourly_max_hours: int = 24) -> WindowSpec:
    """
    Window spec for a dashboard range given in hours.

    Args:
        now: Anchor instant (exclusive end)
        hours: Look-back in hours
        hourly_max_hours: Largest range still bucketed hourly

    Returns:
        WindowSpec with floor(range / width) buckets
    """
    width = granularity_for_range(hours, hourly_max_hours)
    count = bucket_count_for_span(timedelta(hours=hours), width)
    return WindowSpec(now=now, bucket_width=width, bucket_count=count)


def empty_buckets(spec: WindowSpec) -> List[AggregateWindow]:
    """All buckets of a window spec, with no checks counted."""
    start = spec.start
    return [
        AggregateWindow(
            window_start=start + spec.bucket_width * i,
            window_end=start + spec.bucket_width * (i + 1),
        )
        for i in range(spec.bucket_count)
    ]


def bucket_index(timestamp: datetime, spec: WindowSpec) -> Optional[int]:
    """Index of the bucket `timestamp` falls into, or None when outside."""
    timestamp = ensure_utc(timestamp)
    if timestamp < spec.start or timestamp >= spec.now:
        return None
    return (timestamp - spec.start) // spec.bucket_width


def bucket_checks(
    checks: Iterable[CheckResult],
    spec: WindowSpec,
) -> List[AggregateWindow]:
    """
    Aggregate checks into the buckets of `spec`.

    Checks outside [spec.start, spec.now) are ignored.
    """
    buckets = empty_buckets(spec)
    grouped: List[List[CheckResult]] = [[] for _ in buckets]

    for check in checks:
        index = bucket_index(check.timestamp, spec)
        if index is not None:
            grouped[index].append(check)

    return [
        aggregate_checks(bucket.window_start, bucket.window_end, group)
        for bucket, group in zip(buckets, grouped)
    ]


def bucket_span(
    checks: Iterable[CheckResult],
    now: datetime,
    span: timedelta,
    width: timedelta,
) -> List[AggregateWindow]:
    """Bucket a total look-back span; the partial oldest bucket is dropped."""
    spec = WindowSpec(now=now, bucket_width=width, bucket_count=bucket_count_for_span(span, width))
    return bucket_checks(checks, spec)


def aggregate_checks(
    window_start: datetime,
    window_end: datetime,
    checks: Iterable[CheckResult],
) -> AggregateWindow:
    """
    Aggregate the checks inside [window_start, window_end) from raw data.
    """
    total = 0
    successful = 0
    response_times: List[int] = []

    for check in checks:
        if not (window_start <= check.timestamp < window_end):
            continue
        total += 1
        if check.success:
            successful += 1
            if check.response_time_ms is not None:
                response_times.append(check.response_time_ms)

    return AggregateWindow(
        window_start=window_start,
        window_end=window_end,
        total_checks=total,
        successful_checks=successful,
        response_times=tuple(sorted(response_times)),
    )


def merge_bucket_lists(bucket_lists: Iterable[Sequence[AggregateWindow]]) -> List[AggregateWindow]:
    """Element-wise merge of bucket lists sharing the same boundaries."""
    merged: List[AggregateWindow] = []
    for buckets in bucket_lists:
        if not merged:
            merged = list(buckets)
            continue
        merged = [left.merge(right) for left, right in zip(merged, buckets)]
    return merged


def to_point(bucket: AggregateWindow) -> TimeSeriesPoint:
    return TimeSeriesPoint(
        bucket_start=bucket.window_start,
        success_count=bucket.successful_checks,
        failure_count=bucket.failed_checks,
        avg_response_time_ms=mean(bucket.response_times),
    )


def to_series(buckets: Iterable[AggregateWindow]) -> List[TimeSeriesPoint]:
    """Chart points for a bucket list, order preserved."""
    return [to_point(bucket) for bucket in buckets]
