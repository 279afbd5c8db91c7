"""Bucketed aggregates, Pearson correlation and sleep summaries.

Buckets are fixed-width windows aligned to the Unix epoch, written as
``"<n> <unit>"`` (``"1 hour"``, ``"15 minutes"``, ``"1 day"``, ``"1 week"``).
"""

import math
import re
import statistics
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from healthlake.records import HealthMetricRow, SleepSessionRow, UserContext

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_UNIT_SECONDS = {
    "second": 1,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
    "week": 7 * 86400,
}

_BUCKET_RE = re.compile(r"^\s*(\d+)?\s*([a-z]+?)s?\s*$")

MIN_CORRELATION_PAIRS = 3


@dataclass
class MetricStats:
    avg: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    stddev: Optional[float] = None
    count: int = 0


@dataclass
class TimeSeriesPoint:
    time: datetime
    avg: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    count: int = 0


@dataclass
class CorrelationPoint:
    time: datetime
    x: Optional[float]
    y: Optional[float]


@dataclass
class CorrelationResult:
    points: List[CorrelationPoint] = field(default_factory=list)
    pearson_r: Optional[float] = None
    count: int = 0


@dataclass
class SleepPeriod:
    period: date
    nights: int = 0
    avg_total_sleep: Optional[float] = None
    avg_deep: Optional[float] = None
    avg_rem: Optional[float] = None
    avg_core: Optional[float] = None
    avg_in_bed: Optional[float] = None
    efficiency_pct: Optional[float] = None
    deep_pct: Optional[float] = None
    rem_pct: Optional[float] = None
    avg_bedtime: Optional[str] = None
    avg_wake_time: Optional[str] = None
    bedtime_stddev_min: Optional[float] = None
    wake_time_stddev_min: Optional[float] = None


def parse_bucket(bucket: str) -> timedelta:
    m = _BUCKET_RE.match((bucket or "").lower())
    if not m or m.group(2) not in _UNIT_SECONDS:
        raise ValueError(f"unsupported bucket {bucket!r}")
    n = int(m.group(1) or 1)
    if n <= 0:
        raise ValueError(f"unsupported bucket {bucket!r}")
    return timedelta(seconds=n * _UNIT_SECONDS[m.group(2)])


def bucket_start(t: datetime, width: timedelta) -> datetime:
    offset = (t - _EPOCH) // width
    return _EPOCH + offset * width


def pearson(xs: Sequence[Optional[float]], ys: Sequence[Optional[float]]) -> Optional[float]:
    """Pearson r over non-null pairs; None with too few pairs or a constant series."""
    pairs = [(x, y) for x, y in zip(xs, ys) if x is not None and y is not None]
    if len(pairs) < MIN_CORRELATION_PAIRS:
        return None
    x = [p[0] for p in pairs]
    y = [p[1] for p in pairs]
    x_mean = statistics.mean(x)
    y_mean = statistics.mean(y)

    numerator = sum((xi - x_mean) * (yi - y_mean) for xi, yi in pairs)
    denom_x = math.sqrt(sum((xi - x_mean) ** 2 for xi in x))
    denom_y = math.sqrt(sum((yi - y_mean) ** 2 for yi in y))
    if denom_x == 0 or denom_y == 0:
        return None
    return max(-1.0, min(1.0, numerator / (denom_x * denom_y)))


def _values(rows: List[HealthMetricRow]) -> List[float]:
    return [r.value for r in rows if r.value is not None]


def summarize(rows: List[HealthMetricRow]) -> MetricStats:
    values = _values(rows)
    if not values:
        return MetricStats()
    lows = [r.min_val if r.min_val is not None else r.value for r in rows if r.value is not None]
    highs = [r.max_val if r.max_val is not None else r.value for r in rows if r.value is not None]
    return MetricStats(
        avg=statistics.mean(values),
        min=min(lows),
        max=max(highs),
        stddev=statistics.stdev(values) if len(values) > 1 else None,
        count=len(values),
    )


async def metric_stats(store, metric: str, start: datetime, end: datetime, ctx: UserContext) -> MetricStats:
    rows = await store.query_health_metrics(metric, start, end, ctx.user_id)
    return summarize(rows)


def bucketize(rows: List[HealthMetricRow], width: timedelta) -> List[TimeSeriesPoint]:
    buckets: Dict[datetime, List[HealthMetricRow]] = OrderedDict()
    for r in sorted(rows, key=lambda r: r.time):
        if r.value is None:
            continue
        buckets.setdefault(bucket_start(r.time, width), []).append(r)
    points = []
    for t, members in buckets.items():
        s = summarize(members)
        points.append(TimeSeriesPoint(time=t, avg=s.avg, min=s.min, max=s.max, count=s.count))
    return points


async def time_series(
    store, metric: str, start: datetime, end: datetime, bucket: str, ctx: UserContext
) -> List[TimeSeriesPoint]:
    rows = await store.query_health_metrics(metric, start, end, ctx.user_id)
    return bucketize(rows, parse_bucket(bucket))


async def correlation(
    store, x_metric: str, y_metric: str, start: datetime, end: datetime, bucket: str, ctx: UserContext
) -> CorrelationResult:
    xs = {p.time: p.avg for p in await time_series(store, x_metric, start, end, bucket, ctx)}
    ys = {p.time: p.avg for p in await time_series(store, y_metric, start, end, bucket, ctx)}

    # Buckets present in both series, oldest first
    times = sorted(set(xs) & set(ys))
    points = [CorrelationPoint(time=t, x=xs[t], y=ys[t]) for t in times]
    r = pearson([p.x for p in points], [p.y for p in points])
    return CorrelationResult(points=points, pearson_r=r, count=len(points))


# ---------------------------------------------------------------------------
# Sleep summary
# ---------------------------------------------------------------------------
def hour_of_day(t: datetime) -> float:
    return t.hour + t.minute / 60.0 + t.second / 3600.0


def circular_mean_std(hours: List[float]):
    """Circular mean and standard deviation (both in hours) of clock times.

    23:00 and 01:00 average to 00:00, not 12:00.
    """
    if not hours:
        return None, None
    n = len(hours)
    sin_avg = sum(math.sin(h / 24.0 * 2 * math.pi) for h in hours) / n
    cos_avg = sum(math.cos(h / 24.0 * 2 * math.pi) for h in hours) / n

    mean_rad = math.atan2(sin_avg, cos_avg)
    if mean_rad < 0:
        mean_rad += 2 * math.pi
    mean = mean_rad / (2 * math.pi) * 24.0

    r = min(math.hypot(sin_avg, cos_avg), 1.0)
    std = math.sqrt(-2 * math.log(r)) / (2 * math.pi) * 24.0 if r > 0 else None
    return mean, std


def hours_to_hhmm(h: float) -> str:
    h = h % 24
    hours = int(h)
    minutes = int(round((h - hours) * 60))
    if minutes == 60:
        hours, minutes = hours + 1, 0
    return f"{hours % 24:02d}:{minutes:02d}"


def period_start(d: date, bucket: str) -> date:
    unit = (bucket or "day").lower()
    if "month" in unit:
        return d.replace(day=1)
    if "week" in unit:
        return d - timedelta(days=d.weekday())
    return d


def _mean(values: List[float]) -> Optional[float]:
    return statistics.mean(values) if values else None


def summarize_sleep(sessions: List[SleepSessionRow], bucket: str = "day") -> List[SleepPeriod]:
    periods: Dict[date, List[SleepSessionRow]] = OrderedDict()
    for s in sorted(sessions, key=lambda s: s.date, reverse=True):
        periods.setdefault(period_start(s.date, bucket), []).append(s)

    result = []
    for period, nights in periods.items():
        bedtime, bed_std = circular_mean_std(
            [hour_of_day(s.sleep_start) for s in nights if s.sleep_start]
        )
        waketime, wake_std = circular_mean_std(
            [hour_of_day(s.sleep_end) for s in nights if s.sleep_end]
        )
        result.append(
            SleepPeriod(
                period=period,
                nights=len(nights),
                avg_total_sleep=_mean([s.total_sleep for s in nights]),
                avg_deep=_mean([s.deep for s in nights]),
                avg_rem=_mean([s.rem for s in nights]),
                avg_core=_mean([s.core for s in nights]),
                avg_in_bed=_mean([s.in_bed for s in nights]),
                efficiency_pct=_mean([
                    s.total_sleep / s.in_bed * 100 if s.in_bed > 0 else 0 for s in nights
                ]),
                deep_pct=_mean([
                    s.deep / s.total_sleep * 100 if s.total_sleep > 0 else 0 for s in nights
                ]),
                rem_pct=_mean([
                    s.rem / s.total_sleep * 100 if s.total_sleep > 0 else 0 for s in nights
                ]),
                avg_bedtime=hours_to_hhmm(bedtime) if bedtime is not None else None,
                avg_wake_time=hours_to_hhmm(waketime) if waketime is not None else None,
                bedtime_stddev_min=round(bed_std * 60, 1) if bed_std is not None else None,
                wake_time_stddev_min=round(wake_std * 60, 1) if wake_std is not None else None,
            )
        )
    return result


async def sleep_summary(
    store, start: date, end: date, bucket: str, ctx: UserContext
) -> List[SleepPeriod]:
    sessions = await store.query_sleep_sessions(start, end, ctx.user_id)
    return summarize_sleep(sessions, bucket)
