"""Convert .hae file records into push-API JSON.

Heart-rate samples collected while converting metric files are kept in
memory so workouts can carry their heart-rate series, which file exports
store separately from the workout.
"""

import bisect
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from healthlake.parsers import HEART_RATE_METRIC, SLEEP_METRIC, MetricFile, RouteFile, WorkoutFile
from healthlake.records import UserContext
from healthlake.timeutil import apple_to_datetime, format_hae_time
from healthlake.writer import MetricWriter

# Rows built here only travel to the server; the server assigns the owner.
_TRANSPORT = UserContext(user_id=0)


@dataclass
class HRPoint:
    time: datetime
    min: Optional[float]
    avg: Optional[float]
    max: Optional[float]
    units: str = ""
    source: str = ""


def convert_metric(metric_file: MetricFile, metric_name: str) -> Tuple[Dict[str, Any], List[HRPoint]]:
    """Returns the push metric and, for heart_rate, the samples for workout correlation."""
    if metric_name == SLEEP_METRIC:
        stages = metric_file.stage_rows(_TRANSPORT)
        data = [
            {
                "startDate": format_hae_time(s.start_time),
                "endDate": format_hae_time(s.end_time),
                "qty": s.duration_hr,
                "value": s.stage,
                "source": s.source,
            }
            for s in stages
        ]
        return {"name": metric_name, "units": "hr", "data": data}, []

    rows = MetricWriter.canonical_points(metric_name, metric_file.metric_rows(_TRANSPORT, metric_name))
    units = next((r.units for r in rows if r.units), "")
    data = []
    hr_points = []
    for r in rows:
        if metric_name == HEART_RATE_METRIC:
            data.append({
                "date": format_hae_time(r.time),
                "Min": r.min_val,
                "Avg": r.avg_val if r.avg_val is not None else r.qty,
                "Max": r.max_val,
                "source": r.source,
            })
            hr_points.append(HRPoint(r.time, r.min_val, r.avg_val if r.avg_val is not None else r.qty,
                                     r.max_val, r.units, r.source))
        else:
            data.append({"date": format_hae_time(r.time), "qty": r.value, "source": r.source})
    return {"name": metric_name, "units": units, "data": data}, hr_points


def correlate_hr(points: List[HRPoint], start: datetime, end: datetime) -> List[HRPoint]:
    """Samples with start <= time <= end; ``points`` must be sorted by time."""
    times = [p.time for p in points]
    lo = bisect.bisect_left(times, start)
    hi = bisect.bisect_right(times, end)
    return points[lo:hi]


def convert_workout(
    workout: WorkoutFile,
    route: Optional[RouteFile] = None,
    hr_points: List[HRPoint] = None,
) -> Dict[str, Any]:
    start = apple_to_datetime(workout.start)
    end = apple_to_datetime(workout.end)
    w: Dict[str, Any] = {
        "id": workout.id,
        "name": workout.name,
        "start": format_hae_time(start),
        "end": format_hae_time(end),
        "duration": workout.duration,
        "location": workout.location,
    }
    if workout.activeEnergy is not None:
        w["activeEnergyBurned"] = {"qty": workout.activeEnergy, "units": "kcal"}
    if workout.totalDistance is not None:
        w["distance"] = {"qty": workout.totalDistance, "units": "km"}
    if workout.elevationUp is not None:
        w["elevationUp"] = {"qty": workout.elevationUp, "units": "m"}

    if route is not None and route.locations:
        w["route"] = [
            {
                "latitude": loc.latitude,
                "longitude": loc.longitude,
                "altitude": loc.elevation,
                "speed": loc.speed,
                "course": loc.course,
                "horizontalAccuracy": loc.hAcc,
                "verticalAccuracy": loc.vAcc,
                "timestamp": format_hae_time(apple_to_datetime(loc.time)),
            }
            for loc in route.locations
        ]

    matched = correlate_hr(hr_points or [], start, end)
    if matched:
        w["heartRateData"] = [
            {
                "date": format_hae_time(p.time),
                "Min": p.min,
                "Avg": p.avg,
                "Max": p.max,
                "units": p.units,
                "source": p.source,
            }
            for p in matched
        ]
        avgs = [p.avg for p in matched if p.avg is not None]
        if avgs:
            w["heartRate"] = {
                "min": {"qty": min(avgs), "units": "bpm"},
                "avg": {"qty": sum(avgs) / len(avgs), "units": "bpm"},
                "max": {"qty": max(avgs), "units": "bpm"},
            }
    return w
