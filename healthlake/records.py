"""Intermediate rows shared by parsers, writers and the storage layer.

All datetimes are timezone-aware UTC.
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class UserContext:
    """Owner of every row written during one ingest call."""
    user_id: int


@dataclass
class HealthMetricRow:
    time: datetime
    user_id: int
    metric_name: str
    source: str = ""
    units: str = ""
    qty: Optional[float] = None
    min_val: Optional[float] = None
    avg_val: Optional[float] = None
    max_val: Optional[float] = None
    systolic: Optional[float] = None
    diastolic: Optional[float] = None

    @property
    def value(self) -> Optional[float]:
        return self.qty if self.qty is not None else self.avg_val


@dataclass
class SleepStageRow:
    start_time: datetime
    end_time: datetime
    user_id: int
    stage: str
    duration_hr: float
    source: str = ""


@dataclass
class SleepSessionRow:
    user_id: int
    date: date
    total_sleep: float
    asleep: float
    core: float
    deep: float
    rem: float
    in_bed: float
    sleep_start: datetime
    sleep_end: datetime
    in_bed_start: datetime
    in_bed_end: datetime


@dataclass
class WorkoutRow:
    id: uuid.UUID
    user_id: int
    name: str
    start_time: datetime
    end_time: datetime
    duration_sec: float = 0.0
    location: str = ""
    is_indoor: Optional[bool] = None
    active_energy_burned: Optional[float] = None
    active_energy_units: str = ""
    total_energy: Optional[float] = None
    total_energy_units: str = ""
    distance: Optional[float] = None
    distance_units: str = ""
    avg_heart_rate: Optional[float] = None
    max_heart_rate: Optional[float] = None
    min_heart_rate: Optional[float] = None
    elevation_up: Optional[float] = None
    elevation_down: Optional[float] = None
    raw_json: Optional[Dict[str, Any]] = field(default=None, repr=False)


@dataclass
class WorkoutHRRow:
    time: datetime
    workout_id: uuid.UUID
    user_id: int
    min_bpm: Optional[float] = None
    avg_bpm: Optional[float] = None
    max_bpm: Optional[float] = None
    source: str = ""


@dataclass
class WorkoutRouteRow:
    time: datetime
    workout_id: uuid.UUID
    user_id: int
    latitude: float
    longitude: float
    altitude: Optional[float] = None
    speed: Optional[float] = None
    course: Optional[float] = None
    horizontal_accuracy: Optional[float] = None
    vertical_accuracy: Optional[float] = None


@dataclass
class WorkoutSetRow:
    user_id: int
    session_name: str
    session_date: datetime
    session_duration: str
    exercise_number: int
    exercise_name: str
    equipment: str
    target_reps: int
    is_warmup: bool
    set_number: int
    weight_kg: float
    is_bodyweight_plus: bool
    reps: int
    rir: float


def row_values(row) -> Dict[str, Any]:
    """Column/value mapping of a row dataclass, ready for an INSERT."""
    return asdict(row)
