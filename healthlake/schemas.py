from datetime import date, datetime
from typing import Annotated, Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, BeforeValidator, Field

from healthlake.timeutil import parse_hae_time

# "2024-02-06 07:12:00 +0100" or "2024-02-06", normalized to UTC
HAETime = Annotated[datetime, BeforeValidator(parse_hae_time)]


# ---------------------------------------------------------------------------
# Push payload: metric data points
# ---------------------------------------------------------------------------
class QtyPoint(BaseModel):
    date: HAETime
    qty: float
    source: str = ""

    model_config = {"extra": "ignore"}


class MinAvgMaxPoint(BaseModel):
    # Capitalized in the push format, lowercase in older exports
    date: HAETime
    min_val: Optional[float] = Field(default=None, validation_alias=AliasChoices("Min", "min"))
    avg_val: Optional[float] = Field(default=None, validation_alias=AliasChoices("Avg", "avg"))
    max_val: Optional[float] = Field(default=None, validation_alias=AliasChoices("Max", "max"))
    source: str = ""

    model_config = {"extra": "ignore"}


class BloodPressurePoint(BaseModel):
    date: HAETime
    systolic: float
    diastolic: float
    source: str = ""

    model_config = {"extra": "ignore"}


class SleepAggregatedPoint(BaseModel):
    """Nightly sleep summary (Summarize Data on)."""

    date: HAETime
    totalSleep: float = 0
    asleep: float = 0
    core: float = 0
    deep: float = 0
    rem: float = 0
    inBed: float = 0
    sleepStart: Optional[HAETime] = None
    sleepEnd: Optional[HAETime] = None
    inBedStart: Optional[HAETime] = None
    inBedEnd: Optional[HAETime] = None
    source: str = ""

    model_config = {"extra": "ignore"}


class SleepStagePoint(BaseModel):
    """Single sleep stage segment (Summarize Data off)."""

    startDate: HAETime
    endDate: HAETime
    qty: float = 0
    value: str
    source: str = ""

    model_config = {"extra": "ignore"}


class PushMetric(BaseModel):
    name: str
    units: str = ""
    # Raw points: their shape depends on the metric name
    data: List[Dict[str, Any]] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


# ---------------------------------------------------------------------------
# Push payload: workouts
# ---------------------------------------------------------------------------
class Quantity(BaseModel):
    qty: float = 0
    units: str = ""

    model_config = {"extra": "ignore"}


class HeartRateSummary(BaseModel):
    min: Optional[Quantity] = None
    avg: Optional[Quantity] = None
    max: Optional[Quantity] = None

    model_config = {"extra": "ignore"}


class WorkoutHRPoint(BaseModel):
    date: HAETime
    min_val: Optional[float] = Field(default=None, validation_alias=AliasChoices("Min", "min"))
    avg_val: Optional[float] = Field(default=None, validation_alias=AliasChoices("Avg", "avg", "qty"))
    max_val: Optional[float] = Field(default=None, validation_alias=AliasChoices("Max", "max"))
    units: str = ""
    source: str = ""

    model_config = {"extra": "ignore"}


class RoutePoint(BaseModel):
    latitude: float
    longitude: float
    altitude: Optional[float] = None
    course: Optional[float] = None
    courseAccuracy: Optional[float] = None
    horizontalAccuracy: Optional[float] = None
    verticalAccuracy: Optional[float] = None
    timestamp: HAETime
    speed: Optional[float] = None
    speedAccuracy: Optional[float] = None

    model_config = {"extra": "ignore"}


class PushWorkout(BaseModel):
    id: str
    name: str = ""
    start: HAETime
    end: HAETime
    duration: float = 0
    location: str = ""
    isIndoor: Optional[bool] = None

    activeEnergyBurned: Optional[Quantity] = None
    totalEnergy: Optional[Quantity] = None
    distance: Optional[Quantity] = None
    elevationUp: Optional[Quantity] = None
    elevationDown: Optional[Quantity] = None

    heartRate: Optional[HeartRateSummary] = None
    avgHeartRate: Optional[Quantity] = None
    maxHeartRate: Optional[Quantity] = None

    heartRateData: List[Dict[str, Any]] = Field(default_factory=list)
    heartRateRecovery: List[Dict[str, Any]] = Field(default_factory=list)
    route: List[Dict[str, Any]] = Field(default_factory=list)

    # Forward compatibility: unknown fields are kept in raw_json
    model_config = {"extra": "allow"}


class PushData(BaseModel):
    metrics: List[PushMetric] = Field(default_factory=list)
    # Validated one by one so a malformed workout does not reject the payload
    workouts: List[Dict[str, Any]] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class PushPayload(BaseModel):
    data: PushData

    model_config = {"extra": "ignore"}


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------
class IngestResult(BaseModel):
    metrics_received: int = 0
    metrics_inserted: int = 0
    metrics_skipped: int = 0
    metrics_rejected: int = 0
    sleep_stages_inserted: int = 0
    sleep_sessions_inserted: int = 0
    workouts_received: int = 0
    workouts_inserted: int = 0
    heart_rate_points: int = 0
    route_points: int = 0
    sets_inserted: int = 0
    rejected_metrics: List[str] = Field(default_factory=list)
    message: str = ""


class AllowedMetricSchema(BaseModel):
    metric_name: str
    category: str = ""
    enabled: bool = True

    model_config = {"from_attributes": True}


class ImportLogSchema(BaseModel):
    id: int
    created_at: Optional[datetime] = None
    source: str
    status: str
    metrics_received: int = 0
    metrics_inserted: int = 0
    workouts_received: int = 0
    workouts_inserted: int = 0
    sleep_sessions: int = 0
    sets_inserted: int = 0
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="metadata_")

    model_config = {"from_attributes": True}


class MetricStatsSchema(BaseModel):
    metric: str
    avg: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    stddev: Optional[float] = None
    count: int = 0


class TimeSeriesPointSchema(BaseModel):
    time: datetime
    avg: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    count: int = 0


class CorrelationPointSchema(BaseModel):
    time: datetime
    x: Optional[float] = None
    y: Optional[float] = None


class CorrelationSchema(BaseModel):
    x_metric: str
    y_metric: str
    pearson_r: Optional[float] = None
    count: int = 0
    points: List[CorrelationPointSchema] = Field(default_factory=list)


class SleepPeriodSchema(BaseModel):
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
