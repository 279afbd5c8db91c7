"""Source parsers: .hae file shapes and push-API data points -> intermediate rows.

File exports come in three shapes (metric, workout, route), each a pydantic
model with a ``to_rows(ctx, ...)`` conversion. Push data points are raw JSON
objects whose shape depends on the metric name; ``convert_push_point`` and
friends validate them into the matching model before converting.
"""

import enum
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError

from healthlake.errors import ParseError
from healthlake.records import (
    HealthMetricRow,
    SleepSessionRow,
    SleepStageRow,
    UserContext,
    WorkoutHRRow,
    WorkoutRouteRow,
    WorkoutRow,
)
from healthlake.schemas import (
    BloodPressurePoint,
    MinAvgMaxPoint,
    PushWorkout,
    QtyPoint,
    RoutePoint,
    SleepAggregatedPoint,
    SleepStagePoint,
    WorkoutHRPoint,
)
from healthlake.sleep_stages import STAGE_FIELDS, SleepStage, normalize_stage
from healthlake.timeutil import apple_to_datetime, parse_day

logger = logging.getLogger(__name__)

SLEEP_METRIC = "sleep_analysis"
HEART_RATE_METRIC = "heart_rate"


# ---------------------------------------------------------------------------
# .hae file shapes
# ---------------------------------------------------------------------------
class FileSource(BaseModel):
    name: str = ""
    identifier: str = ""

    model_config = {"extra": "ignore"}


class FileDataPoint(BaseModel):
    start: float
    end: float = 0
    unit: str = ""
    qty: Optional[float] = None
    # Lowercase in files ("Min"/"Avg"/"Max" in the push format)
    min_val: Optional[float] = Field(default=None, alias="min")
    avg_val: Optional[float] = Field(default=None, alias="avg")
    max_val: Optional[float] = Field(default=None, alias="max")
    sources: List[FileSource] = Field(default_factory=list)

    totalSleep: Optional[float] = None
    awake: Optional[float] = None
    core: Optional[float] = None
    deep: Optional[float] = None
    rem: Optional[float] = None
    inBed: Optional[float] = None

    model_config = {"extra": "ignore", "populate_by_name": True}

    @property
    def source_name(self) -> str:
        return self.sources[0].name if self.sources else ""

    def sleep_stage(self) -> Optional[Tuple[SleepStage, float]]:
        """Resolve the stage and its duration in hours, or None for non-stage points.

        A stage field with a positive value wins and carries the duration.
        Otherwise the first present field names the stage and the duration
        is taken from the point's time span.
        """
        present = [(stage, getattr(self, name)) for name, stage in STAGE_FIELDS
                   if getattr(self, name) is not None]
        if not present:
            return None
        for stage, value in present:
            if value > 0:
                return stage, value
        return present[0][0], max(self.end - self.start, 0) / 3600.0


class MetricFile(BaseModel):
    metric: str = ""
    date: Optional[float] = None
    data: List[FileDataPoint] = Field(default_factory=list)

    model_config = {"extra": "ignore"}

    def to_rows(
        self, ctx: UserContext, metric_name: str = None
    ) -> Union[List[HealthMetricRow], List[SleepStageRow]]:
        """Sleep files become stage segments, every other metric becomes point samples."""
        name = metric_name or self.metric
        if name == SLEEP_METRIC:
            return self.stage_rows(ctx)
        return self.metric_rows(ctx, name)

    def metric_rows(self, ctx: UserContext, metric_name: str) -> List[HealthMetricRow]:
        rows = []
        for dp in self.data:
            if dp.qty is None and dp.avg_val is None and dp.min_val is None and dp.max_val is None:
                continue
            rows.append(
                HealthMetricRow(
                    time=apple_to_datetime(dp.start),
                    user_id=ctx.user_id,
                    metric_name=metric_name,
                    source=dp.source_name,
                    units=dp.unit,
                    qty=dp.qty,
                    min_val=dp.min_val,
                    avg_val=dp.avg_val,
                    max_val=dp.max_val,
                )
            )
        return rows

    def stage_rows(self, ctx: UserContext) -> List[SleepStageRow]:
        rows = []
        for dp in self.data:
            resolved = dp.sleep_stage()
            if resolved is None:
                continue
            stage, duration = resolved
            rows.append(
                SleepStageRow(
                    start_time=apple_to_datetime(dp.start),
                    end_time=apple_to_datetime(dp.end),
                    user_id=ctx.user_id,
                    stage=stage.value,
                    duration_hr=duration,
                    source=dp.source_name,
                )
            )
        return rows


class WorkoutFile(BaseModel):
    id: str = ""
    name: str = ""
    start: float
    end: float
    duration: float = 0
    activeEnergy: Optional[float] = None
    totalDistance: Optional[float] = None
    elevationUp: Optional[float] = None
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    METs: Optional[float] = None
    location: str = ""

    model_config = {"extra": "ignore"}

    def to_rows(
        self, ctx: UserContext, workout_id: uuid.UUID, raw: Dict[str, Any] = None
    ) -> List[WorkoutRow]:
        row = WorkoutRow(
            id=workout_id,
            user_id=ctx.user_id,
            name=self.name,
            start_time=apple_to_datetime(self.start),
            end_time=apple_to_datetime(self.end),
            duration_sec=self.duration,
            location=self.location,
            raw_json=raw,
        )
        # File exports carry bare numbers in fixed units
        if self.activeEnergy is not None:
            row.active_energy_burned = self.activeEnergy
            row.active_energy_units = "kcal"
        if self.totalDistance is not None:
            row.distance = self.totalDistance
            row.distance_units = "km"
        row.elevation_up = self.elevationUp
        return [row]


class FileLocation(BaseModel):
    latitude: float
    longitude: float
    elevation: float = 0
    speed: float = 0
    course: float = 0
    time: float
    hAcc: float = 0
    vAcc: float = 0

    model_config = {"extra": "ignore"}


class RouteFile(BaseModel):
    id: str = ""
    name: str = ""
    locations: List[FileLocation] = Field(default_factory=list)

    model_config = {"extra": "ignore"}

    def to_rows(self, ctx: UserContext, workout_id: uuid.UUID) -> List[WorkoutRouteRow]:
        return [
            WorkoutRouteRow(
                time=apple_to_datetime(loc.time),
                workout_id=workout_id,
                user_id=ctx.user_id,
                latitude=loc.latitude,
                longitude=loc.longitude,
                altitude=loc.elevation,
                speed=loc.speed,
                course=loc.course,
                horizontal_accuracy=loc.hAcc,
                vertical_accuracy=loc.vAcc,
            )
            for loc in self.locations
        ]


class FileKind(str, enum.Enum):
    METRIC = "metric"
    WORKOUT = "workout"
    ROUTE = "route"


_FILE_MODELS = {
    FileKind.METRIC: MetricFile,
    FileKind.WORKOUT: WorkoutFile,
    FileKind.ROUTE: RouteFile,
}


def load_json(raw: bytes) -> Dict[str, Any]:
    try:
        doc = json.loads(raw)
    except ValueError as e:
        raise ParseError(f"malformed JSON: {e}")
    if not isinstance(doc, dict):
        raise ParseError(f"expected a JSON object, got {type(doc).__name__}")
    return doc


def parse_file(kind: FileKind, raw: Union[bytes, Dict[str, Any]]):
    """Validate decoded .hae content into the model for ``kind``."""
    doc = raw if isinstance(raw, dict) else load_json(raw)
    try:
        return _FILE_MODELS[FileKind(kind)].model_validate(doc)
    except ValidationError as e:
        raise ParseError(f"invalid {FileKind(kind).value} file: {e.error_count()} error(s): {e}")


# ---------------------------------------------------------------------------
# Push data points
# ---------------------------------------------------------------------------
class MetricShape(enum.Enum):
    QTY = "qty"
    MIN_AVG_MAX = "min_avg_max"
    BLOOD_PRESSURE = "blood_pressure"


class SleepFormat(enum.Enum):
    AGGREGATED = "aggregated"
    UNAGGREGATED = "unaggregated"


def metric_shape(name: str) -> MetricShape:
    if name == HEART_RATE_METRIC:
        return MetricShape.MIN_AVG_MAX
    if name == "blood_pressure":
        return MetricShape.BLOOD_PRESSURE
    return MetricShape.QTY


def sleep_format(raw: Dict[str, Any]) -> SleepFormat:
    if "totalSleep" in raw:
        return SleepFormat.AGGREGATED
    if "startDate" in raw:
        return SleepFormat.UNAGGREGATED
    return SleepFormat.AGGREGATED


def convert_push_point(
    name: str, units: str, raw: Dict[str, Any], ctx: UserContext
) -> HealthMetricRow:
    row = HealthMetricRow(
        time=datetime.min.replace(tzinfo=timezone.utc),
        user_id=ctx.user_id,
        metric_name=name,
        units=units,
    )
    shape = metric_shape(name)
    try:
        if shape is MetricShape.MIN_AVG_MAX:
            dp = MinAvgMaxPoint.model_validate(raw)
            row.min_val, row.avg_val, row.max_val = dp.min_val, dp.avg_val, dp.max_val
        elif shape is MetricShape.BLOOD_PRESSURE:
            dp = BloodPressurePoint.model_validate(raw)
            row.systolic, row.diastolic = dp.systolic, dp.diastolic
        else:
            dp = QtyPoint.model_validate(raw)
            row.qty = dp.qty
    except ValidationError as e:
        raise ParseError(f"parsing {shape.value} point: {e}")
    row.time = dp.date
    row.source = dp.source
    return row


def convert_sleep_summary(
    raw: Dict[str, Any], ctx: UserContext, source: str = "Health Auto Export"
) -> Tuple[SleepSessionRow, HealthMetricRow]:
    """Aggregated nightly summary -> session row plus its sleep_analysis point."""
    day = raw.get("date")
    try:
        # Date-only by contract; keep the local calendar day when a time is attached
        night = parse_day(str(day)[:10])
        dp = SleepAggregatedPoint.model_validate(raw)
    except (ValueError, TypeError) as e:
        raise ParseError(f"parsing aggregated sleep point: {e}")

    session = SleepSessionRow(
        user_id=ctx.user_id,
        date=night,
        total_sleep=dp.totalSleep,
        asleep=dp.asleep,
        core=dp.core,
        deep=dp.deep,
        rem=dp.rem,
        in_bed=dp.inBed,
        sleep_start=dp.sleepStart,
        sleep_end=dp.sleepEnd,
        in_bed_start=dp.inBedStart,
        in_bed_end=dp.inBedEnd,
    )
    point = HealthMetricRow(
        time=dp.sleepEnd or dp.date,
        user_id=ctx.user_id,
        metric_name=SLEEP_METRIC,
        source=dp.source or source,
        units="hr",
        qty=dp.totalSleep,
    )
    return session, point


def convert_sleep_stage(raw: Dict[str, Any], ctx: UserContext) -> SleepStageRow:
    """Unaggregated stage segment -> canonical stage row."""
    try:
        dp = SleepStagePoint.model_validate(raw)
    except ValidationError as e:
        raise ParseError(f"parsing sleep stage point: {e}")
    stage, known = normalize_stage(dp.value)
    if not known:
        raise ParseError(f"unknown sleep stage {dp.value!r}")
    duration = dp.qty
    if duration <= 0:
        duration = max((dp.endDate - dp.startDate).total_seconds(), 0) / 3600.0
    return SleepStageRow(
        start_time=dp.startDate,
        end_time=dp.endDate,
        user_id=ctx.user_id,
        stage=stage,
        duration_hr=duration,
        source=dp.source,
    )


def convert_push_workout(
    raw: Dict[str, Any], ctx: UserContext
) -> Tuple[WorkoutRow, List[WorkoutHRRow], List[WorkoutRouteRow]]:
    """Push workout -> workout row plus its inline heart-rate and route rows."""
    try:
        w = PushWorkout.model_validate(raw)
    except ValidationError as e:
        raise ParseError(f"parsing workout: {e}")
    try:
        workout_id = uuid.UUID(w.id)
    except ValueError:
        raise ParseError(f"invalid workout UUID {w.id!r}")

    row = WorkoutRow(
        id=workout_id,
        user_id=ctx.user_id,
        name=w.name,
        start_time=w.start,
        end_time=w.end,
        duration_sec=w.duration,
        location=w.location,
        is_indoor=w.isIndoor,
        raw_json=raw,
    )
    if w.activeEnergyBurned is not None:
        row.active_energy_burned = w.activeEnergyBurned.qty
        row.active_energy_units = w.activeEnergyBurned.units
    if w.totalEnergy is not None:
        row.total_energy = w.totalEnergy.qty
        row.total_energy_units = w.totalEnergy.units
    if w.distance is not None:
        row.distance = w.distance.qty
        row.distance_units = w.distance.units
    if w.elevationUp is not None:
        row.elevation_up = w.elevationUp.qty
    if w.elevationDown is not None:
        row.elevation_down = w.elevationDown.qty

    if w.heartRate is not None:
        row.min_heart_rate = w.heartRate.min.qty if w.heartRate.min else None
        row.avg_heart_rate = w.heartRate.avg.qty if w.heartRate.avg else None
        row.max_heart_rate = w.heartRate.max.qty if w.heartRate.max else None
    else:
        if w.avgHeartRate is not None:
            row.avg_heart_rate = w.avgHeartRate.qty
        if w.maxHeartRate is not None:
            row.max_heart_rate = w.maxHeartRate.qty

    hr_rows = []
    for point in w.heartRateData:
        try:
            hr = WorkoutHRPoint.model_validate(point)
        except ValidationError as e:
            logger.warning("Skipping workout HR point [%s]: %s", w.id, e)
            continue
        hr_rows.append(
            WorkoutHRRow(
                time=hr.date,
                workout_id=workout_id,
                user_id=ctx.user_id,
                min_bpm=hr.min_val,
                avg_bpm=hr.avg_val,
                max_bpm=hr.max_val,
                source=hr.source,
            )
        )

    route_rows = []
    for point in w.route:
        try:
            rp = RoutePoint.model_validate(point)
        except ValidationError as e:
            logger.warning("Skipping route point [%s]: %s", w.id, e)
            continue
        route_rows.append(
            WorkoutRouteRow(
                time=rp.timestamp,
                workout_id=workout_id,
                user_id=ctx.user_id,
                latitude=rp.latitude,
                longitude=rp.longitude,
                altitude=rp.altitude,
                speed=rp.speed,
                course=rp.course,
                horizontal_accuracy=rp.horizontalAccuracy,
                vertical_accuracy=rp.verticalAccuracy,
            )
        )
    return row, hr_rows, route_rows
