from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB

from healthlake.database import Base

# BIGSERIAL on PostgreSQL, INTEGER PRIMARY KEY (rowid alias) on SQLite
BigId = BigInteger().with_variant(Integer, "sqlite")
JSONDoc = JSON().with_variant(JSONB, "postgresql")


class HealthMetric(Base):
    __tablename__ = "health_metrics"

    id = Column(BigId, primary_key=True, autoincrement=True)
    time = Column(DateTime(timezone=True), nullable=False)
    user_id = Column(Integer, nullable=False)
    metric_name = Column(String, nullable=False)
    source = Column(String, nullable=False, server_default="")
    units = Column(String, nullable=False, server_default="")

    qty = Column(Float, nullable=True)
    min_val = Column(Float, nullable=True)
    avg_val = Column(Float, nullable=True)
    max_val = Column(Float, nullable=True)
    systolic = Column(Float, nullable=True)
    diastolic = Column(Float, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "time",
            "metric_name",
            "source",
            "user_id",
            name="uq_health_metric_sample",
        ),
    )


class SleepStage(Base):
    __tablename__ = "sleep_stages"

    id = Column(BigId, primary_key=True, autoincrement=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    user_id = Column(Integer, nullable=False)
    # Always canonical: Awake, Core, Deep, REM, In Bed, Asleep
    stage = Column(String, nullable=False)
    duration_hr = Column(Float, nullable=False)
    source = Column(String, nullable=False, server_default="")

    __table_args__ = (
        UniqueConstraint(
            "start_time",
            "end_time",
            "user_id",
            "stage",
            name="uq_sleep_stage_segment",
        ),
    )


class SleepSession(Base):
    __tablename__ = "sleep_sessions"

    id = Column(BigId, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    # Wake date, not bedtime date
    date = Column(Date, nullable=False)

    total_sleep = Column(Float, nullable=False, default=0)
    asleep = Column(Float, nullable=False, default=0)
    core = Column(Float, nullable=False, default=0)
    deep = Column(Float, nullable=False, default=0)
    rem = Column(Float, nullable=False, default=0)
    in_bed = Column(Float, nullable=False, default=0)

    sleep_start = Column(DateTime(timezone=True), nullable=True)
    sleep_end = Column(DateTime(timezone=True), nullable=True)
    in_bed_start = Column(DateTime(timezone=True), nullable=True)
    in_bed_end = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_sleep_session_night"),
    )


class Workout(Base):
    __tablename__ = "workouts"

    id = Column(Uuid(as_uuid=True), primary_key=True)
    user_id = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    duration_sec = Column(Float, nullable=False, default=0)
    location = Column(String, nullable=False, server_default="")
    is_indoor = Column(Boolean, nullable=True)

    active_energy_burned = Column(Float, nullable=True)
    active_energy_units = Column(String, nullable=False, server_default="")
    total_energy = Column(Float, nullable=True)
    total_energy_units = Column(String, nullable=False, server_default="")
    distance = Column(Float, nullable=True)
    distance_units = Column(String, nullable=False, server_default="")
    avg_heart_rate = Column(Float, nullable=True)
    max_heart_rate = Column(Float, nullable=True)
    min_heart_rate = Column(Float, nullable=True)
    elevation_up = Column(Float, nullable=True)
    elevation_down = Column(Float, nullable=True)

    raw_json = Column(JSONDoc, nullable=True)


class WorkoutHeartRate(Base):
    __tablename__ = "workout_heart_rate"

    id = Column(BigId, primary_key=True, autoincrement=True)
    time = Column(DateTime(timezone=True), nullable=False)
    workout_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("workouts.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(Integer, nullable=False)
    min_bpm = Column(Float, nullable=True)
    avg_bpm = Column(Float, nullable=True)
    max_bpm = Column(Float, nullable=True)
    source = Column(String, nullable=False, server_default="")

    __table_args__ = (
        UniqueConstraint("workout_id", "time", "source", name="uq_workout_hr_point"),
    )


class WorkoutRoute(Base):
    __tablename__ = "workout_routes"

    id = Column(BigId, primary_key=True, autoincrement=True)
    time = Column(DateTime(timezone=True), nullable=False)
    workout_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("workouts.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(Integer, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    altitude = Column(Float, nullable=True)
    speed = Column(Float, nullable=True)
    course = Column(Float, nullable=True)
    horizontal_accuracy = Column(Float, nullable=True)
    vertical_accuracy = Column(Float, nullable=True)

    __table_args__ = (
        UniqueConstraint("workout_id", "time", name="uq_workout_route_fix"),
    )


class WorkoutSet(Base):
    __tablename__ = "workout_sets"

    id = Column(BigId, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    session_name = Column(String, nullable=False)
    session_date = Column(DateTime(timezone=True), nullable=False)
    session_duration = Column(String, nullable=False, server_default="")
    exercise_number = Column(Integer, nullable=False)
    exercise_name = Column(String, nullable=False)
    equipment = Column(String, nullable=False, server_default="")
    target_reps = Column(Integer, nullable=False, default=0)
    is_warmup = Column(Boolean, nullable=False, default=False)
    set_number = Column(Integer, nullable=False)
    weight_kg = Column(Float, nullable=False, default=0)
    is_bodyweight_plus = Column(Boolean, nullable=False, default=False)
    reps = Column(Integer, nullable=False, default=0)
    rir = Column(Float, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "session_date",
            "exercise_number",
            "is_warmup",
            "set_number",
            name="uq_workout_set",
        ),
    )


class MetricAllowlist(Base):
    __tablename__ = "metric_allowlist"

    metric_name = Column(String, primary_key=True)
    category = Column(String, nullable=False, server_default="")
    enabled = Column(Boolean, nullable=False, default=True)


class ImportLog(Base):
    __tablename__ = "import_logs"

    id = Column(BigId, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    # "hae_rest", "hae_file", "alpha"
    source = Column(String, nullable=False)
    # "running", "success", "error"
    status = Column(String, nullable=False)
    metrics_received = Column(Integer, nullable=False, default=0)
    metrics_inserted = Column(BigInteger, nullable=False, default=0)
    workouts_received = Column(Integer, nullable=False, default=0)
    workouts_inserted = Column(Integer, nullable=False, default=0)
    sleep_sessions = Column(Integer, nullable=False, default=0)
    sets_inserted = Column(BigInteger, nullable=False, default=0)
    duration_ms = Column(Integer, nullable=True)
    error_message = Column(String, nullable=True)
    metadata_ = Column("metadata", JSONDoc, nullable=True)
