"""Initial schema: metrics, sleep, workouts, strength sets, allowlist, import log

Revision ID: 20261019_initial_schema
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SEED_METRICS = [
    "active_energy",
    "apple_exercise_time",
    "apple_sleeping_wrist_temperature",
    "basal_energy_burned",
    "blood_oxygen_saturation",
    "blood_pressure",
    "body_fat_percentage",
    "heart_rate",
    "heart_rate_variability",
    "respiratory_rate",
    "resting_heart_rate",
    "sleep_analysis",
    "step_count",
    "vo2_max",
    "walking_running_distance",
    "weight_body_mass",
]


def upgrade() -> None:
    op.create_table(
        "health_metrics",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("metric_name", sa.String(), nullable=False),
        sa.Column("source", sa.String(), nullable=False, server_default=""),
        sa.Column("units", sa.String(), nullable=False, server_default=""),
        sa.Column("qty", sa.Float(), nullable=True),
        sa.Column("min_val", sa.Float(), nullable=True),
        sa.Column("avg_val", sa.Float(), nullable=True),
        sa.Column("max_val", sa.Float(), nullable=True),
        sa.Column("systolic", sa.Float(), nullable=True),
        sa.Column("diastolic", sa.Float(), nullable=True),
        sa.UniqueConstraint("time", "metric_name", "source", "user_id", name="uq_health_metric_sample"),
    )
    op.create_index(
        "ix_health_metrics_user_metric_time",
        "health_metrics",
        ["user_id", "metric_name", "time"],
    )

    op.create_table(
        "sleep_stages",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("stage", sa.String(), nullable=False),
        sa.Column("duration_hr", sa.Float(), nullable=False),
        sa.Column("source", sa.String(), nullable=False, server_default=""),
        sa.UniqueConstraint("start_time", "end_time", "user_id", "stage", name="uq_sleep_stage_segment"),
    )

    op.create_table(
        "sleep_sessions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("total_sleep", sa.Float(), nullable=False, server_default="0"),
        sa.Column("asleep", sa.Float(), nullable=False, server_default="0"),
        sa.Column("core", sa.Float(), nullable=False, server_default="0"),
        sa.Column("deep", sa.Float(), nullable=False, server_default="0"),
        sa.Column("rem", sa.Float(), nullable=False, server_default="0"),
        sa.Column("in_bed", sa.Float(), nullable=False, server_default="0"),
        sa.Column("sleep_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sleep_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("in_bed_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("in_bed_end", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "date", name="uq_sleep_session_night"),
    )

    op.create_table(
        "workouts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_sec", sa.Float(), nullable=False, server_default="0"),
        sa.Column("location", sa.String(), nullable=False, server_default=""),
        sa.Column("is_indoor", sa.Boolean(), nullable=True),
        sa.Column("active_energy_burned", sa.Float(), nullable=True),
        sa.Column("active_energy_units", sa.String(), nullable=False, server_default=""),
        sa.Column("total_energy", sa.Float(), nullable=True),
        sa.Column("total_energy_units", sa.String(), nullable=False, server_default=""),
        sa.Column("distance", sa.Float(), nullable=True),
        sa.Column("distance_units", sa.String(), nullable=False, server_default=""),
        sa.Column("avg_heart_rate", sa.Float(), nullable=True),
        sa.Column("max_heart_rate", sa.Float(), nullable=True),
        sa.Column("min_heart_rate", sa.Float(), nullable=True),
        sa.Column("elevation_up", sa.Float(), nullable=True),
        sa.Column("elevation_down", sa.Float(), nullable=True),
        sa.Column("raw_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    )
    op.create_index("ix_workouts_user_start", "workouts", ["user_id", "start_time"])

    op.create_table(
        "workout_heart_rate",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("time", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "workout_id",
            sa.Uuid(),
            sa.ForeignKey("workouts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("min_bpm", sa.Float(), nullable=True),
        sa.Column("avg_bpm", sa.Float(), nullable=True),
        sa.Column("max_bpm", sa.Float(), nullable=True),
        sa.Column("source", sa.String(), nullable=False, server_default=""),
        sa.UniqueConstraint("workout_id", "time", "source", name="uq_workout_hr_point"),
    )

    op.create_table(
        "workout_routes",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("time", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "workout_id",
            sa.Uuid(),
            sa.ForeignKey("workouts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("altitude", sa.Float(), nullable=True),
        sa.Column("speed", sa.Float(), nullable=True),
        sa.Column("course", sa.Float(), nullable=True),
        sa.Column("horizontal_accuracy", sa.Float(), nullable=True),
        sa.Column("vertical_accuracy", sa.Float(), nullable=True),
        sa.UniqueConstraint("workout_id", "time", name="uq_workout_route_fix"),
    )

    op.create_table(
        "workout_sets",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("session_name", sa.String(), nullable=False),
        sa.Column("session_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("session_duration", sa.String(), nullable=False, server_default=""),
        sa.Column("exercise_number", sa.Integer(), nullable=False),
        sa.Column("exercise_name", sa.String(), nullable=False),
        sa.Column("equipment", sa.String(), nullable=False, server_default=""),
        sa.Column("target_reps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_warmup", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("set_number", sa.Integer(), nullable=False),
        sa.Column("weight_kg", sa.Float(), nullable=False, server_default="0"),
        sa.Column("is_bodyweight_plus", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rir", sa.Float(), nullable=False, server_default="0"),
        sa.UniqueConstraint(
            "user_id",
            "session_date",
            "exercise_number",
            "is_warmup",
            "set_number",
            name="uq_workout_set",
        ),
    )

    allowlist = op.create_table(
        "metric_allowlist",
        sa.Column("metric_name", sa.String(), primary_key=True),
        sa.Column("category", sa.String(), nullable=False, server_default=""),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.bulk_insert(
        allowlist,
        [{"metric_name": name, "category": "", "enabled": True} for name in SEED_METRICS],
    )

    op.create_table(
        "import_logs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("metrics_received", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("metrics_inserted", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("workouts_received", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("workouts_inserted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sleep_sessions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sets_inserted", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("import_logs")
    op.drop_table("metric_allowlist")
    op.drop_table("workout_sets")
    op.drop_table("workout_routes")
    op.drop_table("workout_heart_rate")
    op.drop_index("ix_workouts_user_start", table_name="workouts")
    op.drop_table("workouts")
    op.drop_table("sleep_sessions")
    op.drop_table("sleep_stages")
    op.drop_index("ix_health_metrics_user_metric_time", table_name="health_metrics")
    op.drop_table("health_metrics")
