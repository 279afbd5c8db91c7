"""Narrow storage contract over the async SQLAlchemy engine.

Every insert is a conflict-ignore upsert on the table's natural key and
returns the number of rows actually inserted, so replaying the same input
is harmless. Any SQLAlchemy failure surfaces as ``PersistenceError``.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import fields
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, delete, exists, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from healthlake.errors import PersistenceError
from healthlake.models import (
    HealthMetric,
    ImportLog,
    MetricAllowlist,
    SleepSession,
    SleepStage,
    Workout,
    WorkoutHeartRate,
    WorkoutRoute,
    WorkoutSet,
)
from healthlake.records import (
    HealthMetricRow,
    SleepSessionRow,
    SleepStageRow,
    WorkoutHRRow,
    WorkoutRouteRow,
    WorkoutRow,
    WorkoutSetRow,
    row_values,
)
from healthlake.timeutil import as_utc

logger = logging.getLogger(__name__)

# Bind-parameter ceiling per statement (asyncpg caps arguments at a signed 16-bit count)
MAX_PARAMS = {
    "postgresql": 32767,
    "sqlite": 32766,
}

_INSERT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

SLEEP_METRIC = "sleep_analysis"


def _to_record(cls, obj):
    values = {}
    for f in fields(cls):
        v = getattr(obj, f.name)
        if isinstance(v, datetime):
            v = as_utc(v)
        values[f.name] = v
    return cls(**values)


class HealthStore:
    def __init__(self, session_factory, dialect: str = "postgresql"):
        if dialect not in _INSERT:
            raise PersistenceError(f"unsupported database dialect: {dialect}")
        self.session_factory = session_factory
        self.dialect = dialect
        self.max_params = MAX_PARAMS[dialect]

    @asynccontextmanager
    async def session(self):
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                logger.error("Storage operation failed: %s", e)
                await session.rollback()
                raise PersistenceError(f"database error: {e}")

    async def _insert_ignore(self, model, rows: Iterable, index_elements: List[str]) -> int:
        values = [row_values(r) for r in rows]
        if not values:
            return 0
        stmt = _INSERT[self.dialect](model).values(values)
        stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
        async with self.session() as session:
            result = await session.execute(stmt)
        return max(result.rowcount or 0, 0)

    # -----------------------------------------------------------------------
    # Inserts
    # -----------------------------------------------------------------------
    async def insert_health_metrics(self, rows: List[HealthMetricRow]) -> int:
        return await self._insert_ignore(
            HealthMetric, rows, ["time", "metric_name", "source", "user_id"]
        )

    async def insert_sleep_stages(self, rows: List[SleepStageRow]) -> int:
        return await self._insert_ignore(
            SleepStage, rows, ["start_time", "end_time", "user_id", "stage"]
        )

    async def insert_sleep_session(self, row: SleepSessionRow) -> bool:
        return await self._insert_ignore(SleepSession, [row], ["user_id", "date"]) > 0

    async def insert_workout(self, row: WorkoutRow) -> bool:
        return await self._insert_ignore(Workout, [row], ["id"]) > 0

    async def insert_workout_heart_rate(self, rows: List[WorkoutHRRow]) -> int:
        return await self._insert_ignore(
            WorkoutHeartRate, rows, ["workout_id", "time", "source"]
        )

    async def insert_workout_routes(self, rows: List[WorkoutRouteRow]) -> int:
        return await self._insert_ignore(WorkoutRoute, rows, ["workout_id", "time"])

    async def insert_workout_sets(self, rows: List[WorkoutSetRow]) -> int:
        return await self._insert_ignore(
            WorkoutSet,
            rows,
            ["user_id", "session_date", "exercise_number", "is_warmup", "set_number"],
        )

    # -----------------------------------------------------------------------
    # Range queries
    # -----------------------------------------------------------------------
    async def query_health_metrics(
        self, metric_name: str, start: datetime, end: datetime, user_id: int
    ) -> List[HealthMetricRow]:
        """Samples of one metric with start <= time <= end, oldest first."""
        stmt = (
            select(HealthMetric)
            .where(
                HealthMetric.user_id == user_id,
                HealthMetric.metric_name == metric_name,
                HealthMetric.time >= start,
                HealthMetric.time <= end,
            )
            .order_by(HealthMetric.time)
        )
        async with self.session() as session:
            result = await session.scalars(stmt)
            return [_to_record(HealthMetricRow, m) for m in result.all()]

    async def query_sleep_stages(
        self, start: datetime, end: datetime, user_id: int
    ) -> List[SleepStageRow]:
        stmt = (
            select(SleepStage)
            .where(
                SleepStage.user_id == user_id,
                SleepStage.start_time >= start,
                SleepStage.start_time < end,
            )
            .order_by(SleepStage.start_time)
        )
        async with self.session() as session:
            result = await session.scalars(stmt)
            return [_to_record(SleepStageRow, s) for s in result.all()]

    async def query_sleep_sessions(
        self, start: date, end: date, user_id: int
    ) -> List[SleepSessionRow]:
        stmt = (
            select(SleepSession)
            .where(
                SleepSession.user_id == user_id,
                SleepSession.date >= start,
                SleepSession.date <= end,
            )
            .order_by(SleepSession.date)
        )
        async with self.session() as session:
            result = await session.scalars(stmt)
            return [_to_record(SleepSessionRow, s) for s in result.all()]

    async def query_workouts(
        self, start: datetime, end: datetime, user_id: int
    ) -> List[WorkoutRow]:
        stmt = (
            select(Workout)
            .where(
                Workout.user_id == user_id,
                Workout.start_time >= start,
                Workout.start_time <= end,
            )
            .order_by(Workout.start_time)
        )
        async with self.session() as session:
            result = await session.scalars(stmt)
            return [_to_record(WorkoutRow, w) for w in result.all()]

    async def workouts_without_heart_rate(self, user_id: int) -> List[WorkoutRow]:
        has_hr = exists().where(WorkoutHeartRate.workout_id == Workout.id)
        stmt = (
            select(Workout)
            .where(Workout.user_id == user_id, ~has_hr)
            .order_by(Workout.start_time)
        )
        async with self.session() as session:
            result = await session.scalars(stmt)
            return [_to_record(WorkoutRow, w) for w in result.all()]

    async def count_workout_heart_rate(self, workout_id: uuid.UUID) -> int:
        stmt = select(func.count()).select_from(WorkoutHeartRate).where(
            WorkoutHeartRate.workout_id == workout_id
        )
        async with self.session() as session:
            return (await session.execute(stmt)).scalar_one()

    # -----------------------------------------------------------------------
    # Maintenance
    # -----------------------------------------------------------------------
    async def purge_zero_sleep_sessions(self, user_id: int, dates: Iterable[date]) -> int:
        """Delete zero-sleep sessions on ``dates``, and their sleep_analysis point."""
        dates = list(dates)
        if not dates:
            return 0
        zero = and_(
            SleepSession.user_id == user_id,
            SleepSession.date.in_(dates),
            SleepSession.total_sleep == 0,
            SleepSession.deep == 0,
            SleepSession.core == 0,
            SleepSession.rem == 0,
        )
        async with self.session() as session:
            ends = (await session.scalars(select(SleepSession.sleep_end).where(zero))).all()
            for end in ends:
                if end is None:
                    continue
                await session.execute(
                    delete(HealthMetric).where(
                        HealthMetric.user_id == user_id,
                        HealthMetric.metric_name == SLEEP_METRIC,
                        HealthMetric.time == end,
                    )
                )
            result = await session.execute(delete(SleepSession).where(zero))
        return max(result.rowcount or 0, 0)

    async def delete_workout_sets(self, user_id: int, session_date: datetime) -> int:
        stmt = delete(WorkoutSet).where(
            WorkoutSet.user_id == user_id,
            WorkoutSet.session_date == session_date,
        )
        async with self.session() as session:
            result = await session.execute(stmt)
        return max(result.rowcount or 0, 0)

    # -----------------------------------------------------------------------
    # Allowlist
    # -----------------------------------------------------------------------
    async def is_metric_allowed(self, metric_name: str) -> bool:
        stmt = select(MetricAllowlist.enabled).where(
            MetricAllowlist.metric_name == metric_name
        )
        async with self.session() as session:
            enabled = (await session.execute(stmt)).scalar_one_or_none()
        return bool(enabled)

    async def allowed_metrics(self, enabled_only: bool = True) -> List[MetricAllowlist]:
        stmt = select(MetricAllowlist).order_by(MetricAllowlist.metric_name)
        if enabled_only:
            stmt = stmt.where(MetricAllowlist.enabled.is_(True))
        async with self.session() as session:
            return list((await session.scalars(stmt)).all())

    async def seed_allowlist(self, names: Iterable[str], category: str = "") -> int:
        values = [{"metric_name": n, "category": category, "enabled": True} for n in names]
        if not values:
            return 0
        stmt = _INSERT[self.dialect](MetricAllowlist).values(values)
        stmt = stmt.on_conflict_do_nothing(index_elements=["metric_name"])
        async with self.session() as session:
            result = await session.execute(stmt)
        return max(result.rowcount or 0, 0)

    # -----------------------------------------------------------------------
    # Import logs
    # -----------------------------------------------------------------------
    async def insert_import_log(
        self, user_id: int, source: str, status: str = "running",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        log = ImportLog(user_id=user_id, source=source, status=status, metadata_=metadata)
        async with self.session() as session:
            session.add(log)
            await session.flush()
            return log.id

    async def update_import_log(self, log_id: int, **values) -> None:
        if "metadata" in values:
            values["metadata_"] = values.pop("metadata")
        async with self.session() as session:
            await session.execute(
                update(ImportLog).where(ImportLog.id == log_id).values(**values)
            )

    async def query_import_logs(self, user_id: int, limit: int = 20) -> List[ImportLog]:
        stmt = (
            select(ImportLog)
            .where(ImportLog.user_id == user_id)
            .order_by(ImportLog.id.desc())
            .limit(limit)
        )
        async with self.session() as session:
            return list((await session.scalars(stmt)).all())
