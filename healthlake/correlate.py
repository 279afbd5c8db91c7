import logging

from healthlake.errors import CorrelationError, PersistenceError
from healthlake.records import UserContext, WorkoutHRRow
from healthlake.writer import MetricWriter

logger = logging.getLogger(__name__)

HEART_RATE_METRIC = "heart_rate"


class HeartRateCorrelator:
    """Back-fill workout heart-rate series from standalone heart_rate samples.

    File exports keep workout heart rate in HealthMetrics/heart_rate rather
    than inline with the workout. Only workouts without any heart-rate rows
    are touched, so running it twice inserts nothing the second time.
    """

    def __init__(self, store, writer: MetricWriter = None):
        self.store = store
        self.writer = writer or MetricWriter(store)

    async def correlate(self, ctx: UserContext) -> int:
        try:
            workouts = await self.store.workouts_without_heart_rate(ctx.user_id)
        except PersistenceError as e:
            raise CorrelationError(f"querying workouts without HR: {e}")
        if not workouts:
            return 0

        logger.info("Correlating HR data for %d workouts", len(workouts))
        total = 0
        for w in workouts:
            try:
                # Inclusive at both ends of the workout
                samples = await self.store.query_health_metrics(
                    HEART_RATE_METRIC, w.start_time, w.end_time, ctx.user_id
                )
                if not samples:
                    continue
                rows = [
                    WorkoutHRRow(
                        time=s.time,
                        workout_id=w.id,
                        user_id=ctx.user_id,
                        min_bpm=s.min_val,
                        avg_bpm=s.avg_val if s.avg_val is not None else s.qty,
                        max_bpm=s.max_val,
                        source=s.source,
                    )
                    for s in samples
                ]
                written = await self.writer.write_heart_rate(rows)
            except PersistenceError as e:
                raise CorrelationError(f"correlating HR for workout {w.id}: {e}")
            total += written.inserted
        return total
