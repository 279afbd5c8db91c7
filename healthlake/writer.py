import logging
from dataclasses import dataclass, fields
from typing import Awaitable, Callable, Iterable, List, Sequence

from healthlake.errors import ValidationRejection
from healthlake.records import (
    HealthMetricRow,
    SleepStageRow,
    WorkoutHRRow,
    WorkoutRouteRow,
)

logger = logging.getLogger(__name__)

# Energy metrics are exported twice (kcal and kJ); only kcal is kept
KCAL_ONLY_METRICS = frozenset({"active_energy", "basal_energy_burned"})

METRIC_FIELDS = len(fields(HealthMetricRow))  # 11
STAGE_FIELDS = len(fields(SleepStageRow))  # 6
HEART_RATE_FIELDS = len(fields(WorkoutHRRow))  # 7
ROUTE_FIELDS = len(fields(WorkoutRouteRow))  # 10


@dataclass
class WriteResult:
    inserted: int = 0
    duplicated: int = 0

    def __iadd__(self, other: "WriteResult") -> "WriteResult":
        self.inserted += other.inserted
        self.duplicated += other.duplicated
        return self


def chunked(rows: Sequence, size: int) -> Iterable[Sequence]:
    for i in range(0, len(rows), size):
        yield rows[i:i + size]


class MetricWriter:
    """Allowlist gate, unit filter and batched conflict-ignore writes."""

    def __init__(self, store, allowed: Iterable[str] = None):
        self.store = store
        self.rejected: List[str] = []
        # Optional pre-fetched allowlist; otherwise the store is asked per name
        self._allowed = set(allowed) if allowed is not None else None

    async def check(self, metric_name: str) -> None:
        """Raise ValidationRejection when ``metric_name`` is not allowlisted."""
        if self._allowed is not None:
            ok = metric_name in self._allowed
        else:
            ok = await self.store.is_metric_allowed(metric_name)
        if not ok:
            raise ValidationRejection(f"metric {metric_name} is not in the allowlist", metric=metric_name)

    async def admit(self, metric_name: str) -> bool:
        """Like check(), but records the rejection once per name and returns False."""
        try:
            await self.check(metric_name)
        except ValidationRejection as e:
            if e.metric not in self.rejected:
                self.rejected.append(e.metric)
                logger.info("Skipping metric %s (not in allowlist)", e.metric)
            return False
        return True

    @staticmethod
    def canonical_points(metric_name: str, points: List[HealthMetricRow]) -> List[HealthMetricRow]:
        if metric_name in KCAL_ONLY_METRICS:
            return [p for p in points if p.units == "kcal"]
        return points

    def batch_size(self, fields_per_row: int) -> int:
        return max(self.store.max_params // fields_per_row, 1)

    async def _write(
        self,
        rows: Sequence,
        fields_per_row: int,
        insert: Callable[[Sequence], Awaitable[int]],
    ) -> WriteResult:
        result = WriteResult()
        for chunk in chunked(list(rows), self.batch_size(fields_per_row)):
            inserted = await insert(chunk)
            result += WriteResult(inserted, len(chunk) - inserted)
        return result

    async def write_metrics(self, rows: Sequence[HealthMetricRow]) -> WriteResult:
        return await self._write(rows, METRIC_FIELDS, self.store.insert_health_metrics)

    async def write_stages(self, rows: Sequence[SleepStageRow]) -> WriteResult:
        return await self._write(rows, STAGE_FIELDS, self.store.insert_sleep_stages)

    async def write_heart_rate(self, rows: Sequence[WorkoutHRRow]) -> WriteResult:
        return await self._write(rows, HEART_RATE_FIELDS, self.store.insert_workout_heart_rate)

    async def write_routes(self, rows: Sequence[WorkoutRouteRow]) -> WriteResult:
        return await self._write(rows, ROUTE_FIELDS, self.store.insert_workout_routes)
