import logging
from typing import Any, Dict, List

from healthlake.errors import ParseError
from healthlake.parsers import (
    SLEEP_METRIC,
    SleepFormat,
    convert_push_point,
    convert_push_workout,
    convert_sleep_stage,
    convert_sleep_summary,
    sleep_format,
)
from healthlake.records import UserContext
from healthlake.schemas import IngestResult, PushMetric, PushPayload
from healthlake.sleep import SleepSynthesizer
from healthlake.writer import MetricWriter

logger = logging.getLogger(__name__)


class PushProvider:
    """Store a Health Auto Export REST payload."""

    def __init__(self, store, synthesizer: SleepSynthesizer = None):
        self.store = store
        self.synthesizer = synthesizer or SleepSynthesizer(store)

    async def ingest(self, payload: PushPayload, ctx: UserContext) -> IngestResult:
        result = IngestResult()
        writer = MetricWriter(self.store)

        if payload.data.metrics:
            await self._process_metrics(payload.data.metrics, ctx, writer, result)
        if payload.data.workouts:
            await self._process_workouts(payload.data.workouts, ctx, writer, result)

        result.rejected_metrics = list(writer.rejected)
        if result.rejected_metrics:
            result.message = (
                "Some metrics were rejected because they are not in the allowlist: "
                f"{', '.join(result.rejected_metrics)}. Accepted metrics are stored. "
                "Check GET /v1/allowlist for the full list."
            )
        return result

    async def _process_metrics(
        self, metrics: List[PushMetric], ctx: UserContext, writer: MetricWriter, result: IngestResult
    ):
        rows = []
        for m in metrics:
            if not await writer.admit(m.name):
                result.metrics_rejected += len(m.data)
                continue

            if m.name == SLEEP_METRIC:
                await self._process_sleep(m, ctx, writer, result)
                continue

            points = []
            for raw in m.data:
                result.metrics_received += 1
                try:
                    points.append(convert_push_point(m.name, m.units, raw, ctx))
                except ParseError as e:
                    logger.warning("Skipping data point [%s]: %s", m.name, e)
            rows.extend(writer.canonical_points(m.name, points))

        if rows:
            written = await writer.write_metrics(rows)
            result.metrics_inserted += written.inserted
            result.metrics_skipped += written.duplicated

    async def _process_sleep(self, m: PushMetric, ctx: UserContext, writer: MetricWriter, result: IngestResult):
        stages = []
        for raw in m.data:
            result.metrics_received += 1
            try:
                if sleep_format(raw) is SleepFormat.UNAGGREGATED:
                    stages.append(convert_sleep_stage(raw, ctx))
                    continue
                session, point = convert_sleep_summary(raw, ctx)
            except ParseError as e:
                logger.warning("Skipping sleep point: %s", e)
                continue

            if await self.store.insert_sleep_session(session):
                result.sleep_sessions_inserted += 1
            result.metrics_inserted += await self.store.insert_health_metrics([point])

        if stages:
            written = await writer.write_stages(stages)
            result.sleep_stages_inserted += written.inserted
            result.metrics_skipped += written.duplicated
            if written.inserted:
                synthesis = await self.synthesizer.synthesize(ctx)
                result.sleep_sessions_inserted += synthesis.sessions_created

    async def _process_workouts(
        self, workouts: List[Dict[str, Any]], ctx: UserContext, writer: MetricWriter, result: IngestResult
    ):
        for raw in workouts:
            result.workouts_received += 1
            try:
                row, hr_rows, route_rows = convert_push_workout(raw, ctx)
            except ParseError as e:
                logger.warning("Skipping workout [%s]: %s", raw.get("id"), e)
                continue

            # Inline series are only written alongside a new workout row
            if not await self.store.insert_workout(row):
                continue
            result.workouts_inserted += 1
            if hr_rows:
                written = await writer.write_heart_rate(hr_rows)
                result.heart_rate_points += written.inserted
            if route_rows:
                written = await writer.write_routes(route_rows)
                result.route_points += written.inserted
