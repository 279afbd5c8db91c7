import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List

from healthlake.config import settings
from healthlake.records import HealthMetricRow, SleepSessionRow, SleepStageRow, UserContext
from healthlake.sleep_stages import SleepStage, normalize_stage

logger = logging.getLogger(__name__)

# Stages further apart than this belong to different nights
NIGHT_GAP = timedelta(hours=settings.SLEEP_NIGHT_GAP_HOURS)

SYNTHESIZER_SOURCE = "healthlake synthesizer"

_RANGE_START = datetime(2000, 1, 1, tzinfo=timezone.utc)
_RANGE_END = datetime(2100, 1, 1, tzinfo=timezone.utc)


@dataclass
class SynthesisResult:
    nights: int = 0
    sessions_created: int = 0
    purged: int = 0


def group_nights(stages: List[SleepStageRow], night_gap: timedelta = NIGHT_GAP) -> List[List[SleepStageRow]]:
    """Split start-sorted stages into nights at gaps strictly longer than ``night_gap``."""
    nights: List[List[SleepStageRow]] = []
    current: List[SleepStageRow] = []
    for stage in stages:
        if current and stage.start_time - current[-1].end_time > night_gap:
            nights.append(current)
            current = []
        current.append(stage)
    if current:
        nights.append(current)
    return nights


def summarize_night(night: List[SleepStageRow], user_id: int) -> SleepSessionRow:
    totals = {SleepStage.DEEP.value: 0.0, SleepStage.CORE.value: 0.0,
              SleepStage.REM.value: 0.0, SleepStage.AWAKE.value: 0.0}
    for s in night:
        if s.stage in totals:
            totals[s.stage] += s.duration_hr

    deep = totals[SleepStage.DEEP.value]
    core = totals[SleepStage.CORE.value]
    rem = totals[SleepStage.REM.value]
    asleep = deep + core + rem

    start = night[0].start_time
    end = night[-1].end_time
    return SleepSessionRow(
        user_id=user_id,
        # Wake date
        date=end.astimezone(timezone.utc).date(),
        total_sleep=asleep,
        asleep=asleep,
        core=core,
        deep=deep,
        rem=rem,
        in_bed=(end - start).total_seconds() / 3600.0,
        sleep_start=start,
        sleep_end=end,
        in_bed_start=start,
        in_bed_end=end,
    )


class SleepSynthesizer:
    """Rebuild nightly sleep sessions from stored stage segments."""

    def __init__(self, store, night_gap: timedelta = NIGHT_GAP):
        self.store = store
        self.night_gap = night_gap

    async def synthesize(self, ctx: UserContext) -> SynthesisResult:
        result = SynthesisResult()
        stages = await self.store.query_sleep_stages(_RANGE_START, _RANGE_END, ctx.user_id)
        if not stages:
            return result
        for s in stages:
            s.stage, _ = normalize_stage(s.stage)
        stages.sort(key=lambda s: s.start_time)

        nights = group_nights(stages, self.night_gap)
        result.nights = len(nights)
        sessions = [summarize_night(night, ctx.user_id) for night in nights]

        # A zero-sleep session only gives way to a rebuilt night that has sleep in it
        result.purged = await self.store.purge_zero_sleep_sessions(
            ctx.user_id, [s.date for s in sessions if s.asleep > 0]
        )
        if result.purged:
            logger.info("Purged %d zero-valued sleep sessions", result.purged)

        for session in sessions:
            if not await self.store.insert_sleep_session(session):
                continue
            result.sessions_created += 1
            await self.store.insert_health_metrics([
                HealthMetricRow(
                    time=session.sleep_end,
                    user_id=ctx.user_id,
                    metric_name="sleep_analysis",
                    source=SYNTHESIZER_SOURCE,
                    units="hr",
                    qty=session.asleep,
                )
            ])

        logger.info(
            "Synthesized sleep sessions: nights=%d created=%d",
            result.nights,
            result.sessions_created,
        )
        return result
