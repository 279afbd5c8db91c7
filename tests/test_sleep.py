from datetime import date, timedelta

import pytest

from conftest import utc
from healthlake.records import SleepSessionRow, SleepStageRow
from healthlake.sleep import SYNTHESIZER_SOURCE, SleepSynthesizer, group_nights, summarize_night


def stage(start, minutes, name="Core"):
    return SleepStageRow(
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        user_id=1,
        stage=name,
        duration_hr=minutes / 60.0,
        source="Apple Watch",
    )


def test_gap_of_exactly_twelve_hours_stays_in_the_night():
    first = stage(utc(2024, 3, 1, 22, 0), 60)
    second = stage(first.end_time + timedelta(hours=12), 30)
    assert len(group_nights([first, second])) == 1


def test_longer_gap_starts_a_new_night():
    first = stage(utc(2024, 3, 1, 22, 0), 60)
    second = stage(first.end_time + timedelta(hours=12, seconds=1), 30)
    assert [len(n) for n in group_nights([first, second])] == [1, 1]


def test_summary_uses_wake_date_and_excludes_awake():
    night = [
        stage(utc(2024, 3, 1, 23, 0), 120, "Core"),
        stage(utc(2024, 3, 2, 1, 0), 60, "Deep"),
        stage(utc(2024, 3, 2, 2, 0), 30, "Awake"),
        stage(utc(2024, 3, 2, 2, 30), 90, "REM"),
    ]
    s = summarize_night(night, 1)
    assert s.date == date(2024, 3, 2)
    assert s.total_sleep == pytest.approx(4.5)
    assert (s.core, s.deep, s.rem) == (pytest.approx(2.0), pytest.approx(1.0), pytest.approx(1.5))
    assert s.in_bed == pytest.approx(5.0)
    assert s.sleep_start == utc(2024, 3, 1, 23, 0)
    assert s.sleep_end == utc(2024, 3, 2, 4, 0)


@pytest.mark.asyncio
async def test_synthesize_creates_sessions_once(store, ctx):
    await store.insert_sleep_stages([
        stage(utc(2024, 3, 1, 23, 0), 120, "Core"),
        stage(utc(2024, 3, 2, 1, 0), 60, "Tief"),
        stage(utc(2024, 3, 2, 23, 30), 240, "Core"),
    ])
    synth = SleepSynthesizer(store)

    first = await synth.synthesize(ctx)
    assert (first.nights, first.sessions_created) == (2, 2)

    sessions = await store.query_sleep_sessions(date(2024, 3, 1), date(2024, 3, 4), ctx.user_id)
    assert [s.date for s in sessions] == [date(2024, 3, 2), date(2024, 3, 3)]
    # Localized labels count toward their canonical stage
    assert sessions[0].deep == pytest.approx(1.0)

    points = await store.query_health_metrics("sleep_analysis", utc(2024, 3, 1), utc(2024, 3, 4), ctx.user_id)
    assert [p.source for p in points] == [SYNTHESIZER_SOURCE, SYNTHESIZER_SOURCE]
    assert points[0].qty == pytest.approx(3.0)
    assert points[0].units == "hr"

    second = await synth.synthesize(ctx)
    assert second.sessions_created == 0
    points = await store.query_health_metrics("sleep_analysis", utc(2024, 3, 1), utc(2024, 3, 4), ctx.user_id)
    assert len(points) == 2


@pytest.mark.asyncio
async def test_zero_sessions_are_purged_and_rebuilt(store, ctx):
    end = utc(2024, 3, 2, 1, 0)
    await store.insert_sleep_session(SleepSessionRow(
        user_id=1, date=date(2024, 3, 2), total_sleep=0, asleep=0, core=0, deep=0, rem=0, in_bed=2,
        sleep_start=utc(2024, 3, 1, 23, 0), sleep_end=end, in_bed_start=None, in_bed_end=None,
    ))
    await store.insert_sleep_stages([stage(utc(2024, 3, 1, 23, 0), 120, "Core")])

    result = await SleepSynthesizer(store).synthesize(ctx)
    assert result.purged == 1
    assert result.sessions_created == 1
    (session,) = await store.query_sleep_sessions(date(2024, 3, 2), date(2024, 3, 2), ctx.user_id)
    assert session.core == pytest.approx(2.0)


@pytest.mark.asyncio
async def test_no_stages_is_a_no_op(store, ctx):
    result = await SleepSynthesizer(store).synthesize(ctx)
    assert (result.nights, result.sessions_created, result.purged) == (0, 0, 0)


@pytest.mark.asyncio
async def test_awake_only_night_is_stable_across_runs(store, ctx):
    await store.insert_sleep_stages([
        stage(utc(2024, 3, 1, 23, 0), 45, "Awake"),
        stage(utc(2024, 3, 1, 23, 45), 30, "In Bed"),
    ])
    synth = SleepSynthesizer(store)

    first = await synth.synthesize(ctx)
    assert first.sessions_created == 1

    second = await synth.synthesize(ctx)
    assert (second.sessions_created, second.purged) == (0, 0)
    points = await store.query_health_metrics("sleep_analysis", utc(2024, 3, 1), utc(2024, 3, 3), ctx.user_id)
    assert len(points) == 1


@pytest.mark.asyncio
async def test_zero_summary_for_another_night_is_kept(store, ctx):
    # An in-bed-only night as delivered by an aggregated push
    await store.insert_sleep_session(SleepSessionRow(
        user_id=1, date=date(2024, 3, 2), total_sleep=0, asleep=0, core=0, deep=0, rem=0, in_bed=6.5,
        sleep_start=utc(2024, 3, 1, 23, 0), sleep_end=utc(2024, 3, 2, 5, 30), in_bed_start=None, in_bed_end=None,
    ))
    await store.insert_sleep_stages([stage(utc(2024, 3, 31, 23, 0), 120, "Core")])

    result = await SleepSynthesizer(store).synthesize(ctx)
    assert result.purged == 0
    (kept,) = await store.query_sleep_sessions(date(2024, 3, 2), date(2024, 3, 2), ctx.user_id)
    assert kept.in_bed == pytest.approx(6.5)
    assert len(await store.query_sleep_sessions(date(2024, 4, 1), date(2024, 4, 1), ctx.user_id)) == 1
