from datetime import date, timedelta

import pytest

from conftest import utc
from healthlake import stats
from healthlake.records import HealthMetricRow, SleepSessionRow


class TestPearson:
    def test_perfect_linear_relationship(self):
        xs = [1, 2, 3, 4, 5]
        assert stats.pearson(xs, [2 * x + 1 for x in xs]) == pytest.approx(1.0)
        assert stats.pearson(xs, [10 - x for x in xs]) == pytest.approx(-1.0)

    def test_constant_series_has_no_coefficient(self):
        assert stats.pearson([1, 2, 3, 4], [7, 7, 7, 7]) is None

    def test_needs_three_pairs(self):
        assert stats.pearson([1, 2], [3, 4]) is None
        # Pairs with a missing side do not count
        assert stats.pearson([1, 2, None, 4], [3, None, 5, 6]) is None

    def test_uncorrelated(self):
        assert stats.pearson([1, 2, 3, 4], [1, -1, -1, 1]) == pytest.approx(0.0)


class TestBuckets:
    @pytest.mark.parametrize("text,width", [
        ("1 hour", timedelta(hours=1)),
        ("15 minutes", timedelta(minutes=15)),
        ("day", timedelta(days=1)),
        ("2 weeks", timedelta(weeks=2)),
    ])
    def test_parse(self, text, width):
        assert stats.parse_bucket(text) == width

    @pytest.mark.parametrize("text", ["", "0 days", "1 fortnight", "hourly"])
    def test_parse_rejects(self, text):
        with pytest.raises(ValueError):
            stats.parse_bucket(text)

    def test_alignment_to_unix_epoch(self):
        t = utc(2024, 3, 7, 15, 42)
        assert stats.bucket_start(t, timedelta(hours=1)) == utc(2024, 3, 7, 15)
        assert stats.bucket_start(t, timedelta(days=1)) == utc(2024, 3, 7)
        # The epoch was a Thursday
        assert stats.bucket_start(t, timedelta(weeks=1)) == utc(2024, 3, 7)


def rows(metric, values, start=utc(2024, 3, 1)):
    return [
        HealthMetricRow(time=start + timedelta(days=i), user_id=1, metric_name=metric, qty=v)
        for i, v in enumerate(values)
    ]


def test_summarize():
    s = stats.summarize(rows("vo2_max", [40.0, 42.0, 44.0]))
    assert (s.avg, s.min, s.max, s.count) == (42.0, 40.0, 44.0, 3)
    assert s.stddev == pytest.approx(2.0)
    assert stats.summarize([]).count == 0


def test_summarize_uses_min_max_samples():
    r = HealthMetricRow(time=utc(2024, 3, 1), user_id=1, metric_name="heart_rate", min_val=50, avg_val=60, max_val=90)
    s = stats.summarize([r])
    assert (s.min, s.avg, s.max) == (50, 60, 90)
    assert s.stddev is None


def test_bucketize():
    samples = rows("step_count", [100, 200]) + [
        HealthMetricRow(time=utc(2024, 3, 1, 18), user_id=1, metric_name="step_count", qty=300)
    ]
    points = stats.bucketize(samples, timedelta(days=1))
    assert [(p.time, p.avg, p.count) for p in points] == [
        (utc(2024, 3, 1), 200, 2),
        (utc(2024, 3, 2), 200, 1),
    ]


@pytest.mark.asyncio
async def test_correlation_over_store(store, ctx):
    await store.insert_health_metrics(rows("resting_heart_rate", [50, 52, 54, 56]))
    await store.insert_health_metrics(rows("heart_rate_variability", [80, 70, 60, 50]))
    # A day with only one side is not paired
    await store.insert_health_metrics(rows("heart_rate_variability", [45], start=utc(2024, 3, 9)))

    result = await stats.correlation(
        store, "resting_heart_rate", "heart_rate_variability", utc(2024, 3, 1), utc(2024, 3, 10), "1 day", ctx
    )
    assert result.count == 4
    assert result.pearson_r == pytest.approx(-1.0)
    assert result.points[0].time == utc(2024, 3, 1)


class TestCircular:
    def test_mean_wraps_midnight(self):
        mean, _ = stats.circular_mean_std([23.0, 1.0])
        assert stats.hours_to_hhmm(mean) == "00:00"

    def test_identical_times_have_zero_spread(self):
        mean, std = stats.circular_mean_std([6.5, 6.5, 6.5])
        assert mean == pytest.approx(6.5)
        assert std == pytest.approx(0.0, abs=1e-6)

    def test_empty(self):
        assert stats.circular_mean_std([]) == (None, None)

    def test_hhmm(self):
        assert stats.hours_to_hhmm(7.25) == "07:15"
        assert stats.hours_to_hhmm(25.5) == "01:30"


def session(day, start, end, total=7.0, deep=1.0, rem=1.5, core=4.5, in_bed=8.0):
    return SleepSessionRow(
        user_id=1, date=day, total_sleep=total, asleep=total, core=core, deep=deep, rem=rem, in_bed=in_bed,
        sleep_start=start, sleep_end=end, in_bed_start=start, in_bed_end=end,
    )


def test_period_start():
    d = date(2024, 3, 7)  # Thursday
    assert stats.period_start(d, "day") == d
    assert stats.period_start(d, "week") == date(2024, 3, 4)
    assert stats.period_start(d, "month") == date(2024, 3, 1)


def test_summarize_sleep_by_week():
    sessions = [
        session(date(2024, 3, 5), utc(2024, 3, 4, 23, 30), utc(2024, 3, 5, 6, 30)),
        session(date(2024, 3, 6), utc(2024, 3, 6, 0, 30), utc(2024, 3, 6, 7, 30), total=6.0, in_bed=6.0),
    ]
    (week,) = stats.summarize_sleep(sessions, "week")
    assert week.period == date(2024, 3, 4)
    assert week.nights == 2
    assert week.avg_total_sleep == pytest.approx(6.5)
    assert week.avg_bedtime == "00:00"
    assert week.avg_wake_time == "07:00"
    assert week.efficiency_pct == pytest.approx((7.0 / 8.0 * 100 + 100) / 2)
    assert week.bedtime_stddev_min == pytest.approx(30.0, abs=0.5)


@pytest.mark.asyncio
async def test_sleep_summary_over_store(store, ctx):
    await store.insert_sleep_session(session(date(2024, 3, 5), utc(2024, 3, 4, 23), utc(2024, 3, 5, 6)))
    (day,) = await stats.sleep_summary(store, date(2024, 3, 1), date(2024, 3, 31), "day", ctx)
    assert day.period == date(2024, 3, 5)
    assert day.avg_bedtime == "23:00"
    assert day.deep_pct == pytest.approx(1.0 / 7.0 * 100)
