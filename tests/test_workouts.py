import uuid
from datetime import timedelta

import pytest

from conftest import WORKOUT_ID, json_decoder, route_doc, utc, workout_doc, write_hae
from healthlake.correlate import HeartRateCorrelator
from healthlake.errors import ParseError
from healthlake.records import HealthMetricRow
from healthlake.workouts import WorkoutImporter, workout_id_from_filename


class TestFilenameIdentifier:
    def test_last_36_characters(self):
        name = f"cycling_20251219_{WORKOUT_ID}.hae"
        assert workout_id_from_filename(name) == WORKOUT_ID

    def test_type_with_underscores(self):
        name = f"traditional_strength_training_20251219_{WORKOUT_ID}.hae"
        assert workout_id_from_filename(name) == WORKOUT_ID

    @pytest.mark.parametrize("name", ["short.hae", "walking_20251219_not-a-uuid-but-thirty-six-chars!.hae"])
    def test_format_error(self, name):
        with pytest.raises(ParseError, match="workout filename format error"):
            workout_id_from_filename(name)


START = utc(2024, 3, 1, 7, 0)
END = utc(2024, 3, 1, 7, 30)


@pytest.fixture
def autosync(tmp_path):
    root = tmp_path / "AutoSync"
    write_hae(root / "Workouts" / f"running_20240301_{WORKOUT_ID}.hae", workout_doc(START, END))
    times = [START + timedelta(seconds=s) for s in (0, 5, 10, 15)]
    write_hae(root / "Routes" / f"{WORKOUT_ID}.hae", route_doc(times))
    return root


@pytest.mark.asyncio
async def test_import_workout_with_route(store, ctx, autosync):
    importer = WorkoutImporter(store, decoder=json_decoder)
    path = next((autosync / "Workouts").glob("*.hae"))

    result = await importer.import_file(path, ctx)
    assert result.inserted
    assert result.workout_id == uuid.UUID(WORKOUT_ID)
    assert result.route_points == 4

    (workout,) = await store.query_workouts(START, END, ctx.user_id)
    assert workout.name == "Outdoor Run"
    assert workout.active_energy_burned == 412.5

    again = await importer.import_file(path, ctx)
    assert not again.inserted
    assert again.route_points == 0


@pytest.mark.asyncio
async def test_identifier_falls_back_to_filename(store, ctx, tmp_path):
    doc = workout_doc(START, END)
    del doc["id"]
    path = write_hae(tmp_path / "Workouts" / f"walking_20240301_{WORKOUT_ID}.hae", doc)
    result = await WorkoutImporter(store, decoder=json_decoder).import_file(path, ctx)
    assert result.workout_id == uuid.UUID(WORKOUT_ID)


@pytest.mark.asyncio
async def test_broken_route_is_not_fatal(store, ctx, autosync):
    (autosync / "Routes" / f"{WORKOUT_ID}.hae").write_bytes(b"\x00garbage")
    path = next((autosync / "Workouts").glob("*.hae"))
    result = await WorkoutImporter(store, decoder=json_decoder).import_file(path, ctx)
    assert result.inserted
    assert result.route_points == 0


@pytest.mark.asyncio
async def test_dry_run_writes_nothing(store, ctx, autosync):
    path = next((autosync / "Workouts").glob("*.hae"))
    result = await WorkoutImporter(store, decoder=json_decoder, dry_run=True).import_file(path, ctx)
    assert result.inserted
    assert await store.query_workouts(START, END, ctx.user_id) == []


@pytest.mark.asyncio
async def test_heart_rate_window_is_inclusive(store, ctx, autosync):
    path = next((autosync / "Workouts").glob("*.hae"))
    await WorkoutImporter(store, decoder=json_decoder).import_file(path, ctx)

    samples = [
        (START - timedelta(seconds=1), 90),
        (START, 100),
        (START + timedelta(minutes=15), 140),
        (END, 120),
        (END + timedelta(seconds=1), 95),
    ]
    await store.insert_health_metrics([
        HealthMetricRow(time=t, user_id=1, metric_name="heart_rate", source="Watch", units="count/min",
                        min_val=bpm, avg_val=bpm, max_val=bpm)
        for t, bpm in samples
    ])

    correlator = HeartRateCorrelator(store)
    assert await correlator.correlate(ctx) == 3
    assert await store.count_workout_heart_rate(uuid.UUID(WORKOUT_ID)) == 3
    # Workouts that already have heart rate are left alone
    assert await correlator.correlate(ctx) == 0
