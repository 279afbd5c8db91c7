import json
import threading
from datetime import timedelta

import pytest

from conftest import (
    hr_point, json_decoder, metric_doc, qty_point, route_doc, stage_point, utc, workout_doc, write_hae,
)
from healthlake.errors import TransportError
from healthlake.upload.live import LiveMetric
from healthlake.upload.state import StateStore
from healthlake.upload.uploader import LIVE_CURSOR, Uploader

RUN_START = utc(2024, 3, 2, 7, 0)
RUN_END = utc(2024, 3, 2, 7, 30)


class FakeClient:
    def __init__(self, allowlist=None, rejected=(), fail=False, after_send=None):
        self.allowlist = allowlist or {"heart_rate", "step_count", "sleep_analysis"}
        self.rejected = list(rejected)
        self.fail = fail
        self.after_send = after_send
        self.payloads = []
        self.csv = []

    def fetch_allowlist(self):
        return set(self.allowlist)

    def send_raw(self, body):
        if self.fail:
            raise TransportError("POST /v1/ingest/hae after 3 attempt(s): connection refused")
        self.payloads.append(json.loads(body))
        if self.after_send:
            self.after_send()
        return {"rejected_metrics": self.rejected}

    def send_strength_csv(self, text):
        self.csv.append(text)
        return {"sets_inserted": 1}

    def metrics(self):
        return [m for p in self.payloads for m in p["data"].get("metrics", [])]

    def workouts(self):
        return [w for p in self.payloads for w in p["data"].get("workouts", [])]


def workout_file_id(n):
    return f"0A1B2C3D-4E5F-4A6B-8C7D-9E0F1A2B3C{n:02d}"


@pytest.fixture
def autosync(tmp_path):
    root = tmp_path / "AutoSync"
    metrics = root / "HealthMetrics"
    write_hae(metrics / "heart_rate" / "20240302.hae", metric_doc("heart_rate", [
        hr_point(RUN_START + timedelta(minutes=m), 140 + m) for m in (0, 15, 30, 45)
    ]))
    write_hae(metrics / "step_count" / "20240302.hae", metric_doc("step_count", [
        qty_point(utc(2024, 3, 2, 9), 800),
        qty_point(utc(2024, 3, 2, 10), 1200),
    ]))
    write_hae(metrics / "sleep_analysis" / "20240302.hae", metric_doc("sleep_analysis", [
        stage_point(utc(2024, 3, 1, 23), utc(2024, 3, 2, 1), "core"),
        stage_point(utc(2024, 3, 2, 1), utc(2024, 3, 2, 2), "deep"),
    ]))
    write_hae(metrics / "dietary_caffeine" / "20240302.hae", metric_doc("dietary_caffeine", [
        qty_point(utc(2024, 3, 2, 8), 95, unit="mg"),
    ]))
    write_hae(root / "Workouts" / "run.hae", workout_doc(RUN_START, RUN_END))
    write_hae(root / "Routes" / f"{workout_doc(RUN_START, RUN_END)['id']}.hae",
              route_doc([RUN_START, RUN_START + timedelta(seconds=5)]))
    (root / "AlphaProgression").mkdir()
    (root / "AlphaProgression" / "export.csv").write_text('"Legs";"2026-02-19 4:54 h";"1:02 hr"\n')
    return root


def make_uploader(client, state_dir, autosync=None, **kwargs):
    return Uploader(client, StateStore(state_dir), autosync=autosync, decoder=json_decoder, **kwargs)


def test_first_run_uploads_everything(autosync, tmp_path):
    client = FakeClient()
    stats = make_uploader(client, tmp_path / "state", autosync).run()

    assert {m["name"] for m in client.metrics()} == {"heart_rate", "step_count", "sleep_analysis"}
    assert stats.metric_points_sent == 6
    assert stats.sleep_stages_sent == 2
    assert stats.workouts_sent == 1
    assert stats.route_points_sent == 2
    assert stats.sets_files_sent == 1
    assert client.csv
    assert stats.rejected_metrics == ["dietary_caffeine"]
    assert stats.files_uploaded == 5
    assert stats.files_errored == 0

    (workout,) = client.workouts()
    # Only the samples inside the 07:00-07:30 window, both ends included
    assert [p["Avg"] for p in workout["heartRateData"]] == [140, 155, 170]
    assert stats.hr_points_correlated == 3


def test_second_run_skips_uploaded_files(autosync, tmp_path):
    make_uploader(FakeClient(), tmp_path / "state", autosync).run()

    client = FakeClient()
    stats = make_uploader(client, tmp_path / "state", autosync).run()
    assert client.payloads == []
    assert stats.files_uploaded == 0
    assert stats.files_skipped == 5


def test_changed_file_is_uploaded_again(autosync, tmp_path):
    make_uploader(FakeClient(), tmp_path / "state", autosync).run()
    write_hae(autosync / "HealthMetrics" / "step_count" / "20240302.hae", metric_doc("step_count", [
        qty_point(utc(2024, 3, 2, 9), 800),
        qty_point(utc(2024, 3, 2, 10), 1200),
        qty_point(utc(2024, 3, 2, 11), 300),
    ]))

    client = FakeClient()
    stats = make_uploader(client, tmp_path / "state", autosync).run()
    assert [m["name"] for m in client.metrics()] == ["step_count"]
    assert stats.metric_points_sent == 3


def test_server_rejections_are_reported(autosync, tmp_path):
    client = FakeClient(rejected=["step_count"])
    stats = make_uploader(client, tmp_path / "state", autosync).run()
    assert set(stats.rejected_metrics) == {"dietary_caffeine", "step_count"}


def test_metric_batches(autosync, tmp_path):
    client = FakeClient()
    make_uploader(client, tmp_path / "state", autosync, batch_size=2).run()
    hr_batches = [m for m in client.metrics() if m["name"] == "heart_rate"]
    assert [len(m["data"]) for m in hr_batches] == [2, 2]


def test_workouts_are_sent_five_per_payload(tmp_path):
    root = tmp_path / "AutoSync"
    for n in range(7):
        start = RUN_START + timedelta(days=n)
        write_hae(root / "Workouts" / f"run_{n}.hae",
                  workout_doc(start, start + timedelta(minutes=30), ident=workout_file_id(n)))

    client = FakeClient()
    stats = make_uploader(client, tmp_path / "state", root).run()
    assert [len(p["data"]["workouts"]) for p in client.payloads] == [5, 2]
    assert stats.workouts_sent == 7


def test_undecodable_file_is_counted(autosync, tmp_path):
    (autosync / "HealthMetrics" / "step_count" / "broken.hae").write_bytes(b"not json")
    stats = make_uploader(FakeClient(), tmp_path / "state", autosync).run()
    assert stats.files_errored == 1
    assert stats.metric_points_sent == 6


def test_failed_send_leaves_files_pending(autosync, tmp_path):
    with pytest.raises(TransportError) as excinfo:
        make_uploader(FakeClient(fail=True), tmp_path / "state", autosync).run()
    assert excinfo.value.stats.files_uploaded == 0

    client = FakeClient()
    stats = make_uploader(client, tmp_path / "state", autosync).run()
    assert stats.files_uploaded == 5


def test_dry_run_sends_nothing(autosync, tmp_path):
    client = FakeClient()
    stats = make_uploader(client, tmp_path / "state", autosync, dry_run=True).run()
    assert client.payloads == []
    assert client.csv == []
    assert stats.bytes_sent > 0
    # No allowlist in dry-run, so every metric is considered
    assert stats.rejected_metrics == []

    state = StateStore(tmp_path / "state")
    assert state.lookup("Workouts/run.hae") is None


def test_stop_between_metric_directories(autosync, tmp_path):
    stop = threading.Event()
    client = FakeClient(after_send=stop.set)
    stats = make_uploader(client, tmp_path / "state", autosync, stop_event=stop).run()

    # heart_rate is sent, everything after it waits for the next run
    assert [m["name"] for m in client.metrics()] == ["heart_rate"]
    assert client.csv == []
    assert stats.files_uploaded == 1

    client = FakeClient()
    stats = make_uploader(client, tmp_path / "state", autosync).run()
    assert stats.files_uploaded == 4
    assert stats.files_skipped == 1


def test_stop_between_workout_payloads(tmp_path):
    root = tmp_path / "AutoSync"
    for n in range(7):
        start = RUN_START + timedelta(days=n)
        write_hae(root / "Workouts" / f"run_{n}.hae",
                  workout_doc(start, start + timedelta(minutes=30), ident=workout_file_id(n)))

    stop = threading.Event()
    client = FakeClient(after_send=stop.set)
    make_uploader(client, tmp_path / "state", root, stop_event=stop).run()
    assert [len(p["data"]["workouts"]) for p in client.payloads] == [5]

    client = FakeClient()
    make_uploader(client, tmp_path / "state", root).run()
    assert [len(p["data"]["workouts"]) for p in client.payloads] == [2]


class FakeLive:
    def __init__(self, fail_from=None, on_chunk=None):
        self.fail_from = fail_from
        self.on_chunk = on_chunk
        self.metric_calls = []
        self.workout_calls = []

    def query_metrics_with_retry(self, start, end, metric="", aggregate=False):
        if self.fail_from is not None and start >= self.fail_from:
            raise TransportError("live source 127.0.0.1:9000 did not come back")
        self.metric_calls.append((start, end, metric, aggregate))
        return {"data": {"metrics": [{"name": metric, "units": "count", "data": [{"qty": 1}]}]}}

    def query_workouts_with_retry(self, start, end):
        self.workout_calls.append((start, end))
        if self.on_chunk:
            self.on_chunk()
        return {"data": {"workouts": []}}


METRICS = [LiveMetric("heart_rate"), LiveMetric("active_energy", aggregate=True)]


def test_live_sync_advances_cursor_per_chunk(tmp_path):
    client = FakeClient()
    uploader = make_uploader(client, tmp_path)
    live = FakeLive()

    stats = uploader.run_live(live, utc(2024, 3, 1), utc(2024, 3, 15), chunk_days=7, metrics=METRICS)

    assert live.workout_calls == [(utc(2024, 3, 1), utc(2024, 3, 8)), (utc(2024, 3, 8), utc(2024, 3, 15))]
    assert [c[2:] for c in live.metric_calls[:2]] == [("heart_rate", False), ("active_energy", True)]
    assert stats.live_metric_chunks == 4
    assert stats.live_workout_chunks == 0
    assert len(client.payloads) == 4
    assert uploader.state.get_cursor(LIVE_CURSOR) == "2024-03-15"


def test_live_failure_keeps_last_complete_chunk(tmp_path):
    uploader = make_uploader(FakeClient(), tmp_path)
    live = FakeLive(fail_from=utc(2024, 3, 8))

    with pytest.raises(TransportError) as excinfo:
        uploader.run_live(live, utc(2024, 3, 1), utc(2024, 3, 22), metrics=METRICS)
    assert excinfo.value.stats.live_metric_chunks == 2
    assert uploader.state.get_cursor(LIVE_CURSOR) == "2024-03-08"


def test_live_resumes_from_cursor(tmp_path):
    state_dir = tmp_path
    previous = StateStore(state_dir)
    previous.set_cursor(LIVE_CURSOR, "2024-03-08")
    previous.close()

    uploader = make_uploader(FakeClient(), state_dir)
    live = FakeLive()
    uploader.run_live(live, utc(2024, 3, 1), utc(2024, 3, 15), metrics=METRICS)
    assert live.workout_calls == [(utc(2024, 3, 8), utc(2024, 3, 15))]


def test_live_stop_between_chunks(tmp_path):
    stop = threading.Event()
    uploader = make_uploader(FakeClient(), tmp_path, stop_event=stop)
    live = FakeLive(on_chunk=stop.set)

    uploader.run_live(live, utc(2024, 3, 1), utc(2024, 3, 22), metrics=METRICS)
    assert len(live.workout_calls) == 1
    assert uploader.state.get_cursor(LIVE_CURSOR) == "2024-03-08"


def test_live_dry_run_writes_no_cursor(tmp_path):
    client = FakeClient()
    uploader = make_uploader(client, tmp_path, dry_run=True)
    uploader.run_live(FakeLive(), utc(2024, 3, 1), utc(2024, 3, 8), metrics=METRICS)
    assert client.payloads == []
    assert uploader.state.get_cursor(LIVE_CURSOR) is None
