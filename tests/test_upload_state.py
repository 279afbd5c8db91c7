import hashlib

from healthlake.upload.state import StateStore, hash_file


def test_hash_file(tmp_path):
    path = tmp_path / "a.hae"
    path.write_bytes(b"payload")
    assert hash_file(path) == hashlib.sha256(b"payload").hexdigest()


def test_mark_and_lookup(tmp_path):
    state = StateStore(tmp_path / "state")
    assert state.lookup("HealthMetrics/heart_rate/1.hae") is None
    assert not state.is_uploaded("HealthMetrics/heart_rate/1.hae", 10, "abc")

    state.mark_uploaded("HealthMetrics/heart_rate/1.hae", 10, "abc")
    assert state.is_uploaded("HealthMetrics/heart_rate/1.hae", 10, "abc")
    assert not state.is_uploaded("HealthMetrics/heart_rate/1.hae", 11, "abc")
    assert not state.is_uploaded("HealthMetrics/heart_rate/1.hae", 10, "abd")

    # Re-marking after a change replaces the record
    state.mark_uploaded("HealthMetrics/heart_rate/1.hae", 12, "def")
    record = state.lookup("HealthMetrics/heart_rate/1.hae")
    assert (record.size, record.hash) == (12, "def")
    assert record.uploaded_at is not None
    state.close()


def test_state_survives_reopen(tmp_path):
    state = StateStore(tmp_path)
    state.mark_uploaded("Workouts/w.hae", 5, "h")
    state.set_cursor("live_last_synced", "2024-03-08")
    state.set_cursor("live_last_synced", "2024-03-15")
    state.close()

    reopened = StateStore(tmp_path)
    assert reopened.is_uploaded("Workouts/w.hae", 5, "h")
    assert reopened.get_cursor("live_last_synced") == "2024-03-15"
    assert reopened.get_cursor("other") is None
    reopened.close()
