from jobs.state import ChannelProgress, ItemOutcome, JobStatus, ProgressSnapshot


def test_channel_progress_is_immutable_value():
    cp = ChannelProgress(name="Shop", total=3)
    after = cp.record(ItemOutcome.CREATED)
    assert cp.done == 0 and after.done == 1 and after.created == 1


def test_fail_all_adds_a_single_error():
    cp = ChannelProgress(name="Shop", total=4).fail_all(4, "no store")
    assert (cp.done, cp.failed, cp.errors) == (4, 4, ["no store"])
    assert cp.remaining == 0


def test_snapshot_counters_add_up():
    snap = ProgressSnapshot.initial({"a": "A", "b": "B"}, 2)
    snap = snap.record("a", ItemOutcome.CREATED)
    snap = snap.record("a", ItemOutcome.UPDATED)
    snap = snap.record("b", ItemOutcome.FAILED, "SKU-1: boom")
    assert (snap.processed, snap.created, snap.updated, snap.failed) == (3, 1, 1, 1)
    assert snap.channels["b"].errors == ["SKU-1: boom"]
    assert snap.channels_json()["a"]["done"] == 2


def test_terminal_status_boundaries():
    assert ProgressSnapshot(processed=4).terminal_status(4) is JobStatus.COMPLETED
    assert ProgressSnapshot(processed=4, failed=4).terminal_status(4) is JobStatus.FAILED
    assert ProgressSnapshot(processed=4, failed=1).terminal_status(4) is JobStatus.COMPLETED_WITH_ERRORS


def test_terminal_flags():
    assert not JobStatus.RUNNING.is_terminal
    assert JobStatus.CANCELLED.is_terminal
