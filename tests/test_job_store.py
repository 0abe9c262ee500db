import pytest

from jobs.errors import JobNotFoundError
from jobs.state import ItemOutcome, JobStatus, ProgressSnapshot


def test_mark_running_keeps_first_start(jobs):
    job = jobs.create(["p1"], ["c1"], total_items=1)
    assert jobs.mark_running(job.id)
    first = jobs.get(job.id).started_at
    assert first is not None

    assert jobs.mark_running(job.id)
    assert jobs.get(job.id).started_at == first


def test_checkpoint_writes_counters_but_not_status(jobs):
    job = jobs.create(["p1", "p2"], ["c1"], total_items=2)
    jobs.mark_running(job.id)
    progress = ProgressSnapshot.initial({"c1": "Shop"}, 2).record("c1", ItemOutcome.UPDATED)
    jobs.checkpoint(job.id, progress, "c1", 1)

    saved = jobs.get(job.id)
    assert saved.status is JobStatus.RUNNING
    assert (saved.processed_items, saved.updated_count) == (1, 1)
    assert saved.current_item_index == 1
    assert saved.progress() == progress


def test_checkpoint_on_missing_job_raises(jobs):
    with pytest.raises(JobNotFoundError):
        jobs.checkpoint("missing", ProgressSnapshot())


def test_finish_is_written_once(jobs):
    job = jobs.create(["p1"], ["c1"])
    assert jobs.finish(job.id, JobStatus.FAILED, error_message="boom")
    assert not jobs.finish(job.id, JobStatus.COMPLETED)
    assert not jobs.mark_running(job.id)

    saved = jobs.get(job.id)
    assert saved.status is JobStatus.FAILED
    assert saved.error_message == "boom"
    assert jobs.find_active() is None
