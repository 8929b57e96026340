"""Tests for the job record store and the claim protocol"""

import json
import threading
from datetime import UTC, datetime, timedelta

import pytest
from freezegun import freeze_time
from sqlalchemy.orm import Session

import sample_jobs
from deferred.exceptions import InvalidPayload
from deferred.models import Job
from deferred.services.jobs import (
    clear_locks,
    enqueue,
    ensure_utc,
    find_available,
    job_counts,
    jobs_in_state,
    lock_exclusively,
    rerun_failed_job,
    unlock,
)

MAX_RUN_TIME = timedelta(hours=4)
T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


def fresh(session, job):
    session.expire(job)
    session.refresh(job)
    return job


@freeze_time("2026-01-01 12:00:00", tz_offset=0)
def test_enqueue_defaults(session):
    job = enqueue(session, sample_jobs.RecordingJob(label="a"))
    session.commit()
    job = fresh(session, job)

    assert job.id is not None
    assert job.priority == 0
    assert job.attempts == 0
    assert job.job_type == "RecordingJob"
    assert json.loads(job.handler)["data"] == {"label": "a"}
    assert ensure_utc(job.run_at) == T0
    assert job.locked_at is None
    assert job.locked_by is None
    assert job.failed_at is None
    assert job.finished_at is None
    assert job.last_error is None


def test_enqueue_with_priority_and_run_at(session):
    run_at = T0 + timedelta(days=1)
    job = enqueue(session, sample_jobs.RecordingJob(label="a"), priority=7, run_at=run_at)
    session.commit()
    job = fresh(session, job)

    assert job.priority == 7
    assert ensure_utc(job.run_at) == run_at


def test_enqueue_rejects_payload_without_perform(session):
    with pytest.raises(InvalidPayload):
        enqueue(session, {"not": "a job"})

    assert session.query(Job).count() == 0


def test_find_available_excludes_future_jobs(session):
    with freeze_time("2026-01-01 12:00:00", tz_offset=0) as frozen:
        enqueue(session, sample_jobs.RecordingJob(label="later"), run_at=T0 + timedelta(hours=1))
        session.commit()

        assert find_available(session, worker_name="w1") == []

        frozen.move_to("2026-01-01 12:59:59")
        assert find_available(session, worker_name="w1") == []

        frozen.move_to("2026-01-01 13:00:00")
        assert len(find_available(session, worker_name="w1")) == 1


def test_find_available_orders_by_priority_then_run_at(session):
    low = enqueue(session, sample_jobs.RecordingJob(label="low"), priority=0, run_at=T0)
    high = enqueue(session, sample_jobs.RecordingJob(label="high"), priority=10, run_at=T0)
    late_high = enqueue(
        session, sample_jobs.RecordingJob(label="late high"), priority=10, run_at=T0 + timedelta(minutes=1)
    )
    session.commit()
    now = T0 + timedelta(hours=1)

    assert [job.id for job in find_available(session, limit=1, worker_name="w1", now=now)] == [high.id]
    assert [job.id for job in find_available(session, worker_name="w1", now=now)] == [
        high.id,
        late_high.id,
        low.id,
    ]


def test_find_available_respects_limit(session):
    for index in range(7):
        enqueue(session, sample_jobs.RecordingJob(label=str(index)), run_at=T0)
    session.commit()

    assert len(find_available(session, worker_name="w1", now=T0)) == 5
    assert len(find_available(session, limit=2, worker_name="w1", now=T0)) == 2


def test_find_available_priority_bounds(session):
    for priority in (-5, 0, 5, 10):
        enqueue(session, sample_jobs.RecordingJob(label=str(priority)), priority=priority, run_at=T0)
    session.commit()

    found = find_available(session, limit=10, worker_name="w1", min_priority=0, max_priority=5, now=T0)

    assert sorted(job.priority for job in found) == [0, 5]


def test_find_available_job_type_filter(session):
    enqueue(session, sample_jobs.RecordingJob(label="a"), run_at=T0)
    enqueue(session, sample_jobs.ResizeImage(path="a.png", width=10), run_at=T0)
    session.commit()

    found = find_available(session, worker_name="w1", job_types=["ResizeImage"], now=T0)

    assert [job.job_type for job in found] == ["ResizeImage"]
    assert find_available(session, worker_name="w1", job_types=[], now=T0) == []


def test_find_available_skips_finished_and_failed_jobs(session):
    done = enqueue(session, sample_jobs.RecordingJob(label="done"), run_at=T0)
    dead = enqueue(session, sample_jobs.RecordingJob(label="dead"), run_at=T0)
    alive = enqueue(session, sample_jobs.RecordingJob(label="alive"), run_at=T0)
    done.finished_at = T0
    dead.failed_at = T0
    session.commit()

    assert [job.id for job in find_available(session, worker_name="w1", now=T0)] == [alive.id]


def test_find_available_skips_fresh_locks_of_other_workers(session):
    job = enqueue(session, sample_jobs.RecordingJob(label="a"), run_at=T0)
    session.commit()
    assert lock_exclusively(session, job.id, MAX_RUN_TIME, "w1", now=T0)
    session.commit()

    assert find_available(session, worker_name="w2", now=T0 + timedelta(hours=1)) == []
    assert len(find_available(session, worker_name="w2", now=T0 + timedelta(hours=4, seconds=1))) == 1
    assert len(find_available(session, worker_name="w1", now=T0 + timedelta(minutes=1))) == 1


def test_lock_exclusively_blocks_other_workers_until_lock_expires(session):
    job = enqueue(session, sample_jobs.RecordingJob(label="a"), run_at=T0)
    session.commit()

    assert lock_exclusively(session, job.id, MAX_RUN_TIME, "w1", now=T0) is True
    session.commit()
    assert lock_exclusively(session, job.id, MAX_RUN_TIME, "w2", now=T0 + timedelta(hours=3)) is False
    session.commit()
    assert lock_exclusively(session, job.id, MAX_RUN_TIME, "w2", now=T0 + timedelta(hours=4, seconds=1)) is True
    session.commit()

    job = fresh(session, job)
    assert job.locked_by == "w2"
    assert ensure_utc(job.locked_at) == T0 + timedelta(hours=4, seconds=1)


def test_lock_exclusively_refreshes_own_lock(session):
    job = enqueue(session, sample_jobs.RecordingJob(label="a"), run_at=T0)
    session.commit()

    assert lock_exclusively(session, job.id, MAX_RUN_TIME, "w1", now=T0)
    assert lock_exclusively(session, job.id, MAX_RUN_TIME, "w1", now=T0 + timedelta(minutes=5))
    assert lock_exclusively(session, job.id, MAX_RUN_TIME, "w1", now=T0 + timedelta(days=3))
    session.commit()

    job = fresh(session, job)
    assert job.locked_by == "w1"
    assert ensure_utc(job.locked_at) == T0 + timedelta(days=3)


def test_lock_exclusively_unknown_job(session):
    assert lock_exclusively(session, 9999, MAX_RUN_TIME, "w1") is False


def test_lock_exclusively_refuses_rows_that_stopped_being_claimable(session):
    done = enqueue(session, sample_jobs.RecordingJob(label="done"), run_at=T0)
    dead = enqueue(session, sample_jobs.RecordingJob(label="dead"), run_at=T0)
    later = enqueue(session, sample_jobs.RecordingJob(label="later"), run_at=T0 + timedelta(hours=1))
    done.finished_at = T0
    dead.failed_at = T0
    session.commit()

    for job in (done, dead, later):
        assert lock_exclusively(session, job.id, MAX_RUN_TIME, "w1", now=T0) is False


def test_concurrent_claims_have_a_single_winner(engine, session):
    job = enqueue(session, sample_jobs.RecordingJob(label="contested"), run_at=T0)
    session.commit()

    worker_count = 8
    barrier = threading.Barrier(worker_count)
    results = {}

    def claim(worker_name):
        with Session(engine) as worker_session:
            barrier.wait()
            results[worker_name] = lock_exclusively(worker_session, job.id, MAX_RUN_TIME, worker_name)
            worker_session.commit()

    threads = [threading.Thread(target=claim, args=(f"worker-{i}",)) for i in range(worker_count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    winners = [name for name, won in results.items() if won]
    assert len(results) == worker_count
    assert len(winners) == 1
    assert fresh(session, job).locked_by == winners[0]


def test_unlock_clears_lock_fields_in_memory(session):
    job = enqueue(session, sample_jobs.RecordingJob(label="a"), run_at=T0)
    job.locked_at = T0
    job.locked_by = "w1"

    unlock(job)

    assert job.locked_at is None
    assert job.locked_by is None


def test_clear_locks_releases_only_the_given_worker(session):
    jobs = [enqueue(session, sample_jobs.RecordingJob(label=str(i)), run_at=T0) for i in range(3)]
    session.commit()
    lock_exclusively(session, jobs[0].id, MAX_RUN_TIME, "w1", now=T0)
    lock_exclusively(session, jobs[1].id, MAX_RUN_TIME, "w1", now=T0)
    lock_exclusively(session, jobs[2].id, MAX_RUN_TIME, "w2", now=T0)
    session.commit()

    assert clear_locks(session, "w1") == 2
    session.commit()

    assert [fresh(session, job).locked_by for job in jobs] == [None, None, "w2"]
    assert jobs[0].locked_at is None


def test_job_counts_and_states(session):
    enqueue(session, sample_jobs.RecordingJob(label="pending"), run_at=T0)
    locked = enqueue(session, sample_jobs.RecordingJob(label="locked"), run_at=T0)
    failed = enqueue(session, sample_jobs.RecordingJob(label="failed"), run_at=T0)
    finished = enqueue(session, sample_jobs.RecordingJob(label="finished"), run_at=T0)
    locked.locked_by = "w1"
    locked.locked_at = T0
    failed.failed_at = T0
    finished.finished_at = T0
    session.commit()

    assert job_counts(session) == {"pending": 1, "locked": 1, "failed": 1, "finished": 1}
    assert [job.id for job in session.execute(jobs_in_state("locked")).scalars()] == [locked.id]

    with pytest.raises(ValueError):
        jobs_in_state("sleeping")


def test_rerun_failed_job_enqueues_a_copy(session):
    job = enqueue(session, sample_jobs.RecordingJob(label="again"), priority=3, run_at=T0)
    job.attempts = 25
    job.failed_at = T0
    job.last_error = "boom"
    session.commit()

    rerun = rerun_failed_job(session, job)
    session.commit()

    assert rerun.id != job.id
    assert rerun.handler == job.handler
    assert rerun.priority == 3
    assert rerun.attempts == 0
    assert rerun.failed_at is None
    assert fresh(session, job).failed_at is not None


def test_rerun_requires_a_failed_job(session):
    job = enqueue(session, sample_jobs.RecordingJob(label="fine"))
    session.commit()

    with pytest.raises(ValueError, match="has not failed"):
        rerun_failed_job(session, job)
