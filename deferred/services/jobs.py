"""Job record store: row-level persistence and the claim primitive."""

from __future__ import annotations

import os
import socket
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import Select, and_, func, or_, select, update
from sqlalchemy.orm import Session

from deferred.config import DEFAULT_MAX_RUN_TIME
from deferred.models import Job
from deferred.services.payloads import PayloadRegistry, encode, payload_type_name

JOB_STATE_PENDING = "pending"
JOB_STATE_LOCKED = "locked"
JOB_STATE_FAILED = "failed"
JOB_STATE_FINISHED = "finished"
JOB_STATES = (JOB_STATE_PENDING, JOB_STATE_LOCKED, JOB_STATE_FAILED, JOB_STATE_FINISHED)


def db_time_now() -> datetime:
    """Current time as seen by every client; clocks are assumed synchronised."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def default_worker_name() -> str:
    return f"host:{socket.gethostname()} pid:{os.getpid()}"


def enqueue(
    session: Session,
    payload: Any,
    priority: int = 0,
    run_at: datetime | None = None,
    registry: PayloadRegistry | None = None,
) -> Job:
    handler = encode(payload, registry)
    now = db_time_now()
    job = Job(
        priority=int(priority),
        attempts=0,
        handler=handler,
        last_error=None,
        run_at=run_at or now,
        locked_at=None,
        locked_by=None,
        failed_at=None,
        finished_at=None,
        job_type=payload_type_name(payload, registry),
        created_at=now,
        updated_at=now,
    )
    job.__dict__["_payload_object"] = payload
    session.add(job)
    session.flush()
    return job


def claimable(
    now: datetime, max_run_time: timedelta, worker_name: str
) -> Any:
    return and_(
        or_(
            and_(
                Job.run_at <= now,
                or_(Job.locked_at.is_(None), Job.locked_at < now - max_run_time),
            ),
            Job.locked_by == worker_name,
        ),
        Job.failed_at.is_(None),
        Job.finished_at.is_(None),
    )


def find_available(
    session: Session,
    limit: int = 5,
    max_run_time: timedelta = DEFAULT_MAX_RUN_TIME,
    worker_name: str | None = None,
    min_priority: int | None = None,
    max_priority: int | None = None,
    job_types: Iterable[str] | None = None,
    now: datetime | None = None,
) -> list[Job]:
    """Return a few candidate jobs.

    Several are returned because some will be locked by other workers before
    we get to them; the order is only a hint.
    """
    now = now or db_time_now()
    stmt = select(Job).where(
        claimable(now, max_run_time, worker_name or default_worker_name())
    )
    if min_priority is not None:
        stmt = stmt.where(Job.priority >= min_priority)
    if max_priority is not None:
        stmt = stmt.where(Job.priority <= max_priority)
    if job_types is not None:
        stmt = stmt.where(Job.job_type.in_(list(job_types)))
    stmt = stmt.order_by(Job.priority.desc(), Job.run_at.asc(), Job.id.asc()).limit(limit)
    return list(session.execute(stmt).scalars().all())


def lock_exclusively(
    session: Session,
    job_id: int,
    max_run_time: timedelta,
    worker_name: str,
    now: datetime | None = None,
) -> bool:
    """Claim a job row with a single conditional update.

    The update only lands while the row is still claimable by us, so a job
    that another worker has since completed or rescheduled is left alone.
    Exactly one affected row means the claim is ours.
    """
    now = now or db_time_now()
    result = session.execute(
        update(Job)
        .where(Job.id == job_id, claimable(now, max_run_time, worker_name))
        .values(locked_at=now, locked_by=worker_name, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def unlock(job: Job) -> None:
    """Release the lock on the in-memory row; the caller persists it."""
    job.locked_at = None
    job.locked_by = None


def clear_locks(session: Session, worker_name: str) -> int:
    """Release every row held by `worker_name` (used when a worker exits)."""
    result = session.execute(
        update(Job)
        .where(Job.locked_by == worker_name)
        .values(locked_at=None, locked_by=None, updated_at=db_time_now())
        .execution_options(synchronize_session=False)
    )
    session.flush()
    return result.rowcount


def unfinished_jobs() -> Select:
    return select(Job).where(Job.finished_at.is_(None))


def finished_jobs() -> Select:
    return select(Job).where(Job.finished_at.is_not(None))


def failed_jobs() -> Select:
    return select(Job).where(Job.failed_at.is_not(None))


def jobs_in_state(state: str) -> Select:
    if state == JOB_STATE_FINISHED:
        return finished_jobs()
    if state == JOB_STATE_FAILED:
        return failed_jobs()
    active = select(Job).where(Job.failed_at.is_(None), Job.finished_at.is_(None))
    if state == JOB_STATE_LOCKED:
        return active.where(Job.locked_by.is_not(None))
    if state == JOB_STATE_PENDING:
        return active.where(Job.locked_by.is_(None))
    raise ValueError(f"Unknown job state '{state}'. Expected one of {JOB_STATES}.")


def job_counts(session: Session) -> dict[str, int]:
    counts = {}
    for state in JOB_STATES:
        stmt = select(func.count()).select_from(jobs_in_state(state).subquery())
        counts[state] = session.execute(stmt).scalar_one()
    return counts


def rerun_failed_job(session: Session, job: Job) -> Job:
    """Enqueue a fresh copy of a permanently failed (retained) job.

    The failed row is left untouched as the record of what happened.
    """
    if job.failed_at is None:
        raise ValueError(f"Job #{job.id} has not failed.")
    now = db_time_now()
    rerun = Job(
        priority=job.priority,
        attempts=0,
        handler=job.handler,
        last_error=None,
        run_at=now,
        job_type=job.job_type,
        created_at=now,
        updated_at=now,
    )
    session.add(rerun)
    session.flush()
    return rerun
