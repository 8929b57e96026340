"""Jobs API router."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from deferred.api.deps import get_db
from deferred.models import Job
from deferred.services.jobs import (
    JOB_STATES,
    ensure_utc,
    job_counts,
    jobs_in_state,
    rerun_failed_job,
)

router = APIRouter()


class JobResponse(BaseModel):
    id: int
    job_type: str
    priority: int
    attempts: int
    handler: str
    last_error: str | None
    run_at: datetime
    locked_at: datetime | None
    locked_by: str | None
    failed_at: datetime | None
    finished_at: datetime | None
    created_at: datetime
    updated_at: datetime


class JobCountsResponse(BaseModel):
    pending: int
    locked: int
    failed: int
    finished: int


def to_job_response(job: Job) -> JobResponse:
    return JobResponse(
        id=job.id,
        job_type=job.job_type,
        priority=job.priority,
        attempts=job.attempts,
        handler=job.handler,
        last_error=job.last_error,
        run_at=ensure_utc(job.run_at),
        locked_at=ensure_utc(job.locked_at),
        locked_by=job.locked_by,
        failed_at=ensure_utc(job.failed_at),
        finished_at=ensure_utc(job.finished_at),
        created_at=ensure_utc(job.created_at),
        updated_at=ensure_utc(job.updated_at),
    )


def get_job_or_404(db: Session, job_id: int) -> Job:
    job = db.get(Job, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.get("/jobs", response_model=list[JobResponse])
def list_jobs(
    state: str | None = Query(default=None),
    job_type: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
) -> list[JobResponse]:
    if state is not None and state not in JOB_STATES:
        raise HTTPException(
            status_code=400,
            detail=f"state must be one of {', '.join(JOB_STATES)}",
        )
    stmt = jobs_in_state(state) if state is not None else select(Job)
    if job_type is not None:
        stmt = stmt.where(Job.job_type == job_type)
    stmt = stmt.order_by(Job.priority.desc(), Job.run_at.asc()).limit(limit)
    rows = db.execute(stmt).scalars().all()
    return [to_job_response(job) for job in rows]


@router.get("/jobs/stats", response_model=JobCountsResponse)
def job_stats(db: Session = Depends(get_db)) -> JobCountsResponse:
    return JobCountsResponse(**job_counts(db))


@router.get("/jobs/{job_id}", response_model=JobResponse)
def get_job(job_id: int, db: Session = Depends(get_db)) -> JobResponse:
    return to_job_response(get_job_or_404(db, job_id))


@router.post("/jobs/{job_id}/rerun", response_model=JobResponse, status_code=201)
def rerun_job(job_id: int, db: Session = Depends(get_db)) -> JobResponse:
    job = get_job_or_404(db, job_id)
    if job.failed_at is None:
        raise HTTPException(status_code=400, detail="Only failed jobs can be rerun")

    rerun = rerun_failed_job(db, job)
    db.commit()
    db.refresh(rerun)
    return to_job_response(rerun)


@router.delete("/jobs/{job_id}", status_code=204)
def delete_job(job_id: int, db: Session = Depends(get_db)) -> None:
    job = get_job_or_404(db, job_id)
    if job.locked_by is not None and job.failed_at is None and job.finished_at is None:
        raise HTTPException(status_code=409, detail="Job is locked by a worker")
    db.delete(job)
    db.commit()
