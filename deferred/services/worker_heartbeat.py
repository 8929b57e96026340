"""Worker heartbeats: one row per worker identity, upserted by the worker loop."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from deferred.models import WorkerHeartbeat
from deferred.services.jobs import db_time_now

WORKER_STATUS_STARTING = "starting"
WORKER_STATUS_RUNNING = "running"
WORKER_STATUS_STOPPED = "stopped"

# Seconds since the last heartbeat before a running worker turns yellow/red.
GREEN_SECONDS = 12.0
YELLOW_SECONDS = 30.0


def upsert_worker_heartbeat(
    engine: Engine,
    worker_name: str,
    status: str,
    details: str | None = None,
) -> None:
    now = db_time_now()
    with Session(engine) as session:
        row = session.execute(
            select(WorkerHeartbeat).where(WorkerHeartbeat.worker_name == worker_name)
        ).scalar_one_or_none()
        if row is None:
            row = WorkerHeartbeat(worker_name=worker_name)
            session.add(row)
        row.status = status
        row.details = details
        row.heartbeat_at = now
        row.updated_at = now
        session.commit()


def list_worker_heartbeats(session: Session) -> list[WorkerHeartbeat]:
    stmt = select(WorkerHeartbeat).order_by(WorkerHeartbeat.worker_name.asc())
    return list(session.execute(stmt).scalars().all())


def classify_light(status: str, seconds_since_heartbeat: float) -> str:
    """Traffic light for a worker: only a recently seen running worker is green."""
    if status != WORKER_STATUS_RUNNING:
        return "red"
    if seconds_since_heartbeat <= GREEN_SECONDS:
        return "green"
    if seconds_since_heartbeat <= YELLOW_SECONDS:
        return "yellow"
    return "red"
