"""Workers API router."""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from deferred.api.deps import get_db
from deferred.models import WorkerHeartbeat
from deferred.services.jobs import db_time_now, ensure_utc
from deferred.services.worker_heartbeat import classify_light, list_worker_heartbeats

router = APIRouter()


class WorkerStatusResponse(BaseModel):
    worker_name: str
    light: str
    status: str
    heartbeat_at: datetime
    seconds_since_heartbeat: float
    details: str | None


def to_response(now: datetime, row: WorkerHeartbeat) -> WorkerStatusResponse:
    heartbeat_at = ensure_utc(row.heartbeat_at)
    seconds_since = max(0.0, (now - heartbeat_at).total_seconds())
    return WorkerStatusResponse(
        worker_name=row.worker_name,
        light=classify_light(row.status, seconds_since),
        status=row.status,
        heartbeat_at=heartbeat_at,
        seconds_since_heartbeat=seconds_since,
        details=row.details,
    )


@router.get("/workers/status", response_model=list[WorkerStatusResponse])
def list_worker_statuses(db: Session = Depends(get_db)) -> list[WorkerStatusResponse]:
    now = db_time_now()
    return [to_response(now, row) for row in list_worker_heartbeats(db)]
