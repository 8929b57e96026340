"""Job lifecycle engine: claim, execute under a deadline, record the outcome."""

from __future__ import annotations

import enum
import logging
import signal
import threading
import time
import traceback
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from typing import Any, TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from deferred.config import QueueConfig
from deferred.exceptions import DeserializationError, JobTimeout
from deferred.models import Job
from deferred.services.jobs import db_time_now, find_available, lock_exclusively, unlock
from deferred.services.payloads import PayloadRegistry, payload_max_attempts

logger = logging.getLogger("deferred:jobs")

T = TypeVar("T")


class Outcome(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    NOT_CLAIMED = "not_claimed"


def times_up(_signum, _frame):
    raise JobTimeout("Job execution timed out")


def call_with_deadline(func: Callable[[], T], seconds: float | None) -> T:
    """Run `func`, aborting it with `JobTimeout` after `seconds`.

    On the main thread the abort is a SIGALRM raised inside the running code.
    Elsewhere signals are unavailable, so the call runs on a daemon thread that
    is abandoned when the deadline passes.
    """
    if not seconds or seconds <= 0:
        return func()

    if threading.current_thread() is threading.main_thread() and hasattr(signal, "setitimer"):
        previous = signal.signal(signal.SIGALRM, times_up)
        signal.setitimer(signal.ITIMER_REAL, seconds)
        try:
            return func()
        finally:
            signal.setitimer(signal.ITIMER_REAL, 0)
            signal.signal(signal.SIGALRM, previous)

    outcome: dict[str, Any] = {}

    def target() -> None:
        try:
            outcome["value"] = func()
        except BaseException as exc:  # noqa: BLE001
            outcome["error"] = exc

    runner = threading.Thread(target=target, name="deferred-job", daemon=True)
    runner.start()
    runner.join(seconds)
    if runner.is_alive():
        raise JobTimeout(f"Job execution timed out after {seconds:.1f}s")
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


def invoke_job(job: Job, registry: PayloadRegistry | None = None) -> None:
    job.load_payload(registry).perform()


def job_max_attempts(
    job: Job, config: QueueConfig, registry: PayloadRegistry | None = None
) -> int:
    try:
        payload = job.load_payload(registry)
    except DeserializationError:
        return config.max_attempts
    try:
        return payload_max_attempts(payload, config.max_attempts)
    except Exception as exc:
        logger.warning(
            "job #%d: max_attempts() raised %s: %s; using %d",
            job.id,
            type(exc).__name__,
            exc,
            config.max_attempts,
        )
        return config.max_attempts


def reschedule(
    session: Session,
    job: Job,
    message: str,
    backtrace: Iterable[str],
    config: QueueConfig,
    now: datetime | None = None,
    registry: PayloadRegistry | None = None,
) -> bool:
    """Record a failed attempt.

    Returns True if the job was put back in the queue, False if it ran out of
    attempts and was permanently failed.
    """
    now = now or db_time_now()
    max_attempts = job_max_attempts(job, config, registry)
    name = job.display_name(registry)

    job.attempts += 1
    job.last_error = message + "\n" + "".join(backtrace)
    job.updated_at = now
    unlock(job)

    if job.attempts < max_attempts:
        job.run_at = now + timedelta(seconds=job.attempts**4 + 5)
        session.flush()
        return True

    logger.info(
        "job #%d: PERMANENTLY removing %s because of %d consecutive failures",
        job.id,
        name,
        job.attempts,
    )
    if config.destroy_failed_jobs:
        session.delete(job)
    else:
        job.failed_at = now
    session.flush()
    return False


def log_exception(job: Job, name: str, exc: BaseException) -> None:
    logger.error(
        "job #%d: %s failed with %s: %s - %d failed attempts",
        job.id,
        name,
        type(exc).__name__,
        exc,
        job.attempts,
        exc_info=(type(exc), exc, exc.__traceback__),
    )


def run_with_lock(
    session: Session,
    job: Job,
    config: QueueConfig,
    worker_name: str,
    registry: PayloadRegistry | None = None,
) -> Outcome:
    """Try to run one job; `NOT_CLAIMED` means another worker holds it."""
    job_id = job.id
    name = job.display_name(registry)
    logger.info("job #%d: acquiring lock on %s", job_id, name)

    claimed = lock_exclusively(session, job_id, config.max_run_time, worker_name)
    session.commit()
    if not claimed:
        logger.warning("job #%d: failed to acquire exclusive lock for %s", job_id, name)
        return Outcome.NOT_CLAIMED
    # Pick up attempts written by other workers since the job was selected.
    session.refresh(job)

    started = time.perf_counter()
    try:
        call_with_deadline(
            lambda: invoke_job(job, registry), config.max_run_time.total_seconds()
        )
    except Exception as exc:
        rescheduled = reschedule(
            session,
            job,
            str(exc),
            traceback.format_exception(type(exc), exc, exc.__traceback__),
            config,
            registry=registry,
        )
        log_exception(job, name, exc)
        if rescheduled:
            logger.info("job #%d: %s rescheduled for %s", job_id, name, job.run_at)
        session.commit()
        return Outcome.FAILURE
    runtime = time.perf_counter() - started

    if config.destroy_successful_jobs:
        session.delete(job)
    else:
        now = db_time_now()
        unlock(job)
        job.finished_at = now
        job.updated_at = now
    session.commit()
    logger.info("job #%d: %s completed after %.4f", job_id, name, runtime)
    return Outcome.SUCCESS


def reserve_and_run_one_job(
    session: Session,
    config: QueueConfig,
    worker_name: str,
    min_priority: int | None = None,
    max_priority: int | None = None,
    job_types: Iterable[str] | None = None,
    registry: PayloadRegistry | None = None,
) -> Outcome:
    """Run the first candidate we can lock; `NOT_CLAIMED` if none could be."""
    candidates = find_available(
        session,
        limit=config.candidate_limit,
        max_run_time=config.max_run_time,
        worker_name=worker_name,
        min_priority=min_priority,
        max_priority=max_priority,
        job_types=job_types,
    )
    for job in candidates:
        outcome = run_with_lock(session, job, config, worker_name, registry)
        if outcome is not Outcome.NOT_CLAIMED:
            return outcome
    return Outcome.NOT_CLAIMED


def work_off(
    engine: Engine,
    config: QueueConfig,
    worker_name: str,
    n: int | None = None,
    min_priority: int | None = None,
    max_priority: int | None = None,
    job_types: Iterable[str] | None = None,
    registry: PayloadRegistry | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> tuple[int, int]:
    """Run up to `n` jobs and return `(successes, failures)`.

    Stops early when no job could be run or `should_stop()` turns true.
    """
    success, failure = 0, 0
    for _ in range(n if n is not None else config.batch_size):
        with Session(engine, expire_on_commit=False) as session:
            outcome = reserve_and_run_one_job(
                session,
                config,
                worker_name,
                min_priority=min_priority,
                max_priority=max_priority,
                job_types=job_types,
                registry=registry,
            )
        if outcome is Outcome.SUCCESS:
            success += 1
        elif outcome is Outcome.FAILURE:
            failure += 1
        else:
            break
        if should_stop is not None and should_stop():
            break
    return success, failure
