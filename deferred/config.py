"""Queue engine configuration."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from deferred.utils.env_vars import get_bool_env, get_float_env, get_int_env

DEFAULT_MAX_ATTEMPTS = 25
DEFAULT_MAX_RUN_TIME = timedelta(hours=4)
DEFAULT_SLEEP_SECONDS = 5.0
DEFAULT_BATCH_SIZE = 100
DEFAULT_CANDIDATE_LIMIT = 5


@dataclass(frozen=True)
class QueueConfig:
    """Settings shared by the lifecycle engine and the worker loop.

    Passed explicitly to every engine/worker instance so that several of them
    can live in one process with different settings.
    """

    # Delete a job row on success; otherwise stamp `finished_at`.
    destroy_successful_jobs: bool = True
    # Delete a job row after its last attempt fails; otherwise stamp `failed_at`.
    destroy_failed_jobs: bool = True
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    max_run_time: timedelta = DEFAULT_MAX_RUN_TIME
    sleep_seconds: float = DEFAULT_SLEEP_SECONDS
    batch_size: int = DEFAULT_BATCH_SIZE
    candidate_limit: int = DEFAULT_CANDIDATE_LIMIT

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1.")
        if self.max_run_time.total_seconds() <= 0:
            raise ValueError("max_run_time must be positive.")
        if self.sleep_seconds < 0:
            raise ValueError("sleep_seconds must be >= 0.")
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1.")
        if self.candidate_limit < 1:
            raise ValueError("candidate_limit must be >= 1.")

    @classmethod
    def from_env(cls) -> QueueConfig:
        return cls(
            destroy_successful_jobs=get_bool_env(
                "DEFERRED_DESTROY_SUCCESSFUL_JOBS", True
            ),
            destroy_failed_jobs=get_bool_env("DEFERRED_DESTROY_FAILED_JOBS", True),
            max_attempts=get_int_env("DEFERRED_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
            max_run_time=timedelta(
                seconds=get_float_env(
                    "DEFERRED_MAX_RUN_TIME_SECONDS",
                    DEFAULT_MAX_RUN_TIME.total_seconds(),
                )
            ),
            sleep_seconds=get_float_env("DEFERRED_SLEEP_SECONDS", DEFAULT_SLEEP_SECONDS),
            batch_size=get_int_env("DEFERRED_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            candidate_limit=get_int_env(
                "DEFERRED_CANDIDATE_LIMIT", DEFAULT_CANDIDATE_LIMIT
            ),
        )
