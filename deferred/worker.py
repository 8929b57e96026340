"""
Job worker.

Repeatedly claims and runs batches of jobs until asked to stop, sleeping when
the queue is empty. On exit it releases every lock it still holds.
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Iterable

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

import deferred.services.commands  # noqa: F401  # registers CommandJob
from deferred.config import QueueConfig
from deferred.services.job_runner import work_off
from deferred.services.jobs import clear_locks, default_worker_name
from deferred.services.payloads import PayloadRegistry
from deferred.services.worker_heartbeat import (
    WORKER_STATUS_RUNNING,
    WORKER_STATUS_STARTING,
    WORKER_STATUS_STOPPED,
    upsert_worker_heartbeat,
)

logger = logging.getLogger("deferred:worker")

STOP_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class Worker:
    def __init__(
        self,
        engine: Engine,
        config: QueueConfig | None = None,
        name: str | None = None,
        min_priority: int | None = None,
        max_priority: int | None = None,
        job_types: Iterable[str] | None = None,
        quiet: bool = False,
        idle_after: float = 60.0,
        registry: PayloadRegistry | None = None,
        heartbeats: bool = True,
    ) -> None:
        self.engine = engine
        self.config = config or QueueConfig()
        self.name = name or default_worker_name()
        self.min_priority = min_priority
        self.max_priority = max_priority
        self.job_types = list(job_types) if job_types is not None else None
        self.quiet = quiet
        self.idle_after = idle_after
        self.registry = registry
        self.heartbeats = heartbeats
        self.next_idle = time.monotonic() + idle_after
        self._stop = threading.Event()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Ask the loop to exit at the next boundary; a running job finishes."""
        self._stop.set()

    def say(self, text: str) -> None:
        if not self.quiet:
            print(text, flush=True)
        logger.info(text)

    def on_idle(self) -> None:
        """Called every `idle_after` seconds; override for periodic housekeeping."""
        logger.debug("worker %s idle", self.name)

    def work_off(self, n: int | None = None) -> tuple[int, int]:
        return work_off(
            self.engine,
            self.config,
            self.name,
            n=n,
            min_priority=self.min_priority,
            max_priority=self.max_priority,
            job_types=self.job_types,
            registry=self.registry,
            should_stop=self._stop.is_set,
        )

    def clear_locks(self) -> int:
        with Session(self.engine) as session:
            released = clear_locks(session, self.name)
            session.commit()
        if released:
            logger.info("worker %s released %d locked job(s)", self.name, released)
        return released

    def _handle_signal(self, signum, _frame) -> None:
        self.say("Exiting...")
        logger.info("worker %s received signal %d", self.name, signum)
        self.stop()

    def _install_signal_handlers(self) -> dict:
        if threading.current_thread() is not threading.main_thread():
            return {}
        previous = {}
        for sig in STOP_SIGNALS:
            previous[sig] = signal.signal(sig, self._handle_signal)
        return previous

    def _heartbeat(self, status: str, details: str | None = None) -> None:
        if self.heartbeats:
            upsert_worker_heartbeat(self.engine, self.name, status=status, details=details)

    def run(self) -> None:
        self.say(f"*** Starting job worker {self.name}")
        previous_handlers = self._install_signal_handlers()
        self._heartbeat(WORKER_STATUS_STARTING, "worker boot")
        self.next_idle = time.monotonic() + self.idle_after

        try:
            while not self._stop.is_set():
                started = time.perf_counter()
                success, failure = self.work_off(self.config.batch_size)
                elapsed = time.perf_counter() - started
                count = success + failure

                self._heartbeat(
                    WORKER_STATUS_RUNNING,
                    f"processed={count} failed={failure}",
                )

                if self._stop.is_set():
                    break

                if count == 0:
                    self._stop.wait(self.config.sleep_seconds)
                else:
                    self.next_idle = time.monotonic() + self.idle_after
                    self.say(
                        "%d jobs processed at %.4f j/s, %d failed ..."
                        % (count, count / max(elapsed, 1e-9), failure)
                    )

                if time.monotonic() > self.next_idle:
                    self.next_idle = time.monotonic() + self.idle_after
                    self.on_idle()
        finally:
            try:
                self.clear_locks()
                self._heartbeat(WORKER_STATUS_STOPPED, "worker exiting")
            finally:
                for sig, handler in previous_handlers.items():
                    signal.signal(sig, handler)
        self.say(f"*** Job worker {self.name} stopped")
