"""Command line interface for running workers and operating the queue.

Usage:
    deferred work --env dev --import myapp.jobs
    deferred stats
    deferred clear-locks "host:box1 pid:4242"
    deferred rerun 17
"""

from __future__ import annotations

import importlib
import logging
import os
from typing import Optional

import typer
from dotenv import load_dotenv
from sqlalchemy import inspect
from sqlalchemy.orm import Session

from deferred.config import QueueConfig
from deferred.db import get_engine
from deferred.exceptions import JobQueueError
from deferred.models import Job
from deferred.services.jobs import clear_locks, job_counts, rerun_failed_job
from deferred.worker import Worker

app = typer.Typer(help="Database-backed job queue.")


def load_env(env_name: str | None) -> None:
    if env_name is None:
        return
    env_file = f".env.{env_name}"
    if not os.path.exists(env_file):
        raise FileNotFoundError(f"{env_file} not found")
    load_dotenv(env_file)


def check_db_ready() -> None:
    tables = inspect(get_engine()).get_table_names()
    for required in ("delayed_jobs", "worker_heartbeats"):
        if required not in tables:
            typer.echo(f"Missing '{required}' table. Run: alembic upgrade head", err=True)
            raise typer.Exit(code=1)


def import_job_modules(modules: list[str]) -> None:
    """Import the modules that register payload types and commands."""
    for module in modules:
        try:
            importlib.import_module(module)
        except ImportError as exc:
            typer.echo(f"Could not import {module}: {exc}", err=True)
            raise typer.Exit(code=1) from exc


@app.command()
def work(
    env: Optional[str] = typer.Option(None, help="Load .env.<ENV> before starting."),
    name: Optional[str] = typer.Option(None, help="Worker identity; defaults to host and pid."),
    min_priority: Optional[int] = typer.Option(None, help="Only run jobs at or above this priority."),
    max_priority: Optional[int] = typer.Option(None, help="Only run jobs at or below this priority."),
    job_type: list[str] = typer.Option([], "--job-type", help="Only run these job types."),
    imports: list[str] = typer.Option([], "--import", help="Module registering payload types."),
    quiet: bool = typer.Option(False, "--quiet", help="Do not echo progress to stdout."),
    log_level: str = typer.Option("INFO", help="Logging level."),
) -> None:
    """Run a worker until SIGTERM/SIGINT."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    load_env(env)
    import_job_modules(imports)
    check_db_ready()

    try:
        config = QueueConfig.from_env()
    except ValueError as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    worker = Worker(
        get_engine(),
        config=config,
        name=name,
        min_priority=min_priority,
        max_priority=max_priority,
        job_types=job_type or None,
        quiet=quiet,
    )
    worker.run()


@app.command()
def stats(env: Optional[str] = typer.Option(None)) -> None:
    """Print job counts by state."""
    load_env(env)
    with Session(get_engine()) as session:
        counts = job_counts(session)
    for state, count in counts.items():
        typer.echo(f"{state:<10} {count}")


@app.command("clear-locks")
def clear_locks_command(
    worker_name: str = typer.Argument(..., help="Identity of the worker whose locks to release."),
    env: Optional[str] = typer.Option(None),
) -> None:
    """Release every job locked by a worker that is gone."""
    load_env(env)
    with Session(get_engine()) as session:
        released = clear_locks(session, worker_name)
        session.commit()
    typer.echo(f"Released {released} job(s) locked by {worker_name}.")


@app.command()
def rerun(
    job_id: int = typer.Argument(..., help="Id of a permanently failed job."),
    env: Optional[str] = typer.Option(None),
) -> None:
    """Enqueue a fresh copy of a failed job."""
    load_env(env)
    with Session(get_engine()) as session:
        job = session.get(Job, job_id)
        if job is None:
            typer.echo(f"Job #{job_id} not found.", err=True)
            raise typer.Exit(code=1)
        try:
            copy = rerun_failed_job(session, job)
        except (JobQueueError, ValueError) as exc:
            typer.echo(str(exc), err=True)
            raise typer.Exit(code=1) from exc
        session.commit()
        typer.echo(f"Enqueued job #{copy.id} as a rerun of #{job_id}.")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
