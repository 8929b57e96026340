"""Pytest configuration and fixtures"""

from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

import sample_jobs
from deferred.config import QueueConfig
from deferred.models import Base


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'queue.db'}"


@pytest.fixture
def engine(database_url):
    """A file-backed SQLite database with the queue tables, shared by threads."""
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture
def config():
    return QueueConfig(
        destroy_successful_jobs=True,
        destroy_failed_jobs=True,
        max_run_time=timedelta(hours=4),
        sleep_seconds=0.01,
    )


@pytest.fixture(autouse=True)
def reset_sample_jobs():
    sample_jobs.CALLS.clear()
    sample_jobs.STOP_HOOKS.clear()
    yield
    sample_jobs.CALLS.clear()
    sample_jobs.STOP_HOOKS.clear()
