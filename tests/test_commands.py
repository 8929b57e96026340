"""Tests for registered command jobs"""

import json

import pytest

import sample_jobs
from deferred.exceptions import UnknownCommand
from deferred.services.commands import (
    CommandJob,
    default_commands,
    enqueue_command,
    register_command,
)
from deferred.services.job_runner import Outcome, run_with_lock, work_off


@pytest.fixture
def greet():
    @register_command("tests.greet")
    def greet(name, punctuation="."):
        sample_jobs.CALLS.append(f"hello {name}{punctuation}")

    yield greet
    default_commands.unregister("tests.greet")


def test_register_command_defaults_to_qualified_name():
    @register_command()
    def tidy():
        pass

    name = f"{tidy.__module__}.{tidy.__qualname__}"
    try:
        assert name in default_commands
        assert default_commands.get(name) is tidy
    finally:
        default_commands.unregister(name)


def test_enqueue_command_stores_only_the_command_name(session, greet):
    job = enqueue_command(session, "tests.greet", "ada", punctuation="!")
    session.commit()

    assert job.job_type == "CommandJob"
    assert json.loads(job.handler) == {
        "type": "CommandJob",
        "data": {"command": "tests.greet", "args": ["ada"], "kwargs": {"punctuation": "!"}},
    }
    assert job.name == "CommandJob(tests.greet)"


def test_command_job_runs_registered_function(engine, session, config, greet):
    enqueue_command(session, "tests.greet", "ada", punctuation="!")
    session.commit()

    assert work_off(engine, config, "w1") == (1, 0)
    assert sample_jobs.CALLS == ["hello ada!"]


def test_enqueue_unknown_command_is_rejected(session):
    with pytest.raises(UnknownCommand):
        enqueue_command(session, "tests.missing")


def test_command_unregistered_before_run_fails(session, config, greet):
    job = enqueue_command(session, "tests.greet", "ada")
    session.commit()
    default_commands.unregister("tests.greet")

    assert run_with_lock(session, job, config, "w1") is Outcome.FAILURE

    session.refresh(job)
    assert job.attempts == 1
    assert "tests.greet" in job.last_error
    assert sample_jobs.CALLS == []


def test_command_job_is_a_plain_payload():
    payload = CommandJob(command="tests.greet", args=[1], kwargs={})

    assert payload.display_name() == "CommandJob(tests.greet)"
