"""Command jobs: call a function registered ahead of time with stored arguments.

Stored handlers only ever name a command; they never carry code.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from deferred.exceptions import UnknownCommand
from deferred.models import Job
from deferred.services.jobs import enqueue
from deferred.services.payloads import PayloadRegistry, register_payload

F = TypeVar("F", bound=Callable[..., Any])


class CommandRegistry:
    def __init__(self) -> None:
        self._commands: dict[str, Callable[..., Any]] = {}

    def register(self, name: str | None = None) -> Callable[[F], F]:
        def decorate(func: F) -> F:
            command_name = name or f"{func.__module__}.{func.__qualname__}"
            self._commands[command_name] = func
            return func

        return decorate

    def get(self, name: str) -> Callable[..., Any]:
        if name not in self._commands:
            raise UnknownCommand(f"Command '{name}' is not registered.")
        return self._commands[name]

    def unregister(self, name: str) -> None:
        self._commands.pop(name, None)

    def __contains__(self, name: object) -> bool:
        return name in self._commands


default_commands = CommandRegistry()


def register_command(name: str | None = None) -> Callable[[F], F]:
    return default_commands.register(name)


@register_payload
class CommandJob(BaseModel):
    command: str
    args: list[Any] = Field(default_factory=list)
    kwargs: dict[str, Any] = Field(default_factory=dict)

    def perform(self) -> None:
        default_commands.get(self.command)(*self.args, **self.kwargs)

    def display_name(self) -> str:
        return f"CommandJob({self.command})"


def enqueue_command(
    session: Session,
    command: str,
    *args: Any,
    priority: int = 0,
    run_at: datetime | None = None,
    registry: PayloadRegistry | None = None,
    **kwargs: Any,
) -> Job:
    default_commands.get(command)
    payload = CommandJob(command=command, args=list(args), kwargs=kwargs)
    return enqueue(session, payload, priority=priority, run_at=run_at, registry=registry)
