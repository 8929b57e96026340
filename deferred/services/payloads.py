"""Payload codec.

A job's `handler` column holds JSON of the form::

    {"type": "SendWelcomeEmail", "data": {"user_id": 42}}

`type` is looked up in a `PayloadRegistry` populated by the modules a
deployment imports. Decoding never imports code named by stored data: an
unknown type fails with `PayloadTypeNotFound`.
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import BaseModel

from deferred.exceptions import (
    DeserializationError,
    InvalidPayload,
    MalformedPayload,
    PayloadTypeNotFound,
)

T = TypeVar("T")

Dumper = Callable[[Any], dict]
Loader = Callable[[type, dict], Any]


def _dump_model(payload: BaseModel) -> dict:
    return payload.model_dump(mode="json")


def _load_model(cls: type[BaseModel], data: dict) -> BaseModel:
    return cls.model_validate(data)


def _dump_dataclass(payload: Any) -> dict:
    return dataclasses.asdict(payload)


def _load_dataclass(cls: type, data: dict) -> Any:
    return cls(**data)


def _dump_object(payload: Any) -> dict:
    return dict(vars(payload))


def _load_object(cls: type, data: dict) -> Any:
    payload = cls.__new__(cls)
    payload.__dict__.update(data)
    return payload


def default_codec_for(cls: type) -> tuple[Dumper, Loader]:
    if isinstance(cls, type) and issubclass(cls, BaseModel):
        return _dump_model, _load_model
    if dataclasses.is_dataclass(cls):
        return _dump_dataclass, _load_dataclass
    return _dump_object, _load_object


def has_perform(payload: Any) -> bool:
    return callable(getattr(payload, "perform", None))


@dataclass(frozen=True)
class PayloadType:
    name: str
    cls: type
    dump: Dumper
    load: Loader


class PayloadRegistry:
    """Translation between payload type names and their Python classes."""

    def __init__(self) -> None:
        self._by_name: dict[str, PayloadType] = {}
        self._by_class: dict[type, PayloadType] = {}

    def register(
        self,
        cls: type[T] | None = None,
        *,
        name: str | None = None,
        dump: Dumper | None = None,
        load: Loader | None = None,
    ) -> Any:
        """Register a payload class; usable bare or with arguments as a decorator.

        @param cls: The payload class. It must define a `perform()` method.
        @param name: The type name stored in the handler. Defaults to `cls.__name__`.
        @param dump: Custom `payload -> dict` function.
        @param load: Custom `(cls, dict) -> payload` function.
        """

        def decorate(payload_cls: type[T]) -> type[T]:
            if not callable(getattr(payload_cls, "perform", None)):
                raise InvalidPayload(
                    f"Cannot register {payload_cls.__name__}: it does not define perform()."
                )
            type_name = name or payload_cls.__name__
            existing = self._by_name.get(type_name)
            if existing is not None and existing.cls is not payload_cls:
                raise ValueError(
                    f"Payload type '{type_name}' is already registered to {existing.cls!r}."
                )
            default_dump, default_load = default_codec_for(payload_cls)
            entry = PayloadType(
                name=type_name,
                cls=payload_cls,
                dump=dump or default_dump,
                load=load or default_load,
            )
            self._by_name[type_name] = entry
            self._by_class[payload_cls] = entry
            return payload_cls

        if cls is None:
            return decorate
        return decorate(cls)

    def unregister(self, name: str) -> None:
        entry = self._by_name.pop(name, None)
        if entry is not None:
            self._by_class.pop(entry.cls, None)

    def get(self, name: str) -> PayloadType:
        if name not in self._by_name:
            raise PayloadTypeNotFound(
                f"Payload type '{name}' is not registered. "
                "Import the module that registers it before starting the worker."
            )
        return self._by_name[name]

    def for_payload(self, payload: Any) -> PayloadType | None:
        return self._by_class.get(type(payload))

    def names(self) -> list[str]:
        return sorted(self._by_name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name


default_registry = PayloadRegistry()


def register_payload(
    cls: type[T] | None = None,
    *,
    name: str | None = None,
    dump: Dumper | None = None,
    load: Loader | None = None,
) -> Any:
    """Register a payload class in the process-wide default registry."""
    return default_registry.register(cls, name=name, dump=dump, load=load)


def payload_type_name(payload: Any, registry: PayloadRegistry | None = None) -> str:
    entry = (registry or default_registry).for_payload(payload)
    if entry is None:
        raise InvalidPayload(
            f"Payload type {type(payload).__name__} is not registered."
        )
    return entry.name


def encode(payload: Any, registry: PayloadRegistry | None = None) -> str:
    """Serialise a payload to its handler text."""
    if not has_perform(payload):
        raise InvalidPayload(
            f"Cannot enqueue {type(payload).__name__}: it does not respond to perform()."
        )

    registry = registry or default_registry
    entry = registry.for_payload(payload)
    if entry is None:
        raise InvalidPayload(
            f"Payload type {type(payload).__name__} is not registered."
        )

    try:
        return json.dumps({"type": entry.name, "data": entry.dump(payload)})
    except (TypeError, ValueError) as exc:
        raise InvalidPayload(
            f"Payload {entry.name} could not be encoded: {exc}"
        ) from exc


def decode(serialised: str, registry: PayloadRegistry | None = None) -> Any:
    """Rebuild a payload from handler text."""
    registry = registry or default_registry

    try:
        document = json.loads(serialised)
    except (TypeError, ValueError) as exc:
        raise MalformedPayload(f"Job failed to load: handler is not JSON ({exc}).") from exc

    if (
        not isinstance(document, dict)
        or not isinstance(document.get("type"), str)
        or not isinstance(document.get("data"), dict)
    ):
        raise MalformedPayload(
            "Job failed to load: handler must be an object with 'type' and 'data'."
        )

    entry = registry.get(document["type"])

    try:
        payload = entry.load(entry.cls, document["data"])
    except Exception as exc:
        raise MalformedPayload(
            f"Job failed to load: could not rebuild {entry.name} ({type(exc).__name__}: {exc})."
        ) from exc

    if not has_perform(payload):
        raise DeserializationError(
            f"Job failed to load: {entry.name} does not respond to perform()."
        )
    return payload


def _call_optional(payload: Any, attribute: str) -> Any:
    value = getattr(payload, attribute, None)
    if callable(value):
        return value()
    return value


def payload_display_name(payload: Any) -> str:
    try:
        name = _call_optional(payload, "display_name")
    except Exception:
        return type(payload).__name__
    if isinstance(name, str) and name:
        return name
    return type(payload).__name__


def payload_max_attempts(payload: Any, default: int) -> int:
    value = _call_optional(payload, "max_attempts")
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return default
