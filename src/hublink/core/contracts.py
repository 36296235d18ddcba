"""
Contracts shared by the synchronization core.

Wire events are plain JSON objects with a mandatory ``type`` field. The
pydantic models below are typed *views* over those objects: they validate the
fields a handler needs and keep every other field untouched so replies can
echo the original payload verbatim.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import AsyncIterator, Mapping
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_core import to_jsonable_python


class RegistrationError(ValueError):
    """Raised when a parameter, function, or callback cannot be registered."""


class EventDecodeError(ValueError):
    """Raised when an inbound payload is not a valid hub event."""


class TransportError(RuntimeError):
    """Raised when a transport fails to connect or deliver a payload."""


class FunctionNotFoundError(LookupError):
    """Raised by the invocation bridge when no function matches a call."""


class WireEvent(BaseModel):
    """Base view for any hub event."""

    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True)

    type: str = Field(min_length=1, description="Event discriminator.")


class BootEvent(WireEvent):
    """Boot negotiation carrying parameter values pushed by the hub."""

    parameters: dict[str, Any] = Field(default_factory=dict)


class FunctionCallEvent(WireEvent):
    """Remote invocation request for a registered function."""

    name: str = Field(default="")
    args: dict[str, Any] = Field(default_factory=dict)
    default_args: dict[str, Any] = Field(default_factory=dict, alias="defaultArgs")


class StateEvent(WireEvent):
    """Outbound state snapshot."""

    type: str = "state"
    state: Any = None


class HealthStatus(BaseModel):
    """Structured health report for bridge components."""

    model_config = ConfigDict(extra="allow", frozen=True)

    status: str = Field(description="Health classification such as healthy/degraded/error.")
    details: dict[str, Any] = Field(default_factory=dict)


@runtime_checkable
class EventSink(Protocol):
    """Anything able to deliver an outbound event to the hub."""

    async def publish(self, event: Mapping[str, Any]) -> None: ...


@runtime_checkable
class Transport(EventSink, Protocol):
    """Bidirectional channel to the hub used by the runtime."""

    async def open(self) -> None: ...

    def listen(self) -> AsyncIterator[str]: ...

    async def close(self) -> None: ...


def to_wire(event: Mapping[str, Any] | BaseModel) -> dict[str, Any]:
    """Return a JSON-compatible dict for ``event``."""
    if isinstance(event, BaseModel):
        return event.model_dump(mode="json", by_alias=True)
    return to_jsonable_python(dict(event), fallback=str)


def encode_event(event: Mapping[str, Any] | BaseModel) -> str:
    """Serialize an event for the wire."""
    return json.dumps(to_wire(event), ensure_ascii=False)


def decode_event(raw: str | bytes | Mapping[str, Any]) -> dict[str, Any]:
    """
    Parse an inbound payload into an event dict.

    Raises ``EventDecodeError`` when the payload is not a JSON object with a
    non-empty string ``type``.
    """
    if isinstance(raw, Mapping):
        data: Any = dict(raw)
    else:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise EventDecodeError(f"Inbound payload is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise EventDecodeError(f"Inbound payload must be an object, got {type(data).__name__}")
    try:
        WireEvent.model_validate(data)
    except ValidationError as exc:
        raise EventDecodeError("Inbound payload has no usable 'type' field") from exc
    return data


def canonical_json(value: Any) -> str:
    """Structural serialization used for change detection."""
    return json.dumps(
        to_jsonable_python(value, fallback=str),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def fingerprint(value: Any) -> str:
    """Content hash of ``value``; equal structures produce equal fingerprints."""
    return hashlib.sha256(canonical_json(value).encode("utf-8")).hexdigest()


__all__ = [
    "BootEvent",
    "EventDecodeError",
    "EventSink",
    "FunctionCallEvent",
    "FunctionNotFoundError",
    "HealthStatus",
    "RegistrationError",
    "StateEvent",
    "Transport",
    "TransportError",
    "WireEvent",
    "canonical_json",
    "decode_event",
    "encode_event",
    "fingerprint",
    "to_wire",
]
