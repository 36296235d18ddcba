"""
Function registry and the bridge that executes remote invocations.

Each registration carries an explicit, ordered tuple of formal parameter
names. When a caller does not declare them the names are read once from the
callable's signature at registration time; nothing is re-derived per call.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import yaml
from pydantic import BaseModel

from .contracts import FunctionNotFoundError, RegistrationError

logger = logging.getLogger(__name__)

Handler = Callable[..., Any | Awaitable[Any]]

_POSITIONAL_KINDS = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
)

# Hub event types that user callbacks may subscribe to, on top of the custom
# types declared by the module.
LIFECYCLE_EVENTS: tuple[str, ...] = ("boot", "session", "enable", "disable", "init", "state")


@dataclass(frozen=True, slots=True)
class FunctionRegistration:
    """A named callable plus the ordered names used to bind its arguments."""

    name: str
    parameters: tuple[str, ...]
    handler: Handler

    @classmethod
    def create(
        cls,
        handler: Handler,
        *,
        name: str | None = None,
        parameters: Sequence[str] | None = None,
    ) -> FunctionRegistration:
        if not callable(handler):
            raise RegistrationError("functions must be callables.")
        resolved_name = name if name is not None else getattr(handler, "__name__", "")
        if not isinstance(resolved_name, str) or not resolved_name.strip():
            raise RegistrationError("functions must be named with a non-empty string.")
        if parameters is None:
            parameters = _formal_parameters(handler)
        elif isinstance(parameters, str) or not all(isinstance(p, str) for p in parameters):
            raise RegistrationError("parameters must be a sequence of names.")
        return cls(name=resolved_name, parameters=tuple(parameters), handler=handler)

    def bind(self, *sources: Mapping[str, Any]) -> list[Any]:
        """Build positional arguments, taking each name from the first source holding it."""
        arguments: list[Any] = []
        for formal in self.parameters:
            value = None
            for source in sources:
                value = source.get(formal)
                if value is not None:
                    break
            arguments.append(value)
        return arguments

    async def call(self, arguments: Sequence[Any]) -> Any:
        result = self.handler(*arguments)
        if inspect.isawaitable(result):
            result = await result
        return result


def _formal_parameters(handler: Handler) -> tuple[str, ...]:
    try:
        signature = inspect.signature(handler)
    except (TypeError, ValueError) as exc:
        raise RegistrationError(
            f"Cannot read parameters of {handler!r}; pass parameters explicitly."
        ) from exc
    return tuple(
        parameter.name
        for parameter in signature.parameters.values()
        if parameter.kind in _POSITIONAL_KINDS
    )


class FunctionRegistry:
    """Ordered collection of function registrations; first match by name wins."""

    def __init__(self, registrations: Iterable[FunctionRegistration | Handler] = ()) -> None:
        self._registrations: list[FunctionRegistration] = []
        self.replace(registrations)

    def __iter__(self) -> Iterator[FunctionRegistration]:
        return iter(list(self._registrations))

    def __len__(self) -> int:
        return len(self._registrations)

    @property
    def names(self) -> list[str]:
        return [registration.name for registration in self._registrations]

    def register(
        self,
        handler: Handler,
        *,
        name: str | None = None,
        parameters: Sequence[str] | None = None,
    ) -> FunctionRegistration:
        registration = FunctionRegistration.create(handler, name=name, parameters=parameters)
        self._registrations.append(registration)
        logger.debug("Registered function %s%s", registration.name, registration.parameters)
        return registration

    def function(
        self, name: str | None = None, *, parameters: Sequence[str] | None = None
    ) -> Callable[[Handler], Handler]:
        """Decorator form of ``register``."""

        def _decorator(handler: Handler) -> Handler:
            self.register(handler, name=name, parameters=parameters)
            return handler

        return _decorator

    def replace(self, registrations: Iterable[FunctionRegistration | Handler]) -> None:
        """Swap the full set of registrations."""
        replacement = [
            item if isinstance(item, FunctionRegistration) else FunctionRegistration.create(item)
            for item in registrations
        ]
        self._registrations = replacement

    def find(self, name: str) -> FunctionRegistration | None:
        for registration in self._registrations:
            if registration.name == name:
                return registration
        return None


class CallbackRegistry:
    """Lifecycle and custom event callbacks keyed by event type."""

    def __init__(self, custom_events: Iterable[str] = ()) -> None:
        self._allowed: set[str] = {*LIFECYCLE_EVENTS, *custom_events}
        self._callbacks: dict[str, FunctionRegistration] = {}

    @property
    def allowed_events(self) -> list[str]:
        return sorted(self._allowed)

    def declare(self, *event_types: str) -> None:
        for event_type in event_types:
            if not isinstance(event_type, str) or not event_type.strip():
                raise RegistrationError("event types must be non-empty strings.")
            self._allowed.add(event_type)

    def on(
        self,
        event_type: str,
        callback: Handler,
        *,
        parameters: Sequence[str] | None = None,
    ) -> FunctionRegistration:
        if event_type not in self._allowed:
            allowed = ", ".join(self.allowed_events)
            raise RegistrationError(f"eventType must be one of the following strings: {allowed}")
        registration = FunctionRegistration.create(
            callback, name=event_type, parameters=parameters
        )
        self._callbacks[event_type] = registration
        return registration

    def get(self, event_type: str) -> FunctionRegistration | None:
        return self._callbacks.get(event_type)

    def __contains__(self, event_type: object) -> bool:
        return event_type in self._callbacks


class InvocationBridge:
    """Resolve a remote call by name and run it with bound arguments."""

    def __init__(self, registry: FunctionRegistry) -> None:
        self._registry = registry

    async def invoke(
        self,
        name: str,
        args: Mapping[str, Any] | None = None,
        default_args: Mapping[str, Any] | None = None,
    ) -> Any:
        registration = self._registry.find(name)
        if registration is None:
            raise FunctionNotFoundError(name)
        arguments = registration.bind(args or {}, default_args or {})
        logger.debug("Invoking %s with %d arguments", name, len(arguments))
        return await registration.call(arguments)


def normalize_output(value: Any) -> Any:
    """
    Render a function result for an upstream language agent.

    Booleans become ``"Yes"``/``"No"``; mappings, sequences, and models become
    a YAML document; anything else is returned unchanged.
    """
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    if isinstance(value, Mapping | list | tuple | set):
        if isinstance(value, set):
            value = sorted(value, key=str)
        return yaml.safe_dump(
            _plain(value), allow_unicode=True, sort_keys=False, default_flow_style=False
        )
    return value


def _plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return _plain(value.model_dump(mode="json"))
    if isinstance(value, Mapping):
        return {str(key): _plain(item) for key, item in value.items()}
    if isinstance(value, list | tuple | set):
        return [_plain(item) for item in value]
    if value is None or isinstance(value, str | int | float | bool):
        return value
    return str(value)


__all__ = [
    "LIFECYCLE_EVENTS",
    "CallbackRegistry",
    "FunctionRegistration",
    "FunctionRegistry",
    "InvocationBridge",
    "normalize_output",
]
