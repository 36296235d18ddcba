"""
Named configuration values pushed by the hub and the readiness they imply.

A parameter value is resolved in three layers: an external override (for
example an environment variable collected by the config service) beats a
value set locally or by a ``boot`` event, which beats the declared default.
Readiness is derived on every read and never cached.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .contracts import RegistrationError

logger = logging.getLogger(__name__)

NAME_PATTERN = r"^[A-Z0-9_]+$"

OverrideSource = Callable[[str], str | None]


class Parameter(BaseModel):
    """A single hub-configurable value declared by the module."""

    model_config = ConfigDict(validate_assignment=True)

    name: str = Field(pattern=NAME_PATTERN, frozen=True)
    description: str = Field(default="")
    default_value: str | None = Field(default=None)
    value: str | None = Field(default=None)
    available_values: list[str] = Field(
        default_factory=list, description="Closed set of accepted values, empty for any."
    )
    possible_values: list[str] = Field(
        default_factory=list, description="Suggestions surfaced to the operator."
    )
    optional: bool = Field(default=False)
    multiple_values: bool = Field(default=False)
    type: str = Field(default="text", description="Display hint, e.g. text or password.")

    @field_validator("value", "default_value", mode="before")
    @classmethod
    def _empty_means_unset(cls, value: Any) -> Any:
        if value == "":
            return None
        return value

    def has_value(self) -> bool:
        return bool(self.value)

    def to_json(self, *, effective_value: str | None = None) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "defaultValue": self.default_value,
            "value": effective_value if effective_value is not None else self.value,
            "availableValues": list(self.available_values),
            "possibleValues": list(self.possible_values),
            "multipleValues": self.multiple_values,
            "isOptional": self.optional,
            "type": self.type,
        }


def create_parameter(name: str, **attributes: Any) -> Parameter:
    """Build a ``Parameter``, turning validation failures into ``RegistrationError``."""
    if not isinstance(name, str) or not name.strip():
        raise RegistrationError("name is required and must be a non-empty string.")
    try:
        return Parameter(name=name, **attributes)
    except ValidationError as exc:
        raise RegistrationError(f"Invalid parameter {name!r}: {exc}") from exc


class ParameterStore:
    """
    Mutable, shared set of parameters.

    The store is handed by reference to the publisher, the subscriber, and the
    module itself. Values are only ever replaced whole, so a reader running
    between two steps of a boot event sees either the old or the new value of
    each parameter.
    """

    def __init__(
        self,
        parameters: Iterable[Parameter] = (),
        *,
        overrides: Mapping[str, Any] | OverrideSource | None = None,
    ) -> None:
        self._parameters: dict[str, Parameter] = {}
        self._override_source: OverrideSource = _build_override_source(overrides)
        self.replace_all(parameters)

    def __iter__(self) -> Iterator[Parameter]:
        return iter(list(self._parameters.values()))

    def __len__(self) -> int:
        return len(self._parameters)

    def __contains__(self, name: object) -> bool:
        return name in self._parameters

    def get(self, name: str) -> Parameter | None:
        return self._parameters.get(name)

    def add(self, parameter: Parameter) -> Parameter:
        if not isinstance(parameter, Parameter):
            raise RegistrationError("parameters must be Parameter instances.")
        self._parameters[parameter.name] = parameter
        return parameter

    def replace_all(self, parameters: Iterable[Parameter]) -> None:
        """Swap the whole parameter set at once."""
        replacement: dict[str, Parameter] = {}
        for parameter in parameters:
            if not isinstance(parameter, Parameter):
                raise RegistrationError("parameters must be Parameter instances.")
            replacement[parameter.name] = parameter
        self._parameters = replacement

    def set_overrides(self, overrides: Mapping[str, Any] | OverrideSource | None) -> None:
        self._override_source = _build_override_source(overrides)

    def set_value(self, name: str, value: str | None) -> None:
        """Replace a parameter's local value; ``None`` or ``""`` clears it."""
        parameter = self._parameters.get(name)
        if parameter is None:
            raise KeyError(name)
        if value is not None and not isinstance(value, str):
            raise RegistrationError(f"Value for {name} must be a string or None.")
        parameter.value = value

    def apply(self, values: Mapping[str, Any]) -> list[str]:
        """
        Apply values received from the hub.

        Unknown names are ignored and non-string values are coerced to an
        empty string, which clears the parameter. Returns the names applied.
        """
        applied: list[str] = []
        for name, raw in values.items():
            parameter = self._parameters.get(name)
            if parameter is None:
                logger.debug("Ignoring value for undeclared parameter %s", name)
                continue
            parameter.value = raw if isinstance(raw, str) else ""
            applied.append(name)
        return applied

    def resolve(self, name: str) -> str | None:
        """Effective value: override, then local value, then default."""
        parameter = self._parameters.get(name)
        if parameter is None:
            return None
        override = self._override_source(name)
        if override:
            return override
        if parameter.value:
            return parameter.value
        return parameter.default_value or None

    def values(self) -> dict[str, str | None]:
        return {name: self.resolve(name) for name in list(self._parameters)}

    def is_ready(self) -> bool:
        """True when every mandatory parameter resolves to a non-empty value."""
        for parameter in list(self._parameters.values()):
            if parameter.optional:
                continue
            if not self.resolve(parameter.name):
                return False
        return True

    def missing(self) -> list[str]:
        return [
            parameter.name
            for parameter in list(self._parameters.values())
            if not parameter.optional and not self.resolve(parameter.name)
        ]

    def errors(self) -> list[str]:
        messages: list[str] = []
        for parameter in list(self._parameters.values()):
            value = self.resolve(parameter.name)
            if not parameter.optional and not value:
                messages.append(f"The parameter {parameter.name} is required.")
                continue
            if value and parameter.available_values and value not in parameter.available_values:
                allowed = ", ".join(parameter.available_values)
                messages.append(
                    f"The parameter {parameter.name} must be one of the following values: "
                    f"{allowed}."
                )
        return messages

    def to_json(self) -> list[dict[str, Any]]:
        return [
            parameter.to_json(effective_value=self.resolve(parameter.name))
            for parameter in list(self._parameters.values())
        ]


def _build_override_source(
    overrides: Mapping[str, Any] | OverrideSource | None,
) -> OverrideSource:
    if overrides is None:
        return lambda _name: None
    if callable(overrides):
        return overrides
    mapping = overrides

    def _lookup(name: str) -> str | None:
        value = mapping.get(name)
        if value is None or value == "":
            return None
        return str(value)

    return _lookup


__all__ = ["NAME_PATTERN", "Parameter", "ParameterStore", "create_parameter"]
