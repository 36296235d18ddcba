"""
Module roster entries published by the connection supervisor.

A module is a common record (id, name, version, errors) plus a payload whose
shape depends on the module kind. Addons and kernels publish a plain
parameter mapping; extensions expose their live parameter store and function
registry, which the supervisor also uses to route inbound calls.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .contracts import RegistrationError
from .functions import FunctionRegistry
from .parameters import ParameterStore


class ModuleKind(StrEnum):
    ADDON = "Addon"
    EXTENSION = "Extension"
    KERNEL = "Kernel"


def module_id(name: str) -> str:
    """Stable identifier derived from a display name."""
    slug = re.sub(r"\s+", "_", name.lower())
    slug = re.sub(r"[^\w]+", "", slug)
    return re.sub(r"_{2,}", "_", slug)


@dataclass(slots=True)
class SettingsPayload:
    """Payload of addon and kernel modules."""

    parameters: dict[str, Any] = field(default_factory=dict)

    def errors(self) -> list[str]:
        return []

    def to_json(self) -> dict[str, Any]:
        return {"parameters": dict(self.parameters)}


@dataclass(slots=True)
class ExtensionPayload:
    """Payload of extension modules, shared by reference with the runtime."""

    store: ParameterStore
    functions: FunctionRegistry

    def errors(self) -> list[str]:
        return self.store.errors()

    def to_json(self) -> dict[str, Any]:
        return {"parameters": self.store.to_json(), "functions": self.functions.names}


_PAYLOAD_TYPES: dict[ModuleKind, type] = {
    ModuleKind.ADDON: SettingsPayload,
    ModuleKind.KERNEL: SettingsPayload,
    ModuleKind.EXTENSION: ExtensionPayload,
}


@dataclass(slots=True)
class Module:
    name: str
    kind: ModuleKind
    payload: SettingsPayload | ExtensionPayload
    version: str | None = None
    errors: list[str] = field(default_factory=list)
    id: str = field(init=False)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise RegistrationError("name is required and must be a non-empty string.")
        try:
            self.kind = ModuleKind(self.kind)
        except ValueError as exc:
            allowed = ", ".join(kind.value for kind in ModuleKind)
            raise RegistrationError(
                f"type is required and must be one of the following values: {allowed}."
            ) from exc
        expected = _PAYLOAD_TYPES[self.kind]
        if not isinstance(self.payload, expected):
            raise RegistrationError(f"{self.kind.value} modules require a {expected.__name__}.")
        self.id = module_id(self.name)

    @classmethod
    def addon(
        cls, name: str, parameters: dict[str, Any] | None = None, *, version: str | None = None
    ) -> Module:
        return cls(name, ModuleKind.ADDON, SettingsPayload(dict(parameters or {})), version)

    @classmethod
    def kernel(
        cls, name: str, parameters: dict[str, Any] | None = None, *, version: str | None = None
    ) -> Module:
        return cls(name, ModuleKind.KERNEL, SettingsPayload(dict(parameters or {})), version)

    @classmethod
    def extension(
        cls,
        name: str,
        store: ParameterStore,
        functions: FunctionRegistry,
        *,
        version: str | None = None,
    ) -> Module:
        return cls(name, ModuleKind.EXTENSION, ExtensionPayload(store, functions), version)

    @property
    def functions(self) -> FunctionRegistry | None:
        if isinstance(self.payload, ExtensionPayload):
            return self.payload.functions
        return None

    def collected_errors(self) -> list[str]:
        """Own and payload errors, de-duplicated in first-seen order."""
        return list(dict.fromkeys([*self.errors, *self.payload.errors()]))

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.kind.value,
            "version": self.version,
            "errors": self.collected_errors(),
            **self.payload.to_json(),
        }


__all__ = ["ExtensionPayload", "Module", "ModuleKind", "SettingsPayload", "module_id"]
