from __future__ import annotations

import pytest

from hublink.core.contracts import RegistrationError
from hublink.core.functions import FunctionRegistry
from hublink.core.module import Module, ModuleKind, SettingsPayload, module_id
from hublink.core.parameters import ParameterStore, create_parameter


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("Weather Station", "weather_station"),
        ("  Smart   Home!! v2 ", "_smart_home_v2_"),
        (" My Module ", "_my_module_"),
        ("a - b", "a_b"),
    ],
)
def test_module_id_slug(name: str, expected: str) -> None:
    assert module_id(name) == expected


def test_kernel_and_addon_share_the_settings_payload() -> None:
    kernel = Module.kernel("Core", {"LOCALE": "en"}, version="2.0")
    assert kernel.kind is ModuleKind.KERNEL
    assert kernel.functions is None
    assert kernel.to_json() == {
        "id": "core",
        "name": "Core",
        "type": "Kernel",
        "version": "2.0",
        "errors": [],
        "parameters": {"LOCALE": "en"},
    }


def test_extension_errors_come_from_its_store_without_duplicates() -> None:
    store = ParameterStore([create_parameter("API_KEY")])
    module = Module.extension("Shop", store, FunctionRegistry())
    module.errors.append("The parameter API_KEY is required.")
    module.errors.append("Catalog unreachable.")

    assert module.collected_errors() == [
        "The parameter API_KEY is required.",
        "Catalog unreachable.",
    ]
    rendered = module.to_json()
    assert rendered["type"] == "Extension"
    assert rendered["functions"] == []
    assert rendered["parameters"][0]["name"] == "API_KEY"


def test_invalid_modules_are_rejected() -> None:
    with pytest.raises(RegistrationError, match="name is required"):
        Module.addon("  ")
    with pytest.raises(RegistrationError, match="type is required"):
        Module("Thing", "Plugin", SettingsPayload())  # type: ignore[arg-type]
    with pytest.raises(RegistrationError):
        Module("Thing", ModuleKind.EXTENSION, SettingsPayload())
