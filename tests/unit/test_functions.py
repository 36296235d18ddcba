"""Tests for function registration, argument binding, and output normalization."""

from __future__ import annotations

import pytest
import yaml
from pydantic import BaseModel

from hublink.core.contracts import FunctionNotFoundError, RegistrationError
from hublink.core.functions import (
    CallbackRegistry,
    FunctionRegistration,
    FunctionRegistry,
    InvocationBridge,
    normalize_output,
)


def test_registration_reads_parameter_names_once() -> None:
    def greet(name, greeting="Hello"):
        return f"{greeting}, {name}"

    registration = FunctionRegistration.create(greet)
    assert registration.name == "greet"
    assert registration.parameters == ("name", "greeting")


def test_explicit_parameters_win_over_signature() -> None:
    registration = FunctionRegistration.create(
        lambda *values: values, name="collect", parameters=["b", "a"]
    )
    assert registration.parameters == ("b", "a")
    assert registration.bind({"a": 1, "b": 2}) == [2, 1]


def test_registration_rejects_invalid_input() -> None:
    with pytest.raises(RegistrationError):
        FunctionRegistration.create("not callable")  # type: ignore[arg-type]
    with pytest.raises(RegistrationError):
        FunctionRegistration.create(lambda: None, name="  ")
    with pytest.raises(RegistrationError):
        FunctionRegistration.create(lambda x: x, name="f", parameters="x")


@pytest.mark.asyncio
async def test_invoke_binds_args_then_default_args() -> None:
    calls: list[tuple[object, object]] = []
    registry = FunctionRegistry()

    @registry.function()
    def f(a, b):
        calls.append((a, b))
        return "ok"

    bridge = InvocationBridge(registry)
    assert await bridge.invoke("f", {"a": "1"}, {"b": "2"}) == "ok"
    assert await bridge.invoke("f", {"b": "3"}, {"a": "fallback", "b": "ignored"}) == "ok"
    assert await bridge.invoke("f") == "ok"
    assert calls == [("1", "2"), ("fallback", "3"), (None, None)]


@pytest.mark.asyncio
async def test_invoke_awaits_coroutine_functions() -> None:
    async def lookup(key):
        return {"key": key}

    bridge = InvocationBridge(FunctionRegistry([lookup]))
    assert await bridge.invoke("lookup", {"key": "k"}) == {"key": "k"}


@pytest.mark.asyncio
async def test_invoke_miss_raises_and_first_registration_wins() -> None:
    registry = FunctionRegistry()
    registry.register(lambda: "first", name="dup")
    registry.register(lambda: "second", name="dup")
    bridge = InvocationBridge(registry)

    assert await bridge.invoke("dup") == "first"
    with pytest.raises(FunctionNotFoundError):
        await bridge.invoke("missing")


def test_callback_registry_validates_event_types() -> None:
    callbacks = CallbackRegistry(custom_events=["order_created"])
    callbacks.on("boot", lambda: None)
    callbacks.on("order_created", lambda order_id: None)
    assert "order_created" in callbacks
    assert callbacks.get("order_created").parameters == ("order_id",)

    with pytest.raises(RegistrationError, match="eventType must be one of"):
        callbacks.on("unknown", lambda: None)

    callbacks.declare("unknown")
    callbacks.on("unknown", lambda: None)
    assert "unknown" in callbacks.allowed_events


class _Reading(BaseModel):
    sensor: str
    value: float


def test_normalize_output_rules() -> None:
    assert normalize_output(True) == "Yes"
    assert normalize_output(False) == "No"
    assert normalize_output("text") == "text"
    assert normalize_output(7) == 7
    assert normalize_output(None) is None

    rendered = normalize_output({"city": "Paris", "tags": ["a", "b"]})
    assert isinstance(rendered, str)
    assert yaml.safe_load(rendered) == {"city": "Paris", "tags": ["a", "b"]}
    assert rendered.startswith("city: Paris")

    assert yaml.safe_load(normalize_output([1, 2])) == [1, 2]
    assert yaml.safe_load(normalize_output(_Reading(sensor="t1", value=2.5))) == {
        "sensor": "t1",
        "value": 2.5,
    }
