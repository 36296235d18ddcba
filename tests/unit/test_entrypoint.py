from __future__ import annotations

from pathlib import Path

import pytest

from hublink import entrypoint
from hublink.core.config import ConfigService
from hublink.core.parameters import create_parameter
from hublink.core.runtime import BridgeRuntime
from hublink.core.supervisor import ConnectionSupervisor


def _factory(transport):
    def _build(config: ConfigService) -> BridgeRuntime:
        return BridgeRuntime.from_config(
            config,
            name="Weather",
            transport=transport,
            parameters=[create_parameter("API_KEY")],
        )

    return _build


def test_load_target_resolves_attributes() -> None:
    assert entrypoint.load_target("hublink.core.runtime:BridgeRuntime") is BridgeRuntime
    with pytest.raises(ValueError):
        entrypoint.load_target("hublink.core.runtime")
    with pytest.raises(ValueError):
        entrypoint.load_target("hublink.core.runtime:Missing")


def test_runtime_target_is_served_directly(
    sample_config_service: ConfigService, transport
) -> None:
    service = entrypoint.build_service(_factory(transport), sample_config_service)
    assert isinstance(service, BridgeRuntime)


def test_websocket_transport_wraps_runtime_in_supervisor(
    sample_config_service: ConfigService, transport
) -> None:
    sample_config_service.apply_changes({"connection": {"transport": "websocket"}})
    service = entrypoint.build_service(_factory(transport), sample_config_service)
    assert isinstance(service, ConnectionSupervisor)
    assert service.urls == ["ws://agent-a.test/ws", "ws://agent-b.test/ws"]
    assert [module["name"] for module in service.roster()["modules"]] == ["Weather"]


def test_build_service_rejects_other_targets(sample_config_service: ConfigService) -> None:
    with pytest.raises(TypeError):
        entrypoint.build_service(lambda config: object(), sample_config_service)


def test_main_returns_two_on_configuration_errors(tmp_path: Path) -> None:
    code = entrypoint.main(
        ["hublink.core.runtime:BridgeRuntime", "--config-dir", str(tmp_path / "absent")]
    )
    assert code == 2
