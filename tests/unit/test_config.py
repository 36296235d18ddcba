"""Tests for the Dynaconf-backed configuration service."""

from __future__ import annotations

import base64
import json
from pathlib import Path

import pytest

from hublink.core.config import (
    BridgeSettings,
    ConfigError,
    ConfigService,
    ConfigSnapshot,
    decode_credential,
)

CREDENTIAL_DATA = {
    "url": "https://hub.example.test/.well-known/mercure",
    "publisher": {"topic": "module/out", "token": "pub-token"},
    "subscriber": {"topic": "module/in", "token": "sub-token"},
}


def _credential(data: dict, *, urlsafe: bool = False) -> str:
    raw = json.dumps(data).encode("utf-8")
    if urlsafe:
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
    return base64.b64encode(raw).decode("ascii")


def test_config_service_loads_snapshot(sample_config_service: ConfigService) -> None:
    snapshot = sample_config_service.snapshot
    assert isinstance(snapshot, ConfigSnapshot)
    assert snapshot.bridge.publish_interval == 0.5
    assert snapshot.bridge.liveness_timeout == 8.0
    assert snapshot.bridge.queue_size == 16
    assert snapshot.connection.transport == "socket"
    assert snapshot.connection.socket_path.endswith("hub.sock")
    assert snapshot.connection.agent_urls == ["ws://agent-a.test/ws", "ws://agent-b.test/ws"]
    assert snapshot.logging.level == "DEBUG"


def test_parameter_overrides_are_upper_cased(sample_config_service: ConfigService) -> None:
    assert sample_config_service.parameter_override("API_KEY") == "from-secrets"
    assert sample_config_service.parameter_override("REGION") == "us"
    assert sample_config_service.parameter_override("MISSING") is None


def test_environment_variables_override_files(
    sample_config_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("HUBLINK_BRIDGE__LIVENESS_TIMEOUT", "12")
    monkeypatch.setenv("HUBLINK_PARAMETERS__API_KEY", "from-env")
    snapshot = ConfigService(config_dir=sample_config_dir).snapshot
    assert snapshot.bridge.liveness_timeout == 12.0
    assert snapshot.parameters["API_KEY"] == "from-env"


def test_defaults_without_config_files(tmp_path: Path) -> None:
    snapshot = ConfigService(config_dir=tmp_path).snapshot
    assert snapshot.bridge == BridgeSettings()
    assert snapshot.connection.transport == "mercure"
    assert snapshot.parameters == {}


def test_missing_config_dir_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        ConfigService(config_dir=tmp_path / "absent")


def test_invalid_values_raise_config_error(sample_config_service: ConfigService) -> None:
    with pytest.raises(ConfigError):
        sample_config_service.apply_changes({"bridge": {"liveness_timeout": -1}})


def test_apply_changes_merges_in_memory(sample_config_service: ConfigService) -> None:
    snapshot = sample_config_service.apply_changes({"bridge": {"queue_size": 4}})
    assert snapshot.bridge.queue_size == 4
    assert snapshot.bridge.publish_interval == 0.5


@pytest.mark.parametrize("urlsafe", [False, True])
def test_decode_credential(urlsafe: bool) -> None:
    settings = decode_credential(_credential(CREDENTIAL_DATA, urlsafe=urlsafe))
    assert settings.url == CREDENTIAL_DATA["url"]
    assert settings.publisher.topic == "module/out"
    assert settings.subscriber.token == "sub-token"


def test_decode_credential_rejects_garbage() -> None:
    with pytest.raises(ConfigError):
        decode_credential("not base64 at all!")
    with pytest.raises(ConfigError):
        decode_credential(_credential({"url": "https://hub"}))


def test_mercure_settings_require_a_credential(tmp_path: Path) -> None:
    connection = ConfigService(config_dir=tmp_path).snapshot.connection
    with pytest.raises(ConfigError):
        connection.mercure()
