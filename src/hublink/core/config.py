"""
Dynaconf-powered configuration loader with Pydantic validation.

Settings come from optional ``config.yaml`` / ``secrets.yaml`` files, a
``.env`` file, and ``HUBLINK_*`` environment variables, in increasing order of
precedence. Nested keys use Dynaconf's double underscore convention, e.g.
``HUBLINK_BRIDGE__LIVENESS_TIMEOUT=10`` or ``HUBLINK_PARAMETERS__API_KEY=x``.
"""

from __future__ import annotations

import base64
import binascii
import json
from pathlib import Path
from typing import Any, Literal

from dynaconf import Dynaconf
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

CONFIG_FILENAMES = ("config.yaml", "secrets.yaml")
DEFAULT_CONFIG_DIR = Path.cwd() / "config"


class ConfigError(RuntimeError):
    """Raised when configuration files or the bootstrap credential are invalid."""


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    """Case-insensitive dictionary lookup helper."""
    value = raw.get(key) or raw.get(key.upper()) or raw.get(key.lower())
    if isinstance(value, dict):
        return value
    return {}


def _lower_keys(section: dict[str, Any]) -> dict[str, Any]:
    return {str(key).lower(): value for key, value in section.items()}


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge dictionaries without mutating the originals."""
    result: dict[str, Any] = {**base}
    for key, value in updates.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class BridgeSettings(BaseModel):
    """Timing and queueing knobs of the synchronization core."""

    model_config = ConfigDict(extra="ignore")

    publish_interval: float = Field(default=1.0, gt=0.0)
    liveness_timeout: float = Field(default=6.0, gt=0.0)
    reconnect_delay: float = Field(default=1.0, ge=0.0)
    queue_size: int = Field(default=256, gt=0)
    mirror_output: bool = Field(default=False)
    mirror_queue_size: int = Field(default=512, gt=0)


class TopicCredential(BaseModel):
    model_config = ConfigDict(extra="ignore")

    topic: str = Field(min_length=1)
    token: str = Field(min_length=1)


class MercureSettings(BaseModel):
    """Structured connection parameters decoded from the bootstrap credential."""

    model_config = ConfigDict(extra="ignore")

    url: str = Field(min_length=1)
    publisher: TopicCredential
    subscriber: TopicCredential


def decode_credential(credential: str) -> MercureSettings:
    """Decode the opaque base64 JSON bootstrap credential once at startup."""
    try:
        text = credential.strip().replace("-", "+").replace("_", "/")
        padded = text + "=" * (-len(text) % 4)
        data = json.loads(base64.b64decode(padded, validate=False).decode("utf-8"))
        return MercureSettings.model_validate(data)
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise ConfigError("Bootstrap credential could not be decoded.") from exc


class ConnectionSettings(BaseModel):
    """Which transport to use and where it connects."""

    model_config = ConfigDict(extra="ignore")

    transport: Literal["mercure", "socket", "websocket"] = Field(default="mercure")
    credential: str | None = Field(default=None, repr=False)
    socket_path: str | None = Field(default=None)
    agent_urls: list[str] = Field(default_factory=list)

    @field_validator("agent_urls", mode="before")
    @classmethod
    def _split_urls(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    def mercure(self) -> MercureSettings:
        if not self.credential:
            raise ConfigError("The mercure transport requires connection.credential.")
        return decode_credential(self.credential)


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    level: str = Field(default="INFO")
    file: Path | None = Field(default=None)


class ConfigSnapshot(BaseModel):
    """Validated configuration consumed by the runtime."""

    model_config = ConfigDict(extra="ignore")

    bridge: BridgeSettings = Field(default_factory=BridgeSettings)
    connection: ConnectionSettings = Field(default_factory=ConnectionSettings)
    parameters: dict[str, str] = Field(
        default_factory=dict, description="External overrides for module parameters."
    )
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("parameters", mode="before")
    @classmethod
    def _stringify_parameters(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(key).upper(): str(item) for key, item in value.items() if item is not None}
        return value


class ConfigService:
    """
    Runtime facade for loading, validating, and distributing configuration.
    """

    def __init__(
        self,
        *,
        config_dir: str | Path | None = None,
        settings: Dynaconf | None = None,
    ) -> None:
        self._config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        if config_dir and not self._config_dir.is_dir():
            raise ConfigError(f"Configuration directory {self._config_dir} does not exist.")
        settings_files = [self._config_dir / name for name in CONFIG_FILENAMES]
        existing_files = [str(path) for path in settings_files if path.exists()]
        self._settings = settings or Dynaconf(
            envvar_prefix="HUBLINK",
            settings_files=existing_files,
            load_dotenv=True,
            environments=False,
        )
        self._snapshot = self._build_snapshot()

    @property
    def snapshot(self) -> ConfigSnapshot:
        """Latest validated configuration snapshot."""
        return self._snapshot

    def apply_changes(self, changes: dict[str, Any]) -> ConfigSnapshot:
        """
        Merge the provided changes into the current configuration snapshot.

        Changes are kept in memory only.
        """
        raw = _lower_keys(self._settings.as_dict())
        merged = _deep_merge(raw, _lower_keys(changes))
        self._snapshot = self._build_snapshot(merged)
        return self._snapshot

    def parameter_override(self, name: str) -> str | None:
        """Override source handed to the parameter store."""
        return self._snapshot.parameters.get(name) or None

    def _build_snapshot(self, raw: dict[str, Any] | None = None) -> ConfigSnapshot:
        source = raw if raw is not None else self._settings.as_dict()
        data = {
            "bridge": _lower_keys(_section(source, "bridge")),
            "connection": _lower_keys(_section(source, "connection")),
            "parameters": _section(source, "parameters"),
            "logging": _lower_keys(_section(source, "logging")),
        }
        try:
            return ConfigSnapshot.model_validate(data)
        except ValidationError as exc:
            raise ConfigError("Configuration validation failed") from exc


__all__ = [
    "BridgeSettings",
    "ConfigError",
    "ConfigService",
    "ConfigSnapshot",
    "ConnectionSettings",
    "LoggingSettings",
    "MercureSettings",
    "TopicCredential",
    "decode_credential",
]
