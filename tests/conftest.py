from __future__ import annotations

import asyncio
import textwrap
from collections.abc import AsyncIterator, Mapping
from pathlib import Path
from typing import Any

import pytest

from hublink.core.config import ConfigService
from hublink.core.contracts import TransportError, to_wire


def _write_yaml(path: Path, content: str) -> None:
    path.write_text(textwrap.dedent(content).strip() + "\n", encoding="utf-8")


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingTransport:
    """In-memory transport: records outbound events and replays queued inbound ones."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.inbound: asyncio.Queue[str] = asyncio.Queue()
        self.fail_next = 0
        self.opened = 0
        self.closed = False
        self.delivered = asyncio.Event()

    async def open(self) -> None:
        self.opened += 1
        self.closed = False

    async def close(self) -> None:
        self.closed = True

    async def publish(self, event: Mapping[str, Any]) -> None:
        if self.fail_next:
            self.fail_next -= 1
            raise TransportError("simulated outage")
        self.sent.append(to_wire(event))
        self.delivered.set()

    async def listen(self) -> AsyncIterator[str]:
        while True:
            yield await self.inbound.get()

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [event for event in self.sent if event.get("type") == event_type]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=100.0)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def sample_config_dir(tmp_path: Path) -> Path:
    """
    Provide a temporary configuration directory for tests.
    """

    config_dir = tmp_path / "config"
    config_dir.mkdir()
    config_yaml = f"""
    bridge:
      publish_interval: 0.5
      liveness_timeout: 8
      queue_size: 16

    connection:
      transport: "socket"
      socket_path: "{(tmp_path / 'hub.sock').as_posix()}"
      agent_urls: "ws://agent-a.test/ws, ws://agent-b.test/ws"

    logging:
      level: "DEBUG"
    """
    secrets_yaml = """
    parameters:
      api_key: "from-secrets"
      REGION: "us"
    """
    _write_yaml(config_dir / "config.yaml", config_yaml)
    _write_yaml(config_dir / "secrets.yaml", secrets_yaml)
    return config_dir


@pytest.fixture
def sample_config_service(sample_config_dir: Path) -> ConfigService:
    return ConfigService(config_dir=sample_config_dir)
