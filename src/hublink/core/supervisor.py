"""
Connection supervisor for the socket variant.

The supervisor keeps one bidirectional connection per known peer URL and
reconnects after a fixed delay whenever a connection fails or closes, without
a retry limit. Once per publish tick it hashes the roster payload
(``{sdk, modules}``) and sends it to every open connection whose own last
hash differs. Each connection is tracked separately, so a peer that just
reconnected always gets the current roster.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol

from pydantic import ValidationError

from .contracts import (
    EventDecodeError,
    FunctionCallEvent,
    FunctionNotFoundError,
    HealthStatus,
    TransportError,
    canonical_json,
    decode_event,
    encode_event,
    fingerprint,
)
from .functions import InvocationBridge, normalize_output
from .module import Module

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY = 1.0


class SocketConnection(Protocol):
    """An open bidirectional text channel to a peer."""

    async def send(self, message: str) -> None: ...

    def __aiter__(self) -> AsyncIterator[str]: ...

    async def close(self) -> None: ...


class SocketConnector(Protocol):
    """Factory that opens a ``SocketConnection`` to a URL."""

    async def connect(self, url: str) -> SocketConnection: ...

    async def close(self) -> None: ...


class ConnectionState(StrEnum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(slots=True)
class _Peer:
    url: str
    state: ConnectionState = ConnectionState.CONNECTING
    connection: SocketConnection | None = None
    last_hash: str | None = None
    task: asyncio.Task[None] | None = None
    reconnects: int = 0
    sent_total: int = 0


class ConnectionSupervisor:
    """Keep a fixed set of peers connected and fan the roster out to each of them."""

    def __init__(
        self,
        urls: Iterable[str],
        modules: Sequence[Module],
        connector: SocketConnector,
        *,
        sdk: Mapping[str, str] | None = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        publish_interval: float = 1.0,
    ) -> None:
        if not all(isinstance(module, Module) for module in modules):
            raise TypeError("modules must be a sequence of Module instances.")
        self._modules = list(modules)
        self._connector = connector
        self._sdk = dict(sdk or {})
        self._reconnect_delay = reconnect_delay
        self._publish_interval = publish_interval
        self._peers: dict[str, _Peer] = {
            url: _Peer(url=url) for url in dict.fromkeys(u.strip() for u in urls) if url
        }
        self._publish_task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def urls(self) -> list[str]:
        return list(self._peers)

    def state_of(self, url: str) -> ConnectionState:
        return self._peers[url].state

    def roster(self) -> dict[str, Any]:
        return {
            "sdk": dict(self._sdk),
            "modules": [module.to_json() for module in self._modules],
        }

    async def start(self) -> None:
        if self._running:
            logger.warning("Connection supervisor already running.")
            return
        self._running = True
        for peer in self._peers.values():
            peer.task = asyncio.create_task(self._maintain(peer), name=f"hublink-peer-{peer.url}")
        self._publish_task = asyncio.create_task(self._publish_loop(), name="hublink-roster")
        logger.info("Connection supervisor started for %d peers.", len(self._peers))

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        tasks = [peer.task for peer in self._peers.values() if peer.task is not None]
        if self._publish_task is not None:
            tasks.append(self._publish_task)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._publish_task = None
        for peer in self._peers.values():
            peer.task = None
            await self._close(peer)
        await self._connector.close()
        logger.info("Connection supervisor stopped.")

    async def publish_roster(self) -> int:
        """Send the roster to every open peer that has not seen this exact payload."""
        payload = self.roster()
        message = canonical_json(payload)
        digest = fingerprint(payload)
        sent = 0
        for peer in list(self._peers.values()):
            if peer.state is not ConnectionState.OPEN or peer.last_hash == digest:
                continue
            if await self._send(peer, message):
                peer.last_hash = digest
                sent += 1
                logger.debug("Published roster %s to %s", digest[:12], peer.url)
        return sent

    async def health(self) -> HealthStatus:
        states = {url: peer.state.value for url, peer in self._peers.items()}
        open_count = sum(1 for state in states.values() if state == ConnectionState.OPEN)
        if not self._peers:
            status = "degraded"
        elif open_count == len(self._peers):
            status = "healthy"
        elif open_count:
            status = "degraded"
        else:
            status = "error"
        return HealthStatus(
            status=status,
            details={
                "peers": states,
                "reconnects": {url: peer.reconnects for url, peer in self._peers.items()},
                "sent": {url: peer.sent_total for url, peer in self._peers.items()},
            },
        )

    async def _maintain(self, peer: _Peer) -> None:
        while True:
            peer.state = ConnectionState.CONNECTING
            try:
                peer.connection = await self._connector.connect(peer.url)
            except (TransportError, OSError) as exc:
                logger.warning("Connection to %s failed: %s", peer.url, exc)
            else:
                peer.state = ConnectionState.OPEN
                peer.last_hash = None
                logger.info("Connected to %s", peer.url)
                await self._read(peer)
                logger.warning("Disconnected from %s", peer.url)
            await self._close(peer)
            peer.reconnects += 1
            await asyncio.sleep(self._reconnect_delay)

    async def _read(self, peer: _Peer) -> None:
        connection = peer.connection
        if connection is None:
            return
        try:
            async for raw in connection:
                await self._handle_message(peer, raw)
        except (TransportError, OSError) as exc:
            logger.warning("Connection to %s closed abnormally: %s", peer.url, exc)

    async def _close(self, peer: _Peer) -> None:
        peer.state = ConnectionState.CLOSED
        connection, peer.connection = peer.connection, None
        if connection is None:
            return
        with contextlib.suppress(TransportError, OSError):
            await connection.close()

    async def _handle_message(self, peer: _Peer, raw: str) -> None:
        try:
            event = decode_event(raw)
        except EventDecodeError as exc:
            logger.warning("Ignoring malformed payload from %s: %s", peer.url, exc)
            return
        if event.get("type") != "function_call":
            return
        try:
            call = FunctionCallEvent.model_validate(event)
        except ValidationError:
            logger.warning("Malformed function_call from %s; ignoring.", peer.url)
            return
        for module in self._modules:
            registry = module.functions
            if registry is None or not len(registry):
                continue
            try:
                output = await InvocationBridge(registry).invoke(
                    call.name, call.args, call.default_args
                )
            except FunctionNotFoundError:
                continue
            except Exception:
                logger.exception("Function %s of %s failed.", call.name, module.name)
                return
            reply = {**event, "output": normalize_output(output)}
            await self._send(peer, encode_event(reply))
            return
        logger.debug("No module provides function %r", call.name)

    async def _send(self, peer: _Peer, message: str) -> bool:
        connection = peer.connection
        if peer.state is not ConnectionState.OPEN or connection is None:
            return False
        try:
            await connection.send(message)
        except (TransportError, OSError) as exc:
            logger.warning("Send to %s failed: %s", peer.url, exc)
            return False
        peer.sent_total += 1
        return True

    async def _publish_loop(self) -> None:
        try:
            while self._running:
                await asyncio.sleep(self._publish_interval)
                try:
                    await self.publish_roster()
                except Exception:
                    logger.exception("Roster publish failed.")
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            return


__all__ = ["ConnectionState", "ConnectionSupervisor", "SocketConnection", "SocketConnector"]
