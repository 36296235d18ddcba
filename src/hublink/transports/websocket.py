"""
Websocket connector for the connection supervisor, built on aiohttp.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

import aiohttp

from ..core.contracts import TransportError

logger = logging.getLogger(__name__)


class AiohttpSocketConnection:
    """One open websocket; iterating yields inbound text frames until it closes."""

    def __init__(self, url: str, websocket: aiohttp.ClientWebSocketResponse) -> None:
        self._url = url
        self._websocket = websocket

    async def send(self, message: str) -> None:
        if self._websocket.closed:
            raise TransportError(f"Websocket to {self._url} is closed.")
        try:
            await self._websocket.send_str(message)
        except (aiohttp.ClientError, ConnectionResetError) as exc:
            raise TransportError(str(exc)) from exc

    async def __aiter__(self) -> AsyncIterator[str]:
        async for message in self._websocket:
            if message.type == aiohttp.WSMsgType.TEXT:
                yield message.data
            elif message.type == aiohttp.WSMsgType.BINARY:
                yield message.data.decode("utf-8", errors="replace")
            elif message.type == aiohttp.WSMsgType.ERROR:
                error = self._websocket.exception()
                raise TransportError(f"Websocket error on {self._url}: {error}")
        logger.debug("Websocket %s closed with code %s", self._url, self._websocket.close_code)

    async def close(self) -> None:
        if not self._websocket.closed:
            await self._websocket.close()


class AiohttpSocketConnector:
    """Open websocket connections through a shared aiohttp session."""

    def __init__(
        self,
        *,
        session: aiohttp.ClientSession | None = None,
        heartbeat: float | None = 30.0,
        timeout: float = 10.0,
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self._heartbeat = heartbeat
        self._timeout = timeout

    async def connect(self, url: str) -> AiohttpSocketConnection:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, connect=self._timeout)
            )
            self._owns_session = True
        try:
            websocket = await self._session.ws_connect(url, heartbeat=self._heartbeat)
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise TransportError(f"Cannot connect to {url}: {exc}") from exc
        return AiohttpSocketConnection(url, websocket)

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None


__all__ = ["AiohttpSocketConnection", "AiohttpSocketConnector"]
