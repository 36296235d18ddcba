"""
Mercure hub transport implemented with httpx.

Outbound events are POSTed as form data (``topic`` + JSON ``data``) with the
publisher bearer token. Inbound events arrive over a long-lived server-sent
events stream on the subscriber topic. The stream is reopened after a short
delay whenever it drops.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

import httpx

from ..core.config import MercureSettings
from ..core.contracts import TransportError, encode_event

logger = logging.getLogger(__name__)


class MercureTransport:
    """Publish to and subscribe from a Mercure hub."""

    def __init__(
        self,
        settings: MercureSettings,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
        reconnect_delay: float = 1.0,
    ) -> None:
        self._settings = settings
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._reconnect_delay = reconnect_delay
        self._closed = False

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        self._closed = False
        logger.info("Mercure transport ready for %s", self._settings.url)

    async def close(self) -> None:
        self._closed = True
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def publish(self, event: Mapping[str, Any]) -> None:
        client = self._require_client()
        form = {"topic": self._settings.publisher.topic, "data": encode_event(event)}
        headers = {"Authorization": f"Bearer {self._settings.publisher.token}"}
        try:
            response = await client.post(self._settings.url, data=form, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise TransportError(f"Mercure publish failed: {exc}") from exc

    async def listen(self) -> AsyncIterator[str]:
        """Yield raw event payloads, reconnecting until the transport is closed."""
        while not self._closed:
            try:
                async for data in self._stream_once():
                    yield data
            except httpx.HTTPError as exc:
                logger.warning("Mercure subscription dropped: %s", exc)
            if self._closed:
                break
            await asyncio.sleep(self._reconnect_delay)

    async def _stream_once(self) -> AsyncIterator[str]:
        client = self._require_client()
        headers = {
            "Authorization": f"Bearer {self._settings.subscriber.token}",
            "Accept": "text/event-stream",
        }
        params = {"topic": self._settings.subscriber.topic}
        async with client.stream(
            "GET", self._settings.url, params=params, headers=headers, timeout=None
        ) as response:
            response.raise_for_status()
            logger.info("Subscribed to %s", self._settings.subscriber.topic)
            data_lines: list[str] = []
            async for line in response.aiter_lines():
                if line == "":
                    if data_lines:
                        yield "\n".join(data_lines)
                        data_lines = []
                    continue
                if line.startswith(":"):
                    continue
                field, _, value = line.partition(":")
                if field == "data":
                    data_lines.append(value[1:] if value.startswith(" ") else value)
            if data_lines:
                yield "\n".join(data_lines)

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise TransportError("Mercure transport has not been opened.")
        return self._client


__all__ = ["MercureTransport"]
