"""
Local stream-socket transport.

Both directions share one Unix domain socket carrying JSON objects. Frames
are not delimited on the wire, so the reader splits the byte stream by
decoding consecutive JSON values. An ``init`` event is sent as soon as the
connection opens.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

from ..core.contracts import TransportError, encode_event

logger = logging.getLogger(__name__)

_READ_CHUNK = 65536
_MAX_PENDING = 4 * 1024 * 1024


class LocalSocketTransport:
    """Talk to the hub through a local Unix domain socket."""

    def __init__(self, path: str) -> None:
        if not path:
            raise ValueError("A socket path is required.")
        self._path = path
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._decoder = json.JSONDecoder()

    async def open(self) -> None:
        try:
            self._reader, self._writer = await asyncio.open_unix_connection(self._path)
        except OSError as exc:
            raise TransportError(f"Cannot connect to {self._path}: {exc}") from exc
        logger.info("Connected to local socket %s", self._path)
        await self.publish({"type": "init"})

    async def close(self) -> None:
        writer, self._writer = self._writer, None
        self._reader = None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as exc:
            logger.debug("Socket close reported %s", exc)

    async def publish(self, event: Mapping[str, Any]) -> None:
        if self._writer is None:
            raise TransportError("Local socket transport is not connected.")
        try:
            self._writer.write(encode_event(event).encode("utf-8"))
            await self._writer.drain()
        except OSError as exc:
            raise TransportError(f"Write to {self._path} failed: {exc}") from exc

    async def listen(self) -> AsyncIterator[str]:
        if self._reader is None:
            raise TransportError("Local socket transport is not connected.")
        buffer = ""
        text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            try:
                chunk = await self._reader.read(_READ_CHUNK)
            except OSError as exc:
                raise TransportError(f"Read from {self._path} failed: {exc}") from exc
            if not chunk:
                logger.warning("Local socket %s closed by peer.", self._path)
                return
            buffer += text.decode(chunk)
            frames, buffer = self._split(buffer)
            if len(buffer) > _MAX_PENDING:
                logger.warning("Dropping %d bytes of unterminated socket data.", len(buffer))
                buffer = ""
            for frame in frames:
                yield frame

    def _split(self, buffer: str) -> tuple[list[str], str]:
        frames: list[str] = []
        index = 0
        length = len(buffer)
        while index < length:
            while index < length and buffer[index].isspace():
                index += 1
            if index >= length:
                break
            try:
                _, end = self._decoder.raw_decode(buffer, index)
            except json.JSONDecodeError:
                # Incomplete frame; wait for more bytes unless the buffer is clearly corrupt.
                if buffer[index] not in "{[":
                    logger.warning("Discarding undecodable socket data.")
                    return frames, ""
                break
            frames.append(buffer[index:end])
            index = end
        return frames, buffer[index:]


__all__ = ["LocalSocketTransport"]
