"""
Outbound half of the bridge.

The publisher owns the outbound channel. A periodic loop snapshots module
state and only sends it when its structural fingerprint changed since the
last delivery. A liveness lease renewed by hub pings gates every send except
the ``pong`` reply: once the hub stops pinging, publishing quietly stops.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any, Literal

from pydantic import BaseModel
from pydantic_core import to_jsonable_python

from .contracts import EventSink, HealthStatus, StateEvent, TransportError, fingerprint, to_wire

logger = logging.getLogger(__name__)

Stream = Literal["stdout", "stderr"]
SnapshotSource = Callable[[], Any]

DEFAULT_PUBLISH_INTERVAL = 1.0
DEFAULT_LIVENESS_TIMEOUT = 6.0


class MirrorSink:
    """
    Bounded queue of process output waiting to be forwarded to the hub.

    ``write`` may be called from any thread; items are handed to the event
    loop the publisher runs on. When the queue is full new output is dropped.
    """

    def __init__(self, *, maxsize: int = 512) -> None:
        self._queue: asyncio.Queue[tuple[Stream, str]] = asyncio.Queue(maxsize=maxsize)
        self._loop: asyncio.AbstractEventLoop | None = None
        self.dropped_total = 0

    def attach(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def write(self, stream: Stream, data: str) -> None:
        if not data:
            return
        loop = self._loop
        if loop is None or loop.is_closed():
            self._enqueue(stream, data)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._enqueue(stream, data)
        else:
            loop.call_soon_threadsafe(self._enqueue, stream, data)

    def _enqueue(self, stream: Stream, data: str) -> None:
        try:
            self._queue.put_nowait((stream, data))
        except asyncio.QueueFull:
            self.dropped_total += 1

    async def get(self) -> tuple[Stream, str]:
        return await self._queue.get()

    def qsize(self) -> int:
        return self._queue.qsize()


class HubLogHandler(logging.Handler):
    """
    Logging handler that mirrors records to the hub through a ``MirrorSink``.

    Records below WARNING are forwarded as ``stdout`` events, the rest as
    ``stderr``. Records from this package are skipped so that transport
    warnings cannot feed back into the channel they describe.
    """

    def __init__(self, sink: MirrorSink, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._sink = sink

    def emit(self, record: logging.LogRecord) -> None:
        if record.name == "hublink" or record.name.startswith("hublink."):
            return
        try:
            stream: Stream = "stderr" if record.levelno >= logging.WARNING else "stdout"
            self._sink.write(stream, self.format(record))
        except Exception:  # pragma: no cover - logging must never raise
            self.handleError(record)


class Publisher:
    """Periodic, change-detected state publisher with a ping-driven liveness lease."""

    def __init__(
        self,
        sink: EventSink,
        snapshot: SnapshotSource,
        *,
        interval: float = DEFAULT_PUBLISH_INTERVAL,
        liveness_timeout: float = DEFAULT_LIVENESS_TIMEOUT,
        clock: Callable[[], float] | None = None,
        mirror: MirrorSink | None = None,
    ) -> None:
        self._sink = sink
        self._snapshot = snapshot
        self._interval = interval
        self._liveness_timeout = liveness_timeout
        self._clock = clock or time.monotonic
        self._mirror = mirror
        self._last_fingerprint: str | None = None
        self._last_ping: float | None = None
        self._loop_task: asyncio.Task[None] | None = None
        self._mirror_task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._published_total = 0
        self._suppressed_total = 0
        self._failed_total = 0

    @property
    def mirror(self) -> MirrorSink | None:
        return self._mirror

    @property
    def last_ping(self) -> float | None:
        return self._last_ping

    async def start(self) -> None:
        """Start the periodic state loop and, when configured, output mirroring."""
        if self._loop_task is None:
            self._stopping.clear()
            self._loop_task = asyncio.create_task(self._run(), name="hublink-publisher")
            logger.info("Publisher started with %.2fs interval.", self._interval)
        if self._mirror is not None and self._mirror_task is None:
            self._mirror.attach(asyncio.get_running_loop())
            self._mirror_task = asyncio.create_task(
                self._mirror_loop(), name="hublink-publisher-mirror"
            )

    async def stop(self) -> None:
        self._stopping.set()
        for task in (self._loop_task, self._mirror_task):
            if task is None:
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._loop_task = None
        self._mirror_task = None
        logger.info("Publisher stopped.")

    def lease_expired(self) -> bool:
        """True once a ping was seen and the lease window has since elapsed."""
        if self._last_ping is None:
            return False
        return self._clock() - self._last_ping > self._liveness_timeout

    def reset(self) -> None:
        """Forget the last published state so the next tick republishes it."""
        self._last_fingerprint = None

    def state_event(self) -> StateEvent:
        return StateEvent(state=to_jsonable_python(self._snapshot(), fallback=str))

    async def publish_event(self, event: Mapping[str, Any] | BaseModel) -> bool:
        """
        Send ``event`` unless the liveness lease has expired.

        Returns ``False`` when the send was suppressed. Transport failures
        propagate as ``TransportError``.
        """
        if self.lease_expired():
            self._suppressed_total += 1
            logger.debug("Liveness lease expired; dropping outbound event.")
            return False
        await self._deliver(to_wire(event))
        return True

    async def publish_state(self) -> bool:
        """Publish the current snapshot unconditionally and remember it."""
        event = to_wire(self.state_event())
        return await self._publish_marked(event, fingerprint(event))

    async def tick(self) -> bool:
        """Publish the current snapshot only if it differs from the last one sent."""
        event = to_wire(self.state_event())
        current = fingerprint(event)
        if current == self._last_fingerprint:
            return False
        return await self._publish_marked(event, current)

    async def on_ping(self) -> None:
        """Renew the liveness lease and answer with ``pong`` right away."""
        self._last_ping = self._clock()
        await self._deliver({"type": "pong"})

    async def health(self) -> HealthStatus:
        ping_age = None if self._last_ping is None else self._clock() - self._last_ping
        expired = self.lease_expired()
        return HealthStatus(
            status="degraded" if expired else "healthy",
            details={
                "published_total": self._published_total,
                "suppressed_total": self._suppressed_total,
                "failed_total": self._failed_total,
                "last_ping_age": ping_age,
                "lease_expired": expired,
                "mirror_dropped": self._mirror.dropped_total if self._mirror else 0,
            },
        )

    async def _publish_marked(self, event: dict[str, Any], current: str) -> bool:
        # Mark before awaiting so an overlapping tick does not resend the same state.
        previous = self._last_fingerprint
        self._last_fingerprint = current
        delivered = False
        try:
            delivered = await self.publish_event(event)
        finally:
            if not delivered and self._last_fingerprint == current:
                self._last_fingerprint = previous
        return delivered

    async def _deliver(self, event: dict[str, Any]) -> None:
        try:
            await self._sink.publish(event)
        except TransportError:
            self._failed_total += 1
            raise
        self._published_total += 1
        logger.debug("Published %s event", event.get("type"))

    async def _run(self) -> None:
        try:
            while not self._stopping.is_set():
                await asyncio.sleep(self._interval)
                try:
                    await self.tick()
                except TransportError as exc:
                    logger.warning("State publish failed; retrying next tick: %s", exc)
                except Exception:
                    logger.exception("State snapshot could not be published.")
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            return

    async def _mirror_loop(self) -> None:
        assert self._mirror is not None
        try:
            while not self._stopping.is_set():
                stream, data = await self._mirror.get()
                try:
                    await self.publish_event({"type": stream, "data": data})
                except TransportError as exc:
                    logger.debug("Dropping mirrored %s output: %s", stream, exc)
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            return


__all__ = ["HubLogHandler", "MirrorSink", "Publisher"]
