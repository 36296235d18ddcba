"""
Inbound half of the bridge.

Every decoded hub event goes through ``on_event``, which queues it for a
single worker task. The worker finishes one event, including any awaited user
code, before it takes the next one. Parameter values therefore never see
interleaved updates from two events.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from .contracts import (
    BootEvent,
    EventDecodeError,
    FunctionCallEvent,
    FunctionNotFoundError,
    HealthStatus,
    TransportError,
    decode_event,
)
from .functions import CallbackRegistry, FunctionRegistry, InvocationBridge, normalize_output
from .parameters import ParameterStore
from .publisher import Publisher

logger = logging.getLogger(__name__)

# Event types with dedicated handling; their callbacks are never run by the
# generic callback branch.
_RESERVED_TYPES = frozenset({"ping", "session", "boot", "request_state"})


class Subscriber:
    """Route hub events to the readiness gate, the invocation bridge, or callbacks."""

    def __init__(
        self,
        store: ParameterStore,
        functions: FunctionRegistry,
        callbacks: CallbackRegistry,
        publisher: Publisher,
        *,
        queue_size: int = 256,
    ) -> None:
        self._store = store
        self._bridge = InvocationBridge(functions)
        self._callbacks = callbacks
        self._publisher = publisher
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self._worker_task: asyncio.Task[None] | None = None
        self._was_ready = False
        self._received_total = 0
        self._dropped_total = 0
        self._failed_total = 0

    @property
    def ready(self) -> bool:
        return self._store.is_ready()

    async def start(self) -> None:
        if self._worker_task is None:
            self._worker_task = asyncio.create_task(self._worker(), name="hublink-subscriber")
            logger.info("Subscriber worker started.")

    async def stop(self) -> None:
        if self._worker_task is None:
            return
        self._worker_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker_task
        self._worker_task = None
        logger.info("Subscriber worker stopped.")

    async def on_raw(self, raw: str | bytes | Mapping[str, Any]) -> None:
        """Decode a transport payload and queue it; malformed payloads are dropped."""
        try:
            event = decode_event(raw)
        except EventDecodeError as exc:
            self._dropped_total += 1
            logger.warning("Ignoring malformed inbound payload: %s", exc)
            return
        await self.on_event(event)

    async def on_event(self, event: Mapping[str, Any]) -> None:
        """Queue an event for sequential processing."""
        self._received_total += 1
        await self._queue.put(dict(event))

    async def join(self) -> None:
        """Wait until every queued event has been fully processed."""
        await self._queue.join()

    async def dispatch(self, event: Mapping[str, Any]) -> None:
        """Process a single event to completion."""
        event = dict(event)
        event_type = event.get("type")
        logger.debug("Dispatching %s event", event_type)

        if event_type == "ping":
            try:
                await self._publisher.on_ping()
            except TransportError as exc:
                logger.warning("Pong could not be delivered: %s", exc)
            return
        if event_type == "session":
            await self._run_callback("session", event)
            return
        if event_type == "request_state":
            self._publisher.reset()
            return
        if event_type == "boot":
            await self._handle_boot(event)
        if event_type == "function_call" and await self._handle_function_call(event):
            return
        if event_type in _RESERVED_TYPES:
            return
        if isinstance(event_type, str) and event_type in self._callbacks:
            await self._run_callback(event_type, event)

    async def health(self) -> HealthStatus:
        running = self._worker_task is not None and not self._worker_task.done()
        return HealthStatus(
            status="healthy" if running else "degraded",
            details={
                "ready": self._store.is_ready(),
                "missing_parameters": self._store.missing(),
                "queue_depth": self._queue.qsize(),
                "received_total": self._received_total,
                "dropped_total": self._dropped_total,
                "failed_total": self._failed_total,
            },
        )

    async def _handle_boot(self, event: dict[str, Any]) -> None:
        try:
            boot = BootEvent.model_validate(event)
        except ValidationError:
            logger.warning("Boot event without a usable parameter map; ignoring values.")
            boot = None
        if boot is not None:
            applied = self._store.apply(boot.parameters)
            logger.debug("Boot applied parameters %s", applied)
        ready = self._store.is_ready()
        became_ready = ready and not self._was_ready
        self._was_ready = ready
        try:
            await self._publisher.publish_state()
        except TransportError as exc:
            logger.warning("State publish after boot failed: %s", exc)
        if became_ready:
            logger.info("All mandatory parameters present; module is ready.")
            await self._run_callback("boot", event)
        elif not ready:
            logger.info("Waiting for parameters: %s", ", ".join(self._store.missing()))

    async def _handle_function_call(self, event: dict[str, Any]) -> bool:
        try:
            call = FunctionCallEvent.model_validate(event)
        except ValidationError:
            logger.warning("Malformed function_call event; ignoring.")
            return False
        try:
            output = await self._bridge.invoke(call.name, call.args, call.default_args)
        except FunctionNotFoundError:
            logger.debug("No function registered under %r", call.name)
            return False
        reply = {**event, "output": normalize_output(output)}
        try:
            await self._publisher.publish_event(reply)
        except TransportError as exc:
            logger.warning("Reply for function %s could not be delivered: %s", call.name, exc)
        return True

    async def _run_callback(self, event_type: str, event: dict[str, Any]) -> None:
        registration = self._callbacks.get(event_type)
        if registration is None:
            return
        args = event.get("args")
        default_args = event.get("defaultArgs")
        arguments = registration.bind(
            args if isinstance(args, Mapping) else {},
            default_args if isinstance(default_args, Mapping) else {},
            event,
        )
        await registration.call(arguments)

    async def _worker(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.dispatch(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                self._failed_total += 1
                logger.exception("Handling of %s event failed.", event.get("type"))
            finally:
                self._queue.task_done()


__all__ = ["Subscriber"]
