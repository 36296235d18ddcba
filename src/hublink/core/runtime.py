"""
Runtime that ties one module to the hub.

``BridgeRuntime`` owns the shared parameter store and function registry,
builds the publisher and subscriber around a transport, and feeds inbound
payloads to the subscriber for as long as it runs. The module keeps a
reference to the runtime and reads or updates the same live objects.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from .. import __version__
from ..transports.local_socket import LocalSocketTransport
from ..transports.mercure import MercureTransport
from .config import BridgeSettings, ConfigError, ConfigService
from .contracts import HealthStatus, Transport, TransportError
from .functions import CallbackRegistry, FunctionRegistration, FunctionRegistry, Handler
from .media import Link, MediasEvent
from .module import Module
from .parameters import OverrideSource, Parameter, ParameterStore
from .publisher import HubLogHandler, MirrorSink, Publisher, SnapshotSource
from .subscriber import Subscriber

logger = logging.getLogger(__name__)

SDK_INFO = {"name": "python", "version": __version__}
NOTIFICATION_LEVELS = ("low", "normal", "high", "critical")


class BridgeRuntime:
    """Keep a module synchronized with the hub over a single transport."""

    def __init__(
        self,
        transport: Transport,
        *,
        name: str,
        version: str | None = None,
        category: str | None = None,
        parameters: Iterable[Parameter] = (),
        functions: Iterable[FunctionRegistration | Handler] = (),
        function_schemas: Sequence[Mapping[str, Any]] = (),
        custom_events: Iterable[str] = (),
        snapshot: SnapshotSource | None = None,
        settings: BridgeSettings | None = None,
        overrides: Mapping[str, Any] | OverrideSource | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("name must be a non-empty string.")
        self.name = name
        self.version = version
        self.category = category
        self.function_schemas = [dict(schema) for schema in function_schemas]
        self._settings = settings or BridgeSettings()
        self._transport = transport
        self.store = ParameterStore(parameters, overrides=overrides)
        self.functions = FunctionRegistry(functions)
        self.callbacks = CallbackRegistry(custom_events)
        self.mirror = (
            MirrorSink(maxsize=self._settings.mirror_queue_size)
            if self._settings.mirror_output
            else None
        )
        self.publisher = Publisher(
            transport,
            snapshot or self.default_snapshot,
            interval=self._settings.publish_interval,
            liveness_timeout=self._settings.liveness_timeout,
            clock=clock,
            mirror=self.mirror,
        )
        self.subscriber = Subscriber(
            self.store,
            self.functions,
            self.callbacks,
            self.publisher,
            queue_size=self._settings.queue_size,
        )
        self._listen_task: asyncio.Task[None] | None = None
        self._running = False

    @classmethod
    def from_config(
        cls,
        config: ConfigService,
        *,
        name: str,
        transport: Transport | None = None,
        **kwargs: Any,
    ) -> BridgeRuntime:
        """Build a runtime whose settings, transport, and overrides come from config."""
        snapshot = config.snapshot
        if transport is None:
            transport = build_transport(config)
        kwargs.setdefault("overrides", config.parameter_override)
        return cls(transport, name=name, settings=snapshot.bridge, **kwargs)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def ready(self) -> bool:
        return self.store.is_ready()

    def on(
        self, event_type: str, callback: Handler, *, parameters: Sequence[str] | None = None
    ) -> BridgeRuntime:
        """Register a lifecycle or custom event callback."""
        self.callbacks.on(event_type, callback, parameters=parameters)
        return self

    def function(
        self, name: str | None = None, *, parameters: Sequence[str] | None = None
    ) -> Callable[[Handler], Handler]:
        return self.functions.function(name, parameters=parameters)

    def set_functions(self, functions: Iterable[FunctionRegistration | Handler]) -> BridgeRuntime:
        self.functions.replace(functions)
        return self

    def set_parameters(self, parameters: Iterable[Parameter]) -> BridgeRuntime:
        self.store.replace_all(parameters)
        return self

    def log_handler(self, level: int = logging.INFO) -> HubLogHandler:
        """Logging handler that forwards records to the hub as stdout/stderr events."""
        if self.mirror is None:
            raise ConfigError("Output mirroring is disabled; set bridge.mirror_output.")
        return HubLogHandler(self.mirror, level)

    def default_snapshot(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "category": self.category,
            "ready": self.store.is_ready(),
            "parameters": self.store.to_json(),
            "functionSchemas": self.function_schemas,
            "errors": self.store.errors(),
            "sdk": dict(SDK_INFO),
        }

    def as_module(self) -> Module:
        """Roster entry sharing this runtime's store and registry."""
        return Module.extension(self.name, self.store, self.functions, version=self.version)

    async def start(self) -> None:
        if self._running:
            logger.warning("Runtime %s already running.", self.name)
            return
        try:
            await self._transport.open()
        except TransportError as exc:
            logger.warning("Initial connect failed; retrying in the background: %s", exc)
        await self.subscriber.start()
        await self.publisher.start()
        self._running = True
        self._listen_task = asyncio.create_task(self._listen_loop(), name="hublink-listen")
        logger.info("Runtime %s started.", self.name)

    async def stop(self) -> None:
        if not self._running:
            logger.warning("Runtime %s stop requested while not running.", self.name)
            return
        self._running = False
        if self._listen_task is not None:
            self._listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listen_task
            self._listen_task = None
        await self.publisher.stop()
        await self.subscriber.stop()
        await self._transport.close()
        logger.info("Runtime %s stopped.", self.name)

    async def send_message(self, text: str) -> bool:
        _require_text(text)
        return await self.publisher.publish_event({"type": "message", "text": text})

    async def send_notification(
        self, text: str, *, level: str = "normal", persistent: bool = False
    ) -> bool:
        _require_text(text)
        if level not in NOTIFICATION_LEVELS:
            raise ValueError(f"level must be one of: {', '.join(NOTIFICATION_LEVELS)}")
        return await self.publisher.publish_event(
            {"type": "notification", "text": text, "level": level, "persistent": persistent}
        )

    async def send_medias(self, medias: Link | Sequence[Link]) -> bool:
        """Send one media item or a batch of them as a single ``medias`` event."""
        items = [medias] if isinstance(medias, Link) else list(medias)
        if not all(isinstance(item, Link) for item in items):
            raise TypeError("medias must be Link, Image, Video, or Attachment instances.")
        return await self.publisher.publish_event(MediasEvent(medias=items))

    async def enable_alarm(self) -> bool:
        return await self.publisher.publish_event({"type": "alarm"})

    async def health(self) -> dict[str, HealthStatus]:
        return {
            "publisher": await self.publisher.health(),
            "subscriber": await self.subscriber.health(),
        }

    async def _listen_loop(self) -> None:
        while self._running:
            try:
                async for raw in self._transport.listen():
                    await self.subscriber.on_raw(raw)
            except TransportError as exc:
                logger.warning("Inbound channel failed: %s", exc)
            except Exception:
                logger.exception("Inbound channel crashed.")
            if not self._running:
                break
            await asyncio.sleep(self._settings.reconnect_delay)
            try:
                await self._transport.close()
                await self._transport.open()
            except TransportError as exc:
                logger.warning("Reconnect failed: %s", exc)


def _require_text(text: str) -> None:
    if not isinstance(text, str) or not text.strip():
        raise ValueError("text must be a non-empty string.")


def build_transport(config: ConfigService) -> Transport:
    """Create the single-channel transport named by ``connection.transport``."""
    connection = config.snapshot.connection
    reconnect_delay = config.snapshot.bridge.reconnect_delay
    if connection.transport == "mercure":
        return MercureTransport(connection.mercure(), reconnect_delay=reconnect_delay)
    if connection.transport == "socket":
        if not connection.socket_path:
            raise ConfigError("The socket transport requires connection.socket_path.")
        return LocalSocketTransport(connection.socket_path)
    raise ConfigError(
        f"Transport {connection.transport!r} is served by the connection supervisor."
    )


__all__ = ["SDK_INFO", "BridgeRuntime", "build_transport"]
