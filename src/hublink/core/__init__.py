"""
Synchronization and dispatch core.

The parameter store, function registry, publisher, and subscriber are wired
together by ``BridgeRuntime``; ``ConnectionSupervisor`` serves the socket
variant where several peers receive the module roster.
"""

from .config import ConfigError, ConfigService, ConfigSnapshot
from .contracts import (
    EventDecodeError,
    FunctionNotFoundError,
    HealthStatus,
    RegistrationError,
    TransportError,
)
from .functions import CallbackRegistry, FunctionRegistration, FunctionRegistry, InvocationBridge
from .media import Attachment, Image, Link, MediasEvent, Video
from .module import Module, ModuleKind
from .parameters import Parameter, ParameterStore, create_parameter
from .publisher import HubLogHandler, MirrorSink, Publisher
from .runtime import BridgeRuntime
from .subscriber import Subscriber
from .supervisor import ConnectionState, ConnectionSupervisor

__all__ = [
    "Attachment",
    "BridgeRuntime",
    "CallbackRegistry",
    "ConfigError",
    "ConfigService",
    "ConfigSnapshot",
    "ConnectionState",
    "ConnectionSupervisor",
    "EventDecodeError",
    "FunctionNotFoundError",
    "FunctionRegistration",
    "FunctionRegistry",
    "HealthStatus",
    "HubLogHandler",
    "Image",
    "InvocationBridge",
    "Link",
    "MediasEvent",
    "MirrorSink",
    "Module",
    "ModuleKind",
    "Parameter",
    "ParameterStore",
    "Publisher",
    "RegistrationError",
    "Subscriber",
    "TransportError",
    "Video",
    "create_parameter",
]
