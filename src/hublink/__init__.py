"""
hublink - keeps a locally running module synchronized with a remote hub.

The package exposes the synchronization core: change-detected state
publishing with a ping-driven liveness lease, sequential dispatch of hub
events, the remote function invocation bridge, and a socket connection
supervisor for multi-peer deployments.
"""

__version__ = "0.1.0"

from hublink.core import (
    BridgeRuntime,
    ConfigService,
    ConnectionSupervisor,
    FunctionRegistry,
    Module,
    ModuleKind,
    Parameter,
    ParameterStore,
    Publisher,
    Subscriber,
    create_parameter,
)

__all__ = [
    "BridgeRuntime",
    "ConfigService",
    "ConnectionSupervisor",
    "FunctionRegistry",
    "Module",
    "ModuleKind",
    "Parameter",
    "ParameterStore",
    "Publisher",
    "Subscriber",
    "create_parameter",
]
