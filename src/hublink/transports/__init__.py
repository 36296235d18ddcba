"""
Transports that move hub events over the wire.
"""

from .local_socket import LocalSocketTransport
from .mercure import MercureTransport
from .websocket import AiohttpSocketConnection, AiohttpSocketConnector

__all__ = [
    "AiohttpSocketConnection",
    "AiohttpSocketConnector",
    "LocalSocketTransport",
    "MercureTransport",
]
