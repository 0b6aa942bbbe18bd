"""
Network layer — transport channels and the connection registry.
"""

from birddrop.network.registry import Connection, ConnectionRegistry
from birddrop.network.transport import Channel, CloseRequest, WebSocketChannel

__all__ = [
    "Channel",
    "CloseRequest",
    "Connection",
    "ConnectionRegistry",
    "WebSocketChannel",
]
