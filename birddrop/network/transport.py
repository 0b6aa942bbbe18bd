"""
Transport channel interface — ABC over one bidirectional message stream.

Depends on: nothing beyond starlette's WebSocket state enum.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from starlette.websockets import WebSocketState


@dataclass
class CloseRequest:
    """Queued behind pending frames so they flush before the transport closes."""
    delay: float = 0.0
    code: int = 1000


class Channel(ABC):
    """Abstract base class for the transport a Connection writes to.

    The relay only ever writes text frames, asks whether the stream is still
    open, and closes; reading is driven by whoever owns the underlying stream.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Transport identifier (e.g. 'websocket')."""
        ...

    @property
    def remote(self) -> str:
        """Printable peer address for logs."""
        return "unknown"

    @property
    def is_open(self) -> bool:
        """Whether the transport still considers the peer connected."""
        return True

    @abstractmethod
    async def send_text(self, data: str) -> None:
        """Write one text frame. Raises if the peer is gone."""
        ...

    async def ping(self) -> None:
        """Liveness hook run on each heartbeat cycle.

        Transports whose protocol pings the peer on its own need nothing here.
        """
        return None

    @abstractmethod
    async def close(self, code: int = 1000) -> None:
        """Close the transport."""
        ...


class WebSocketChannel(Channel):
    """Channel over a Starlette WebSocket.

    Protocol-level ping/pong is run by the ASGI server (uvicorn's
    ws_ping_interval / ws_ping_timeout), which browsers answer without any
    application code. A peer that stops answering is disconnected there, and
    that shows up here as a closed state.
    """

    def __init__(self, websocket):
        self.websocket = websocket

    @property
    def name(self) -> str:
        return "websocket"

    @property
    def remote(self) -> str:
        client = self.websocket.client
        if client is None:
            return "unknown"
        return f"{client.host}:{client.port}"

    @property
    def is_open(self) -> bool:
        return (self.websocket.client_state == WebSocketState.CONNECTED
                and self.websocket.application_state == WebSocketState.CONNECTED)

    async def send_text(self, data: str) -> None:
        await self.websocket.send_text(data)

    async def close(self, code: int = 1000) -> None:
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        await self.websocket.close(code=code)
