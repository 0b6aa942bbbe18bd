"""
Message router — gate and dispatch every inbound frame.

Order of checks per frame: rate limit (every frame counts), size, JSON object
with a string `type`, known type, schema. Anything failing the last three is
dropped silently; the caller never learns why.

Depends on: config, schemas, network/registry, sessions, geo
"""

import json
import sys
from typing import Callable, Optional, Union

from pydantic import ValidationError

from birddrop.config import MAX_MESSAGE_SIZE, RATE_LIMIT_MAX_MESSAGES, RATE_LIMIT_WINDOW
from birddrop.geo import GeoPool
from birddrop.network.registry import Connection, ConnectionRegistry
from birddrop.schemas import (
    MESSAGE_SCHEMAS,
    GeoApproveMessage,
    GeoJoinMessage,
    GeoRequestMessage,
    InboundMessage,
    JoinMessage,
    SignalMessage,
)
from birddrop.sessions import SessionTable


def frame_size(frame: Union[str, bytes]) -> int:
    if isinstance(frame, str):
        return len(frame.encode("utf-8"))
    return len(frame)


class MessageRouter:
    """Sole entry point through which client input mutates the shared tables."""

    def __init__(self, registry: ConnectionRegistry, sessions: SessionTable, geo: GeoPool):
        self.registry = registry
        self.sessions = sessions
        self.geo = geo
        self._handlers: dict[str, Callable[[Connection, Optional[InboundMessage]], None]] = {
            "join": self._on_join,
            "geo-join": self._on_geo_join,
            "geo-request": self._on_geo_request,
            "geo-approve": self._on_geo_approve,
            "signal": self._on_signal,
            "ping": self._on_ping,
            "pong": self._on_pong,
        }

    # -------------------------------------------------------------------------
    # Gates
    # -------------------------------------------------------------------------

    def check_rate_limit(self, conn: Connection) -> bool:
        """Count one frame. On the first frame over the limit, notify once and close."""
        now = self.registry.clock()
        if now - conn.window_start > RATE_LIMIT_WINDOW:
            conn.message_count = 0
            conn.window_start = now
        conn.message_count += 1

        if conn.message_count > RATE_LIMIT_MAX_MESSAGES:
            print(f"[BirdDrop] Rate limit exceeded for {conn.conn_id}, closing connection", file=sys.stderr)
            self.registry.send(conn.conn_id, {"type": "error", "message": "Rate limit exceeded"})
            self.registry.close(conn.conn_id)
            return False
        return True

    def parse(self, conn: Connection, frame: Union[str, bytes]) -> Optional[dict]:
        try:
            data = json.loads(frame)
        except ValueError:
            print(f"[BirdDrop] Failed to parse incoming message as JSON from {conn.conn_id}", file=sys.stderr)
            return None
        if not isinstance(data, dict) or not isinstance(data.get("type"), str):
            print(f"[BirdDrop] Invalid message format from {conn.conn_id}", file=sys.stderr)
            return None
        return data

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def handle_frame(self, conn: Connection, frame: Union[str, bytes]) -> Optional[str]:
        """Process one inbound frame. Returns the dispatched type, or None if dropped."""
        if conn.closing or self.registry.get(conn.conn_id) is not conn:
            return None
        conn.is_alive = True

        if not self.check_rate_limit(conn):
            return None

        size = frame_size(frame)
        if size > MAX_MESSAGE_SIZE:
            print(f"[BirdDrop] Message too large from {conn.conn_id}: {size} bytes", file=sys.stderr)
            return None

        data = self.parse(conn, frame)
        if data is None:
            return None

        msg_type = data["type"]
        handler = self._handlers.get(msg_type)
        if handler is None:
            print(f"[BirdDrop] Unknown message type: {msg_type[:40]} from {conn.conn_id}", file=sys.stderr)
            return None

        msg = None
        schema = MESSAGE_SCHEMAS.get(msg_type)
        if schema is not None:
            try:
                msg = schema.model_validate(data)
            except ValidationError as e:
                print(f"[BirdDrop] Invalid {msg_type} from {conn.conn_id} "
                      f"({e.error_count()} error(s))", file=sys.stderr)
                return None

        handler(conn, msg)
        return msg_type

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _on_join(self, conn: Connection, msg: JoinMessage) -> None:
        self.sessions.join(conn, msg.session_id)

    def _on_geo_join(self, conn: Connection, msg: GeoJoinMessage) -> None:
        self.geo.geo_join(conn, msg.lat, msg.lon, msg.user_id, msg.hint)

    def _on_geo_request(self, conn: Connection, msg: GeoRequestMessage) -> None:
        self.geo.geo_request(msg.from_id, msg.to_id)

    def _on_geo_approve(self, conn: Connection, msg: GeoApproveMessage) -> None:
        self.geo.geo_approve(msg.from_id, msg.to_id, msg.approved)

    def _on_signal(self, conn: Connection, msg: SignalMessage) -> None:
        self.sessions.relay_signal(conn, msg.payload)

    def _on_ping(self, conn: Connection, msg: None) -> None:
        self.registry.send(conn.conn_id, {"type": "pong"})

    def _on_pong(self, conn: Connection, msg: None) -> None:
        # Heartbeat acknowledgement; liveness was already marked above.
        pass
