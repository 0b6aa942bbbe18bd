"""
Connection registry — live connections, outbound queues, liveness sweep, cleanup cascade.

Tables elsewhere store connection ids only; live handles are resolved here at
the moment of send, so a connection that vanished mid-lookup is just a logged
drop.

Depends on: config, network/transport
"""

import asyncio
import json
import sys
import time
import uuid
from typing import Callable, Iterable, Optional

from birddrop.config import MAX_OUTBOX_FRAMES
from birddrop.network.transport import Channel, CloseRequest

_PROBE = object()

# Close code for a peer whose outbox overflowed.
CLOSE_BACKLOG = 1008


class Connection:
    """One peer's transport handle plus its per-connection bookkeeping."""

    def __init__(self, conn_id: str, channel: Channel, now: float,
                 max_queued: int = MAX_OUTBOX_FRAMES):
        self.conn_id = conn_id
        self.channel = channel
        self.connected_at = now
        self.is_alive = True
        self.session_id: Optional[str] = None
        self.closing = False
        # Rate limit window
        self.message_count = 0
        self.window_start = now
        # One slot past max_queued is reserved for the CloseRequest.
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=max_queued + 1)
        self.max_queued = max_queued

    @property
    def short_id(self) -> str:
        return self.conn_id[:8]

    def _put(self, item) -> bool:
        if self.closing:
            return False
        if self.outbox.qsize() >= self.max_queued:
            print(f"[BirdDrop] Outbox full for {self.short_id} "
                  f"({self.max_queued} frames unread), closing", file=sys.stderr)
            self.request_close(code=CLOSE_BACKLOG)
            return False
        self.outbox.put_nowait(item)
        return True

    def enqueue(self, frame: str) -> bool:
        """Queue a text frame for the writer task.

        False if the connection is closing, or if the peer has stopped reading
        and its backlog is full, in which case the connection is closed.
        """
        return self._put(frame)

    def probe(self) -> None:
        self._put(_PROBE)

    def request_close(self, delay: float = 0.0, code: int = 1000) -> None:
        """Flush whatever is queued, then close. Later frames are refused."""
        if self.closing:
            return
        self.closing = True
        self.outbox.put_nowait(CloseRequest(delay=delay, code=code))

    async def pump(self) -> None:
        """Writer task: drain the outbox in order until a CloseRequest is reached."""
        while True:
            item = await self.outbox.get()
            if isinstance(item, CloseRequest):
                if item.delay:
                    await asyncio.sleep(item.delay)
                try:
                    await self.channel.close(item.code)
                except Exception as e:
                    print(f"[BirdDrop] Close failed for {self.short_id}: {e}", file=sys.stderr)
                return
            try:
                if item is _PROBE:
                    await self.channel.ping()
                else:
                    await self.channel.send_text(item)
            except Exception as e:
                print(f"[BirdDrop] Send to {self.short_id} failed: {e}", file=sys.stderr)


class ConnectionRegistry:
    """Owns every live Connection, keyed by a process-unique id."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.connections: dict[str, Connection] = {}
        self._cleanup_hooks: list[Callable[[str], None]] = []

    def __len__(self) -> int:
        return len(self.connections)

    def add_cleanup_hook(self, fn: Callable[[str], None]) -> None:
        """Register fn(conn_id), called after a connection is deregistered."""
        self._cleanup_hooks.append(fn)

    def get(self, conn_id: str) -> Optional[Connection]:
        return self.connections.get(conn_id)

    def register(self, channel: Channel) -> Connection:
        conn = Connection(uuid.uuid4().hex, channel, self.clock())
        self.connections[conn.conn_id] = conn
        print(f"[BirdDrop] New {channel.name} connection from {channel.remote} ({conn.conn_id})", file=sys.stderr)
        return conn

    def deregister(self, conn_id: str) -> None:
        """Remove a connection and cascade cleanup. Safe to call more than once."""
        conn = self.connections.pop(conn_id, None)
        if conn is None:
            return
        print(f"[BirdDrop] Connection closed: {conn_id} session: {conn.session_id} "
              f"after {self.clock() - conn.connected_at:.0f}s", file=sys.stderr)
        for hook in self._cleanup_hooks:
            try:
                hook(conn_id)
            except Exception as e:
                print(f"[BirdDrop] Cleanup hook {getattr(hook, '__name__', hook)} failed "
                      f"for {conn.short_id}: {e}", file=sys.stderr)

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    def send(self, conn_id: str, message: dict) -> bool:
        """Fire-and-forget send. Returns False (and logs) if the peer is gone."""
        conn = self.connections.get(conn_id)
        if conn is None or not conn.enqueue(json.dumps(message)):
            print(f"[BirdDrop] Dropping {message.get('type')} for {conn_id[:8]}: "
                  f"connection gone", file=sys.stderr)
            return False
        return True

    def notify(self, conn_ids: Iterable[str], message: dict) -> int:
        """Send the same message to several connections; one failure never stops the rest."""
        delivered = 0
        for conn_id in conn_ids:
            if self.send(conn_id, message):
                delivered += 1
        return delivered

    def close(self, conn_id: str, delay: float = 0.0) -> None:
        conn = self.connections.get(conn_id)
        if conn is not None:
            conn.request_close(delay=delay)

    # -------------------------------------------------------------------------
    # Liveness
    # -------------------------------------------------------------------------

    def heartbeat_probe(self) -> list[str]:
        """Drop peers whose transport has gone away, then start the next cycle.

        A connection survives a cycle if it sent any frame since the previous
        probe or its transport still reports it open, so a quiet client that
        is waiting for its peer is never dropped. Returns the dropped ids.
        """
        dropped = []
        for conn in list(self.connections.values()):
            if not conn.is_alive and not conn.channel.is_open:
                print(f"[BirdDrop] Terminating dead connection {conn.conn_id}", file=sys.stderr)
                conn.request_close(code=1001)
                self.deregister(conn.conn_id)
                dropped.append(conn.conn_id)
                continue
            conn.is_alive = False
            conn.probe()
        return dropped
