"""
Session table — two-party rendezvous, readiness handshake, signal relay.

A session dies with either party: there is no partial survival and no
reconnection into the same session object once one side has left.

Depends on: config, models, network/registry
"""

import sys
import uuid
from typing import Optional

from birddrop.config import MAX_SESSIONS, ROOM_FULL_CLOSE_DELAY, SESSION_TIMEOUT
from birddrop.models import Role, Session
from birddrop.network.registry import Connection, ConnectionRegistry

READY_TEXT = "Both users present. You may begin."


class SessionTable:
    """Owns every Session, keyed by id, plus the connection -> session index."""

    def __init__(self, registry: ConnectionRegistry, max_sessions: int = MAX_SESSIONS):
        self.registry = registry
        self.max_sessions = max_sessions
        self.sessions: dict[str, Session] = {}
        self._seats: dict[str, str] = {}  # conn_id -> session_id
        self._seat_hooks = []

    def __len__(self) -> int:
        return len(self.sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self.sessions

    def get(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    def session_of(self, conn_id: str) -> Optional[str]:
        return self._seats.get(conn_id)

    def is_seated(self, conn_id: str) -> bool:
        return conn_id in self._seats

    def add_seat_hook(self, fn) -> None:
        """Register fn(conn_id), called whenever a connection takes a seat."""
        self._seat_hooks.append(fn)

    # -------------------------------------------------------------------------
    # Seat bookkeeping (both directions updated together)
    # -------------------------------------------------------------------------

    def _seat(self, session: Session, conn_id: str) -> None:
        session.members.append(conn_id)
        self._seats[conn_id] = session.session_id
        conn = self.registry.get(conn_id)
        if conn is not None:
            conn.session_id = session.session_id
        for hook in self._seat_hooks:
            hook(conn_id)

    def _destroy(self, session_id: str) -> Optional[Session]:
        session = self.sessions.pop(session_id, None)
        if session is None:
            return None
        for member in session.members:
            if self._seats.get(member) == session_id:
                del self._seats[member]
            conn = self.registry.get(member)
            if conn is not None and conn.session_id == session_id:
                conn.session_id = None
        return session

    def _announce_ready(self, session: Session) -> None:
        """Send `ready` to both members with roles fixed by seat order."""
        first, second = session.members
        self.registry.send(first, {"type": "ready", "message": READY_TEXT, "role": Role.OFFERER.value})
        self.registry.send(second, {"type": "ready", "message": READY_TEXT, "role": Role.ANSWERER.value})

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def join(self, conn: Connection, session_id: str) -> None:
        conn_id = conn.conn_id
        current = self._seats.get(conn_id)

        if current == session_id:
            # Duplicate join from a seated member (reconnect race): re-announce.
            session = self.sessions[session_id]
            if session.is_full:
                self._announce_ready(session)
            else:
                self.registry.send(conn_id, {"type": "waiting", "message": "Waiting for second user to join."})
            return

        if current is not None:
            print(f"[BirdDrop] {conn.short_id} already seated in {current}, "
                  f"ignoring join for {session_id}", file=sys.stderr)
            return

        session = self.sessions.get(session_id)
        if session is None:
            if len(self.sessions) >= self.max_sessions:
                print("[BirdDrop] Max sessions reached, rejecting new session", file=sys.stderr)
                self.registry.send(conn_id, {"type": "error", "message": "Server at capacity"})
                self.registry.close(conn_id)
                return
            session = Session(session_id=session_id, created_at=self.registry.clock())
            self.sessions[session_id] = session

        if session.is_full:
            print(f"[BirdDrop] Room full for session {session_id} - rejecting {conn.short_id}", file=sys.stderr)
            self.registry.send(conn_id, {"type": "error", "message": "Room full. Only two users allowed."})
            self.registry.close(conn_id, delay=ROOM_FULL_CLOSE_DELAY)
            return

        self._seat(session, conn_id)
        print(f"[BirdDrop] User {conn.short_id} joined session {session_id} - "
              f"total users: {len(session.members)}", file=sys.stderr)

        if len(session.members) == 1:
            self.registry.send(conn_id, {"type": "waiting", "message": "Waiting for second user to join."})
        else:
            print(f"[BirdDrop] Both users present in session {session_id} - sending ready", file=sys.stderr)
            self._announce_ready(session)

    def create_paired(self, first: str, second: str) -> Session:
        """Create a server-named session with both seats already taken, first seat first."""
        session_id = "session-" + uuid.uuid4().hex
        session = Session(session_id=session_id, created_at=self.registry.clock())
        self.sessions[session_id] = session
        self._seat(session, first)
        self._seat(session, second)
        print(f"[BirdDrop] Paired session {session_id} created", file=sys.stderr)
        return session

    def relay_signal(self, conn: Connection, payload) -> bool:
        """Forward an opaque signaling payload to the sender's peer."""
        session_id = self._seats.get(conn.conn_id)
        if session_id is None:
            print(f"[BirdDrop] Signal attempt without session from {conn.short_id}", file=sys.stderr)
            return False
        session = self.sessions.get(session_id)
        if session is None:
            print(f"[BirdDrop] Signal for non-existent session from {conn.short_id}", file=sys.stderr)
            return False
        peer = session.other_member(conn.conn_id)
        if not session.is_full or peer is None:
            print(f"[BirdDrop] Unauthorized signaling attempt from {conn.short_id}", file=sys.stderr)
            return False
        return self.registry.send(peer, {"type": "signal", "payload": payload})

    def leave(self, conn_id: str) -> None:
        """Tear down the session conn_id sits in; the survivor is told and closed."""
        session_id = self._seats.get(conn_id)
        if session_id is None:
            return
        session = self._destroy(session_id)
        survivors = [m for m in session.members if m != conn_id]
        self.registry.notify(survivors, {"type": "session-destroyed", "message": "Peer left. Session closed."})
        for member in survivors:
            self.registry.close(member)
        print(f"[BirdDrop] Session destroyed: {session_id}", file=sys.stderr)

    def sweep(self, now: Optional[float] = None) -> list[str]:
        """Expire sessions older than SESSION_TIMEOUT. Returns expired ids."""
        if now is None:
            now = self.registry.clock()
        expired = [sid for sid, s in self.sessions.items() if now - s.created_at > SESSION_TIMEOUT]
        for session_id in expired:
            print(f"[BirdDrop] Removing stale session: {session_id}", file=sys.stderr)
            session = self._destroy(session_id)
            self.registry.notify(session.members, {"type": "session-timeout", "message": "Session expired"})
            for member in session.members:
                self.registry.close(member)
        return expired
