"""
Geo discovery pool — proximity listing and consent-based match brokering.

Entries are keyed by the client-chosen user id (latest geo-join wins) and hold
only the owning connection's id. Unknown ids in request/approve flows are
ignored without telling the caller, so the pool never leaks who is present.

Depends on: config, models, network/registry, sessions
"""

import math
import sys
from typing import Optional

from birddrop.config import (
    DEFAULT_DEVICE_HINT,
    EARTH_RADIUS_M,
    GEO_MAX_PEERS,
    GEO_POOL_TIMEOUT,
    GEO_PROXIMITY_RADIUS_M,
    MAX_GEO_POOL_SIZE,
)
from birddrop.models import GeoPoolEntry, Role
from birddrop.network.registry import Connection, ConnectionRegistry
from birddrop.sessions import READY_TEXT, SessionTable


def haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres between two WGS84 points."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2)
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


class GeoPool:
    """Transient set of connections broadcasting their location."""

    def __init__(self, registry: ConnectionRegistry, sessions: SessionTable,
                 max_size: int = MAX_GEO_POOL_SIZE):
        self.registry = registry
        self.sessions = sessions
        self.max_size = max_size
        self.entries: dict[str, GeoPoolEntry] = {}

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, user_id: str) -> Optional[GeoPoolEntry]:
        return self.entries.get(user_id)

    def remove_connection(self, conn_id: str) -> int:
        """Drop every entry owned by conn_id (disconnect or seating)."""
        owned = [uid for uid, e in self.entries.items() if e.conn_id == conn_id]
        for user_id in owned:
            del self.entries[user_id]
        return len(owned)

    def nearby(self, entry: GeoPoolEntry) -> list[dict]:
        """Unseated peers within the proximity radius of entry, nearest first."""
        candidates = []
        for other in self.entries.values():
            if other.conn_id == entry.conn_id or self.sessions.is_seated(other.conn_id):
                continue
            distance = haversine(entry.lat, entry.lon, other.lat, other.lon)
            # Compared at the same whole-metre resolution the peer list reports,
            # so anything listed as "100" m (up to 100.49 m) is in range.
            if round(distance) <= GEO_PROXIMITY_RADIUS_M:
                candidates.append((distance, other))
        candidates.sort(key=lambda pair: pair[0])
        return [other.to_peer_dict(distance) for distance, other in candidates[:GEO_MAX_PEERS]]

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def geo_join(self, conn: Connection, lat: float, lon: float, user_id: str,
                 hint: Optional[str] = None) -> Optional[list[dict]]:
        """Insert or refresh user_id's entry and reply with nearby peers.

        Returns the peer list sent, or None if the pool was full.
        """
        self.entries.pop(user_id, None)

        if len(self.entries) >= self.max_size:
            print("[BirdDrop] Geo pool at capacity", file=sys.stderr)
            self.registry.send(conn.conn_id, {"type": "error", "message": "Service busy, try again"})
            return None

        entry = GeoPoolEntry(
            conn_id=conn.conn_id,
            user_id=user_id,
            lat=lat,
            lon=lon,
            joined_at=self.registry.clock(),
            hint=hint or DEFAULT_DEVICE_HINT,
        )
        self.entries[user_id] = entry

        peers = self.nearby(entry)
        self.registry.send(conn.conn_id, {"type": "geo-peer-list", "peers": peers})
        return peers

    def geo_request(self, from_id: str, to_id: str) -> bool:
        from_entry = self.entries.get(from_id)
        to_entry = self.entries.get(to_id)
        if from_entry is None or to_entry is None:
            print("[BirdDrop] Peer not found for geo-request", file=sys.stderr)
            return False
        return self.registry.send(to_entry.conn_id, {
            "type": "geo-connection-request",
            "fromId": from_id,
            "hint": from_entry.hint,
        })

    def geo_approve(self, from_id: str, to_id: str, approved: bool) -> Optional[str]:
        """Resolve a pending request from from_id to to_id.

        Returns the new session id on a match, else None.
        """
        requester = self.entries.get(from_id)
        approver = self.entries.get(to_id)
        if requester is None or approver is None:
            print("[BirdDrop] Peer not found for geo-approve", file=sys.stderr)
            return None

        if not approved:
            self.registry.send(requester.conn_id, {"type": "geo-denied", "toId": to_id})
            return None

        if requester.conn_id == approver.conn_id:
            print(f"[BirdDrop] geo-approve between two ids of one connection ({from_id}, {to_id}), ignoring",
                  file=sys.stderr)
            return None

        if self.sessions.is_seated(requester.conn_id) or self.sessions.is_seated(approver.conn_id):
            self.registry.send(requester.conn_id, {
                "type": "geo-busy",
                "message": "Target is already in a session.",
            })
            return None

        del self.entries[from_id]
        del self.entries[to_id]
        session = self.sessions.create_paired(requester.conn_id, approver.conn_id)

        self.registry.send(requester.conn_id, {
            "type": "geo-match", "sessionId": session.session_id, "role": Role.INITIATOR.value,
        })
        self.registry.send(approver.conn_id, {
            "type": "geo-match", "sessionId": session.session_id, "role": Role.RECEIVER.value,
        })
        self.registry.send(requester.conn_id, {"type": "ready", "message": READY_TEXT, "role": Role.OFFERER.value})
        self.registry.send(approver.conn_id, {"type": "ready", "message": READY_TEXT, "role": Role.ANSWERER.value})
        return session.session_id

    def sweep(self, now: Optional[float] = None) -> int:
        """Silently drop entries not refreshed within GEO_POOL_TIMEOUT."""
        if now is None:
            now = self.registry.clock()
        stale = [uid for uid, e in self.entries.items() if now - e.joined_at > GEO_POOL_TIMEOUT]
        for user_id in stale:
            del self.entries[user_id]
        return len(stale)
