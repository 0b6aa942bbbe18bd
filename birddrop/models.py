"""
Data models — pure data classes with no business logic.

Depends on: config
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from birddrop.config import DEFAULT_DEVICE_HINT


# =============================================================================
# Enums
# =============================================================================

class Role(str, Enum):
    """Roles handed out in `ready` and `geo-match` notifications."""
    OFFERER = "offerer"        # first seat, starts the peer-transport handshake
    ANSWERER = "answerer"      # second seat
    INITIATOR = "initiator"    # geo requester
    RECEIVER = "receiver"      # geo approver


class SessionPhase(str, Enum):
    EMPTY = "empty"
    WAITING = "waiting"
    READY = "ready"


# =============================================================================
# Sessions
# =============================================================================

@dataclass
class Session:
    """A two-party pairing. Members are connection ids in seat order."""
    session_id: str
    created_at: float
    members: list[str] = field(default_factory=list)

    @property
    def phase(self) -> SessionPhase:
        if not self.members:
            return SessionPhase.EMPTY
        if len(self.members) == 1:
            return SessionPhase.WAITING
        return SessionPhase.READY

    @property
    def is_full(self) -> bool:
        return len(self.members) >= 2

    def other_member(self, conn_id: str) -> Optional[str]:
        """Return the peer of conn_id, or None if conn_id is not seated here."""
        if conn_id not in self.members:
            return None
        for member in self.members:
            if member != conn_id:
                return member
        return None


# =============================================================================
# Geo Discovery
# =============================================================================

@dataclass
class GeoPoolEntry:
    """A connection's claimed location, keyed in the pool by user_id."""
    conn_id: str
    user_id: str
    lat: float
    lon: float
    joined_at: float
    hint: str = DEFAULT_DEVICE_HINT

    def to_peer_dict(self, distance: float) -> dict:
        """Serialize for a geo-peer-list response."""
        return {
            "userId": self.user_id,
            "hint": self.hint,
            "distance": round(distance),
            "joinTime": int(self.joined_at * 1000),
        }
