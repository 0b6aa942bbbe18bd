"""
Relay state — the three shared tables wired together, plus the module-level handle.

All state is memory-resident and dies with the process.

Depends on: geo, network/registry, router, sessions
"""

import time
from typing import Callable, Optional

from birddrop.geo import GeoPool
from birddrop.network.registry import ConnectionRegistry
from birddrop.router import MessageRouter
from birddrop.sessions import SessionTable


class RelayState:
    """Connection registry, session table and geo pool sharing one clock."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.started_at = time.monotonic()
        self.registry = ConnectionRegistry(clock=clock)
        self.sessions = SessionTable(self.registry)
        self.geo = GeoPool(self.registry, self.sessions)
        self.router = MessageRouter(self.registry, self.sessions, self.geo)

        # Disconnect cascades into both tables; taking a seat leaves the geo pool.
        self.registry.add_cleanup_hook(self.sessions.leave)
        self.registry.add_cleanup_hook(self.geo.remove_connection)
        self.sessions.add_seat_hook(self.geo.remove_connection)

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    def health(self) -> dict:
        return {
            "status": "healthy",
            "sessions": len(self.sessions),
            "geoPool": len(self.geo),
            "connections": len(self.registry),
            "uptime": round(self.uptime, 3),
        }


# =============================================================================
# Module-level state (set by app.py at startup)
# =============================================================================

_relay_state: Optional[RelayState] = None


def get_state() -> Optional[RelayState]:
    """Get the current relay state."""
    return _relay_state


def set_state(state: Optional[RelayState]) -> None:
    """Set the current relay state."""
    global _relay_state
    _relay_state = state
