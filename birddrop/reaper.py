"""
Reaper — one background task running the three eviction sweeps on a schedule.

Geo pool TTL is checked every tick, liveness is probed every HEARTBEAT_INTERVAL
and sessions are expired every SESSION_SWEEP_INTERVAL. Sweeps are synchronous,
so each one runs to completion between Router handlers.

Depends on: config, state
"""

import asyncio
import sys
import time
from typing import Callable

from birddrop.config import HEARTBEAT_INTERVAL, REAPER_TICK_INTERVAL, SESSION_SWEEP_INTERVAL
from birddrop.state import RelayState


class Reaper:
    def __init__(self, state: RelayState, tick: float = REAPER_TICK_INTERVAL,
                 clock: Callable[[], float] = time.monotonic):
        self.state = state
        self.tick = tick
        self.clock = clock
        self._last_heartbeat = clock()
        self._last_session_sweep = clock()

    def sweep_sessions(self) -> list[str]:
        expired = self.state.sessions.sweep()
        print(f"[BirdDrop] Active sessions: {len(self.state.sessions)}, "
              f"Geo pool: {len(self.state.geo)}", file=sys.stderr)
        return expired

    def sweep_geo_pool(self) -> int:
        return self.state.geo.sweep()

    def sweep_connections(self) -> list[str]:
        return self.state.registry.heartbeat_probe()

    def run_once(self) -> None:
        """Run whichever sweeps are due."""
        now = self.clock()
        self.sweep_geo_pool()
        if now - self._last_heartbeat >= HEARTBEAT_INTERVAL:
            self._last_heartbeat = now
            self.sweep_connections()
        if now - self._last_session_sweep >= SESSION_SWEEP_INTERVAL:
            self._last_session_sweep = now
            self.sweep_sessions()

    async def run(self) -> None:
        """Background task: sweep forever until cancelled."""
        while True:
            try:
                await asyncio.sleep(self.tick)
                self.run_once()
            except asyncio.CancelledError:
                return
            except Exception as e:
                print(f"[BirdDrop] Reaper error: {e}", file=sys.stderr)
