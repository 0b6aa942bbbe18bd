"""
Application composition root — create_app(), WebSocket endpoint, main entry point.

This is the top-level module that wires everything together.
Depends on: everything (this IS the composition root)
"""

import asyncio
import contextlib
import os
import sys
from typing import Optional

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket

from birddrop.config import (
    ALLOWED_ORIGINS,
    DEFAULT_HOST,
    DEFAULT_PORT,
    HEARTBEAT_INTERVAL,
    MAX_GEO_POOL_SIZE,
    MAX_SESSIONS,
)
from birddrop.network.registry import Connection
from birddrop.network.transport import WebSocketChannel
from birddrop.reaper import Reaper
from birddrop.state import RelayState, get_state, set_state


# =============================================================================
# Endpoints
# =============================================================================

async def handle_health(request: Request) -> JSONResponse:
    """Side-channel status for monitoring: session count, geo pool size, uptime."""
    state = get_state()
    if state is None:
        return JSONResponse({"error": "Relay not initialized"}, status_code=503)
    return JSONResponse(state.health())


async def _read_frames(state: RelayState, conn: Connection, websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return
        frame = message.get("text")
        if frame is None:
            frame = message.get("bytes")
        if frame is None:
            continue
        state.router.handle_frame(conn, frame)


async def handle_relay(websocket: WebSocket) -> None:
    """One signaling connection: a reader feeding the Router and a writer draining the outbox.

    Whichever finishes first (peer hung up, or the relay closed the socket) ends
    the connection; deregistering then cascades into the session and geo tables.
    """
    state = get_state()
    if state is None:
        await websocket.close(code=1011)
        return

    await websocket.accept()
    conn = state.registry.register(WebSocketChannel(websocket))
    reader = asyncio.create_task(_read_frames(state, conn, websocket))
    writer = asyncio.create_task(conn.pump())
    try:
        await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        reader.cancel()
        writer.cancel()
        for task in (reader, writer):
            with contextlib.suppress(asyncio.CancelledError):
                try:
                    await task
                except Exception as e:
                    print(f"[BirdDrop] Connection {conn.short_id} task error: {e}", file=sys.stderr)
        state.registry.deregister(conn.conn_id)


# =============================================================================
# App factory
# =============================================================================

def create_app(state: Optional[RelayState] = None, run_reaper: bool = True) -> Starlette:
    """Create the Starlette app serving the relay WebSocket and /health.

    Args:
        state: Relay state to serve; a fresh one is created if omitted.
        run_reaper: Start the background Reaper in the app lifespan.
    """
    if state is None:
        state = RelayState()
    set_state(state)

    @contextlib.asynccontextmanager
    async def lifespan(app):
        task = None
        if run_reaper:
            task = asyncio.create_task(Reaper(state).run())
        yield
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    return Starlette(
        routes=[
            Route("/health", handle_health, methods=["GET"]),
            WebSocketRoute("/ws", handle_relay),
            WebSocketRoute("/", handle_relay),
        ],
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=ALLOWED_ORIGINS,
                allow_methods=["GET", "POST", "OPTIONS"],
                allow_headers=["Content-Type"],
                allow_credentials=True,
            ),
        ],
        lifespan=lifespan,
    )


# =============================================================================
# Main entry point
# =============================================================================

def print_startup_banner(host: str, port: int) -> None:
    """Print startup banner to stderr."""
    print(f"[BirdDrop] WebSocket relay running on ws://{host}:{port}/ws", file=sys.stderr)
    print(f"[BirdDrop] Allowed origins: {', '.join(ALLOWED_ORIGINS)}", file=sys.stderr)
    print(f"[BirdDrop] Health check: http://{host}:{port}/health", file=sys.stderr)
    print(f"[BirdDrop] Limits: {MAX_SESSIONS} sessions, {MAX_GEO_POOL_SIZE} geo entries, "
          f"heartbeat {HEARTBEAT_INTERVAL}s", file=sys.stderr)


def main() -> None:
    """Entry point — run the relay under uvicorn."""
    host = os.environ.get("BIRDDROP_HOST", DEFAULT_HOST)
    port = int(os.environ.get("BIRDDROP_PORT", str(DEFAULT_PORT)))

    app = create_app()
    print_startup_banner(host, port)
    # Protocol-level ping/pong; a peer that misses a pong is disconnected here.
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="warning",
        ws_ping_interval=HEARTBEAT_INTERVAL,
        ws_ping_timeout=HEARTBEAT_INTERVAL,
    )


if __name__ == "__main__":
    main()
