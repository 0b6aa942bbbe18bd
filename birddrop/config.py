"""
Configuration constants, environment variables, and protocol limits.

This is a leaf module with no internal dependencies.
"""

import os

# =============================================================================
# Server
# =============================================================================

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080

_origins_env = os.environ.get(
    "BIRDDROP_ALLOWED_ORIGINS",
    "http://localhost:5173,http://127.0.0.1:5173",
)
ALLOWED_ORIGINS: list[str] = [o.strip() for o in _origins_env.split(",") if o.strip()]

# =============================================================================
# Limits
# =============================================================================

MAX_SESSIONS = 10000
MAX_GEO_POOL_SIZE = 1000
MAX_MESSAGE_SIZE = 1024 * 1024     # 1 MiB
MAX_ID_LENGTH = 100                # sessionId, userId, fromId, toId
MAX_HINT_LENGTH = 100
MAX_OUTBOX_FRAMES = 128            # frames queued for a peer that is not reading

# =============================================================================
# Rate Limiting
# =============================================================================

RATE_LIMIT_MAX_MESSAGES = 50       # per connection per window
RATE_LIMIT_WINDOW = 1.0            # seconds; window resets once this has elapsed

# =============================================================================
# Timeouts
# =============================================================================

SESSION_TIMEOUT = 30 * 60          # seconds since creation
GEO_POOL_TIMEOUT = 30              # seconds since last geo-join refresh
ROOM_FULL_CLOSE_DELAY = 0.1        # let the "room full" error flush before closing

# =============================================================================
# Geo Discovery
# =============================================================================

EARTH_RADIUS_M = 6371000
GEO_PROXIMITY_RADIUS_M = 100
GEO_MAX_PEERS = 20
DEFAULT_DEVICE_HINT = "Unknown Device"

# =============================================================================
# Reaper
# =============================================================================

REAPER_TICK_INTERVAL = 5           # geo pool TTL is checked every tick
SESSION_SWEEP_INTERVAL = 60
HEARTBEAT_INTERVAL = 30            # transport ping interval and timeout; also the registry sweep period
