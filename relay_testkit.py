"""
Shared helpers for the relay test scripts: fake transport, fake clock,
outbox draining, and the standalone runner/report used by every test_*.py.
"""

import json
import sys
import traceback

from birddrop.network.registry import Connection
from birddrop.network.transport import Channel, CloseRequest
from birddrop.state import RelayState

GREEN = "\033[92m"
RED = "\033[91m"
BOLD = "\033[1m"
RESET = "\033[0m"

results: list[tuple[str, bool, str]] = []


def report(name: str, passed: bool, detail: str = "") -> None:
    mark = f"{GREEN}✓{RESET}" if passed else f"{RED}✗{RESET}"
    print(f"  {mark} {name}")
    if detail and not passed:
        print(f"      {detail}")
    results.append((name, passed, detail))


def run_suite(title: str, tests: list) -> None:
    """Run test functions as a standalone script, exit 1 on any failure."""
    print(f"\n{BOLD}{title}{RESET}")
    print("=" * 50)

    for fn in tests:
        try:
            fn()
            report(fn.__name__, True)
        except AssertionError as e:
            report(fn.__name__, False, str(e) or traceback.format_exc(limit=2))
        except Exception as e:
            report(fn.__name__, False, f"EXCEPTION: {e}")

    passed = sum(1 for _, ok, _ in results if ok)
    failed = sum(1 for _, ok, _ in results if not ok)
    print(f"\n{'=' * 50}")
    print(f"{BOLD}Results: {GREEN}{passed} passed{RESET}, ", end="")
    if failed:
        print(f"{RED}{failed} failed{RESET}")
        sys.exit(1)
    print(f"{BOLD}0 failed{RESET}")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeClock:
    """Settable wall clock, in seconds."""

    def __init__(self, t: float = 1_700_000_000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


class FakeChannel(Channel):
    """Records what the writer task would have put on the wire."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.open = True
        self.sent: list[dict] = []
        self.pings = 0
        self.closed_with = None

    @property
    def name(self) -> str:
        return "fake"

    @property
    def is_open(self) -> bool:
        return self.open

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("peer gone")
        self.sent.append(json.loads(data))

    async def ping(self) -> None:
        self.pings += 1

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code


def make_state() -> tuple[RelayState, FakeClock]:
    clock = FakeClock()
    return RelayState(clock=clock), clock


def connect(state: RelayState) -> Connection:
    return state.registry.register(FakeChannel())


def drain(conn: Connection) -> list[dict]:
    """Pop everything queued for conn. Closes show up as {"close": delay}, probes as {"probe": True}."""
    out = []
    while not conn.outbox.empty():
        item = conn.outbox.get_nowait()
        if isinstance(item, str):
            out.append(json.loads(item))
        elif isinstance(item, CloseRequest):
            out.append({"close": item.delay})
        else:
            out.append({"probe": True})
    return out


def types_of(messages: list[dict]) -> list[str]:
    return [m.get("type", "close" if "close" in m else "probe") for m in messages]


def send(state: RelayState, conn: Connection, **message):
    """Feed one JSON frame through the Router."""
    return state.router.handle_frame(conn, json.dumps(message))
