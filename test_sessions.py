#!/usr/bin/env python3
"""
Session table tests: two-party rendezvous, roles, rejoin, teardown, expiry,
signal relay.

Drives the Router and SessionTable in-process with fake channels and a fake
clock; nothing touches the network.

Usage:
    python3 test_sessions.py
"""

from birddrop.config import MAX_ID_LENGTH, ROOM_FULL_CLOSE_DELAY, SESSION_TIMEOUT
from birddrop.models import SessionPhase
from relay_testkit import connect, drain, make_state, run_suite, send, types_of


def _paired(session_id: str = "session-abc"):
    state, clock = make_state()
    x, y = connect(state), connect(state)
    send(state, x, type="join", sessionId=session_id)
    send(state, y, type="join", sessionId=session_id)
    return state, clock, x, y


# ---------------------------------------------------------------------------
# Join
# ---------------------------------------------------------------------------

def test_first_joiner_is_offerer_second_is_answerer() -> None:
    state, _ = make_state()
    x, y = connect(state), connect(state)

    send(state, x, type="join", sessionId="session-abc")
    assert types_of(drain(x)) == ["waiting"]
    assert state.sessions.get("session-abc").phase is SessionPhase.WAITING

    send(state, y, type="join", sessionId="session-abc")
    x_msgs, y_msgs = drain(x), drain(y)
    assert x_msgs == [{"type": "ready", "message": "Both users present. You may begin.", "role": "offerer"}], x_msgs
    assert y_msgs == [{"type": "ready", "message": "Both users present. You may begin.", "role": "answerer"}], y_msgs
    assert state.sessions.get("session-abc").members == [x.conn_id, y.conn_id]
    assert x.session_id == y.session_id == "session-abc"
    assert state.sessions.get("session-abc").phase is SessionPhase.READY


def test_duplicate_join_resends_ready_by_seat_order() -> None:
    state, _, x, y = _paired()
    drain(x), drain(y)

    # Second seat retries: roles stay tied to seat order, not to who re-joined.
    send(state, y, type="join", sessionId="session-abc")
    assert [m["role"] for m in drain(x)] == ["offerer"]
    assert [m["role"] for m in drain(y)] == ["answerer"]

    send(state, x, type="join", sessionId="session-abc")
    assert [m["role"] for m in drain(x)] == ["offerer"]
    assert [m["role"] for m in drain(y)] == ["answerer"]

    assert len(state.sessions) == 1
    assert state.sessions.get("session-abc").members == [x.conn_id, y.conn_id]


def test_duplicate_join_while_waiting_resends_waiting() -> None:
    state, _ = make_state()
    x = connect(state)
    send(state, x, type="join", sessionId="solo")
    send(state, x, type="join", sessionId="solo")
    assert types_of(drain(x)) == ["waiting", "waiting"]
    assert state.sessions.get("solo").members == [x.conn_id]


def test_third_join_rejected_with_delayed_close() -> None:
    state, _, x, y = _paired()
    z = connect(state)
    drain(x), drain(y)

    send(state, z, type="join", sessionId="session-abc")
    assert drain(z) == [
        {"type": "error", "message": "Room full. Only two users allowed."},
        {"close": ROOM_FULL_CLOSE_DELAY},
    ]
    assert len(state.sessions.get("session-abc").members) == 2
    assert not state.sessions.is_seated(z.conn_id)
    assert drain(x) == [] and drain(y) == []


def test_capacity_rejects_only_new_sessions() -> None:
    state, _ = make_state()
    state.sessions.max_sessions = 2
    a, b, c, d = (connect(state) for _ in range(4))

    send(state, a, type="join", sessionId="one")
    send(state, b, type="join", sessionId="two")
    send(state, c, type="join", sessionId="three")
    assert drain(c) == [{"type": "error", "message": "Server at capacity"}, {"close": 0.0}]
    assert "three" not in state.sessions

    # An existing id at capacity is still joinable.
    send(state, d, type="join", sessionId="one")
    assert [m["role"] for m in drain(d)] == ["answerer"]


def test_join_for_another_session_while_seated_is_ignored() -> None:
    state, _, x, y = _paired()
    drain(x)
    send(state, x, type="join", sessionId="elsewhere")
    assert drain(x) == []
    assert "elsewhere" not in state.sessions
    assert state.sessions.session_of(x.conn_id) == "session-abc"


def test_invalid_session_ids_are_dropped() -> None:
    state, _ = make_state()
    x = connect(state)
    assert send(state, x, type="join", sessionId="") is None
    assert send(state, x, type="join", sessionId="s" * (MAX_ID_LENGTH + 1)) is None
    assert send(state, x, type="join", sessionId=42) is None
    assert send(state, x, type="join") is None
    assert len(state.sessions) == 0
    assert drain(x) == []

    assert send(state, x, type="join", sessionId="s" * MAX_ID_LENGTH) == "join"


def test_seating_removes_geo_entry() -> None:
    state, _ = make_state()
    x = connect(state)
    send(state, x, type="geo-join", lat=10.0, lon=10.0, userId="x-user")
    assert len(state.geo) == 1
    send(state, x, type="join", sessionId="session-abc")
    assert len(state.geo) == 0


# ---------------------------------------------------------------------------
# Leave / expiry
# ---------------------------------------------------------------------------

def test_leave_destroys_session_and_closes_survivor() -> None:
    state, _, x, y = _paired()
    drain(x), drain(y)

    state.registry.deregister(x.conn_id)

    assert drain(y) == [
        {"type": "session-destroyed", "message": "Peer left. Session closed."},
        {"close": 0.0},
    ]
    assert "session-abc" not in state.sessions
    assert y.session_id is None
    assert not state.sessions.is_seated(y.conn_id)

    # The survivor's own disconnect later is a no-op.
    state.registry.deregister(y.conn_id)
    assert len(state.registry) == 0


def test_waiting_member_leaving_frees_session() -> None:
    state, _ = make_state()
    x = connect(state)
    send(state, x, type="join", sessionId="lonely")
    state.registry.deregister(x.conn_id)
    assert len(state.sessions) == 0


def test_session_id_reusable_after_destroy() -> None:
    state, clock, x, y = _paired()
    old = state.sessions.get("session-abc")
    state.registry.deregister(x.conn_id)

    clock.advance(5)
    w = connect(state)
    send(state, w, type="join", sessionId="session-abc")
    assert types_of(drain(w)) == ["waiting"]
    fresh = state.sessions.get("session-abc")
    assert fresh is not old
    assert fresh.members == [w.conn_id]
    assert fresh.created_at == clock()


def test_sweep_expires_only_old_sessions() -> None:
    state, clock, x, y = _paired()
    clock.advance(SESSION_TIMEOUT - 60)
    z = connect(state)
    send(state, z, type="join", sessionId="younger")
    drain(x), drain(y), drain(z)

    clock.advance(61)
    expired = state.sessions.sweep()

    assert expired == ["session-abc"]
    for conn in (x, y):
        assert drain(conn) == [{"type": "session-timeout", "message": "Session expired"}, {"close": 0.0}]
    assert "younger" in state.sessions
    assert drain(z) == []


# ---------------------------------------------------------------------------
# Signal relay
# ---------------------------------------------------------------------------

def test_signal_forwarded_verbatim_in_order() -> None:
    state, _, x, y = _paired()
    drain(x), drain(y)

    offer = {"sdp": {"type": "offer", "sdp": "v=0..."}}
    candidate = {"candidate": {"candidate": "candidate:1 1 udp 2122260223 10.0.0.2 50000 typ host"}}
    send(state, x, type="signal", payload=offer)
    send(state, x, type="signal", payload=candidate)

    assert drain(y) == [{"type": "signal", "payload": offer}, {"type": "signal", "payload": candidate}]
    assert drain(x) == []


def test_signal_dropped_without_full_session() -> None:
    state, _ = make_state()
    x, z = connect(state), connect(state)
    send(state, x, type="join", sessionId="half")
    drain(x)

    assert not state.sessions.relay_signal(x, {"sdp": "x"})
    assert not state.sessions.relay_signal(z, {"sdp": "z"})
    assert send(state, x, type="signal") is None
    assert send(state, x, type="signal", payload="") is None
    assert drain(x) == [] and drain(z) == []


def test_signal_from_outsider_never_reaches_members() -> None:
    state, _, x, y = _paired()
    outsider = connect(state)
    drain(x), drain(y)

    send(state, outsider, type="signal", payload={"sdp": "spoof"})
    assert drain(x) == [] and drain(y) == []


TESTS = [
    test_first_joiner_is_offerer_second_is_answerer,
    test_duplicate_join_resends_ready_by_seat_order,
    test_duplicate_join_while_waiting_resends_waiting,
    test_third_join_rejected_with_delayed_close,
    test_capacity_rejects_only_new_sessions,
    test_join_for_another_session_while_seated_is_ignored,
    test_invalid_session_ids_are_dropped,
    test_seating_removes_geo_entry,
    test_leave_destroys_session_and_closes_survivor,
    test_waiting_member_leaving_frees_session,
    test_session_id_reusable_after_destroy,
    test_sweep_expires_only_old_sessions,
    test_signal_forwarded_verbatim_in_order,
    test_signal_dropped_without_full_session,
    test_signal_from_outsider_never_reaches_members,
]


if __name__ == "__main__":
    run_suite("BirdDrop Session Tests", TESTS)
