from __future__ import annotations

import enum


class SessionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_SERVER_HANDSHAKE = "awaiting_server_handshake"
    SUBSCRIBING = "subscribing"
    OPERATIONAL = "operational"


class SessionEvent(enum.Enum):
    START = "start"
    SOCKET_OPENED = "socket_opened"
    INFO_RECEIVED = "info_received"
    PING_RECEIVED = "ping_received"
    SUBSCRIBE_ACKNOWLEDGED = "subscribe_acknowledged"
    SOCKET_CLOSED = "socket_closed"
    STOP = "stop"


_TRANSITIONS: dict[tuple[SessionState, SessionEvent], SessionState] = {
    (SessionState.DISCONNECTED, SessionEvent.START): SessionState.CONNECTING,
    (SessionState.CONNECTING, SessionEvent.SOCKET_OPENED): SessionState.AWAITING_SERVER_HANDSHAKE,
    (SessionState.AWAITING_SERVER_HANDSHAKE, SessionEvent.INFO_RECEIVED): SessionState.SUBSCRIBING,
    (SessionState.AWAITING_SERVER_HANDSHAKE, SessionEvent.PING_RECEIVED): SessionState.SUBSCRIBING,
    (SessionState.SUBSCRIBING, SessionEvent.SUBSCRIBE_ACKNOWLEDGED): SessionState.OPERATIONAL,
}

# Events that end the connection regardless of the current state.
_TERMINAL_EVENTS = frozenset({SessionEvent.SOCKET_CLOSED, SessionEvent.STOP})


def transition(state: SessionState, event: SessionEvent) -> SessionState | None:
    """Next state for `event` in `state`, or None when the event does not move the state."""
    if event in _TERMINAL_EVENTS:
        return SessionState.DISCONNECTED
    return _TRANSITIONS.get((state, event))


def is_connected(state: SessionState) -> bool:
    return state not in (SessionState.DISCONNECTED, SessionState.CONNECTING)


def accepts_keepalive(state: SessionState) -> bool:
    return state in (SessionState.SUBSCRIBING, SessionState.OPERATIONAL)
