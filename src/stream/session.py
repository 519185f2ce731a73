from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

import websockets
from websockets.exceptions import WebSocketException

from src.domain.errors import ConfigurationError, PayloadDecodeError, ProtocolParseError, TransportError
from src.domain.models import DecodedEvent, SubscriptionDescriptor
from src.ports.stream import Connector, StreamConnection
from src.stream.payload import DEFAULT_IDENTIFIER_FIELDS, decode_payload, extract_identifier
from src.stream.protocol import (
    PING,
    PONG,
    Frame,
    FrameParser,
    FrameType,
    connect_command,
    sub_command,
    subject_matches,
)
from src.stream.registry import CallbackRegistry, TokenCallback
from src.stream.state import SessionEvent, SessionState, accepts_keepalive, is_connected, transition

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY_SECONDS = 5.0
DEFAULT_KEEPALIVE_INTERVAL_SECONDS = 15.0
DEFAULT_OPEN_TIMEOUT_SECONDS = 20.0


async def websocket_connector(url: str) -> StreamConnection:
    # NATS does its own PING/PONG, so WebSocket-level pings stay off.
    return await websockets.connect(
        url,
        ping_interval=None,
        open_timeout=DEFAULT_OPEN_TIMEOUT_SECONDS,
        max_size=None,
    )


class SubscriptionSession:
    """
    One persistent NATS-over-WebSocket subscription session.

    Lifecycle: DISCONNECTED -> CONNECTING -> AWAITING_SERVER_HANDSHAKE -> SUBSCRIBING -> OPERATIONAL.

    - All socket events are handled on a single connection task, in arrival order. The state
      variable is only written from that task, `start()` and `stop()`.
    - Any socket close/error while not stopped schedules exactly one reconnect after
      `reconnect_delay_seconds`; reconnecting re-sends CONNECT and every SUB.
    - `stop()` is idempotent and cancels a pending reconnect before it can fire.
    """

    def __init__(
        self,
        url: str,
        subscriptions: Iterable[SubscriptionDescriptor],
        connect_options: dict[str, Any] | None = None,
        *,
        reconnect_delay_seconds: float = DEFAULT_RECONNECT_DELAY_SECONDS,
        keepalive_interval_seconds: float = DEFAULT_KEEPALIVE_INTERVAL_SECONDS,
        identifier_fields: Iterable[str] = DEFAULT_IDENTIFIER_FIELDS,
        connector: Connector | None = None,
        registry: CallbackRegistry | None = None,
        name: str = "SubscriptionSession",
    ) -> None:
        self.url = str(url or "").strip()
        if not self.url:
            raise ConfigurationError("Stream URL is not configured")
        if not self.url.startswith(("ws://", "wss://")):
            raise ConfigurationError(f"Stream URL must be a ws:// or wss:// URL: {self.url}")
        self.subscriptions = list(subscriptions)
        if not self.subscriptions:
            raise ConfigurationError("At least one subscription is required")
        self._by_sid: dict[str, SubscriptionDescriptor] = {}
        for sub in self.subscriptions:
            if sub.sid in self._by_sid:
                raise ConfigurationError(f"Duplicate subscription id: {sub.sid}")
            self._by_sid[sub.sid] = sub

        self.connect_options = dict(connect_options or {})
        self.reconnect_delay_seconds = max(0.0, float(reconnect_delay_seconds))
        self.keepalive_interval_seconds = float(keepalive_interval_seconds)
        if self.keepalive_interval_seconds <= 0:
            raise ConfigurationError("keepalive_interval_seconds must be > 0")
        self.identifier_fields = tuple(identifier_fields)
        self.registry = registry if registry is not None else CallbackRegistry()
        self.name = name
        self._connector: Connector = connector or websocket_connector

        self._state = SessionState.DISCONNECTED
        self._conn: StreamConnection | None = None
        self._parser = FrameParser()
        self._stop_requested = False
        self._connection_task: asyncio.Task[None] | None = None
        self._keepalive_task: asyncio.Task[None] | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None

        self.reconnect_count = 0
        self.frames_dropped = 0
        self.events_dispatched = 0

    # -------------------
    # Public surface
    # -------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._conn is not None and is_connected(self._state)

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def add_callback(self, callback: TokenCallback) -> None:
        self.registry.add(callback)

    add_token_callback = add_callback

    def start(self) -> None:
        """Begin connecting. Must be called from within the running event loop."""
        if self._state is not SessionState.DISCONNECTED or self._reconnect_handle is not None:
            logger.warning("%s already started or connecting (%s)", self.name, self._state.value)
            return
        self._stop_requested = False
        self._connect()

    async def stop(self) -> None:
        if (
            self._stop_requested
            and self._connection_task is None
            and self._conn is None
            and self._reconnect_handle is None
        ):
            return

        logger.info("%s stopping connection...", self.name)
        # Set first: nothing below may schedule a reconnect.
        self._stop_requested = True
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        self._cancel_keepalive()

        task, self._connection_task = self._connection_task, None
        conn, self._conn = self._conn, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if conn is not None:
            await self._close_quietly(conn)

        self._apply(SessionEvent.STOP)
        self._parser.reset()
        logger.info("%s stopped.", self.name)

    # -------------------
    # Internal
    # -------------------

    def _apply(self, event: SessionEvent) -> SessionState:
        nxt = transition(self._state, event)
        if nxt is not None and nxt is not self._state:
            logger.debug("%s state %s -> %s (%s)", self.name, self._state.value, nxt.value, event.value)
            self._state = nxt
        return self._state

    def _connect(self) -> None:
        self._reconnect_handle = None
        if self._stop_requested:
            return
        loop = asyncio.get_running_loop()
        self._apply(SessionEvent.START)
        self._connection_task = loop.create_task(self._run_connection())

    async def _run_connection(self) -> None:
        conn: StreamConnection | None = None
        try:
            logger.info("%s connecting to %s...", self.name, self.url)
            conn = await self._connector(self.url)
            self._conn = conn
            self._parser.reset()
            await self._on_open()
            while True:
                data = await conn.recv()
                await self._on_data(data)
        except (WebSocketException, OSError, TransportError) as exc:
            logger.warning("%s connection lost: %s: %s", self.name, type(exc).__name__, exc)
        except Exception as exc:
            logger.exception("%s connection failed unexpectedly: %s", self.name, exc)
        await self._on_terminated(conn)

    async def _on_open(self) -> None:
        logger.info("%s WebSocket connection established.", self.name)
        self._apply(SessionEvent.SOCKET_OPENED)
        await self._send(connect_command(self.connect_options))
        self._start_keepalive()

    async def _on_terminated(self, conn: StreamConnection | None) -> None:
        if self._conn is conn:
            self._conn = None
        if self._connection_task is asyncio.current_task():
            self._connection_task = None
        self._cancel_keepalive()
        if conn is not None:
            await self._close_quietly(conn)
        self._apply(SessionEvent.SOCKET_CLOSED)
        self._parser.reset()
        if self._stop_requested:
            return
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            return
        self.reconnect_count += 1
        logger.info("%s attempting to reconnect in %ss...", self.name, self.reconnect_delay_seconds)
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.reconnect_delay_seconds, self._connect)

    async def _close_quietly(self, conn: StreamConnection) -> None:
        try:
            await conn.close()
        except Exception as e:
            logger.debug("%s error while closing socket: %s", self.name, e)

    async def _send(self, command: str) -> None:
        conn = self._conn
        if conn is None:
            logger.warning("%s socket not open, cannot send: %s", self.name, command.strip())
            return
        logger.debug("%s sending NATS command: %s", self.name, command.strip())
        await conn.send(command)

    def _start_keepalive(self) -> None:
        self._cancel_keepalive()
        self._keepalive_task = asyncio.get_running_loop().create_task(self._keepalive_loop())

    def _cancel_keepalive(self) -> None:
        task, self._keepalive_task = self._keepalive_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self.keepalive_interval_seconds)
            if self._conn is None or not accepts_keepalive(self._state):
                continue
            logger.debug("%s sending client PING for keep-alive.", self.name)
            try:
                await self._send(PING)
            except Exception as e:
                # The reader sees the broken socket and drives the reconnect.
                logger.warning("%s keep-alive PING failed: %s", self.name, e)

    async def _subscribe_all(self, event: SessionEvent) -> None:
        self._apply(event)
        for sub in self.subscriptions:
            await self._send(sub_command(sub.topic, sub.sid))
        logger.info(
            "%s subscribed to: %s",
            self.name,
            ", ".join(f"{s.topic} (SID: {s.sid})" for s in self.subscriptions),
        )

    async def _on_data(self, data: str | bytes) -> None:
        self._parser.feed(data)
        while True:
            try:
                frame = self._parser.next_frame()
            except ProtocolParseError as e:
                self.frames_dropped += 1
                logger.warning("%s dropped malformed frame: %s", self.name, e)
                continue
            if frame is None:
                return
            await self._handle_frame(frame)

    async def _handle_frame(self, frame: Frame) -> None:
        ft = frame.type
        if ft is FrameType.INFO:
            logger.info("%s received NATS INFO", self.name)
            if self._state is SessionState.AWAITING_SERVER_HANDSHAKE:
                await self._subscribe_all(SessionEvent.INFO_RECEIVED)
        elif ft is FrameType.PING:
            logger.debug("%s received PING from server.", self.name)
            await self._send(PONG)
            if self._state is SessionState.AWAITING_SERVER_HANDSHAKE:
                # Server pinged before INFO: treat it as ready.
                await self._subscribe_all(SessionEvent.PING_RECEIVED)
        elif ft is FrameType.OK:
            if self._state is SessionState.SUBSCRIBING:
                self._apply(SessionEvent.SUBSCRIBE_ACKNOWLEDGED)
                logger.info("%s subscriptions confirmed. Operational.", self.name)
        elif ft is FrameType.PONG:
            logger.debug("%s received PONG from server.", self.name)
        elif ft is FrameType.ERR:
            logger.error("%s received NATS error: %s", self.name, frame.args)
        elif ft in (FrameType.MSG, FrameType.HMSG):
            self._dispatch(frame)
        else:
            logger.warning("%s received unhandled NATS message: %s", self.name, frame.line[:200])

    def _dispatch(self, frame: Frame) -> None:
        sid = frame.sid or ""
        subject = frame.subject or ""
        sub = self._by_sid.get(sid)
        if sub is None:
            self.frames_dropped += 1
            logger.warning("%s message for unknown SID %s on %s", self.name, sid, subject)
            return
        if not sub.dispatch:
            logger.debug("%s ignoring message on %s (SID: %s)", self.name, subject, sid)
            return
        if not subject_matches(sub.topic, subject):
            self.frames_dropped += 1
            logger.warning("%s subject %s does not match subscription %s (SID: %s)", self.name, subject, sub.topic, sid)
            return

        try:
            obj = decode_payload(frame.payload)
        except PayloadDecodeError as e:
            self.frames_dropped += 1
            logger.error("%s error decoding payload for %s: %s | %r", self.name, subject, e, frame.payload[:200])
            return

        identifier = extract_identifier(obj, self.identifier_fields)
        if identifier is None:
            self.frames_dropped += 1
            logger.warning("%s '%s' message missing token address. Data: %s", self.name, subject, str(obj)[:500])
            return

        event = DecodedEvent(subject=subject, sid=sid, identifier=identifier, payload=obj)
        logger.info("%s new '%s' token: %s", self.name, event.subject, event.identifier)
        self.registry.dispatch(event.identifier, event.payload)
        self.events_dispatched += 1
