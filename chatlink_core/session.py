"""Gateway session manager for real-time event delivery.

This module owns the persistent gateway connection. It handles:
- Connection lifecycle (connect, disconnect, reconnect with a fixed delay)
- HELLO handling and the jittered heartbeat timer
- IDENTIFY for fresh sessions, RESUME for dropped ones
- Sequence tracking for the resume cursor
- Zombie connection detection (heartbeat never acknowledged)

All state transitions run on a single asyncio event loop. Frame handling,
the heartbeat loop and the reconnect task are separate tasks on that loop;
none of them is ever resumed concurrently with another.
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .config import GatewayConfig
from .errors import (
    ChatlinkClientError,
    ChatlinkConnectionError,
    ChatlinkProtocolError,
)
from .http import ChatlinkHttpClient
from .protocol import (
    NORMAL_CLOSE_CODE,
    RESUMABLE_CLOSE_CODE,
    GatewayFrame,
    GatewayOpcode,
    build_heartbeat,
    build_identify,
    build_resume,
    classify_close_code,
    parse_frame,
)
from .transport.ws_client import GatewayWsClient, GatewayWsMessageType

_LOGGER = logging.getLogger(__name__)

# Seconds to wait before re-identifying after INVALID_SESSION.
INVALID_SESSION_DELAY_RANGE: tuple[float, float] = (1.0, 5.0)


class GatewayState(str, Enum):
    """Gateway session lifecycle state.

    Typical flow: DISCONNECTED -> CONNECTING -> AWAITING_HELLO ->
    IDENTIFYING/RESUMING -> READY. RECONNECTING is transient; only an
    explicit ``disconnect()`` or a fatal close code leads back to
    DISCONNECTED.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_HELLO = "awaiting_hello"
    IDENTIFYING = "identifying"
    RESUMING = "resuming"
    READY = "ready"
    RECONNECTING = "reconnecting"


@dataclass
class GatewaySessionState:
    """Resume cursor and heartbeat bookkeeping for one session.

    ``session_id``, ``sequence`` and ``resume_url`` always come from the most
    recent successful identify or resume; they are cleared together.
    """

    session_id: str | None = None
    sequence: int | None = None
    resume_url: str | None = None
    last_heartbeat_sent_at: float | None = None
    last_heartbeat_ack_at: float | None = None
    heartbeat_interval_ms: int | None = None

    @property
    def can_resume(self) -> bool:
        return self.session_id is not None and self.sequence is not None

    def clear_resume(self) -> None:
        self.session_id = None
        self.sequence = None
        self.resume_url = None

    def advance_sequence(self, sequence: int) -> bool:
        """Move the cursor forward; older sequence numbers are rejected."""
        if self.sequence is not None and sequence < self.sequence:
            return False
        self.sequence = sequence
        return True


class GatewaySession:
    """Persistent, heartbeating, resumable gateway connection.

    Usage:
        session = GatewaySession(GatewayConfig(intents=513))
        session.on_dispatch(my_event_handler)
        session.on_connection_state_changed(my_state_handler)
        await session.connect(token)
        ...
        await session.disconnect()
    """

    def __init__(
        self,
        config: GatewayConfig | None = None,
        *,
        http: ChatlinkHttpClient | None = None,
        label: str = "gateway",
        rng: random.Random | None = None,
    ) -> None:
        """Initialize session.

        Args:
            config: Immutable session configuration
            http: Optional API client used to discover the gateway URL when
                the configuration does not name one
            label: Prefix for log lines, to tell concurrent sessions apart
            rng: Random source for heartbeat and re-identify jitter
        """
        self.label = label
        self._config = config or GatewayConfig()
        self._http = http
        self._rng = rng or random.Random()

        # Connection state
        self._token: str | None = None
        self._ws: GatewayWsClient | None = None
        self._state = GatewayState.DISCONNECTED
        self._shutdown_requested = False
        self._listen_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._identify_task: asyncio.Task[None] | None = None

        # Protocol state
        self._session = GatewaySessionState()

        # Heartbeat
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._awaiting_ack = False
        self._latency_ms: float | None = None

        # Callbacks
        self._dispatch_callback: Callable[[str | None, Any], Any] | None = None
        self._connection_state_callback: Callable[[GatewayState], None] | None = None
        self._latency_callback: Callable[[float], Any] | None = None

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    async def connect(self, token: str) -> bool:
        """Open the gateway connection and start the handshake.

        Returns:
            True if the socket opened. On failure a reconnect is scheduled
            and False is returned.
        """
        if self._state is not GatewayState.DISCONNECTED:
            _LOGGER.debug(
                "[%s] Connect ignored in state %s", self.label, self._state.value
            )
            return False

        self._token = token
        self._shutdown_requested = False

        if await self._open():
            return True

        self._request_reconnect("connection failed")
        return False

    async def disconnect(self) -> None:
        """Close the session from any state.

        Pending reconnect and heartbeat timers are cancelled before the socket
        is released. The session stays closed until ``connect`` is called.
        """
        _LOGGER.info("[%s] Disconnecting", self.label)
        self._shutdown_requested = True

        reconnect_task = self._reconnect_task
        self._reconnect_task = None
        if reconnect_task is not None and reconnect_task is not asyncio.current_task():
            reconnect_task.cancel()
            await asyncio.gather(reconnect_task, return_exceptions=True)

        await self._teardown(NORMAL_CLOSE_CODE)

        # A normal close ends the session server-side.
        self._session = GatewaySessionState()
        self._set_state(GatewayState.DISCONNECTED)

    @property
    def state(self) -> GatewayState:
        """Current lifecycle state."""
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is GatewayState.READY

    @property
    def session_state(self) -> GatewaySessionState:
        """Snapshot of the resume cursor and heartbeat bookkeeping."""
        return dataclasses.replace(self._session)

    @property
    def latency_ms(self) -> float | None:
        """Round trip of the last acknowledged heartbeat."""
        return self._latency_ms

    # -------------------------------------------------------------------------
    # Public API: Callbacks
    # -------------------------------------------------------------------------

    def on_dispatch(self, callback: Callable[[str | None, Any], Any]) -> None:
        """Register callback for DISPATCH events.

        Callback receives the event name and its payload. Coroutine functions
        are awaited.
        """
        self._dispatch_callback = callback

    def on_connection_state_changed(
        self, callback: Callable[[GatewayState], None]
    ) -> None:
        """Register callback for lifecycle state changes."""
        self._connection_state_callback = callback

    def on_latency_update(self, callback: Callable[[float], Any]) -> None:
        """Register callback for heartbeat latency updates (milliseconds)."""
        self._latency_callback = callback

    # -------------------------------------------------------------------------
    # Internal: Connection State Machine
    # -------------------------------------------------------------------------

    def _set_state(self, state: GatewayState) -> None:
        """Update lifecycle state and notify callback."""
        if self._state is state:
            return
        _LOGGER.debug(
            "[%s] State: %s -> %s", self.label, self._state.value, state.value
        )
        self._state = state
        if self._connection_state_callback:
            try:
                self._connection_state_callback(state)
            except Exception as err:
                _LOGGER.exception(
                    "[%s] Connection state callback error: %s", self.label, err
                )

    async def _resolve_gateway_url(self) -> str | None:
        if self._session.can_resume and self._session.resume_url:
            return self._session.resume_url
        if self._config.gateway_url:
            return self._config.gateway_url
        if self._http is None:
            return None
        try:
            return await self._http.fetch_gateway_url()
        except ChatlinkClientError as err:
            _LOGGER.warning("[%s] Gateway URL discovery failed: %s", self.label, err)
            return None

    async def _open(self) -> bool:
        """Open a socket and start the listener. Returns False on failure."""
        self._set_state(GatewayState.CONNECTING)

        base_url = await self._resolve_gateway_url()
        if base_url is None:
            _LOGGER.error("[%s] No gateway URL available", self.label)
            return False

        _LOGGER.info("[%s] Connecting to %s", self.label, base_url)
        ws_client = GatewayWsClient()
        try:
            await ws_client.connect(
                self._config.connection_url(base_url),
                timeout=self._config.connect_timeout,
            )
        except ChatlinkClientError as err:
            _LOGGER.warning("[%s] Connection failed: %s", self.label, err)
            return False

        if self._shutdown_requested:
            await ws_client.close(NORMAL_CLOSE_CODE)
            self._set_state(GatewayState.DISCONNECTED)
            return False

        self._ws = ws_client
        self._awaiting_ack = False
        self._set_state(GatewayState.AWAITING_HELLO)
        self._listen_task = asyncio.create_task(self._listen(ws_client))
        return True

    async def _teardown(self, close_code: int) -> None:
        """Cancel heartbeat, listener and pending identify, then close the socket."""
        current = asyncio.current_task()
        tasks: list[asyncio.Task[None]] = []
        for task in (self._heartbeat_task, self._listen_task, self._identify_task):
            if task is not None and task is not current:
                task.cancel()
                tasks.append(task)
        self._heartbeat_task = None
        self._listen_task = None
        self._identify_task = None
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        ws, self._ws = self._ws, None
        self._awaiting_ack = False
        if ws is not None:
            try:
                await asyncio.wait_for(ws.close(close_code), timeout=2.0)
            except TimeoutError:
                _LOGGER.warning("[%s] WebSocket close timed out", self.label)

    def _request_reconnect(self, reason: str) -> None:
        """Schedule a single reconnect; repeated requests are ignored."""
        if self._shutdown_requested or self._state is GatewayState.DISCONNECTED:
            return
        if self._reconnect_task is not None:
            _LOGGER.debug(
                "[%s] Reconnect already pending, ignoring: %s", self.label, reason
            )
            return

        _LOGGER.warning("[%s] Reconnecting: %s", self.label, reason)
        self._set_state(GatewayState.RECONNECTING)
        self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        """Close the current socket, then retry opening at a fixed delay."""
        delay = self._config.reconnect_delay_ms / 1000
        try:
            await self._teardown(RESUMABLE_CLOSE_CODE)
            while not self._shutdown_requested:
                _LOGGER.info("[%s] Reconnecting in %.1fs", self.label, delay)
                await asyncio.sleep(delay)
                if await self._open():
                    return
                self._set_state(GatewayState.RECONNECTING)
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Reconnect cancelled", self.label)
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    def _handle_close(self, close_code: int | None) -> None:
        """React to the socket closing underneath the session."""
        if self._reconnect_task is not None:
            return

        kind = classify_close_code(close_code)
        if kind == "fatal":
            _LOGGER.error(
                "[%s] Gateway closed with fatal code %s", self.label, close_code
            )
            self._cancel_heartbeat()
            self._cancel_identify()
            self._ws = None
            self._listen_task = None
            self._session = GatewaySessionState()
            self._set_state(GatewayState.DISCONNECTED)
            return

        if kind == "reset":
            _LOGGER.info(
                "[%s] Session cannot be resumed (code %s)", self.label, close_code
            )
            self._session.clear_resume()

        self._request_reconnect(f"socket closed (code {close_code})")

    # -------------------------------------------------------------------------
    # Internal: Frame Listener
    # -------------------------------------------------------------------------

    async def _listen(self, ws: GatewayWsClient) -> None:
        """Read frames until the socket closes."""
        close_code: int | None = None
        frame_count = 0

        try:
            async for msg in ws:
                if msg.type is GatewayWsMessageType.TEXT:
                    frame_count += 1
                    try:
                        frame = parse_frame(msg.data or "")
                    except ChatlinkProtocolError as err:
                        _LOGGER.warning("[%s] Invalid frame: %s", self.label, err)
                        continue
                    await self._handle_frame(frame)
                    continue

                if msg.type is GatewayWsMessageType.CLOSED:
                    close_code = msg.close_code
                    _LOGGER.info(
                        "[%s] WebSocket closed by server (code %s)",
                        self.label,
                        close_code,
                    )
                else:
                    _LOGGER.error("[%s] WebSocket error", self.label)
                break

        except asyncio.CancelledError:
            _LOGGER.debug(
                "[%s] Listener cancelled (%d frames)", self.label, frame_count
            )
            raise
        except ChatlinkClientError as err:
            _LOGGER.warning("[%s] Client error: %s", self.label, err)
        except Exception as err:
            _LOGGER.exception("[%s] Unexpected error: %s", self.label, err)

        if not self._shutdown_requested:
            self._handle_close(close_code)

    async def _handle_frame(self, frame: GatewayFrame) -> None:
        """Route one inbound frame by opcode."""
        if self._config.verbose_logging:
            _LOGGER.debug(
                "[%s] <- op=%d t=%s s=%s", self.label, frame.op, frame.t, frame.s
            )

        opcode = frame.opcode
        if opcode is GatewayOpcode.DISPATCH:
            await self._handle_dispatch(frame)
        elif opcode is GatewayOpcode.HELLO:
            await self._handle_hello(frame)
        elif opcode is GatewayOpcode.HEARTBEAT_ACK:
            await self._handle_heartbeat_ack()
        elif opcode is GatewayOpcode.HEARTBEAT:
            await self._send_heartbeat()
        elif opcode is GatewayOpcode.RECONNECT:
            self._request_reconnect("server requested reconnect")
        elif opcode is GatewayOpcode.INVALID_SESSION:
            await self._handle_invalid_session()
        else:
            _LOGGER.debug("[%s] Ignoring opcode %d", self.label, frame.op)

    # -------------------------------------------------------------------------
    # Internal: Protocol Handlers
    # -------------------------------------------------------------------------

    async def _handle_hello(self, frame: GatewayFrame) -> None:
        """Start heartbeating, then identify or resume."""
        if self._state is not GatewayState.AWAITING_HELLO:
            _LOGGER.warning(
                "[%s] Unexpected HELLO in state %s", self.label, self._state.value
            )
            return

        data = frame.d if isinstance(frame.d, dict) else {}
        interval = data.get("heartbeat_interval")
        valid = isinstance(interval, (int, float)) and not isinstance(interval, bool)
        if not valid or interval <= 0:
            _LOGGER.warning("[%s] HELLO without heartbeat interval", self.label)
            return

        self._session.heartbeat_interval_ms = int(interval)
        self._start_heartbeat(self._session.heartbeat_interval_ms)

        session_id = self._session.session_id
        sequence = self._session.sequence
        if session_id is not None and sequence is not None:
            await self._send_resume(session_id, sequence)
        else:
            await self._send_identify()

    async def _send_identify(self) -> None:
        # A fresh session must never inherit a previous cursor.
        self._session.clear_resume()
        self._set_state(GatewayState.IDENTIFYING)
        await self._send(
            build_identify(
                token=self._token or "",
                platform=self._config.platform_metadata,
                intents=self._config.intents,
            )
        )
        _LOGGER.debug("[%s] Identify sent", self.label)

    async def _send_resume(self, session_id: str, sequence: int) -> None:
        self._set_state(GatewayState.RESUMING)
        await self._send(
            build_resume(
                token=self._token or "", session_id=session_id, sequence=sequence
            )
        )
        _LOGGER.debug("[%s] Resume sent (seq=%d)", self.label, sequence)

    async def _handle_dispatch(self, frame: GatewayFrame) -> None:
        """Advance the cursor, capture session identity, emit the event."""
        if self._state not in (
            GatewayState.IDENTIFYING,
            GatewayState.RESUMING,
            GatewayState.READY,
        ):
            _LOGGER.warning(
                "[%s] Ignoring DISPATCH %s in state %s",
                self.label,
                frame.t,
                self._state.value,
            )
            return

        if frame.s is not None and not self._session.advance_sequence(frame.s):
            _LOGGER.debug(
                "[%s] Stale sequence %d (current %s)",
                self.label,
                frame.s,
                self._session.sequence,
            )

        if frame.t == "READY":
            data = frame.d if isinstance(frame.d, dict) else {}
            self._session.session_id = data.get("session_id")
            self._session.resume_url = data.get("resume_gateway_url")
            self._set_state(GatewayState.READY)
            _LOGGER.info("[%s] Session ready: %s", self.label, self._session.session_id)
        elif frame.t == "RESUMED":
            self._set_state(GatewayState.READY)
            _LOGGER.info(
                "[%s] Session resumed at seq %s", self.label, self._session.sequence
            )

        await self._invoke(self._dispatch_callback, frame.t, frame.d)

    async def _handle_heartbeat_ack(self) -> None:
        now = time.monotonic()
        self._session.last_heartbeat_ack_at = now
        self._awaiting_ack = False

        sent_at = self._session.last_heartbeat_sent_at
        if sent_at is None:
            _LOGGER.debug("[%s] HEARTBEAT_ACK without heartbeat", self.label)
            return

        self._latency_ms = (now - sent_at) * 1000
        if self._config.verbose_logging:
            _LOGGER.debug("[%s] Heartbeat ack (%.1fms)", self.label, self._latency_ms)
        await self._invoke(self._latency_callback, self._latency_ms)

    async def _handle_invalid_session(self) -> None:
        """Drop the resume cursor and identify from scratch."""
        _LOGGER.warning("[%s] Session invalidated, re-identifying", self.label)
        self._session.clear_resume()
        self._cancel_identify()
        delay = self._rng.uniform(*INVALID_SESSION_DELAY_RANGE)
        self._identify_task = asyncio.create_task(self._identify_after(delay))

    async def _identify_after(self, delay: float) -> None:
        """Re-identify after ``delay`` seconds; frames keep flowing meanwhile."""
        try:
            await asyncio.sleep(delay)
            await self._send_identify()
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Re-identify cancelled", self.label)
        except ChatlinkClientError as err:
            _LOGGER.warning("[%s] Identify send failed: %s", self.label, err)
            self._request_reconnect("identify send failed")
        finally:
            if self._identify_task is asyncio.current_task():
                self._identify_task = None

    def _cancel_identify(self) -> None:
        task, self._identify_task = self._identify_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _send(self, payload: dict[str, Any]) -> None:
        if self._ws is None:
            raise ChatlinkConnectionError("WebSocket is not connected")
        if self._config.verbose_logging:
            _LOGGER.debug("[%s] -> op=%d", self.label, payload["op"])
        await self._ws.send_json(payload)

    async def _invoke(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as err:
            _LOGGER.exception("[%s] Callback error: %s", self.label, err)

    # -------------------------------------------------------------------------
    # Internal: Heartbeat
    # -------------------------------------------------------------------------

    def _start_heartbeat(self, interval_ms: int) -> None:
        self._cancel_heartbeat()
        self._awaiting_ack = False
        self._heartbeat_task = asyncio.create_task(
            self._heartbeat_loop(interval_ms / 1000)
        )

    def _cancel_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _first_heartbeat_delay(self, interval: float) -> float:
        """Random point within the first interval, so clients do not beat in step."""
        return interval * self._rng.random()

    async def _heartbeat_loop(self, interval: float) -> None:
        """Heartbeat loop - first beat jittered, then one per interval."""
        try:
            await asyncio.sleep(self._first_heartbeat_delay(interval))
            while await self._heartbeat_tick():
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Heartbeat cancelled", self.label)
        except ChatlinkClientError as err:
            _LOGGER.warning("[%s] Heartbeat send failed: %s", self.label, err)
            self._request_reconnect("heartbeat send failed")

    async def _heartbeat_tick(self) -> bool:
        """Send one heartbeat. Returns False once the connection is declared dead.

        An outstanding heartbeat older than the ack timeout (capped at the
        interval) means the server stopped answering. A younger one, such as
        a reply to a server-requested heartbeat, defers to the next tick.
        """
        sent_at = self._session.last_heartbeat_sent_at
        if self._awaiting_ack and sent_at is not None:
            age_ms = (time.monotonic() - sent_at) * 1000
            limit_ms: float = self._config.heartbeat_ack_timeout_ms
            if self._session.heartbeat_interval_ms is not None:
                limit_ms = min(limit_ms, self._session.heartbeat_interval_ms)
            if age_ms >= limit_ms:
                _LOGGER.warning(
                    "[%s] Heartbeat not acknowledged after %.0fms", self.label, age_ms
                )
                self._request_reconnect("heartbeat not acknowledged")
                return False
            return True

        await self._send_heartbeat()
        return True

    async def _send_heartbeat(self) -> None:
        # Recorded before sending: the ack can arrive while the send yields.
        self._session.last_heartbeat_sent_at = time.monotonic()
        self._awaiting_ack = True
        await self._send(build_heartbeat(self._session.sequence))
