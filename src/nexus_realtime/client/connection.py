"""Resilient realtime connection with bounded reconnect and typed dispatch."""

import asyncio
import logging
from datetime import datetime, timezone
from types import TracebackType
from typing import Any, Callable, Self

from nexus_realtime.client.address import realtime_url
from nexus_realtime.client.exceptions import (
    ConnectionFailedError,
    ConnectTimeoutError,
    ManagerClosedError,
)
from nexus_realtime.client.listeners import Listener, ListenerRegistry
from nexus_realtime.client.state import ConnectionState, ConnectionStatus
from nexus_realtime.config import RealtimeSettings
from nexus_realtime.protocol.events import EventTypes
from nexus_realtime.shared.frames import InboundMessage, parse_frame, serialize_message
from nexus_realtime.transport.base import Connector, Transport
from nexus_realtime.transport.websocket import connect_websocket

logger = logging.getLogger(__name__)

StateCallback = Callable[[ConnectionStatus], None]


class ConnectionManager:
    """Keeps one realtime transport alive and fans inbound events out to listeners.

    The manager owns at most one live transport. When the transport drops
    unexpectedly it retries with exponential backoff, ``reconnect_delay *
    2 ** (attempt - 1)`` seconds, up to ``max_reconnect_attempts`` times,
    and then gives up and reports the ``failed`` state. A successful
    reconnection resets the attempt counter.

    Inbound frames are parsed and dispatched by event type, in arrival
    order, to the listeners registered with on(). Malformed frames and
    failing listeners are logged and skipped. Nothing sent while the
    connection is down is queued, and nothing missed is replayed.

    disconnect() is terminal: it closes the transport, cancels any pending
    reconnect, clears listeners and moves to ``closed``.
    """

    def __init__(
        self,
        url: str,
        connector: Connector | None = None,
        *,
        max_reconnect_attempts: int = 5,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float | None = None,
        connect_timeout: float = 10.0,
        auto_reconnect: bool = True,
        heartbeat_interval: float | None = None,
        heartbeat_timeout: float = 10.0,
    ) -> None:
        """Initialize a manager. No I/O happens until connect().

        Args:
            url: Address of the realtime namespace.
            connector: Async factory returning an open transport for a URL.
                Defaults to the WebSocket connector.
            max_reconnect_attempts: Retry budget after an unexpected drop.
            reconnect_delay: Base backoff delay in seconds.
            max_reconnect_delay: Optional ceiling on a single backoff delay.
            connect_timeout: Seconds to wait for a transport to open.
            auto_reconnect: Retry automatically after drops and failed connects.
            heartbeat_interval: Seconds between client heartbeats. None disables
                the heartbeat.
            heartbeat_timeout: Seconds to wait for a heartbeat reply before
                treating the connection as stale.
        """
        self.url = url
        self._connector: Connector = connector or connect_websocket
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.connect_timeout = connect_timeout
        self.auto_reconnect = auto_reconnect
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_timeout = heartbeat_timeout

        self._state = ConnectionState.IDLE
        self._transport: Transport | None = None
        self._reconnect_attempts = 0
        self._next_retry_delay: float | None = None
        self._last_error: str | None = None

        self._listeners = ListenerRegistry()
        self._state_callbacks: list[StateCallback] = []

        self._connect_lock = asyncio.Lock()
        self._reader_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._heartbeat_ack = asyncio.Event()

    @classmethod
    def from_settings(
        cls,
        settings: RealtimeSettings,
        connector: Connector | None = None,
        page_scheme: str | None = None,
        page_host: str | None = None,
    ) -> "ConnectionManager":
        return cls(
            realtime_url(settings, page_scheme=page_scheme, page_host=page_host),
            connector,
            max_reconnect_attempts=settings.max_reconnect_attempts,
            reconnect_delay=settings.reconnect_delay,
            max_reconnect_delay=settings.max_reconnect_delay,
            connect_timeout=settings.connect_timeout,
            heartbeat_interval=settings.heartbeat_interval,
            heartbeat_timeout=settings.heartbeat_timeout,
        )

    # ================================
    # State
    # ================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def status(self) -> ConnectionStatus:
        return ConnectionStatus(
            state=self._state,
            url=self.url,
            reconnect_attempts=self._reconnect_attempts,
            next_retry_delay=self._next_retry_delay,
            error=self._last_error,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay in seconds before reconnection attempt number `attempt` (from 1)."""
        delay = self.reconnect_delay * 2 ** (attempt - 1)
        if self.max_reconnect_delay is not None:
            delay = min(delay, self.max_reconnect_delay)
        return delay

    def on_state_change(self, callback: StateCallback) -> None:
        """Register a callback for connection health changes.

        The callback receives a ConnectionStatus on every transition,
        including each scheduled retry and the terminal ``failed`` state.
        Callbacks must be plain functions; exceptions are logged.
        """
        self._state_callbacks.append(callback)

    def off_state_change(self, callback: StateCallback) -> None:
        if callback in self._state_callbacks:
            self._state_callbacks.remove(callback)

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        status = self.status
        for callback in list(self._state_callbacks):
            try:
                callback(status)
            except Exception as e:
                logger.warning(f"State change callback failed: {e!r}")

    # ================================
    # Public API
    # ================================

    async def connect(self) -> None:
        """Open the realtime connection.

        Returns once the transport is open. Calling connect() while already
        open does nothing. Calling it while a reconnect is pending cancels
        the pending attempt and connects right away. From ``failed`` it
        starts over with a fresh retry budget.

        Raises:
            ConnectionFailedError: If the transport could not be opened.
                With auto_reconnect the retry schedule starts as well.
            ManagerClosedError: If disconnect() was already called.
        """
        if self._state is ConnectionState.CLOSED:
            raise ManagerClosedError("Cannot connect: manager was disconnected")
        if self._state is ConnectionState.OPEN:
            logger.debug(f"connect() ignored, already open: {self.url}")
            return

        await self._cancel_reconnect()
        if self._state is ConnectionState.FAILED:
            self._reconnect_attempts = 0

        try:
            await self._open()
        except ConnectionFailedError:
            if self.auto_reconnect:
                self._schedule_reconnect()
            raise

    async def send(self, message: dict[str, Any]) -> bool:
        """Serialize and transmit a message if the connection is open.

        Fire-and-forget: nothing is queued or acknowledged.

        Args:
            message: JSON-serializable object, shaped by the caller.

        Returns:
            True if the frame was handed to the transport, False if the
            connection is not open or the write failed.

        Raises:
            ValueError: If the message cannot be serialized to JSON.
        """
        transport = self._transport
        if (
            self._state is not ConnectionState.OPEN
            or transport is None
            or not transport.is_open
        ):
            logger.warning(
                f"Realtime connection is {self._state.value}, message not sent"
            )
            return False

        frame = serialize_message(message)
        try:
            await transport.send(frame)
        except Exception as e:
            logger.warning(f"Failed to send realtime message: {e}")
            return False
        return True

    def on(self, event_type: str, listener: Listener) -> None:
        """Register a listener for frames of the given event type.

        Args:
            event_type: Frame type, e.g. "metrics-update".
            listener: Function or coroutine function called with the payload.

        Raises:
            ManagerClosedError: If disconnect() was already called.
        """
        if self._state is ConnectionState.CLOSED:
            raise ManagerClosedError(
                "Cannot register listener: manager was disconnected"
            )
        self._listeners.add(event_type, listener)

    def off(self, event_type: str, listener: Listener) -> None:
        """Unregister a listener. Unknown listeners are ignored."""
        self._listeners.remove(event_type, listener)

    def listener_count(self, event_type: str | None = None) -> int:
        return self._listeners.count(event_type)

    async def disconnect(self) -> None:
        """Tear down the connection for good.

        Closes the transport, cancels any pending reconnect and the
        heartbeat, clears all listeners and moves to ``closed``. Safe to call
        more than once and from inside a listener.
        """
        if self._state is ConnectionState.CLOSED:
            return

        self._next_retry_delay = None
        self._set_state(ConnectionState.CLOSED)

        await self._cancel_reconnect()
        self._stop_heartbeat()

        transport, self._transport = self._transport, None
        reader, self._reader_task = self._reader_task, None
        if (
            reader is not None
            and not reader.done()
            and reader is not asyncio.current_task()
        ):
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        if transport is not None:
            await self._close_transport(transport)

        self._listeners.clear()
        self._state_callbacks.clear()
        logger.info(f"Realtime connection closed: {self.url}")

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.disconnect()
        return None

    # ================================
    # Connection lifecycle
    # ================================

    async def _open(self) -> None:
        """Open a transport and start reading from it.

        Serialized by a lock so two attempts never hold live transports at
        the same time.
        """
        async with self._connect_lock:
            if self._state is ConnectionState.OPEN:
                return
            if self._state is ConnectionState.CLOSED:
                raise ManagerClosedError("Manager was disconnected")
            if self._state is not ConnectionState.RECONNECTING:
                self._set_state(ConnectionState.CONNECTING)

            try:
                transport = await asyncio.wait_for(
                    self._connector(self.url), timeout=self.connect_timeout
                )
            except TimeoutError as e:
                self._on_open_failed(f"timed out after {self.connect_timeout}s")
                raise ConnectTimeoutError(
                    f"Timed out after {self.connect_timeout}s opening {self.url}"
                ) from e
            except Exception as e:
                self._on_open_failed(str(e))
                raise ConnectionFailedError(
                    f"Failed to open realtime connection to {self.url}: {e}"
                ) from e

            if self._state is ConnectionState.CLOSED:
                await self._close_transport(transport)
                raise ManagerClosedError("Manager was disconnected while connecting")

            self._transport = transport
            self._reconnect_attempts = 0
            self._next_retry_delay = None
            self._last_error = None
            self._reader_task = asyncio.create_task(
                self._read_loop(transport), name="realtime_reader"
            )
            self._start_heartbeat(transport)
            self._set_state(ConnectionState.OPEN)

        logger.info(f"Realtime connection open: {self.url}")

    def _on_open_failed(self, reason: str) -> None:
        self._last_error = reason
        logger.warning(f"Failed to open realtime connection to {self.url}: {reason}")
        if self._state is ConnectionState.CONNECTING:
            self._set_state(ConnectionState.IDLE)

    async def _read_loop(self, transport: Transport) -> None:
        """Dispatch frames from one transport until it closes or fails."""
        error: Exception | None = None
        try:
            async for frame in transport.messages():
                await self._dispatch_frame(frame)
                if self._transport is not transport:
                    break
        except Exception as e:
            error = e
            logger.warning(f"Realtime transport error on {self.url}: {e}")

        await self._on_transport_closed(transport, error)

    async def _on_transport_closed(
        self, transport: Transport, error: Exception | None
    ) -> None:
        """Handle the end of a transport's message stream."""
        if self._transport is not transport:
            # Torn down by disconnect() or already replaced
            return

        self._transport = None
        self._reader_task = None
        self._stop_heartbeat()
        await self._close_transport(transport)

        if self._state is ConnectionState.CLOSED:
            return

        self._last_error = str(error) if error else "connection closed by peer"
        logger.info(f"Realtime connection dropped: {self.url} ({self._last_error})")

        if self.auto_reconnect:
            self._schedule_reconnect()
        else:
            self._set_state(ConnectionState.IDLE)

    async def _close_transport(self, transport: Transport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.debug(f"Error closing realtime transport: {e}")

    # ================================
    # Reconnection
    # ================================

    def _schedule_reconnect(self) -> None:
        """Start the retry loop unless one is running or the budget is spent."""
        if self._state is ConnectionState.CLOSED:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        if self._reconnect_attempts >= self.max_reconnect_attempts:
            self._give_up()
            return

        self._reconnect_task = asyncio.create_task(
            self._reconnect_loop(), name="realtime_reconnect"
        )

    async def _reconnect_loop(self) -> None:
        """Retry with exponential backoff, one attempt at a time.

        Each attempt waits for the previous one to settle before the next
        delay starts.
        """
        while self._reconnect_attempts < self.max_reconnect_attempts:
            self._reconnect_attempts += 1
            attempt = self._reconnect_attempts
            delay = self.backoff_delay(attempt)

            self._next_retry_delay = delay
            self._set_state(ConnectionState.RECONNECTING)
            logger.info(
                f"Reconnecting to {self.url} in {delay:g}s "
                f"(attempt {attempt}/{self.max_reconnect_attempts})"
            )

            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                # The attempt never ran
                self._reconnect_attempts -= 1
                raise
            self._next_retry_delay = None

            try:
                await self._open()
            except ConnectionFailedError as e:
                logger.warning(f"Reconnection attempt {attempt} failed: {e}")
                continue
            except ManagerClosedError:
                return

            logger.info(f"Reconnected to {self.url} after {attempt} attempt(s)")
            return

        self._give_up()

    def _give_up(self) -> None:
        self._next_retry_delay = None
        logger.error(
            f"Max reconnection attempts reached for {self.url} "
            f"({self.max_reconnect_attempts}), giving up"
        )
        self._set_state(ConnectionState.FAILED)

    async def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        self._next_retry_delay = None
        if task is None or task.done() or task is asyncio.current_task():
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ================================
    # Inbound frames
    # ================================

    async def _dispatch_frame(self, frame: str) -> None:
        try:
            message = parse_frame(frame)
        except Exception as e:
            logger.warning(f"Dropping frame that failed to parse: {e!r}")
            return
        if message is None:
            return

        if message.type == EventTypes.HEARTBEAT:
            self._on_heartbeat(message)

        await self._listeners.dispatch(message.type, message.payload)

    def _on_heartbeat(self, message: InboundMessage) -> None:
        self._heartbeat_ack.set()
        if isinstance(message.payload, dict):
            system_status = message.payload.get("systemStatus", "healthy")
            if system_status != "healthy":
                logger.warning(f"Realtime backend reports status: {system_status}")

    # ================================
    # Heartbeat
    # ================================

    def _start_heartbeat(self, transport: Transport) -> None:
        if self.heartbeat_interval is None:
            return
        self._heartbeat_task = asyncio.create_task(
            self._heartbeat_loop(transport), name="realtime_heartbeat"
        )

    def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()

    async def _heartbeat_loop(self, transport: Transport) -> None:
        """Ping while open; close the transport if the server stops answering."""
        while self._transport is transport:
            await asyncio.sleep(self.heartbeat_interval)
            if self._transport is not transport:
                return

            self._heartbeat_ack.clear()
            client_time = datetime.now(timezone.utc).isoformat()
            sent = await self.send(
                {"type": EventTypes.HEARTBEAT, "payload": {"clientTime": client_time}}
            )
            if not sent:
                return

            try:
                await asyncio.wait_for(
                    self._heartbeat_ack.wait(), timeout=self.heartbeat_timeout
                )
            except TimeoutError:
                logger.warning(
                    f"Heartbeat timeout on {self.url}, connection may be stale"
                )
                await self._close_transport(transport)
                return
