"""Subscriber side of the streaming surface.

`SubscriberState` is a plain state machine holding everything the display
needs. `StreamClient` connects it to a server over Socket.IO and owns the only
reconnect loop.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import socketio

from deepsight.history import DEFAULT_CAPACITY, HistoryBuffer, HistoryPoint
from deepsight.hub import SYSTEM_INFO, SYSTEM_UPDATE
from deepsight.models import DynamicReport, StaticSnapshot

logger = logging.getLogger(__name__)

Listener = Callable[["SubscriberState"], None]


class ConnectionState(Enum):
    """Connection states of a subscriber."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERRORED = "errored"


class SubscriberState:
    """
    Latest data, rolling history and connection health of one subscriber.

    The connection state and the data channel are independent: a report that
    arrives while not connected is still applied. Connection changes never
    touch the history.
    """

    def __init__(
        self,
        history_size: int = DEFAULT_CAPACITY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._clock = clock
        self._state = ConnectionState.CONNECTING
        self._last_error: str | None = None
        self._listeners: list[Listener] = []
        self.static: StaticSnapshot | None = None
        self.latest: DynamicReport | None = None
        self.last_updated: float | None = None
        self.history = HistoryBuffer(history_size)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def last_error(self) -> str | None:
        """Reason of the most recent connection error, kept until a connect succeeds."""
        return self._last_error

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Call `listener` after every change.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def on_connecting(self) -> None:
        self._set_state(ConnectionState.CONNECTING)

    def on_connect(self) -> None:
        self._last_error = None
        self._set_state(ConnectionState.CONNECTED)

    def on_disconnect(self) -> None:
        self._set_state(ConnectionState.DISCONNECTED)

    def on_connect_error(self, reason: str) -> None:
        self._last_error = reason
        self._set_state(ConnectionState.ERRORED)

    def on_static(self, snapshot: StaticSnapshot) -> None:
        self.static = snapshot
        self._notify()

    def on_update(self, report: DynamicReport) -> None:
        now = self._clock()
        self.latest = report
        self.last_updated = now
        self.history.append(HistoryPoint.from_report(report, now))
        self._notify()

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug("Connection state %s -> %s", self._state.value, state.value)
        self._state = state
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("State listener failed")


class StreamClient:
    """
    Socket.IO client feeding a SubscriberState.

    The Socket.IO client's own reconnection is disabled; a single loop task
    reconnects with capped exponential backoff, and every connect attempt is
    bounded by `connect_timeout`.
    """

    def __init__(
        self,
        state: SubscriberState,
        url: str,
        reconnect_delay: float = 1.0,
        reconnect_delay_max: float = 30.0,
        reconnect_attempts: int | None = None,
        connect_timeout: float = 10.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        sio: Any = None,
    ) -> None:
        """
        Initialize the StreamClient.

        Args:
            state: State machine updated by incoming events.
            url: Server URL, e.g. http://localhost:3001.
            reconnect_delay: First wait after a failed or lost connection.
            reconnect_delay_max: Upper bound for the doubling backoff.
            reconnect_attempts: Consecutive failed attempts before giving up;
                None retries forever.
            connect_timeout: Seconds allowed for one connect attempt.
            sleep: Awaitable sleep, replaceable in tests.
            sio: Socket.IO client instance, replaceable in tests.
        """
        self.state = state
        self.url = url
        self._reconnect_delay = reconnect_delay
        self._reconnect_delay_max = reconnect_delay_max
        self._reconnect_attempts = reconnect_attempts
        self._connect_timeout = connect_timeout
        self._sleep = sleep
        self._sio = sio or socketio.AsyncClient(
            reconnection=False, logger=False, engineio_logger=False
        )
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self.attempts = 0
        self._server_error: str | None = None
        self._setup_event_handlers()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _setup_event_handlers(self) -> None:
        self._sio.on("connect", self._on_connect)
        self._sio.on("disconnect", self._on_disconnect)
        self._sio.on("connect_error", self._on_connect_error)
        self._sio.on(SYSTEM_INFO, self._on_system_info)
        self._sio.on(SYSTEM_UPDATE, self._on_system_update)

    async def _on_connect(self) -> None:
        logger.info("Connected to %s", self.url)
        self.state.on_connect()

    async def _on_disconnect(self, reason: Any = None) -> None:
        logger.info("Disconnected from %s", self.url)
        self.state.on_disconnect()

    async def _on_connect_error(self, data: Any = None) -> None:
        logger.error("Connection error from %s: %s", self.url, data)
        if isinstance(data, dict) and "message" in data:
            data = data["message"]
        self._server_error = None if data is None else str(data)

    async def _on_system_info(self, data: dict[str, Any]) -> None:
        try:
            snapshot = StaticSnapshot.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Malformed %s payload: %s", SYSTEM_INFO, e)
            return
        self.state.on_static(snapshot)

    async def _on_system_update(self, data: dict[str, Any]) -> None:
        try:
            report = DynamicReport.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Malformed %s payload: %s", SYSTEM_UPDATE, e)
            return
        self.state.on_update(report)

    def start(self) -> None:
        """Start the connect/reconnect loop. Calling it again has no effect."""
        if self.is_running:
            return
        self._stopping = False
        self._task = asyncio.get_running_loop().create_task(self._run(), name="stream-client")

    async def stop(self) -> None:
        """Stop reconnecting and close the connection."""
        self._stopping = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        await self._safe_disconnect()

    async def reconnect(self) -> None:
        """Drop the current connection and reset the backoff; the loop reconnects."""
        self.attempts = 0
        if self._sio.connected:
            await self._safe_disconnect()
        elif not self.is_running:
            self.start()

    async def _run(self) -> None:
        delay = self._reconnect_delay
        while not self._stopping:
            self.state.on_connecting()
            self.attempts += 1
            if await self._connect_once():
                self.attempts = 0
                delay = self._reconnect_delay
                await self._sio.wait()
                if self._stopping:
                    break
            elif self._reconnect_attempts is not None and self.attempts >= self._reconnect_attempts:
                logger.error("Giving up on %s after %d attempt(s)", self.url, self.attempts)
                break

            logger.info("Reconnecting to %s in %.1fs", self.url, delay)
            await self._sleep(delay)
            if self.attempts:
                delay = min(delay * 2, self._reconnect_delay_max)

    async def _connect_once(self) -> bool:
        self._server_error = None
        try:
            await asyncio.wait_for(
                self._sio.connect(
                    self.url,
                    transports=["websocket"],
                    wait_timeout=self._connect_timeout,
                ),
                timeout=self._connect_timeout,
            )
        except asyncio.TimeoutError:
            reason = f"Connection to {self.url} timed out after {self._connect_timeout}s"
            logger.warning(reason)
            self.state.on_connect_error(reason)
            await self._safe_disconnect()
            return False
        except socketio.exceptions.ConnectionError as e:
            logger.warning("Connection to %s failed: %s", self.url, e)
            # Prefer the reason the server gave over the client library's generic message
            self.state.on_connect_error(self._server_error or str(e))
            return False
        return True

    async def _safe_disconnect(self) -> None:
        try:
            await self._sio.disconnect()
        except Exception as e:
            logger.warning("Error while disconnecting from %s: %s", self.url, e)
