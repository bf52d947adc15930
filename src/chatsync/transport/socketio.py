"""
Realtime channel — one long-lived Socket.IO connection to the chat server.

States: disconnected -> connecting -> connected. A drop that was not asked
for goes back to connecting and retries in the background; every connect
cycle makes at most ``reconnection_attempts`` attempts with a linear
backoff, then stays disconnected until connect() is called again.

Incoming events are queued and handed to listeners by a single dispatcher
task, so listeners never run concurrently with each other.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

import socketio

from chatsync.errors import ChannelConnectError
from chatsync.models.events import ChannelEvent

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "https://chat-server-uj70.onrender.com"
DEFAULT_RECONNECTION_ATTEMPTS = 5
DEFAULT_RECONNECTION_DELAY = 1.0

EventHandler = Callable[[Any], Union[None, Awaitable[None]]]
StateListener = Callable[["ChannelState"], None]


class ChannelState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def _default_client() -> socketio.AsyncClient:
    # Retries are driven by RealtimeChannel so the state machine stays observable
    return socketio.AsyncClient(reconnection=False)


class RealtimeChannel:
    def __init__(
        self,
        url: str = DEFAULT_SERVER_URL,
        transports: Optional[list[str]] = None,
        reconnection_attempts: int = DEFAULT_RECONNECTION_ATTEMPTS,
        reconnection_delay: float = DEFAULT_RECONNECTION_DELAY,
        client_factory: Optional[Callable[[], Any]] = None,
    ):
        self._url = url
        self._transports = transports or ["websocket"]
        self._attempts = max(1, reconnection_attempts)
        self._delay = reconnection_delay
        self._client_factory = client_factory or _default_client
        self._sio: Optional[Any] = None
        self._state = ChannelState.DISCONNECTED
        self._listeners: dict[str, list[EventHandler]] = {}
        self._state_listeners: list[StateListener] = []
        self._cycle: Optional[asyncio.Task[None]] = None
        self._inbox: Optional[asyncio.Queue[tuple[str, Any]]] = None
        self._dispatcher: Optional[asyncio.Task[None]] = None
        self._sends: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ChannelState.CONNECTED

    @property
    def url(self) -> str:
        return self._url

    # -- listeners ------------------------------------------------------------

    def on(self, event: str, handler: EventHandler) -> None:
        """Register a listener. Several listeners per event run in registration order."""
        self._listeners.setdefault(event, []).append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._listeners.get(event)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            pass
        if not handlers:
            del self._listeners[event]

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        """Observe state transitions. Returns a cleanup function."""
        self._state_listeners.append(listener)

        def remove() -> None:
            try:
                self._state_listeners.remove(listener)
            except ValueError:
                pass
        return remove

    def _set_state(self, state: ChannelState) -> None:
        if state is self._state:
            return
        previous, self._state = self._state, state
        logger.info("Realtime channel %s -> %s (%s)", previous.value, state.value, self._url)
        for listener in list(self._state_listeners):
            listener(state)

    # -- connection -----------------------------------------------------------

    async def connect(self) -> None:
        """Connect, retrying per the reconnection policy. No-op unless disconnected."""
        if self._state is not ChannelState.DISCONNECTED:
            return
        self._set_state(ChannelState.CONNECTING)
        cycle = self._start_cycle()
        # wait() leaves the cycle running if our caller is cancelled,
        # and returns quietly if disconnect() cancels the cycle
        await asyncio.wait({cycle})

    async def disconnect(self) -> None:
        """Go to disconnected immediately and cancel any pending retry."""
        if self._state is ChannelState.DISCONNECTED:
            return
        self._set_state(ChannelState.DISCONNECTED)
        cycle, self._cycle = self._cycle, None
        if cycle is not None and not cycle.done() and cycle is not asyncio.current_task():
            cycle.cancel()
        self._drop_queued()
        sio, self._sio = self._sio, None
        if sio is not None:
            try:
                await sio.disconnect()
            except Exception as e:
                logger.warning("Error while closing realtime socket: %s", e)

    async def close(self) -> None:
        """Disconnect and stop the dispatcher."""
        await self.disconnect()
        dispatcher, self._dispatcher = self._dispatcher, None
        if dispatcher is not None:
            dispatcher.cancel()
            try:
                await dispatcher
            except asyncio.CancelledError:
                pass
        self._inbox = None

    def _start_cycle(self) -> "asyncio.Task[None]":
        self._ensure_dispatcher()
        self._cycle = asyncio.get_running_loop().create_task(self._connect_cycle())
        return self._cycle

    async def _connect_cycle(self) -> None:
        try:
            for attempt in range(1, self._attempts + 1):
                if attempt > 1:
                    await asyncio.sleep(self._delay * (attempt - 1))
                try:
                    await self._open()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    err = ChannelConnectError(
                        f"Connect attempt {attempt}/{self._attempts} to {self._url} failed: {e}"
                    )
                    logger.warning(str(err))
                    continue
                if self._state is ChannelState.CONNECTING:
                    self._set_state(ChannelState.CONNECTED)
                return
            logger.error(
                "Realtime channel gave up after %d attempts; staying disconnected until connect() is called",
                self._attempts,
            )
            self._set_state(ChannelState.DISCONNECTED)
        finally:
            if self._cycle is asyncio.current_task():
                self._cycle = None

    async def _open(self) -> None:
        sio = self._client_factory()
        self._register(sio)
        self._sio = sio
        try:
            await sio.connect(self._url, transports=self._transports)
        except BaseException:
            if self._sio is sio:
                self._sio = None
            raise

    def _register(self, sio: Any) -> None:
        async def on_connect() -> None:
            logger.debug("Socket connected to %s", self._url)

        async def on_connect_error(data: Any = None) -> None:
            logger.warning("Socket connect_error from %s: %s", self._url, data)

        async def on_disconnect(*args: Any) -> None:
            await self._on_drop(sio, args[0] if args else "")

        async def on_any(event: str, *args: Any) -> None:
            payload = args[0] if args else None
            if event in ChannelEvent.LIFECYCLE:
                logger.warning("Socket %s event: %s", event, payload)
                return
            self._enqueue(event, payload)

        sio.on(ChannelEvent.CONNECT, on_connect)
        sio.on(ChannelEvent.CONNECT_ERROR, on_connect_error)
        sio.on(ChannelEvent.DISCONNECT, on_disconnect)
        sio.on("*", on_any)

    async def _on_drop(self, sio: Any, reason: Any) -> None:
        if sio is not self._sio:
            return  # a socket we already let go of
        self._sio = None
        if self._state is not ChannelState.CONNECTED:
            return
        logger.warning("Realtime connection lost (%s); reconnecting", reason or "unknown reason")
        self._set_state(ChannelState.CONNECTING)
        self._drop_queued()
        self._start_cycle()

    # -- outgoing -------------------------------------------------------------

    def emit(self, event: str, payload: Any) -> None:
        """Best-effort send. Logged and dropped when not connected."""
        sio = self._sio
        if self._state is not ChannelState.CONNECTED or sio is None:
            logger.warning("Realtime channel %s; dropping outgoing %r", self._state.value, event)
            return

        async def _do_emit() -> None:
            try:
                await sio.emit(event, payload)
            except Exception as e:
                logger.error(f"Emit failed for {event}: {e}")

        task = asyncio.get_running_loop().create_task(_do_emit())
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)

    # -- incoming -------------------------------------------------------------

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is not None and not self._dispatcher.done():
            return
        self._inbox = asyncio.Queue()
        self._dispatcher = asyncio.get_running_loop().create_task(self._dispatch_loop(self._inbox))

    def _enqueue(self, event: str, payload: Any) -> None:
        if self._inbox is not None:
            self._inbox.put_nowait((event, payload))

    def _drop_queued(self) -> None:
        inbox = self._inbox
        if inbox is None:
            return
        dropped = 0
        while not inbox.empty():
            inbox.get_nowait()
            inbox.task_done()
            dropped += 1
        if dropped:
            logger.debug("Dropped %d queued realtime event(s)", dropped)

    async def _dispatch_loop(self, inbox: "asyncio.Queue[tuple[str, Any]]") -> None:
        while True:
            event, payload = await inbox.get()
            try:
                await self._deliver(event, payload)
            finally:
                inbox.task_done()

    async def _deliver(self, event: str, payload: Any) -> None:
        if self._state is not ChannelState.CONNECTED:
            logger.debug("Dropping %r received while %s", event, self._state.value)
            return
        handlers = list(self._listeners.get(event, ()))
        if not handlers:
            logger.debug("No listener for %r", event)
        for handler in handlers:
            if self._state is not ChannelState.CONNECTED:
                return
            # a listener removed by an earlier one must not fire
            if handler not in self._listeners.get(event, ()):
                continue
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Listener for %r failed", event)

    async def flush(self) -> None:
        """Wait until every queued incoming event has been handled or dropped."""
        if self._inbox is not None:
            await self._inbox.join()
        if self._sends:
            await asyncio.gather(*list(self._sends), return_exceptions=True)
