"""
Chat reconciler — the in-memory chat log and every path into it.

Three sources feed one ordered log:
- history from the message store, loaded in full on (re)load
- local composes, appended optimistically then emitted and persisted
- remote ``chat message`` events, minus our own echoes, then persisted

While history is loading, remote arrivals are held back and local
composes stay visible; when the load lands the log becomes
``history + live arrivals`` in arrival order. Async continuations capture
the epoch (bumped by reset/clear) or the session and are discarded when stale.
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Optional

from chatsync.errors import SessionError, StoreReadError, StoreWriteError
from chatsync.models.events import ChannelEvent
from chatsync.models.message import Message
from chatsync.models.session import Session
from chatsync.store import MessageStore
from chatsync.transport.socketio import RealtimeChannel

logger = logging.getLogger(__name__)

# local message keys remembered for echo suppression
LOCAL_KEY_LIMIT = 256


class LogChange:
    APPENDED = "appended"
    REPLACED = "replaced"
    CLEARED = "cleared"


LogListener = Callable[[str, Optional[Message]], None]


class ChatReconciler:
    def __init__(self, channel: RealtimeChannel, store: MessageStore):
        self._channel = channel
        self._store = store
        self._log: list[Message] = []
        self._session: Optional[Session] = None
        self._epoch = 0
        self._loading = False
        # every live arrival since the pending load started, in arrival order
        self._live: list[Message] = []
        # insertion-ordered, oldest evicted past LOCAL_KEY_LIMIT
        self._local_keys: dict[tuple[Any, ...], None] = {}
        self._attached = False
        self._tasks: set[asyncio.Task[Any]] = set()
        self._listeners: list[LogListener] = []

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._log)

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def loading(self) -> bool:
        return self._loading

    def add_listener(self, listener: LogListener) -> Callable[[], None]:
        """Observe log changes. Returns a cleanup function."""
        self._listeners.append(listener)

        def remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass
        return remove

    def _notify(self, change: str, message: Optional[Message] = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(change, message)
            except Exception:
                logger.exception("Chat log listener failed")

    # -- channel wiring -------------------------------------------------------

    def attach(self) -> None:
        if not self._attached:
            self._channel.on(ChannelEvent.CHAT_MESSAGE, self.receive)
            self._attached = True

    def detach(self) -> None:
        if self._attached:
            self._channel.off(ChannelEvent.CHAT_MESSAGE, self.receive)
            self._attached = False

    # -- session scope --------------------------------------------------------

    def reset(self, session: Optional[Session]) -> None:
        """Start over for ``session`` (None on sign-out). In-flight loads are discarded."""
        self._epoch += 1
        self._session = session
        self._loading = False
        self._live.clear()
        self._local_keys.clear()
        self._log.clear()
        self._notify(LogChange.CLEARED)

    def rebind(self, session: Session) -> None:
        """Same identity, fresh tokens: keep the log."""
        self._session = session

    async def load_history(self) -> bool:
        """Replace the log with stored history followed by what arrived during the fetch.

        Returns False when the result was discarded because the log was
        reset, cleared or reloaded again while the fetch was pending.
        """
        if self._loading:
            # the newer load supersedes the pending one and inherits its held arrivals
            self._epoch += 1
        else:
            self._live = []
        epoch = self._epoch
        self._loading = True
        try:
            history = await self._store.fetch_all()
        except StoreReadError as e:
            logger.error("Error fetching messages: %s", e)
            history = []
        if epoch != self._epoch:
            logger.debug("Discarding history fetched for a superseded chat log")
            return False

        merged = list(history)
        seen = {m.record_key for m in history if not m.is_system_notice}
        for message in self._live:
            if not message.is_system_notice and message.record_key in seen:
                continue
            merged.append(message)
        self._log[:] = merged
        self._live.clear()
        self._loading = False
        logger.info("Loaded %d stored message(s), %d in log", len(history), len(merged))
        self._notify(LogChange.REPLACED)
        return True

    # -- arrivals -------------------------------------------------------------

    def _append(self, message: Message, visible: bool = True) -> None:
        if self._loading:
            self._live.append(message)
            if not visible:
                return
        self._log.append(message)
        self._notify(LogChange.APPENDED, message)

    def compose(self, text: str, display_name: str) -> Optional[Message]:
        """Optimistically append a local message, emit it and schedule its persistence.

        Blank text is ignored and returns None.
        """
        session = self._session
        if session is None:
            raise SessionError("No active session", code="no_session")
        if not text.strip():
            return None
        message = Message(text=text, author_display_name=display_name, author_id=session.user_id)
        self._remember_local(message)
        self._append(message)
        self._channel.emit(ChannelEvent.CHAT_MESSAGE, message.to_wire())
        self._spawn(self.persist(message, session))
        return message

    def _remember_local(self, message: Message) -> None:
        self._local_keys[message.dedup_key] = None
        while len(self._local_keys) > LOCAL_KEY_LIMIT:
            del self._local_keys[next(iter(self._local_keys))]

    def receive(self, payload: Any) -> None:
        """Listener for remote ``chat message`` events."""
        session = self._session
        if session is None:
            logger.debug("No session; ignoring chat message")
            return
        try:
            message = Message.from_wire(payload)
        except ValueError as e:
            logger.warning("Ignoring malformed chat message: %s", e)
            return
        if message.author_id is not None and message.author_id == session.user_id:
            logger.debug("Suppressing loopback of our own message")
            return
        if message.dedup_key in self._local_keys:
            logger.debug("Dropping duplicate of a local message")
            return
        # held back until history has landed, if a load is pending
        self._append(message, visible=not self._loading)
        self._spawn(self.persist(message, session))

    def add_system_notice(self, text: str) -> Message:
        """Local-only notice: never emitted, never persisted."""
        notice = Message.system_notice(text)
        self._append(notice)
        return notice

    def clear(self) -> None:
        """Empty the visible log. Stored history is untouched and reloadable."""
        self._epoch += 1
        self._loading = False
        self._live.clear()
        self._log.clear()
        self._notify(LogChange.CLEARED)

    # -- persistence ----------------------------------------------------------

    async def persist(self, message: Message, session: Session) -> bool:
        """Store ``message`` under ``session``. Failures are logged, never raised."""
        if not session.same_identity(self._session):
            logger.debug("Session changed before the write started; not storing message")
            return False
        try:
            await self._store.append(message, session)
        except StoreWriteError as e:
            logger.error("Error storing message: %s", e)
            return False
        return True

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for scheduled persistence to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
