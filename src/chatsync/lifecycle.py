"""
Lifecycle controller — sequences auth transitions, the realtime channel and
the chat log so nothing from one session survives into the next.

    signed_out --session--> active --no session--> signed_out
    start --> restoring --session--> active
                        --none-----> signed_out

Sign-out teardown runs without a suspension point between detaching the
channel listener and the channel reaching ``disconnected``; state listeners
are told afterwards.
"""

import logging
from enum import Enum
from typing import Callable, Optional

from chatsync.errors import AuthQueryError, AuthSignOutError, SessionError
from chatsync.models.message import Message
from chatsync.models.session import AuthChange, Session
from chatsync.reconciler import ChatReconciler
from chatsync.session import SessionManager
from chatsync.store import MessageStore
from chatsync.transport.socketio import ChannelState, RealtimeChannel

logger = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    SIGNED_OUT = "signed_out"
    RESTORING = "restoring"
    ACTIVE = "active"


StateListener = Callable[["LifecycleState"], None]


class LifecycleController:
    def __init__(
        self,
        sessions: SessionManager,
        channel: RealtimeChannel,
        store: MessageStore,
        reconciler: Optional[ChatReconciler] = None,
    ):
        self._sessions = sessions
        self._channel = channel
        self._store = store
        self._reconciler = reconciler or ChatReconciler(channel, store)
        self._state = LifecycleState.SIGNED_OUT
        self._session: Optional[Session] = None
        self._display_name: Optional[str] = None
        self._joined = False
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._state_listeners: list[StateListener] = []

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def display_name(self) -> Optional[str]:
        return self._display_name

    @property
    def joined(self) -> bool:
        return self._joined

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._reconciler.messages

    @property
    def reconciler(self) -> ChatReconciler:
        return self._reconciler

    @property
    def channel(self) -> RealtimeChannel:
        return self._channel

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)

        def remove() -> None:
            try:
                self._state_listeners.remove(listener)
            except ValueError:
                pass
        return remove

    def _set_state(self, state: LifecycleState, notify: bool = True) -> None:
        if state is not self._state:
            logger.info("Chat lifecycle %s -> %s", self._state.value, state.value)
            self._state = state
        if notify:
            self._notify()

    def _notify(self) -> None:
        for listener in list(self._state_listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("Lifecycle state listener failed")

    # -- transitions ----------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to auth changes and restore any existing session."""
        if self._unsubscribe is not None:
            return
        self._set_state(LifecycleState.RESTORING)
        self._unsubscribe = self._sessions.subscribe(self._on_auth_change, emit_initial=False)
        try:
            session = await self._sessions.get_current_session()
        except AuthQueryError as e:
            logger.error("Error getting session: %s", e)
            session = None
        if self._state is not LifecycleState.RESTORING:
            return  # an auth change was handled while we were querying
        if session is None:
            self._set_state(LifecycleState.SIGNED_OUT)
        else:
            await self._activate(session)

    async def _on_auth_change(self, change: AuthChange) -> None:
        session = change.session
        if session is None:
            logger.info("Session ended (%s)", change.event)
            await self._teardown()
            return

        if self._state is LifecycleState.ACTIVE:
            if session.same_identity(self._session):
                self._rebind(session)
                return
            logger.info("Session switched to another user; tearing down first")
            await self._teardown()
        await self._activate(session)

    async def _activate(self, session: Session) -> None:
        self._session = session
        self._display_name = session.display_name
        self._joined = False
        self._store.bind_session(session)
        self._reconciler.reset(session)
        self._reconciler.attach()
        self._set_state(LifecycleState.ACTIVE)
        loaded = await self._reconciler.load_history()
        if loaded and self._session is session:
            self._notify()

    def _rebind(self, session: Session) -> None:
        self._session = session
        self._store.bind_session(session)
        self._reconciler.rebind(session)
        if not self._joined:
            self._display_name = session.display_name

    def _torn_down(self) -> bool:
        return (
            self._state is LifecycleState.SIGNED_OUT
            and self._session is None
            and not self._joined
            and not self._reconciler.messages
            and self._channel.state is ChannelState.DISCONNECTED
        )

    async def _teardown(self) -> None:
        if self._torn_down():
            return
        # Listener off first so no late event repopulates the cleared log
        self._reconciler.detach()
        self._store.bind_session(None)
        self._reconciler.reset(None)
        self._joined = False
        self._display_name = None
        self._session = None
        self._set_state(LifecycleState.SIGNED_OUT, notify=False)
        # disconnect() reaches "disconnected" before its first suspension point
        await self._channel.disconnect()
        self._notify()

    # -- user actions ---------------------------------------------------------

    async def join(self, display_name: Optional[str] = None) -> Optional[Message]:
        """Complete the join step: announce locally, then connect the channel.

        Returns the join notice, or None when already joined.
        """
        if self._state is not LifecycleState.ACTIVE:
            raise SessionError("Sign in before joining the chat", code="not_signed_in")
        if self._joined:
            return None
        name = (display_name if display_name is not None else self._display_name or "").strip()
        if not name:
            raise ValueError("display name must not be blank")
        self._display_name = name
        self._joined = True
        notice = self._reconciler.add_system_notice(f"{name} joined the chat")
        self._notify()
        await self._channel.connect()
        return notice

    def send(self, text: str) -> Optional[Message]:
        """Compose a message. Returns None for blank text."""
        if self._state is not LifecycleState.ACTIVE or not self._joined or not self._display_name:
            raise SessionError("Join the chat before sending messages", code="not_joined")
        return self._reconciler.compose(text, self._display_name)

    def clear(self) -> None:
        self._reconciler.clear()

    async def reload(self) -> bool:
        if self._state is not LifecycleState.ACTIVE:
            return False
        return await self._reconciler.load_history()

    async def sign_in(self, email: str, password: str) -> Session:
        return await self._sessions.sign_in(email, password)

    async def sign_up(self, email: str, password: str) -> Optional[Session]:
        return await self._sessions.sign_up(email, password)

    async def sign_out(self) -> None:
        """Tear down locally at once, then ask the provider to sign out."""
        await self._teardown()
        try:
            await self._sessions.sign_out()
        except AuthSignOutError as e:
            logger.error("Error signing out: %s", e)

    async def close(self) -> None:
        """Stop observing auth changes and release the channel."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._reconciler.detach()
        await self._reconciler.drain()
        await self._channel.close()
