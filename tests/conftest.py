"""
Shared fakes and fixtures.

The fakes stand in for the three external collaborators: the Socket.IO
client, the identity provider and the durable message store.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest

from chatsync.auth import AuthProvider, HandlerRegistry
from chatsync.errors import StoreWriteError
from chatsync.lifecycle import LifecycleController
from chatsync.models.events import AuthEvent
from chatsync.models.message import Message
from chatsync.models.session import Session
from chatsync.reconciler import ChatReconciler
from chatsync.session import SessionManager
from chatsync.store import MessageStore
from chatsync.transport.socketio import RealtimeChannel

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_session(user_id: str = "user-1", email: Optional[str] = "alice@example.com", token: str = "token-1") -> Session:
    return Session(access_token=token, refresh_token="refresh", user_id=user_id, email=email)


def make_message(text: str, author: str = "bob", author_id: Optional[str] = "user-2", seconds: int = 0) -> Message:
    return Message(text=text, author_display_name=author, author_id=author_id, sent_at=T0 + timedelta(seconds=seconds))


class FakeSocketClient:
    """Mimics the parts of socketio.AsyncClient the channel uses."""

    def __init__(self, factory: "FakeSocketFactory"):
        self.factory = factory
        self.handlers: dict[str, Any] = {}
        self.connected = False
        self.emitted: list[tuple[str, Any]] = []

    def on(self, event: str, handler: Any = None) -> None:
        self.handlers[event] = handler

    async def connect(self, url: str, transports: Optional[list[str]] = None, **kwargs: Any) -> None:
        self.factory.attempts += 1
        self.factory.transports = transports
        if self.factory.failures > 0:
            self.factory.failures -= 1
            raise ConnectionRefusedError("connection refused")
        self.connected = True
        await self.handlers["connect"]()

    async def disconnect(self) -> None:
        if self.connected:
            self.connected = False
            await self.handlers["disconnect"]("client disconnect")

    async def emit(self, event: str, data: Any = None) -> None:
        self.emitted.append((event, data))

    # test helpers

    async def deliver(self, event: str, payload: Any) -> None:
        await self.handlers["*"](event, payload)

    async def drop(self) -> None:
        self.connected = False
        await self.handlers["disconnect"]("transport close")


class FakeSocketFactory:
    def __init__(self, failures: int = 0):
        self.failures = failures
        self.attempts = 0
        self.transports: Optional[list[str]] = None
        self.clients: list[FakeSocketClient] = []

    def __call__(self) -> FakeSocketClient:
        client = FakeSocketClient(self)
        self.clients.append(client)
        return client

    @property
    def current(self) -> FakeSocketClient:
        return self.clients[-1]

    @property
    def emitted(self) -> list[tuple[str, Any]]:
        return [e for c in self.clients for e in c.emitted]


class FakeAuthProvider(AuthProvider):
    def __init__(self, session: Optional[Session] = None):
        self.session = session
        self.registry = HandlerRegistry()
        self.query_error: Optional[Exception] = None
        self.sign_out_error: Optional[Exception] = None
        self.sign_out_calls = 0

    async def get_session(self) -> Optional[Session]:
        if self.query_error is not None:
            raise self.query_error
        return self.session

    def on_auth_state_change(self, handler):
        return self.registry.add(handler)

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        session = make_session(user_id=f"id-{email}", email=email)
        await self.transition(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str) -> Optional[Session]:
        return await self.sign_in_with_password(email, password)

    async def sign_out(self) -> None:
        self.sign_out_calls += 1
        if self.sign_out_error is not None:
            raise self.sign_out_error
        await self.transition(AuthEvent.SIGNED_OUT, None)

    async def transition(self, event: str, session: Optional[Session]) -> None:
        self.session = session
        await self.registry.notify(event, session)


class FakeMessageStore(MessageStore):
    def __init__(self, history: Optional[list[Message]] = None):
        super().__init__()
        self.history = list(history or [])
        self.appended: list[tuple[Message, str]] = []
        self.read_error: Optional[Exception] = None
        self.write_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.fetch_calls = 0

    async def fetch_all(self) -> list[Message]:
        self.fetch_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.read_error is not None:
            raise self.read_error
        return list(self.history)

    async def append(self, message: Message, session: Session) -> None:
        owner = self._check_writable(message, session)
        if self.write_error is not None:
            raise self.write_error
        self.appended.append((message, owner.user_id))
        # stored the way a row comes back from the table
        self.history.append(Message.from_record(message.to_record(owner.user_id)))


async def settle(channel: Optional[RealtimeChannel] = None, reconciler: Optional[ChatReconciler] = None) -> None:
    """Let scheduled sends, deliveries and writes run."""
    for _ in range(3):
        if channel is not None:
            await channel.flush()
        if reconciler is not None:
            await reconciler.drain()
        await asyncio.sleep(0)


@pytest.fixture
def socket_factory() -> FakeSocketFactory:
    return FakeSocketFactory()


@pytest.fixture
def channel(socket_factory: FakeSocketFactory) -> RealtimeChannel:
    return RealtimeChannel("http://chat.test", reconnection_delay=0, client_factory=socket_factory)


@pytest.fixture
def store() -> FakeMessageStore:
    return FakeMessageStore()


@pytest.fixture
def session() -> Session:
    return make_session()


@pytest.fixture
def provider() -> FakeAuthProvider:
    return FakeAuthProvider()


@pytest.fixture
def sessions(provider: FakeAuthProvider) -> SessionManager:
    return SessionManager(provider)


@pytest.fixture
def reconciler(channel: RealtimeChannel, store: FakeMessageStore) -> ChatReconciler:
    return ChatReconciler(channel, store)


@pytest.fixture
def controller(sessions: SessionManager, channel: RealtimeChannel, store: FakeMessageStore) -> LifecycleController:
    return LifecycleController(sessions, channel, store)


@pytest.fixture
def write_error() -> StoreWriteError:
    return StoreWriteError("provider rejected the write")
