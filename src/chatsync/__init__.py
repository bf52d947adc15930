"""
chatsync — realtime chat client with durable history.

Socket.IO for live delivery, Supabase (GoTrue + PostgREST) for identity and
stored messages, and a reconciler that merges both into one chat log.
"""

from chatsync.client import ChatClient
from chatsync.config import ClientConfig
from chatsync.errors import (
    AuthError,
    AuthQueryError,
    AuthSignOutError,
    ChannelConnectError,
    ChatSyncError,
    HttpError,
    SessionError,
    StoreError,
    StoreReadError,
    StoreWriteError,
)
from chatsync.lifecycle import LifecycleController, LifecycleState
from chatsync.models.events import AuthEvent, ChannelEvent
from chatsync.models.message import Message
from chatsync.models.session import AuthChange, Session
from chatsync.reconciler import ChatReconciler
from chatsync.session import SessionManager
from chatsync.store import MessageStore
from chatsync.transport.socketio import ChannelState, RealtimeChannel

__version__ = "0.1.0"
__all__ = [
    "ChatClient",
    "ClientConfig",
    "ChatSyncError",
    "AuthError",
    "AuthQueryError",
    "AuthSignOutError",
    "SessionError",
    "StoreError",
    "StoreReadError",
    "StoreWriteError",
    "ChannelConnectError",
    "HttpError",
    "LifecycleController",
    "LifecycleState",
    "AuthEvent",
    "ChannelEvent",
    "Message",
    "AuthChange",
    "Session",
    "ChatReconciler",
    "SessionManager",
    "MessageStore",
    "ChannelState",
    "RealtimeChannel",
]
