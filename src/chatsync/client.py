"""
ChatClient — wires one independent set of chat components from a config.

Nothing here is global: two clients in one process share no state.
"""

from typing import Optional

from chatsync.auth import SupabaseAuthProvider
from chatsync.config import ClientConfig
from chatsync.errors import ChatSyncError
from chatsync.lifecycle import LifecycleController
from chatsync.session import SessionManager
from chatsync.store import SupabaseMessageStore
from chatsync.transport.http import HttpClient
from chatsync.transport.socketio import RealtimeChannel


class ChatClient:
    def __init__(self, config: Optional[ClientConfig] = None):
        self.config = config or ClientConfig()
        if not self.config.supabase_configured:
            raise ChatSyncError("config_error", "supabase_url and supabase_key are required")

        self.http = HttpClient(self.config.supabase_url, self.config.supabase_key)
        self.auth = SupabaseAuthProvider(self.http, session_file=self.config.session_file)
        self.sessions = SessionManager(self.auth)
        self.channel = RealtimeChannel(
            self.config.server_url,
            transports=self.config.transports,
            reconnection_attempts=self.config.reconnection_attempts,
            reconnection_delay=self.config.reconnection_delay,
        )
        self.store = SupabaseMessageStore(self.http)
        self.lifecycle = LifecycleController(self.sessions, self.channel, self.store)

    async def start(self) -> None:
        await self.lifecycle.start()

    async def close(self) -> None:
        await self.lifecycle.close()
        await self.http.close()

    async def __aenter__(self) -> "ChatClient":
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
