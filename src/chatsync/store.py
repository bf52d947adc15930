"""
Message store — durable chat history in the ``messages`` table (PostgREST).
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import ValidationError

from chatsync.errors import HttpError, StoreReadError, StoreWriteError
from chatsync.models.message import Message
from chatsync.models.session import Session
from chatsync.transport.http import HttpClient

logger = logging.getLogger(__name__)

MESSAGES_TABLE = "messages"


class MessageStore(ABC):
    """Ordered append and ordered read of chat messages, scoped to one identity."""

    def __init__(self) -> None:
        self._session: Optional[Session] = None

    @property
    def bound_session(self) -> Optional[Session]:
        return self._session

    def bind_session(self, session: Optional[Session]) -> None:
        self._session = session

    def _check_writable(self, message: Message, session: Session) -> Session:
        bound = self._session
        if bound is None:
            raise StoreWriteError("No active session; message not stored")
        # Same identity with refreshed tokens is still the same owner
        if bound.user_id != session.user_id:
            raise StoreWriteError(
                "Session changed while the write was pending; message not stored",
                {"expected_user_id": session.user_id, "bound_user_id": bound.user_id},
            )
        if message.is_system_notice:
            raise StoreWriteError("System notices are never persisted")
        return bound

    @abstractmethod
    async def fetch_all(self) -> list[Message]:
        """All messages, ascending by send time.

        Raises:
            StoreReadError: on any provider failure
        """
        ...

    @abstractmethod
    async def append(self, message: Message, session: Session) -> None:
        """Persist one message under ``session``, whose identity must still be the bound one.

        Raises:
            StoreWriteError: if unbound, rebound since the call started, or rejected
        """
        ...


class SupabaseMessageStore(MessageStore):
    def __init__(self, http: HttpClient, table: str = MESSAGES_TABLE):
        super().__init__()
        self._http = http
        self._table = table

    @property
    def _path(self) -> str:
        return f"/rest/v1/{self._table}"

    async def fetch_all(self) -> list[Message]:
        token = self._session.access_token if self._session else None
        try:
            rows = await self._http.get(
                self._path, params={"select": "*", "order": "created_at.asc"}, token=token,
            )
        except (HttpError, httpx.HTTPError, ValueError) as e:
            raise StoreReadError(f"Error fetching messages: {e}") from e
        if not isinstance(rows, list):
            raise StoreReadError(f"Unexpected messages response: {type(rows).__name__}")

        messages: list[Message] = []
        for row in rows:
            try:
                messages.append(Message.from_record(row))
            except (ValidationError, KeyError, TypeError) as e:
                logger.warning("Skipping malformed message row %r: %s", row, e)
        return messages

    async def append(self, message: Message, session: Session) -> None:
        owner = self._check_writable(message, session)
        try:
            await self._http.post(
                self._path, [message.to_record(owner.user_id)],
                token=owner.access_token, headers={"Prefer": "return=minimal"},
            )
        except (HttpError, httpx.HTTPError) as e:
            raise StoreWriteError(f"Error storing message: {e}") from e
