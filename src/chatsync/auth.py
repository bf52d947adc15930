"""
Identity provider — email/password accounts on Supabase GoTrue.

The provider owns the raw session: it persists it for cold-start
restoration, refreshes an expired one, and notifies subscribers after every
transition it makes. SessionManager is the only consumer inside chatsync.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

import httpx

from chatsync.errors import AuthError, AuthQueryError, AuthSignOutError, HttpError
from chatsync.models.events import AuthEvent
from chatsync.models.session import AuthChange, Session, display_name_from_email
from chatsync.transport.http import HttpClient

logger = logging.getLogger(__name__)

TOKEN_PATH = "/auth/v1/token"
SIGNUP_PATH = "/auth/v1/signup"
LOGOUT_PATH = "/auth/v1/logout"
PROFILE_TABLE = "user_chat"

AuthHandler = Callable[[AuthChange], Union[None, Awaitable[None]]]


class AuthProvider(ABC):
    """Identity provider contract."""

    @abstractmethod
    async def get_session(self) -> Optional[Session]:
        """Current session, restoring a persisted one on first use.

        Raises:
            AuthQueryError: if the provider cannot be reached
        """
        ...

    @abstractmethod
    def on_auth_state_change(self, handler: AuthHandler) -> Callable[[], None]:
        """Register a transition handler. Returns an unsubscribe function."""
        ...

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> Session:
        ...

    @abstractmethod
    async def sign_up(self, email: str, password: str) -> Optional[Session]:
        """Register an account. Returns None while the email awaits confirmation."""
        ...

    @abstractmethod
    async def sign_out(self) -> None:
        """Invalidate the session. Subscribers observe SIGNED_OUT afterwards.

        Raises:
            AuthSignOutError: if the provider rejected the sign-out
        """
        ...


class HandlerRegistry:
    """Ordered set of auth handlers, shared by provider implementations."""

    def __init__(self) -> None:
        self._handlers: list[AuthHandler] = []

    def add(self, handler: AuthHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def remove() -> None:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass
        return remove

    async def notify(self, event: str, session: Optional[Session]) -> None:
        change = AuthChange(event=event, session=session)
        for handler in list(self._handlers):
            if handler not in self._handlers:
                continue
            result = handler(change)
            if inspect.isawaitable(result):
                await result


class SupabaseAuthProvider(AuthProvider):
    def __init__(
        self,
        http: HttpClient,
        session_file: Optional[Path] = None,
        profile_table: str = PROFILE_TABLE,
    ):
        self._http = http
        self._session_file = session_file
        self._profile_table = profile_table
        self._session: Optional[Session] = None
        self._restored = False
        self._handlers = HandlerRegistry()

    def on_auth_state_change(self, handler: AuthHandler) -> Callable[[], None]:
        return self._handlers.add(handler)

    async def get_session(self) -> Optional[Session]:
        if not self._restored:
            self._restored = True
            self._session = self._load()
        session = self._session
        if session is not None and session.is_expired():
            session = await self._refresh(session)
        return session

    async def _refresh(self, session: Session) -> Optional[Session]:
        if not session.refresh_token:
            self._forget()
            return None
        try:
            data = await self._http.post(
                TOKEN_PATH, {"refresh_token": session.refresh_token},
                params={"grant_type": "refresh_token"},
            )
        except HttpError as e:
            logger.warning("Stored session could not be refreshed: %s", e.provider_message)
            self._forget()
            return None
        except httpx.HTTPError as e:
            raise AuthQueryError(f"Identity provider unreachable: {e}") from e
        refreshed = Session.from_token_response(data)
        self._save(refreshed)
        await self._handlers.notify(AuthEvent.TOKEN_REFRESHED, refreshed)
        return refreshed

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        try:
            data = await self._http.post(
                TOKEN_PATH, {"email": email, "password": password},
                params={"grant_type": "password"},
            )
        except HttpError as e:
            raise AuthError(e.provider_message, code="sign_in_failed") from e
        except httpx.HTTPError as e:
            raise AuthError(f"Identity provider unreachable: {e}") from e
        session = Session.from_token_response(data)
        self._save(session)
        await self._handlers.notify(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str) -> Optional[Session]:
        """Create the account and its chat profile, refusing emails that already have one."""
        try:
            existing = await self._http.get(
                f"/rest/v1/{self._profile_table}",
                params={"select": "email", "email": f"eq.{email}"},
            )
        except (HttpError, httpx.HTTPError) as e:
            raise AuthError(f"Could not check for an existing user: {e}") from e
        if existing:
            raise AuthError("User already exists! Please use a different email.", code="user_exists")

        try:
            data = await self._http.post(SIGNUP_PATH, {"email": email, "password": password})
        except HttpError as e:
            raise AuthError(e.provider_message, code="sign_up_failed") from e
        except httpx.HTTPError as e:
            raise AuthError(f"Identity provider unreachable: {e}") from e

        try:
            await self._http.post(
                f"/rest/v1/{self._profile_table}",
                [{
                    "email": email,
                    "username": display_name_from_email(email),
                    "created_at": datetime.now(timezone.utc).isoformat(),
                }],
                headers={"Prefer": "return=minimal"},
            )
        except (HttpError, httpx.HTTPError) as e:
            raise AuthError("Error creating user profile", code="profile_error") from e

        # Projects with email confirmation enabled return the bare user, no tokens
        if not isinstance(data, dict) or not data.get("access_token"):
            return None
        session = Session.from_token_response(data)
        self._save(session)
        await self._handlers.notify(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_out(self) -> None:
        session = self._session
        try:
            if session is not None:
                await self._http.post(LOGOUT_PATH, token=session.access_token)
        except (HttpError, httpx.HTTPError) as e:
            raise AuthSignOutError(f"Remote sign-out failed: {e}") from e
        finally:
            # The local session is gone whatever the server said
            self._forget()
            await self._handlers.notify(AuthEvent.SIGNED_OUT, None)

    # -- persistence ----------------------------------------------------------

    def _load(self) -> Optional[Session]:
        if self._session_file is None or not self._session_file.exists():
            return None
        try:
            return Session.model_validate_json(self._session_file.read_text())
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", self._session_file, e)
            return None

    def _save(self, session: Session) -> None:
        self._session = session
        self._restored = True
        if self._session_file is None:
            return
        try:
            self._session_file.parent.mkdir(parents=True, exist_ok=True)
            self._session_file.write_text(session.model_dump_json())
        except OSError as e:
            logger.warning("Could not persist session to %s: %s", self._session_file, e)

    def _forget(self) -> None:
        self._session = None
        self._restored = True
        if self._session_file is None:
            return
        try:
            self._session_file.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove session file %s: %s", self._session_file, e)


def describe(change: AuthChange) -> dict[str, Any]:
    """Loggable summary of a transition, without the tokens."""
    session = change.session
    return {
        "event": change.event,
        "user_id": session.user_id if session else None,
        "email": session.email if session else None,
    }
