"""
Session manager — the one owner of the current authentication state.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from chatsync.auth import AuthProvider, describe
from chatsync.errors import AuthError, AuthQueryError, AuthSignOutError
from chatsync.models.events import AuthEvent
from chatsync.models.session import AuthChange, Session

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[AuthChange], Union[None, Awaitable[None]]]


class SessionManager:
    def __init__(self, provider: AuthProvider):
        self._provider = provider
        self._session: Optional[Session] = None
        self._display_name: Optional[str] = None
        self._initial: set[asyncio.Task[None]] = set()

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def display_name(self) -> Optional[str]:
        """Email local-part of the current session; None when the user has to pick one."""
        return self._display_name

    def _track(self, session: Optional[Session]) -> None:
        self._session = session
        self._display_name = session.display_name if session else None

    async def get_current_session(self) -> Optional[Session]:
        try:
            session = await self._provider.get_session()
        except AuthQueryError:
            raise
        except Exception as e:
            raise AuthQueryError(f"Could not query the current session: {e}") from e
        self._track(session)
        return session

    def subscribe(self, handler: ChangeHandler, emit_initial: bool = True) -> Callable[[], None]:
        """Call ``handler`` once per auth transition. Returns an unsubscribe function.

        With ``emit_initial`` the current state is also delivered once, as
        INITIAL_SESSION, so a restored session is seen without waiting for a
        transition.
        """
        active = True

        async def relay(change: AuthChange) -> None:
            if not active:
                return
            self._track(change.session)
            logger.debug("Auth change: %s", describe(change))
            result = handler(change)
            if inspect.isawaitable(result):
                await result

        remove = self._provider.on_auth_state_change(relay)

        task: Optional[asyncio.Task[None]] = None
        if emit_initial:
            async def deliver_initial() -> None:
                try:
                    session = await self.get_current_session()
                except AuthQueryError as e:
                    logger.error("Error getting session: %s", e)
                    session = None
                await relay(AuthChange(event=AuthEvent.INITIAL_SESSION, session=session))

            task = asyncio.get_running_loop().create_task(deliver_initial())
            self._initial.add(task)
            task.add_done_callback(self._initial.discard)

        def unsubscribe() -> None:
            nonlocal active
            active = False
            remove()
            if task is not None and not task.done():
                task.cancel()
        return unsubscribe

    async def sign_in(self, email: str, password: str) -> Session:
        try:
            return await self._provider.sign_in_with_password(email, password)
        except AuthError:
            raise
        except Exception as e:
            raise AuthError(f"Sign-in failed: {e}") from e

    async def sign_up(self, email: str, password: str) -> Optional[Session]:
        try:
            return await self._provider.sign_up(email, password)
        except AuthError:
            raise
        except Exception as e:
            raise AuthError(f"Sign-up failed: {e}") from e

    async def sign_out(self) -> None:
        try:
            await self._provider.sign_out()
        except AuthSignOutError:
            raise
        except Exception as e:
            raise AuthSignOutError(f"Sign-out failed: {e}") from e
