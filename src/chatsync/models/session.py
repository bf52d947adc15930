"""
Session models — the authenticated identity context.
"""

import time
from typing import Any, Optional
from pydantic import BaseModel


def display_name_from_email(email: Optional[str]) -> Optional[str]:
    """Local-part of an email address, or None when there is nothing to derive from."""
    if not email:
        return None
    local = email.split("@")[0].strip()
    return local or None


class Session(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None  # epoch seconds
    user_id: str
    email: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def display_name(self) -> Optional[str]:
        return display_name_from_email(self.email)

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) >= self.expires_at

    def same_identity(self, other: Optional["Session"]) -> bool:
        return other is not None and other.user_id == self.user_id

    @classmethod
    def from_token_response(cls, data: dict[str, Any]) -> "Session":
        """Build from a GoTrue token/signup response: {access_token, refresh_token, expires_in|expires_at, user}."""
        user = data.get("user") or {}
        expires_at = data.get("expires_at")
        if expires_at is None and data.get("expires_in") is not None:
            expires_at = int(time.time()) + int(data["expires_in"])
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at,
            user_id=user["id"],
            email=user.get("email"),
        )


class AuthChange(BaseModel):
    """Payload delivered to session subscribers on every transition."""
    event: str
    session: Optional[Session] = None
