"""
Chat message model and its two external shapes.

Wire form (realtime ``"chat message"`` payload):
    {text, user, username, user_id, time, created_at}
Record form (durable ``messages`` row):
    {text, user_id, username, created_at}
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator, model_validator

_DATETIME = TypeAdapter(datetime)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    text: str
    author_display_name: str = ""
    author_id: Optional[str] = None
    sent_at: datetime = Field(default_factory=utcnow)
    is_system_notice: bool = False

    model_config = {"frozen": True}

    @field_validator("sent_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _check_invariants(self) -> "Message":
        if self.is_system_notice:
            if self.author_id is not None:
                raise ValueError("system notices carry no author id")
            return self
        if not self.text.strip():
            raise ValueError("message text must not be empty")
        if not self.author_display_name.strip():
            raise ValueError("message needs an author display name")
        return self

    @classmethod
    def system_notice(cls, text: str) -> "Message":
        return cls(text=text, is_system_notice=True)

    @property
    def dedup_key(self) -> tuple[Optional[str], str, datetime]:
        """Author, literal text and send time at second granularity.

        Two distinct identical messages sent by the same author within one
        second share a key and are treated as one.
        """
        return (self.author_id, self.text, self.sent_at.replace(microsecond=0))

    @property
    def record_key(self) -> tuple[str, str, datetime]:
        """Like ``dedup_key`` but by display name, which survives a write under another owner id."""
        return (self.author_display_name, self.text, self.sent_at.replace(microsecond=0))

    @property
    def time_label(self) -> str:
        return self.sent_at.astimezone().strftime("%H:%M")

    # -- wire ---------------------------------------------------------------

    def to_wire(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "user": self.author_display_name,
            "username": self.author_display_name,
            "user_id": self.author_id,
            "time": self.time_label,
            "created_at": self.sent_at.isoformat(),
        }

    @classmethod
    def from_wire(cls, raw: Any) -> "Message":
        """Parse a realtime payload. Raises ValueError if it is not a usable chat message."""
        if not isinstance(raw, dict):
            raise ValueError(f"chat payload must be an object, got {type(raw).__name__}")
        if raw.get("system"):
            raise ValueError("system notices are never accepted from the channel")
        data: dict[str, Any] = {
            "text": raw.get("text") or "",
            "author_display_name": raw.get("user") or raw.get("username") or "",
            "author_id": raw.get("user_id"),
        }
        if raw.get("created_at"):
            try:
                data["sent_at"] = _DATETIME.validate_python(raw["created_at"])
            except ValidationError:
                pass  # unparseable: keep "now"
        return cls.model_validate(data)

    # -- record -------------------------------------------------------------

    def to_record(self, owner_id: str) -> dict[str, Any]:
        """Row for the durable store. ``owner_id`` is the identity the write is made under."""
        return {
            "text": self.text,
            "user_id": owner_id,
            "username": self.author_display_name,
            "created_at": self.sent_at.isoformat(),
        }

    @classmethod
    def from_record(cls, row: dict[str, Any]) -> "Message":
        return cls.model_validate({
            "text": row.get("text") or "",
            "author_display_name": row.get("username") or "",
            "author_id": row.get("user_id"),
            "sent_at": row["created_at"],
        })
