from chatsync.models.events import AuthEvent, ChannelEvent
from chatsync.models.message import Message
from chatsync.models.session import AuthChange, Session

__all__ = ["AuthEvent", "ChannelEvent", "Message", "AuthChange", "Session"]
