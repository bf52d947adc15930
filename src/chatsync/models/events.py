"""
Event names used on the realtime channel and by the identity provider.
"""


class ChannelEvent:
    """Realtime channel events."""
    CHAT_MESSAGE = "chat message"

    # Channel lifecycle, consumed for logging only
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    CONNECT_ERROR = "connect_error"
    ERROR = "error"

    LIFECYCLE = frozenset({CONNECT, DISCONNECT, CONNECT_ERROR, ERROR})


class AuthEvent:
    """Auth state change events delivered to session subscribers."""
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_DELETED = "USER_DELETED"
