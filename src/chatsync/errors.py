"""
chatsync error types.

Every error carries a short machine-readable ``code`` next to the message.
"""

from typing import Any, Optional


class ChatSyncError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class AuthError(ChatSyncError):
    def __init__(self, message: str, code: str = "auth_error"):
        super().__init__(code, message)


class AuthQueryError(AuthError):
    def __init__(self, message: str):
        super().__init__(message, code="auth_query_error")


class AuthSignOutError(AuthError):
    def __init__(self, message: str):
        super().__init__(message, code="auth_sign_out_error")


class SessionError(ChatSyncError):
    def __init__(self, message: str, code: str = "session_error", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class StoreError(ChatSyncError):
    pass


class StoreReadError(StoreError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("store_read_error", message, details)


class StoreWriteError(StoreError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("store_write_error", message, details)


class ChannelConnectError(ChatSyncError):
    def __init__(self, message: str):
        super().__init__("channel_connect_error", message)


class HttpError(ChatSyncError):
    def __init__(self, status_code: int, message: str, body: Any = None):
        super().__init__("http_error", message, {"status_code": status_code, "body": body})
        self.status_code = status_code
        self.body = body

    @property
    def provider_message(self) -> str:
        """Human-readable reason from a GoTrue/PostgREST error body, falling back to the status line."""
        if isinstance(self.body, dict):
            for key in ("error_description", "msg", "message", "error"):
                value = self.body.get(key)
                if isinstance(value, str) and value:
                    return value
        return str(self)
