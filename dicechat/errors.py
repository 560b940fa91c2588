"""Exceptions raised by the dice-chat session layer."""

from __future__ import annotations

# Text the service puts in the body when it rejects a bearer token
# (typically after a restart invalidated every issued token).
INVALID_TOKEN_MARKER = "Invalid authorization token"


class DiceChatError(Exception):
    """Base class for all session-layer failures."""


class AuthError(DiceChatError):
    """Login/registration was rejected, or a call needed a credential we don't have."""


class NetworkError(DiceChatError):
    """The service could not be reached (connection refused, DNS, timeout)."""


class SyncError(DiceChatError):
    """A single message poll failed. Handled inside MessageSync."""


class RequestError(DiceChatError):
    """The service answered an authenticated call with a non-success status."""

    def __init__(self, message: str, *, status_code: int, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class JoinError(DiceChatError):
    """Creating or joining a room failed.

    ``invalid_token`` is True when the service rejected our credential; the
    session controller turns that case into a forced logout.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str = "",
        invalid_token: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.invalid_token = invalid_token
