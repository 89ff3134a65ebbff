"""
Thumbgate error taxonomy.

Failure codes double as HTTP status codes so the HTTP layer can hand them
straight to the response.
"""

from enum import IntEnum
from typing import Optional


class FailureCode(IntEnum):
    """Failure codes attached to a failed dispatch message."""

    BAD_REQUEST = 400
    FORBIDDEN = 403
    NOT_FOUND = 404
    INTERNAL_ERROR = 500
    UNAVAILABLE = 503
    TIMEOUT = 504


class ThumbgateError(Exception):
    """Base class for all thumbgate errors."""


class SessionDecodeError(ThumbgateError):
    """A foreign session record could not be decoded into a connector."""


class JoinFailedError(ThumbgateError):
    """Joining the remote OMERO session failed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class DispatchFailure(ThumbgateError):
    """
    Structured failure of a dispatch message.

    Attributes:
        code: FailureCode (or any integer status) describing the failure
        message: Human readable detail, never sent to HTTP clients
    """

    def __init__(self, code: int, message: str = ""):
        super().__init__(f"[{int(code)}] {message}")
        self.code = int(code)
        self.message = message

    @property
    def failure_code(self) -> Optional[FailureCode]:
        """The code as a FailureCode, or None if it is not a known one."""
        try:
            return FailureCode(self.code)
        except ValueError:
            return None
