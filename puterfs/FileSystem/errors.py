"""
FileSystem error taxonomy.

Every failed operation raises exactly one of these. The ``payload`` is what
the caller's error callback receives.
"""

from typing import Any, Optional


class FileSystemError(Exception):
    """Base exception for remote file system failures."""

    def __init__(self, message: str, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.payload = payload if payload is not None else {"message": message}


class AuthenticationFailed(FileSystemError):
    """Raised when the interactive authentication flow was needed and failed."""
    pass


class CredentialRequired(FileSystemError):
    """Raised when no credential is set and the environment cannot prompt for one."""
    pass


class NetworkError(FileSystemError):
    """Raised on transport-level failure (connection refused, timeout, reset)."""
    pass


class ServerError(FileSystemError):
    """Raised when the server answers with a non-2xx status."""

    def __init__(
        self,
        message: str,
        status: int,
        payload: Any = None,
        code: Optional[str] = None,
    ):
        super().__init__(message, payload)
        self.status = status
        self.code = code

    def __str__(self) -> str:
        if self.code:
            return f"{self.status} {self.code}: {self.message}"
        return f"{self.status}: {self.message}"


class ChannelError(FileSystemError):
    """Socket channel failure. Reported through channel events, never fatal to operations."""
    pass


__all__ = [
    "FileSystemError",
    "AuthenticationFailed",
    "CredentialRequired",
    "NetworkError",
    "ServerError",
    "ChannelError",
]
