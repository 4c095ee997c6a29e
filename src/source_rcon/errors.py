"""
Error types for the Source RCON server and client.

Every error carries a human-readable message and an optional dictionary of
structured details that is passed straight into log records.

Only RconConnectionError is ever raised to callers of the public API.
PacketFormatError and ProtocolMismatchError are recovered locally: the
server drops the offending frame, the client reports an absent result.
"""

from __future__ import annotations

from typing import Any


class RconError(Exception):
    """Base exception for RCON errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an RCON error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )


class RconConnectionError(RconError):
    """
    Raised when a socket cannot be bound, listened on, or connected.

    This is the only fatal error kind: it propagates synchronously to
    whoever started the server or opened the client connection.
    """

    pass


class PacketFormatError(RconError):
    """Raised when bytes cannot be parsed into an (id, type, body) packet."""

    pass


class ProtocolMismatchError(RconError):
    """Raised when a reply does not match the outstanding request id/type."""

    pass
