"""
Per-client connection state for the RCON server.

A Connection is created when the server accepts a socket and destroyed when
the server removes it from its registry. Its status only changes inside the
server loop; dispatchers may read it and reply through send().
"""

from __future__ import annotations

import contextlib
import socket
import time
from enum import Enum
from typing import Any

from source_rcon.logging import get_logger
from source_rcon.protocol import PacketType, write_frame

logger = get_logger(__name__)

PeerAddress = tuple[Any, ...]


class ConnectionStatus(Enum):
    """Authorization status of a connection."""

    AWAITING_AUTH = "awaiting_auth"
    AUTHORIZED = "authorized"
    AUTH_FAILED = "auth_failed"


class Connection:
    """
    A client connection owned by the server.

    Attributes:
        sock: The client socket.
        peer: Peer address, the connection's registry key.
        status: Current authorization status.
        connected_at: Monotonic clock reading taken on accept.
    """

    def __init__(
        self,
        sock: socket.socket,
        peer: PeerAddress,
        connected_at: float | None = None,
    ) -> None:
        self.sock = sock
        self.peer = peer
        self.status = ConnectionStatus.AWAITING_AUTH
        self.connected_at = time.monotonic() if connected_at is None else connected_at
        self._closed = False

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"peer={self.peer!r}, status={self.status.value!r})"
        )

    @property
    def peer_name(self) -> str:
        """The peer address as ``host:port``."""
        return ":".join(str(part) for part in self.peer[:2])

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def authorized(self) -> bool:
        return self.status is ConnectionStatus.AUTHORIZED

    def age(self, now: float | None = None) -> float:
        """Seconds since the connection was accepted."""
        return (time.monotonic() if now is None else now) - self.connected_at

    def send(
        self,
        request_id: int,
        packet_type: int = PacketType.RESPONSE_VALUE,
        body: str = "",
    ) -> None:
        """
        Write one frame to the client.

        Raises:
            OSError: If the write fails.
        """
        write_frame(self.sock, request_id, packet_type, body)

    def at_eof(self) -> bool:
        """
        Check whether the peer has closed its end of the stream.

        Only meaningful when the socket is known to be readable.
        """
        try:
            return self.sock.recv(1, socket.MSG_PEEK) == b""
        except (BlockingIOError, TimeoutError):
            return False
        except OSError:
            # Reset or otherwise broken; nothing more can be read
            return True

    def close(self) -> None:
        """Close the socket. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(OSError):
            self.sock.close()
