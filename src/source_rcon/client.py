"""
Synchronous RCON client.

The client opens one TCP connection lazily on first use and reuses it
until disconnect() is called. Each call is one request frame followed by
one reply frame, using the same framing helpers as the server.

Example:
    >>> with RconClient("127.0.0.1", 27015) as client:
    ...     if client.authorize("secret"):
    ...         print(client.send_command("status"))
"""

from __future__ import annotations

import contextlib
import socket
from typing import TYPE_CHECKING, Any

from source_rcon.errors import ProtocolMismatchError, RconConnectionError
from source_rcon.logging import get_logger
from source_rcon.protocol import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT,
    Packet,
    PacketType,
    read_frame,
    write_frame,
)

if TYPE_CHECKING:
    from source_rcon.config import ClientConfig

logger = get_logger(__name__)

ID_AUTHORIZE = 1
ID_COMMAND = 2


def _check_reply(
    reply: Packet | None, expected_id: int, expected_type: PacketType
) -> Packet:
    """
    Validate a reply against the outstanding request.

    Raises:
        ProtocolMismatchError: If there is no reply or its id/type differ.
    """
    if reply is None:
        raise ProtocolMismatchError("No reply received")
    if reply.type != expected_type or reply.id != expected_id:
        raise ProtocolMismatchError(
            "Reply does not match request",
            details={
                "expected_id": expected_id,
                "expected_type": int(expected_type),
                "reply_id": reply.id,
                "reply_type": reply.type,
            },
        )
    return reply


class RconClient:
    """
    RCON client for one server.

    Attributes:
        host: Server host.
        port: Server port.
        timeout: Connect and read timeout in seconds.
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """
        Initialize the client. No connection is made until first use.

        Args:
            host: Server host.
            port: Server port.
            timeout: Connect and read timeout in seconds.
        """
        self.host = host
        self.port = port
        self.timeout = timeout
        self._socket: socket.socket | None = None
        self._authorized = False

    @classmethod
    def from_config(cls, config: ClientConfig) -> RconClient:
        """Create a client from configuration."""
        return cls(host=config.host, port=config.port, timeout=config.timeout_seconds)

    @property
    def connected(self) -> bool:
        """Whether a TCP connection is currently open."""
        return self._socket is not None

    @property
    def authorized(self) -> bool:
        """Whether the last authorize() call on this connection succeeded."""
        return self._authorized

    def connect(self) -> RconClient:
        """
        Open the TCP connection.

        Returns:
            This client, for chaining.

        Raises:
            RconConnectionError: If the connection cannot be established.
        """
        try:
            self._socket = socket.create_connection(
                (self.host, self.port), timeout=self.timeout
            )
        except OSError as e:
            logger.error(
                "RCON connection failed",
                extra={"host": self.host, "port": self.port, "error": str(e)},
            )
            raise RconConnectionError(
                f"Failed to connect to {self.host}:{self.port}: {e}",
                details={"host": self.host, "port": self.port},
            ) from e

        logger.info("RCON connected", extra={"host": self.host, "port": self.port})
        return self

    def send(self, request_id: int, packet_type: int, body: str = "") -> Packet | None:
        """
        Send one request frame and read one reply frame.

        Connects first if no connection is open.

        Returns:
            The reply packet, or None if no valid reply was read.

        Raises:
            RconConnectionError: If the lazy connect or the write fails.
            PacketFormatError: If the body is not ASCII or contains a NUL.
        """
        if self._socket is None:
            self.connect()
        assert self._socket is not None

        try:
            write_frame(self._socket, request_id, packet_type, body)
        except OSError as e:
            raise RconConnectionError(
                f"Failed to send to {self.host}:{self.port}: {e}",
                details={"host": self.host, "port": self.port, "id": request_id},
            ) from e
        return read_frame(self._socket)

    def authorize(self, password: str) -> bool:
        """
        Authenticate the connection.

        Args:
            password: The server's RCON password.

        Returns:
            True if the server accepted the password.

        Raises:
            RconConnectionError: If the connection or the write fails.
            PacketFormatError: If the password cannot be encoded.
        """
        reply = self.send(ID_AUTHORIZE, PacketType.AUTH, password)
        try:
            _check_reply(reply, ID_AUTHORIZE, PacketType.AUTH_RESPONSE)
        except ProtocolMismatchError as e:
            logger.warning(
                "RCON authorization failed",
                extra={"error": e.message, **e.details},
            )
            self._authorized = False
        else:
            self._authorized = True
        return self._authorized

    def send_command(self, command: str) -> str | None:
        """
        Execute a command on the server.

        Args:
            command: Command text.

        Returns:
            The response body, or None when there was no reply, the reply
            was malformed, or its id/type did not match the request.

        Raises:
            RconConnectionError: If the connection or the write fails.
            PacketFormatError: If the command cannot be encoded.
        """
        reply = self.send(ID_COMMAND, PacketType.EXECCOMMAND, command)
        try:
            return _check_reply(reply, ID_COMMAND, PacketType.RESPONSE_VALUE).body
        except ProtocolMismatchError as e:
            logger.debug(
                "RCON command got no usable reply",
                extra={"error": e.message, **e.details},
            )
            return None

    def disconnect(self) -> None:
        """Close the connection, if open."""
        self._authorized = False
        if self._socket is None:
            return

        sock, self._socket = self._socket, None
        with contextlib.suppress(OSError):
            sock.close()
        logger.info("RCON disconnected", extra={"host": self.host, "port": self.port})

    def __enter__(self) -> RconClient:
        """Context manager entry."""
        return self.connect()

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        """Context manager exit."""
        self.disconnect()
