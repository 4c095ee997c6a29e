"""
Server events and the Dispatcher extension point.

The server reports everything that happens on a connection as one of a
closed set of typed events. A Dispatcher receives them through dispatch()
and routes each to its on_* method. The server core implements no commands:
a Dispatcher owns command semantics and replies through Connection.send().

Event order within one connection:
    ConnectionOpened -> (PacketReceived -> transition event)* ->
    ConnectionClosed | AuthTimedOut

Across connections no order is defined.

Example:
    >>> class Echo(Dispatcher):
    ...     def on_command(self, conn, command, request_id):
    ...         conn.send(request_id, PacketType.RESPONSE_VALUE, command)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from source_rcon.logging import get_logger

if TYPE_CHECKING:
    from source_rcon.protocol import Packet
    from source_rcon_server.connection import Connection

logger = get_logger(__name__)

# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class ConnectionOpened:
    """A connection was accepted and registered."""

    connection: Connection


@dataclass(frozen=True)
class ConnectionClosed:
    """A connection reached end-of-stream, failed auth, or errored."""

    connection: Connection


@dataclass(frozen=True)
class AuthTimedOut:
    """A connection did not authenticate in time and was dropped."""

    connection: Connection


@dataclass(frozen=True)
class PacketReceived:
    """A frame was parsed; fired before any state transition."""

    connection: Connection
    packet: Packet


@dataclass(frozen=True)
class AuthSucceeded:
    """The connection sent the correct password."""

    connection: Connection


@dataclass(frozen=True)
class AuthFailed:
    """The connection sent a wrong password."""

    connection: Connection
    attempted_password: str


@dataclass(frozen=True)
class CommandReceived:
    """An authorized connection sent a command."""

    connection: Connection
    command: str
    request_id: int


ServerEvent = (
    ConnectionOpened
    | ConnectionClosed
    | AuthTimedOut
    | PacketReceived
    | AuthSucceeded
    | AuthFailed
    | CommandReceived
)


# =============================================================================
# Dispatcher
# =============================================================================


class Dispatcher:
    """
    Base class for server event handlers.

    Override the on_* methods of interest; the defaults do nothing.
    """

    def dispatch(self, event: ServerEvent) -> None:
        """
        Route an event to its handler method.

        Raises:
            TypeError: If the event is not a ServerEvent.
        """
        handler = _ROUTES.get(type(event))
        if handler is None:
            raise TypeError(f"Unknown server event: {type(event).__name__}")
        handler(self, event)

    def on_connection(self, conn: Connection) -> None:
        pass

    def on_disconnection(self, conn: Connection) -> None:
        pass

    def on_timeout(self, conn: Connection) -> None:
        pass

    def on_receive(self, conn: Connection, packet: Packet) -> None:
        pass

    def on_authorized(self, conn: Connection) -> None:
        pass

    def on_failed(self, conn: Connection, attempted_password: str) -> None:
        pass

    def on_command(self, conn: Connection, command: str, request_id: int) -> None:
        pass


_ROUTES: dict[type, Callable[[Dispatcher, ServerEvent], None]] = {
    ConnectionOpened: lambda d, e: d.on_connection(e.connection),
    ConnectionClosed: lambda d, e: d.on_disconnection(e.connection),
    AuthTimedOut: lambda d, e: d.on_timeout(e.connection),
    PacketReceived: lambda d, e: d.on_receive(e.connection, e.packet),
    AuthSucceeded: lambda d, e: d.on_authorized(e.connection),
    AuthFailed: lambda d, e: d.on_failed(e.connection, e.attempted_password),
    CommandReceived: lambda d, e: d.on_command(e.connection, e.command, e.request_id),
}


class LoggingDispatcher(Dispatcher):
    """
    Dispatcher that logs every event.

    Commands are logged but not executed; no reply is sent. Subclass and
    override on_command to give commands meaning.
    """

    def on_connection(self, conn: Connection) -> None:
        logger.info("Client connected", extra={"peer": conn.peer_name})

    def on_disconnection(self, conn: Connection) -> None:
        logger.info("Client disconnected", extra={"peer": conn.peer_name})

    def on_timeout(self, conn: Connection) -> None:
        logger.warning(
            "Client authorization timed out",
            extra={"peer": conn.peer_name, "age_seconds": round(conn.age(), 3)},
        )

    def on_receive(self, conn: Connection, packet: Packet) -> None:
        logger.debug(
            "Packet received",
            extra={"peer": conn.peer_name, "id": packet.id, "type": packet.type},
        )

    def on_authorized(self, conn: Connection) -> None:
        logger.info("Client authorized", extra={"peer": conn.peer_name})

    def on_failed(self, conn: Connection, attempted_password: str) -> None:
        # Never log the attempted password
        logger.warning("Client authorization failed", extra={"peer": conn.peer_name})

    def on_command(self, conn: Connection, command: str, request_id: int) -> None:
        logger.info(
            "Command received",
            extra={"peer": conn.peer_name, "command": command, "request_id": request_id},
        )
