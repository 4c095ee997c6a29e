"""
Source RCON - server.

This package implements the RCON server: a single-threaded, readiness
multiplexed event loop that accepts TCP clients, authenticates them against
a password, and hands commands to a Dispatcher. The server implements no
commands of its own.
"""

from source_rcon_server.connection import Connection, ConnectionStatus
from source_rcon_server.events import (
    AuthFailed,
    AuthSucceeded,
    AuthTimedOut,
    CommandReceived,
    ConnectionClosed,
    ConnectionOpened,
    Dispatcher,
    LoggingDispatcher,
    PacketReceived,
    ServerEvent,
)
from source_rcon_server.server import RconServer, generate_password, main, run_server

__version__ = "0.1.0"

__all__ = [
    "AuthFailed",
    "AuthSucceeded",
    "AuthTimedOut",
    "CommandReceived",
    "Connection",
    "ConnectionClosed",
    "ConnectionOpened",
    "ConnectionStatus",
    "Dispatcher",
    "LoggingDispatcher",
    "PacketReceived",
    "RconServer",
    "ServerEvent",
    "generate_password",
    "main",
    "run_server",
]
