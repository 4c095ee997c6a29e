"""
Source RCON server.

The server runs a single-threaded event loop over a ``selectors`` readiness
poll. Concurrency across clients comes only from I/O multiplexing; the
connection registry is touched by the loop thread alone.

One loop iteration:
1. Sweep: drop connections that failed auth, and those still awaiting
   auth after ``auth_timeout`` seconds.
2. Readiness poll across the listening socket and all client sockets,
   waiting ``poll_interval`` seconds (0 means a zero-wait busy poll).
3. Accept at most one pending connection, closing it at once when the
   registry is full.
4. For each other ready connection: drop it at end-of-stream, otherwise
   read one frame and run the authorization state machine.

Example:
    >>> server = RconServer(port=27015, password="secret", dispatcher=MyDispatcher())
    >>> server.start()  # runs until server.stop()
"""

from __future__ import annotations

import contextlib
import hmac
import secrets
import selectors
import signal
import socket
import string
import sys
from typing import Any

from source_rcon.config import ServerConfig, load_config
from source_rcon.errors import RconConnectionError
from source_rcon.logging import get_logger, setup_logging
from source_rcon.protocol import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    Packet,
    PacketType,
    read_frame,
)
from source_rcon_server.connection import Connection, ConnectionStatus, PeerAddress
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

logger = get_logger(__name__)

PASSWORD_ALPHABET = string.digits + string.ascii_letters

DEFAULT_AUTH_TIMEOUT = 10.0
DEFAULT_MAX_CLIENTS = 20
DEFAULT_FRAME_TIMEOUT = 1.0


def generate_password(length: int = 8) -> str:
    """
    Generate a random alphanumeric password.

    Args:
        length: Number of characters.

    Returns:
        The password.
    """
    if length < 1:
        raise ValueError(f"Password length must be positive, got {length}")
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


class RconServer:
    """
    Source RCON server.

    Attributes:
        host: Address the listening socket binds to.
        port: Port the listening socket binds to.
        password: The RCON password.
        password_generated: Whether the password was generated.
        dispatcher: Receiver of all server events.
        auth_timeout: Seconds an unauthenticated connection may live.
        max_clients: Connection capacity.
        poll_interval: Readiness poll wait in seconds.
        frame_timeout: Per-read timeout while completing a frame.
        running: Whether the loop is currently running.
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        password: str | None = None,
        dispatcher: Dispatcher | None = None,
        auth_timeout: float = DEFAULT_AUTH_TIMEOUT,
        max_clients: int = DEFAULT_MAX_CLIENTS,
        poll_interval: float = 0.0,
        frame_timeout: float = DEFAULT_FRAME_TIMEOUT,
        password_length: int = 8,
    ) -> None:
        """
        Initialize the server. No socket is opened until open_socket()/start().

        Args:
            host: Address to bind to.
            port: Port to bind to (0 picks a free port, see ``address``).
            password: RCON password; a random one is generated if None.
            dispatcher: Event receiver (a no-op Dispatcher if not provided).
            auth_timeout: Seconds allowed for authentication.
            max_clients: Maximum simultaneous connections.
            poll_interval: Readiness poll wait; 0 busy-polls.
            frame_timeout: Per-read timeout while completing a frame.
            password_length: Length of a generated password.
        """
        self.host = host
        self.port = port
        self.password_generated = password is None
        self.password = (
            generate_password(password_length) if password is None else password
        )
        self.dispatcher = dispatcher if dispatcher is not None else Dispatcher()
        self.auth_timeout = auth_timeout
        self.max_clients = max_clients
        self.poll_interval = poll_interval
        self.frame_timeout = frame_timeout

        self.running = False
        self._stopped = False
        self._accept_failing = False
        self._listener: socket.socket | None = None
        self._selector: selectors.BaseSelector | None = None
        self._connections: dict[PeerAddress, Connection] = {}

    @classmethod
    def from_config(
        cls, config: ServerConfig, dispatcher: Dispatcher | None = None
    ) -> RconServer:
        """
        Create a server from configuration.

        Args:
            config: Server configuration from AppConfig.
            dispatcher: Optional event receiver.

        Returns:
            Configured RconServer instance.
        """
        return cls(
            host=config.host,
            port=config.port,
            password=config.password,
            dispatcher=dispatcher,
            auth_timeout=config.auth_timeout_seconds,
            max_clients=config.max_clients,
            poll_interval=config.poll_interval_seconds,
            frame_timeout=config.frame_timeout_seconds,
            password_length=config.password_length,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def address(self) -> tuple[Any, ...] | None:
        """The bound listening address, or None when no socket is open."""
        if self._listener is None:
            return None
        return self._listener.getsockname()

    @property
    def connections(self) -> dict[PeerAddress, Connection]:
        """A snapshot of the connection registry."""
        return dict(self._connections)

    @property
    def stopped(self) -> bool:
        return self._stopped

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def open_socket(self) -> RconServer:
        """
        Bind and listen.

        Returns:
            This server, for chaining.

        Raises:
            RconConnectionError: If the socket cannot be opened.
        """
        try:
            listener = socket.create_server((self.host, self.port))
        except OSError as e:
            logger.error(
                "Unable to open RCON socket",
                extra={"host": self.host, "port": self.port, "error": str(e)},
            )
            raise RconConnectionError(
                f"Unable to open socket on {self.host}:{self.port}: {e}",
                details={"host": self.host, "port": self.port},
            ) from e

        listener.setblocking(False)
        self._listener = listener
        self._selector = selectors.DefaultSelector()
        self._selector.register(listener, selectors.EVENT_READ, None)

        logger.debug("RCON socket opened", extra={"address": str(self.address)})
        return self

    def start(self) -> None:
        """
        Run the event loop until stop() is called.

        Raises:
            RconConnectionError: If the listening socket cannot be opened.
        """
        if self._listener is None:
            self.open_socket()

        self.running = True
        logger.info(
            "RCON server started",
            extra={
                "address": str(self.address),
                "max_clients": self.max_clients,
                "auth_timeout": self.auth_timeout,
                "poll_interval": self.poll_interval,
            },
        )

        try:
            while not self._stopped:
                self.run_once()
        finally:
            self.running = False
            self.close()
            logger.info("RCON server stopped")

    def stop(self) -> None:
        """
        Stop the server.

        The loop exits at its next iteration and closes the listening
        socket. Open client connections are closed without notification.
        Safe to call from a signal handler or another thread.
        """
        self._stopped = True
        if not self.running:
            self.close()

    def close(self) -> None:
        """Close the listening socket and all client sockets, without events."""
        for conn in list(self._connections.values()):
            self._discard(conn)

        if self._selector is not None:
            self._selector.close()
            self._selector = None

        if self._listener is not None:
            with contextlib.suppress(OSError):
                self._listener.close()
            self._listener = None

    # -------------------------------------------------------------------------
    # Event loop
    # -------------------------------------------------------------------------

    def run_once(self) -> None:
        """
        Run one loop iteration.

        Raises:
            RuntimeError: If the listening socket is not open.
        """
        if self._selector is None:
            raise RuntimeError("RCON server socket is not open")

        self._sweep()

        listener_ready = False
        ready: list[Connection] = []
        for key, _ in self._selector.select(timeout=self.poll_interval):
            if key.data is None:
                listener_ready = True
            else:
                ready.append(key.data)

        if listener_ready:
            self._accept()

        for conn in ready:
            if self._stopped:
                break
            if conn.closed:
                continue
            self._process(conn)

    def _sweep(self) -> None:
        """Remove failed and timed-out unauthenticated connections."""
        for conn in list(self._connections.values()):
            if conn.status is ConnectionStatus.AUTH_FAILED:
                self._remove(conn, ConnectionClosed(conn))
            elif (
                conn.status is ConnectionStatus.AWAITING_AUTH
                and conn.age() >= self.auth_timeout
            ):
                self._remove(conn, AuthTimedOut(conn))

    def _accept(self) -> None:
        """Accept one pending connection, subject to admission control."""
        assert self._listener is not None and self._selector is not None

        try:
            sock, peer = self._listener.accept()
        except BlockingIOError:
            return
        except OSError as e:
            # Warn once per failure streak; the listener stays readable
            log = logger.debug if self._accept_failing else logger.warning
            log("Accept failed", extra={"error": str(e)})
            self._accept_failing = True
            return
        self._accept_failing = False

        if len(self._connections) >= self.max_clients:
            logger.warning(
                "Connection rejected, server full",
                extra={"peer": str(peer), "max_clients": self.max_clients},
            )
            with contextlib.suppress(OSError):
                sock.close()
            return

        sock.settimeout(self.frame_timeout)
        conn = Connection(sock, peer)
        self._connections[peer] = conn
        self._selector.register(sock, selectors.EVENT_READ, conn)
        self._notify(ConnectionOpened(conn))

    def _process(self, conn: Connection) -> None:
        """Handle one ready connection; faults never escape this method."""
        try:
            if conn.status is ConnectionStatus.AUTH_FAILED or conn.at_eof():
                self._remove(conn, ConnectionClosed(conn))
                return

            packet = read_frame(conn.sock)
            if packet is None:
                return

            self._notify(PacketReceived(conn, packet))
            self._transition(conn, packet)

        except OSError as e:
            logger.warning(
                "Connection error",
                extra={"peer": conn.peer_name, "error": str(e)},
            )
            self._remove(conn, ConnectionClosed(conn))

    def _transition(self, conn: Connection, packet: Packet) -> None:
        """
        Apply the authorization state machine to one packet.

        Raises:
            OSError: If the auth reply cannot be written.
        """
        if (
            conn.status is ConnectionStatus.AWAITING_AUTH
            and packet.type == PacketType.AUTH
        ):
            if hmac.compare_digest(packet.body.encode(), self.password.encode()):
                conn.status = ConnectionStatus.AUTHORIZED
                conn.send(packet.id, PacketType.AUTH_RESPONSE)
                self._notify(AuthSucceeded(conn))
            else:
                conn.status = ConnectionStatus.AUTH_FAILED
                conn.send(-1, PacketType.AUTH_RESPONSE)
                self._notify(AuthFailed(conn, packet.body))

        elif (
            conn.status is ConnectionStatus.AUTHORIZED
            and packet.type == PacketType.EXECCOMMAND
        ):
            self._notify(CommandReceived(conn, packet.body, packet.id))

    def _notify(self, event: ServerEvent) -> None:
        """Deliver an event; dispatcher errors are logged, never raised."""
        try:
            self.dispatcher.dispatch(event)
        except Exception as e:
            logger.exception(
                "Dispatcher error",
                extra={
                    "event": type(event).__name__,
                    "peer": event.connection.peer_name,
                    "error": str(e),
                },
            )

    def _remove(self, conn: Connection, event: ServerEvent) -> None:
        """Notify, then close and unregister a connection."""
        self._notify(event)
        self._discard(conn)

    def _discard(self, conn: Connection) -> None:
        if self._selector is not None:
            with contextlib.suppress(KeyError, ValueError):
                self._selector.unregister(conn.sock)
        conn.close()
        self._connections.pop(conn.peer, None)

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """
        Get server statistics.

        Returns:
            Dict with server statistics.
        """
        by_status = {status.value: 0 for status in ConnectionStatus}
        for conn in self._connections.values():
            by_status[conn.status.value] += 1

        return {
            "running": self.running,
            "address": self.address,
            "connections": len(self._connections),
            "max_clients": self.max_clients,
            "by_status": by_status,
        }


# =============================================================================
# Entry points
# =============================================================================


def run_server(
    config: ServerConfig | None = None,
    dispatcher: Dispatcher | None = None,
) -> RconServer:
    """
    Run a server until SIGINT or SIGTERM.

    Args:
        config: Server configuration (defaults if not provided).
        dispatcher: Event receiver (LoggingDispatcher if not provided).

    Returns:
        The stopped server.

    Raises:
        RconConnectionError: If the listening socket cannot be opened.
    """
    if config is None:
        config = ServerConfig()

    server = RconServer.from_config(
        config, dispatcher if dispatcher is not None else LoggingDispatcher()
    )
    server.open_socket()

    def signal_handler(signum: int, _frame: Any) -> None:
        logger.info("Received shutdown signal", extra={"signal": signum})
        server.stop()

    try:
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, signal_handler)
    except ValueError:
        # Not in the main thread
        pass

    if server.password_generated:
        print(f"Generated RCON password: {server.password}", file=sys.stderr)

    server.start()
    return server


def main(args: list[str] | None = None) -> int:
    """Command-line entry point for the RCON server."""
    config = load_config(cli_args=args)
    setup_logging(config.logging)

    try:
        run_server(config.server)
    except RconConnectionError as e:
        logger.error("RCON server failed to start", extra={"error": e.message})
        return 1
    return 0
