"""
Pytest configuration and shared fixtures for the Source RCON tests.
"""

from __future__ import annotations

import logging
import socket
import threading
import time
from collections.abc import Callable, Iterator
from typing import Any

import pytest

from source_rcon.protocol import Packet
from source_rcon_server.connection import Connection
from source_rcon_server.events import Dispatcher
from source_rcon_server.server import RconServer


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


@pytest.fixture(autouse=True)
def _cleanup_loggers() -> Iterator[None]:
    """Reset the package logger after each test (autouse fixture)."""
    yield
    logger = logging.getLogger("source_rcon")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


class RecordingDispatcher(Dispatcher):
    """Dispatcher that records every callback as (name, connection, *args)."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self._lock = threading.Lock()

    def _record(self, *call: Any) -> None:
        with self._lock:
            self.calls.append(call)

    def names(self, conn: Connection | None = None) -> list[str]:
        """Callback names in order, optionally for one connection."""
        with self._lock:
            return [c[0] for c in self.calls if conn is None or c[1] is conn]

    def on_connection(self, conn: Connection) -> None:
        self._record("on_connection", conn)

    def on_disconnection(self, conn: Connection) -> None:
        self._record("on_disconnection", conn)

    def on_timeout(self, conn: Connection) -> None:
        self._record("on_timeout", conn)

    def on_receive(self, conn: Connection, packet: Packet) -> None:
        self._record("on_receive", conn, packet)

    def on_authorized(self, conn: Connection) -> None:
        self._record("on_authorized", conn)

    def on_failed(self, conn: Connection, attempted_password: str) -> None:
        self._record("on_failed", conn, attempted_password)

    def on_command(self, conn: Connection, command: str, request_id: int) -> None:
        self._record("on_command", conn, command, request_id)


def wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def recorder() -> RecordingDispatcher:
    """A fresh recording dispatcher."""
    return RecordingDispatcher()


@pytest.fixture
def start_server() -> Iterator[Callable[..., RconServer]]:
    """
    Factory fixture that runs RconServer instances in background threads.

    Servers bind an ephemeral port on 127.0.0.1 and use a short poll wait so
    the test suite does not spin a CPU. All servers are stopped on teardown.
    """
    started: list[tuple[RconServer, threading.Thread]] = []

    def _start(**kwargs: Any) -> RconServer:
        kwargs.setdefault("host", "127.0.0.1")
        kwargs.setdefault("port", 0)
        kwargs.setdefault("password", "abc123")
        kwargs.setdefault("poll_interval", 0.005)
        kwargs.setdefault("frame_timeout", 0.2)
        server = RconServer(**kwargs)
        server.open_socket()
        thread = threading.Thread(target=server.start, daemon=True)
        thread.start()
        assert wait_until(lambda: server.running)
        started.append((server, thread))
        return server

    yield _start

    for server, thread in started:
        server.stop()
        thread.join(timeout=2.0)


def connect_raw(server: RconServer, timeout: float = 2.0) -> socket.socket:
    """Open a plain TCP socket to a running server."""
    assert server.address is not None
    host, port = server.address[:2]
    return socket.create_connection((host, port), timeout=timeout)
