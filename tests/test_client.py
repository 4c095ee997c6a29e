"""
Tests for RconClient against a scripted peer.

The peer reads one frame per request and answers with whatever the test's
responder returns, so reply id/type mismatches can be produced on demand.
"""

from __future__ import annotations

import socket
import threading
from collections.abc import Callable, Iterator

import pytest

from source_rcon.client import ID_AUTHORIZE, ID_COMMAND, RconClient
from source_rcon.config import ClientConfig
from source_rcon.errors import PacketFormatError, RconConnectionError
from source_rcon.protocol import Packet, PacketType, encode, read_frame

# Takes the request, returns raw bytes to send back (b"" sends nothing)
Responder = Callable[[Packet], bytes]


class ScriptedPeer:
    """A one-connection TCP peer driven by a responder function."""

    def __init__(self, responder: Responder) -> None:
        self.responder = responder
        self.requests: list[Packet] = []
        self.listener = socket.create_server(("127.0.0.1", 0))
        self.port = self.listener.getsockname()[1]
        self.accepted = 0
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self) -> None:
        try:
            sock, _ = self.listener.accept()
        except OSError:
            return
        self.accepted += 1
        sock.settimeout(2.0)
        with sock:
            while True:
                packet = read_frame(sock)
                if packet is None:
                    return
                self.requests.append(packet)
                reply = self.responder(packet)
                if reply:
                    sock.sendall(reply)

    def close(self) -> None:
        self.listener.close()
        self._thread.join(timeout=3.0)


@pytest.fixture
def scripted_peer() -> Iterator[Callable[[Responder], ScriptedPeer]]:
    """Factory for scripted peers, closed on teardown."""
    peers: list[ScriptedPeer] = []

    def _make(responder: Responder) -> ScriptedPeer:
        peer = ScriptedPeer(responder)
        peers.append(peer)
        return peer

    yield _make

    for peer in peers:
        peer.close()


def _client(peer: ScriptedPeer) -> RconClient:
    return RconClient("127.0.0.1", peer.port, timeout=0.5)


class TestConnect:
    """Tests for connection handling."""

    def test_connect_failure_raises(self) -> None:
        """Test a refused connection raises RconConnectionError."""
        with socket.create_server(("127.0.0.1", 0)) as s:
            port = s.getsockname()[1]
        client = RconClient("127.0.0.1", port, timeout=0.5)
        with pytest.raises(RconConnectionError) as exc_info:
            client.connect()
        assert exc_info.value.details["port"] == port
        assert client.connected is False

    def test_lazy_connect_and_reuse(
        self, scripted_peer: Callable[[Responder], ScriptedPeer]
    ) -> None:
        """Test the first call connects and later calls reuse the stream."""
        peer = scripted_peer(lambda p: encode(p.id, PacketType.RESPONSE_VALUE, "ok"))
        client = _client(peer)
        assert client.connected is False

        assert client.send(5, PacketType.EXECCOMMAND, "a") == Packet(5, 0, "ok")
        assert client.send(6, PacketType.EXECCOMMAND, "b") == Packet(6, 0, "ok")
        assert client.connected is True
        assert peer.accepted == 1
        client.disconnect()

    def test_disconnect_is_idempotent(
        self, scripted_peer: Callable[[Responder], ScriptedPeer]
    ) -> None:
        """Test disconnect twice and before connecting."""
        peer = scripted_peer(lambda p: b"")
        client = _client(peer)
        client.disconnect()
        client.connect()
        client.disconnect()
        client.disconnect()
        assert client.connected is False

    def test_context_manager(
        self, scripted_peer: Callable[[Responder], ScriptedPeer]
    ) -> None:
        """Test the context manager connects and disconnects."""
        peer = scripted_peer(lambda p: b"")
        with _client(peer) as client:
            assert client.connected is True
        assert client.connected is False

    def test_from_config(self) -> None:
        """Test creating a client from ClientConfig."""
        client = RconClient.from_config(
            ClientConfig(host="10.0.0.1", port=27020, timeout_seconds=3)
        )
        assert (client.host, client.port, client.timeout) == ("10.0.0.1", 27020, 3.0)


class TestAuthorize:
    """Tests for authorize()."""

    def test_success(self, scripted_peer: Callable[[Responder], ScriptedPeer]) -> None:
        """Test a mirrored id with AUTH_RESPONSE is success."""
        peer = scripted_peer(lambda p: encode(p.id, PacketType.AUTH_RESPONSE))
        client = _client(peer)
        assert client.authorize("abc123") is True
        assert client.authorized is True
        assert peer.requests == [Packet(ID_AUTHORIZE, PacketType.AUTH, "abc123")]
        client.disconnect()
        assert client.authorized is False

    def test_failure_id(self, scripted_peer: Callable[[Responder], ScriptedPeer]) -> None:
        """Test an id of -1 is failure."""
        peer = scripted_peer(lambda p: encode(-1, PacketType.AUTH_RESPONSE))
        client = _client(peer)
        assert client.authorize("wrong") is False
        assert client.authorized is False
        client.disconnect()

    def test_wrong_type(self, scripted_peer: Callable[[Responder], ScriptedPeer]) -> None:
        """Test a matching id with the wrong type is failure."""
        peer = scripted_peer(lambda p: encode(p.id, PacketType.RESPONSE_VALUE))
        client = _client(peer)
        assert client.authorize("abc123") is False
        client.disconnect()

    def test_no_reply(self, scripted_peer: Callable[[Responder], ScriptedPeer]) -> None:
        """Test no reply within the timeout is failure."""
        peer = scripted_peer(lambda p: b"")
        client = _client(peer)
        assert client.authorize("abc123") is False
        client.disconnect()

    def test_non_ascii_password_raises(
        self, scripted_peer: Callable[[Responder], ScriptedPeer]
    ) -> None:
        """Test a password that cannot be encoded raises and sends nothing."""
        peer = scripted_peer(lambda p: encode(p.id, PacketType.AUTH_RESPONSE))
        client = _client(peer)
        with pytest.raises(PacketFormatError):
            client.authorize("p\u00e4ss")
        client.disconnect()
        assert peer.requests == []
        assert client.authorized is False


class TestSendCommand:
    """Tests for send_command()."""

    def test_returns_body(self, scripted_peer: Callable[[Responder], ScriptedPeer]) -> None:
        """Test a matching RESPONSE_VALUE returns its body."""
        peer = scripted_peer(lambda p: encode(p.id, PacketType.RESPONSE_VALUE, "ok"))
        client = _client(peer)
        assert client.send_command("status") == "ok"
        assert peer.requests == [Packet(ID_COMMAND, PacketType.EXECCOMMAND, "status")]
        client.disconnect()

    def test_empty_body(self, scripted_peer: Callable[[Responder], ScriptedPeer]) -> None:
        """Test an empty response is an empty string, not None."""
        peer = scripted_peer(lambda p: encode(p.id, PacketType.RESPONSE_VALUE))
        client = _client(peer)
        assert client.send_command("noop") == ""
        client.disconnect()

    @pytest.mark.parametrize(
        "reply",
        [
            encode(3, PacketType.RESPONSE_VALUE, "ok"),
            encode(ID_COMMAND, PacketType.AUTH_RESPONSE, "ok"),
            b"\x05\x00\x00\x00junk",
            b"",
        ],
        ids=["wrong-id", "wrong-type", "malformed", "no-reply"],
    )
    def test_unusable_reply_is_none(
        self,
        scripted_peer: Callable[[Responder], ScriptedPeer],
        reply: bytes,
    ) -> None:
        """Test mismatched, malformed and missing replies all give None."""
        peer = scripted_peer(lambda p: reply)
        client = _client(peer)
        assert client.send_command("status") is None
        client.disconnect()
