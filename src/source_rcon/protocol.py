"""
Source RCON packet codec.

Wire format of one frame (all integers little-endian):

    uint32 size | int32 id | int32 type | ASCII body | 0x00 | 0x00

``size`` counts every byte after itself. The first trailing NUL terminates
the body string, the second is the protocol's empty-string sentinel.

Packet type 2 is overloaded: it is AUTH_RESPONSE when sent by the server and
EXECCOMMAND when sent by the client. Only the sender role tells them apart.

See https://developer.valvesoftware.com/wiki/Source_RCON_Protocol
"""

from __future__ import annotations

import contextlib
import socket
import struct
import time
from dataclasses import dataclass
from enum import IntEnum

from source_rcon.errors import PacketFormatError
from source_rcon.logging import get_logger

logger = get_logger(__name__)

# =============================================================================
# Protocol Constants
# =============================================================================


class PacketType(IntEnum):
    """Packet types corresponding to the ``SERVERDATA_`` constants."""

    RESPONSE_VALUE = 0
    AUTH_RESPONSE = 2
    EXECCOMMAND = 2
    AUTH = 3


ENCODING = "ascii"

TERMINATOR = b"\x00\x00"

SIZE_STRUCT = struct.Struct("<I")
HEADER_STRUCT = struct.Struct("<ii")

# id + type + two terminating NULs
MIN_PACKET_SIZE = HEADER_STRUCT.size + len(TERMINATOR)

# Upper bound on a declared frame size: 1 MB
MAX_FRAME_SIZE = 1024 * 1024

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 27015

# Default client socket timeout: 10 seconds
DEFAULT_TIMEOUT = 10.0


# =============================================================================
# Packet Model
# =============================================================================


@dataclass(frozen=True)
class Packet:
    """
    A decoded RCON packet.

    Attributes:
        id: Request identifier chosen by the client and mirrored back.
        type: Packet type (see PacketType); kept as a plain int so unknown
            values survive decoding.
        body: Packet body text.
    """

    id: int
    type: int
    body: str = ""

    def encode(self) -> bytes:
        """Encode this packet into one length-prefixed frame."""
        return encode(self.id, self.type, self.body)


def encode(request_id: int, packet_type: int, body: str = "") -> bytes:
    """
    Encode a packet into a length-prefixed frame.

    Args:
        request_id: Packet id (signed 32-bit).
        packet_type: Packet type (signed 32-bit).
        body: ASCII body without embedded NULs.

    Returns:
        The frame bytes, length prefix included.

    Raises:
        PacketFormatError: If the fields cannot be represented on the wire.
    """
    try:
        raw_body = body.encode(ENCODING)
    except UnicodeEncodeError as e:
        raise PacketFormatError(
            "Packet body is not ASCII",
            details={"id": request_id, "type": packet_type},
        ) from e

    if b"\x00" in raw_body:
        raise PacketFormatError(
            "Packet body contains a NUL byte",
            details={"id": request_id, "type": packet_type},
        )

    try:
        header = HEADER_STRUCT.pack(request_id, packet_type)
    except struct.error as e:
        raise PacketFormatError(
            f"Packet header out of range: {e}",
            details={"id": request_id, "type": packet_type},
        ) from e

    payload = header + raw_body + TERMINATOR
    return SIZE_STRUCT.pack(len(payload)) + payload


def decode(data: bytes, has_length_prefix: bool = True) -> Packet:
    """
    Decode one frame into a Packet.

    Args:
        data: Frame bytes.
        has_length_prefix: Whether ``data`` starts with the 4-byte size.

    Returns:
        The decoded packet.

    Raises:
        PacketFormatError: If id, type and body cannot all be extracted.
    """
    if has_length_prefix:
        if len(data) < SIZE_STRUCT.size:
            raise PacketFormatError(
                "Frame too short for length prefix", details={"size": len(data)}
            )
        (size,) = SIZE_STRUCT.unpack_from(data)
        data = data[SIZE_STRUCT.size :]
        if size != len(data):
            raise PacketFormatError(
                f"Length prefix mismatch: declared {size}, got {len(data)}",
                details={"declared": size, "actual": len(data)},
            )

    if len(data) < MIN_PACKET_SIZE:
        raise PacketFormatError(
            f"Packet too short: {len(data)} bytes",
            details={"size": len(data), "min_size": MIN_PACKET_SIZE},
        )

    if not data.endswith(TERMINATOR):
        raise PacketFormatError(
            "Packet is missing its terminating NUL bytes",
            details={"size": len(data)},
        )

    request_id, packet_type = HEADER_STRUCT.unpack_from(data)
    raw_body = data[HEADER_STRUCT.size :]
    raw_body = raw_body[: raw_body.index(b"\x00")]

    try:
        body = raw_body.decode(ENCODING)
    except UnicodeDecodeError as e:
        raise PacketFormatError(
            "Packet body is not ASCII",
            details={"id": request_id, "type": packet_type},
        ) from e

    return Packet(id=request_id, type=packet_type, body=body)


# =============================================================================
# Stream Framing
# =============================================================================


def _recv_exactly(
    sock: socket.socket, n: int, deadline: float | None = None
) -> bytes:
    """
    Read up to ``n`` bytes, stopping early on EOF, timeout or socket error.

    With a ``deadline`` (a ``time.monotonic()`` reading) the socket timeout
    is narrowed before every recv so the whole read ends by the deadline.
    The caller detects a short read by comparing the result length.
    """
    buf = bytearray()
    while len(buf) < n:
        try:
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError("frame deadline passed")
                sock.settimeout(remaining)
            chunk = sock.recv(n - len(buf))
        except OSError as e:
            # socket.timeout is a subclass of OSError
            logger.debug("Frame read interrupted", extra={"error": str(e)})
            break
        if not chunk:
            break
        buf += chunk
    return bytes(buf)


def read_frame(sock: socket.socket) -> Packet | None:
    """
    Read one frame from a socket.

    A socket timeout bounds the whole frame, not each recv: a peer that
    trickles bytes cannot hold the reader past one timeout period. The
    socket's timeout is restored before returning.

    Returns:
        The decoded packet, or None when no complete, valid frame was
        available. This function never raises.
    """
    timeout = sock.gettimeout()
    if not timeout:
        return _read_frame(sock, None)

    try:
        return _read_frame(sock, time.monotonic() + timeout)
    finally:
        with contextlib.suppress(OSError):
            sock.settimeout(timeout)


def _read_frame(sock: socket.socket, deadline: float | None) -> Packet | None:
    size_bytes = _recv_exactly(sock, SIZE_STRUCT.size, deadline)
    if len(size_bytes) < SIZE_STRUCT.size:
        return None

    (size,) = SIZE_STRUCT.unpack(size_bytes)
    if size > MAX_FRAME_SIZE:
        logger.debug(
            "Frame too large, dropped",
            extra={"size": size, "max_size": MAX_FRAME_SIZE},
        )
        return None

    payload = _recv_exactly(sock, size, deadline)
    if len(payload) < size:
        logger.debug(
            "Incomplete frame, dropped",
            extra={"declared": size, "received": len(payload)},
        )
        return None

    try:
        return decode(payload, has_length_prefix=False)
    except PacketFormatError as e:
        logger.debug(
            "Malformed frame, dropped",
            extra={"error": e.message, **e.details},
        )
        return None


def write_frame(
    sock: socket.socket,
    request_id: int,
    packet_type: int,
    body: str = "",
) -> None:
    """
    Encode a packet and write it with a single full write.

    Raises:
        PacketFormatError: If the packet cannot be encoded.
        OSError: If the write fails.
    """
    frame = encode(request_id, packet_type, body)
    sock.sendall(frame)

    logger.debug(
        "Frame sent",
        extra={"id": request_id, "type": int(packet_type), "size": len(frame)},
    )
