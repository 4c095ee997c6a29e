"""
Source RCON - packet codec and client.

This package implements the Source RCON wire protocol (length-prefixed
binary frames over TCP) and a synchronous client. The server lives in the
sibling ``source_rcon_server`` package.
"""

from source_rcon.client import RconClient
from source_rcon.errors import (
    PacketFormatError,
    ProtocolMismatchError,
    RconConnectionError,
    RconError,
)
from source_rcon.protocol import (
    Packet,
    PacketType,
    decode,
    encode,
    read_frame,
    write_frame,
)

__version__ = "0.1.0"

__all__ = [
    "Packet",
    "PacketFormatError",
    "PacketType",
    "ProtocolMismatchError",
    "RconClient",
    "RconConnectionError",
    "RconError",
    "decode",
    "encode",
    "read_frame",
    "write_frame",
]
