"""
One-shot RCON client command line.

Usage:
    source-rcon --host 127.0.0.1 --port 27015 --password secret status

Exit codes: 0 success, 1 connection error or unsendable request,
2 authorization failed, 3 no usable reply to the command.
"""

from __future__ import annotations

import argparse
import sys

from source_rcon.client import RconClient
from source_rcon.errors import PacketFormatError, RconConnectionError
from source_rcon.logging import setup_logging
from source_rcon.protocol import DEFAULT_HOST, DEFAULT_PORT, DEFAULT_TIMEOUT

EXIT_OK = 0
EXIT_CONNECTION_ERROR = 1
EXIT_AUTH_FAILED = 2
EXIT_NO_REPLY = 3


def _parse_args(args: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Send one command to a Source RCON server",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--host", "-H", default=DEFAULT_HOST, help="Server host")
    parser.add_argument(
        "--port", "-p", type=int, default=DEFAULT_PORT, help="Server port"
    )
    parser.add_argument("--password", "-P", required=True, help="RCON password")
    parser.add_argument(
        "--timeout", "-t", type=float, default=DEFAULT_TIMEOUT, help="Timeout in seconds"
    )
    parser.add_argument("--log-level", default="warning", help="Log level")
    parser.add_argument("command", nargs="+", help="Command to execute")
    return parser.parse_args(args)


def main(args: list[str] | None = None) -> int:
    """Run one authorize + command round trip and print the response."""
    parsed = _parse_args(args)
    setup_logging(level=parsed.log_level, json_format=False, log_to_stdout=False)

    client = RconClient(parsed.host, parsed.port, parsed.timeout)
    try:
        if not client.authorize(parsed.password):
            print("RCON authorization failed", file=sys.stderr)
            return EXIT_AUTH_FAILED

        response = client.send_command(" ".join(parsed.command))
    except (RconConnectionError, PacketFormatError) as e:
        print(e.message, file=sys.stderr)
        return EXIT_CONNECTION_ERROR
    finally:
        client.disconnect()

    if response is None:
        print("No reply from server", file=sys.stderr)
        return EXIT_NO_REPLY

    if response:
        print(response)
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
