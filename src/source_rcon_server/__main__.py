"""Run the RCON server: ``python -m source_rcon_server``."""

from source_rcon_server.server import main

if __name__ == "__main__":
    raise SystemExit(main())
