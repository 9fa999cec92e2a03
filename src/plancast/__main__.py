"""Module entrypoint for ``python -m plancast``."""

from __future__ import annotations

from plancast.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
