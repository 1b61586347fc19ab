"""Entry point for the kicd relay."""

import asyncio

from kicd.logging import setup_logging
from kicd.server import run_server


def main() -> None:
    """Start the relay server."""
    setup_logging()
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
