#!/usr/bin/env python
"""Main entry point for the notesync client."""
import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from notesync import __version__
from notesync.app import NoteSyncApp
from notesync.config import config
from notesync.exceptions import NoteSyncError
from notesync.observability import configure_logging
from notesync.shell import NotesShell


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="notesync - personal notes client")
    parser.add_argument(
        "--backend",
        help="Where notes and accounts live",
        choices=["rest", "local"],
        default=None,
    )
    parser.add_argument(
        "--database-path",
        help="SQLite database file for the local backend",
        type=str,
        default=os.environ.get("NOTESYNC_DATABASE_PATH")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=config.log_level
    )
    parser.add_argument(
        "--check",
        help="Check the connection to the note store and exit",
        action="store_true",
    )
    parser.add_argument("--version", action="version", version=f"notesync {__version__}")
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.backend:
        config.backend = args.backend
    if args.database_path:
        config.database_path = Path(args.database_path)
    config.log_level = args.log_level


async def check_connection(app: NoteSyncApp) -> str:
    """Check the store the way a first page load would."""
    try:
        count = await app.backend.check_connection()
    except NoteSyncError as e:
        return f"Error: {e.message}"
    return f"Connected! Found {count} notes."


async def run(args) -> int:
    logger = logging.getLogger(__name__)
    try:
        app = NoteSyncApp(config)
    except NoteSyncError as e:
        logger.error(f"Cannot start: {e.message}")
        return 1

    async with app:
        if args.check:
            result = await check_connection(app)
            print(result)
            return 1 if result.startswith("Error") else 0

        shell = NotesShell(app.gate)
        print(f"notesync {__version__} - type 'help' for commands")
        print(await shell.execute("status"))
        await shell.run()
    return 0


def main():
    """Run the notesync client."""
    args = parse_args()
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        configure_logging(log_dir=config.log_dir, level=log_level, console=False)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
