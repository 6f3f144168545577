#!/usr/bin/env python3
"""
Storywright Server Runner

Starts the PRD/story workflow API.

Usage:
    python run_server.py [--host HOST] [--port PORT] [--db PATH] [--drop-db]

Options:
    --host HOST   Interface to bind (default from SERVER_HOST)
    --port PORT   Port to listen on (default from SERVER_PORT)
    --db PATH     SQLite database file (overrides STORYWRIGHT_DB)
    --drop-db     Drop all tables before starting
"""

import argparse
import logging
import os

import uvicorn

from storywright.c1_database_session import DatabaseManager
from storywright.c1_database_session.database_manager import resolve_database_path
from storywright.core.config import get_settings
from storywright.core.logging_config import configure_logging
from storywright.server import create_app

logger = logging.getLogger("storywright.run_server")


def main():
    """Run the Storywright server."""
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Run the Storywright story workflow server")
    parser.add_argument("--host", type=str, default=settings.server.host, help="Interface to bind")
    parser.add_argument("--port", type=int, default=settings.server.port, help="Port to listen on")
    parser.add_argument("--db", type=str, help="SQLite database file")
    parser.add_argument("--drop-db", action="store_true", help="Drop all tables before starting")
    args = parser.parse_args()

    configure_logging()

    if args.db:
        os.environ["STORYWRIGHT_DB"] = args.db

    if args.drop_db:
        db_path = resolve_database_path()
        logger.warning(f"Dropping all tables in {db_path}")
        db_manager = DatabaseManager(db_path)
        db_manager.drop_tables()
        db_manager.dispose()

    logger.info(f"Serving on http://{args.host}:{args.port} (provider: {settings.llm.provider})")
    uvicorn.run(create_app(settings), host=args.host, port=args.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
